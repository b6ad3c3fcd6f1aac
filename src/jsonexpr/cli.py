"""Evaluate a jsonexpr expression against JSON input and print the result."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .errors import JsonExprError
from .evaluator import evaluate_with_errors
from .values import UNDEFINED, to_json

logger = logging.getLogger(__name__)


def _load_input(source: str | None) -> object:
    if source is None:
        return UNDEFINED
    if source == "-":
        return json.load(sys.stdin)
    return json.loads(Path(source).read_text(encoding="utf-8"))


def _parse_binding(text: str) -> tuple[str, object]:
    name, sep, raw = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"binding must look like NAME=JSON, got {text!r}")
    try:
        return name.lstrip("$"), json.loads(raw)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"binding {name!r} is not valid JSON: {exc}") from exc


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="jsonexpr", description=__doc__)
    parser.add_argument("expression", help="expression to evaluate")
    parser.add_argument(
        "--input",
        "-i",
        default=None,
        help="JSON file to query, or '-' to read standard input",
    )
    parser.add_argument(
        "--bind",
        "-b",
        action="append",
        default=[],
        type=_parse_binding,
        metavar="NAME=JSON",
        help="bind $NAME to a JSON value before evaluating (repeatable)",
    )
    parser.add_argument("--indent", type=int, default=None, help="pretty-print the result with this indent")
    parser.add_argument("--verbose", "-v", action="store_true", help="log evaluation details to stderr")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        data = _load_input(args.input)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"jsonexpr: cannot read input: {exc}", file=sys.stderr)
        return 1

    try:
        result = evaluate_with_errors(args.expression, data, env=dict(args.bind))
    except JsonExprError as exc:
        print(f"jsonexpr: {exc}", file=sys.stderr)
        return 1

    if result is UNDEFINED:
        logger.debug("expression produced no value")
        return 0
    print(json.dumps(to_json(result), indent=args.indent, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
