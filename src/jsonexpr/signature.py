"""Function signatures in the ``<params:return>`` notation.

Each parameter is a type letter (or a ``(...)`` choice of letters), optionally
followed by a ``<...>`` subtype annotation and the modifiers ``?`` (optional),
``+`` (one or more) and ``-`` (may be supplied by the context value).

Type letters: ``b`` boolean, ``n`` number, ``s`` string, ``l`` null,
``a`` array, ``o`` object, ``f`` function, ``j`` any JSON value, ``x`` anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .errors import ArgumentTypeError
from .values import UNDEFINED, is_array, is_function, is_number, is_object

_TYPE_NAMES: Final[dict[str, str]] = {
    "b": "boolean",
    "n": "number",
    "s": "string",
    "l": "null",
    "a": "array",
    "o": "object",
    "f": "function",
    "j": "json",
    "x": "any",
}


@dataclass(frozen=True)
class Param:
    types: str
    optional: bool = False
    variadic: bool = False
    context: bool = False

    @property
    def description(self) -> str:
        return " or ".join(_TYPE_NAMES[t] for t in self.types)

    def accepts(self, value: object) -> bool:
        if value is UNDEFINED:
            return True
        return any(_matches(t, value) for t in self.types)


def _matches(type_letter: str, value: object) -> bool:
    if type_letter == "x":
        return True
    if type_letter == "j":
        return not is_function(value)
    if type_letter == "b":
        return isinstance(value, bool)
    if type_letter == "n":
        return is_number(value)
    if type_letter == "s":
        return isinstance(value, str)
    if type_letter == "l":
        return value is None
    if type_letter == "a":
        return is_array(value)
    if type_letter == "o":
        return is_object(value)
    if type_letter == "f":
        return is_function(value)
    raise AssertionError(f"unknown type letter {type_letter!r}")


def _skip_subtype(text: str, start: int, stop: int) -> int:
    depth = 0
    i = start
    while i < stop:
        if text[i] == "<":
            depth += 1
        elif text[i] == ">":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise ValueError(f"Unbalanced subtype in signature {text!r}")


def _parse_params(text: str, start: int, stop: int) -> tuple[Param, ...]:
    params: list[Param] = []
    i = start
    while i < stop:
        ch = text[i]
        if ch == "(":
            close = text.index(")", i)
            types = text[i + 1 : close]
            i = close + 1
        elif ch in _TYPE_NAMES:
            types = ch
            i += 1
        else:
            raise ValueError(f"Unexpected {ch!r} in signature {text!r}")

        if not types or any(t not in _TYPE_NAMES for t in types):
            raise ValueError(f"Invalid type choice {types!r} in signature {text!r}")
        if i < stop and text[i] == "<":
            i = _skip_subtype(text, i, stop)

        optional = variadic = context = False
        while i < stop and text[i] in "?+-":
            optional = optional or text[i] == "?"
            variadic = variadic or text[i] == "+"
            context = context or text[i] == "-"
            i += 1
        params.append(Param(types=types, optional=optional, variadic=variadic, context=context))
    return tuple(params)


@dataclass(frozen=True)
class Signature:
    text: str
    params: tuple[Param, ...]
    returns: str | None

    @classmethod
    def parse(cls, text: str) -> "Signature":
        if not (text.startswith("<") and text.endswith(">")):
            raise ValueError(f"Signature must be enclosed in <...>: {text!r}")
        body_end = len(text) - 1
        depth = 0
        colon = None
        for i in range(1, body_end):
            if text[i] == "<":
                depth += 1
            elif text[i] == ">":
                depth -= 1
            elif text[i] == ":" and depth == 0:
                colon = i
                break
        params_end = colon if colon is not None else body_end
        params = _parse_params(text, 1, params_end)
        returns = None
        if colon is not None:
            returns = text[colon + 1 : body_end]
            ret_params = _parse_params(returns, 0, len(returns))
            if len(ret_params) != 1:
                raise ValueError(f"Signature must declare a single return type: {text!r}")
        return cls(text=text, params=params, returns=returns)

    @property
    def min_arity(self) -> int:
        return sum(1 for p in self.params if not p.optional)

    @property
    def max_arity(self) -> int | None:
        if any(p.variadic for p in self.params):
            return None
        return len(self.params)

    @property
    def accepts_context(self) -> bool:
        return bool(self.params) and self.params[0].context

    def validate(self, name: str, args: list[object]) -> None:
        limit = self.max_arity
        if limit is not None and len(args) > limit:
            raise ArgumentTypeError(name, limit + 1, f"at most {limit} arguments")

        for position, param in enumerate(self.params):
            if param.variadic:
                rest = args[position:]
                if not rest and not param.optional:
                    raise ArgumentTypeError(name, position + 1, param.description)
                for offset, value in enumerate(rest):
                    if not param.accepts(value):
                        raise ArgumentTypeError(name, position + offset + 1, param.description)
                return
            if position >= len(args):
                if not param.optional:
                    raise ArgumentTypeError(name, position + 1, param.description)
                continue
            if not param.accepts(args[position]):
                raise ArgumentTypeError(name, position + 1, param.description)
