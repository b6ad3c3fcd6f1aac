"""Tokenization for the jsonexpr query language."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int
    end: int


_SINGLE_TOKENS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    "[": "LBRACK",
    "]": "RBRACK",
    ",": "COMMA",
    ";": "SEMI",
    "?": "QMARK",
    ":": "COLON",
    ".": "DOT",
}

# Longest match first.
_OPERATORS = (
    ":=",
    "~>",
    "..",
    "!=",
    "<=",
    ">=",
    "+",
    "-",
    "*",
    "/",
    "%",
    "&",
    "=",
    "<",
    ">",
)

_KEYWORDS = {
    "true": "TRUE",
    "false": "FALSE",
    "null": "NULL",
    "and": "OP",
    "or": "OP",
    "in": "OP",
    "function": "FUNCTION",
}

_NUMBER_RE = re.compile(r"(?:0|[1-9][0-9]*)(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?")

_SIMPLE_ESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or (ch.isalpha() and ch != "λ")


def _is_ident_continue(ch: str) -> bool:
    return ch == "_" or (ch.isalnum() and ch != "λ")


def _scan_while(source: str, start: int, predicate) -> tuple[str, int]:
    i = start
    while i < len(source) and predicate(source[i]):
        i += 1
    return source[start:i], i


def _parse_escaped_codepoint(source: str, start: int) -> tuple[str, int]:
    if start >= len(source):
        raise SyntaxError("Escape sequence is incomplete at end of input")

    esc = source[start]
    if esc in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[esc], start + 1

    if esc == "u":
        hex_end = start + 5
        if hex_end > len(source):
            raise SyntaxError(f"Incomplete \\u escape at index {start - 1}")
        digits = source[start + 1 : hex_end]
        if not all(ch in "0123456789abcdefABCDEF" for ch in digits):
            raise SyntaxError(f"Invalid \\u escape at index {start - 1}")
        return chr(int(digits, 16)), hex_end

    raise SyntaxError(f"Unknown escape sequence \\{esc} at index {start - 1}")


def _scan_string(source: str, start: int) -> tuple[str, int]:
    quote = source[start]
    assert quote in {'"', "'"}
    i = start + 1
    out: list[str] = []
    while i < len(source):
        ch = source[i]
        if ch == quote:
            return "".join(out), i + 1
        if ch == "\\":
            escaped, end = _parse_escaped_codepoint(source, i + 1)
            out.append(escaped)
            i = end
            continue
        out.append(ch)
        i += 1
    raise SyntaxError(f"Unterminated string literal at index {start}")


def _scan_quoted_name(source: str, start: int) -> tuple[str, int]:
    assert source[start] == "`"
    end = source.find("`", start + 1)
    if end < 0:
        raise SyntaxError(f"Unterminated quoted name at index {start}")
    return source[start + 1 : end], end + 1


def _skip_comment(source: str, start: int) -> int:
    end = source.find("*/", start + 2)
    if end < 0:
        raise SyntaxError(f"Unterminated comment at index {start}")
    return end + 2


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0

    while i < len(source):
        ch = source[i]

        if ch.isspace():
            i += 1
            continue

        if source.startswith("/*", i):
            i = _skip_comment(source, i)
            continue

        if ch.isdigit():
            m = _NUMBER_RE.match(source, i)
            if m is None or m.end() == i:
                raise SyntaxError(f"Invalid numeric literal at index {i}")
            end = m.end()
            # `1..5` is a range, not the number `1.` followed by `.5`.
            tokens.append(Token("NUMBER", source[i:end], i, end))
            i = end
            continue

        if ch in {'"', "'"}:
            value, end = _scan_string(source, i)
            tokens.append(Token("STRING", value, i, end))
            i = end
            continue

        if ch == "`":
            value, end = _scan_quoted_name(source, i)
            tokens.append(Token("NAME", value, i, end))
            i = end
            continue

        if ch == "$":
            if source.startswith("$$", i):
                tokens.append(Token("VARIABLE", "$", i, i + 2))
                i += 2
                continue
            ident, end = _scan_while(source, i + 1, _is_ident_continue)
            tokens.append(Token("VARIABLE", ident, i, end))
            i = end
            continue

        if ch == "λ":
            tokens.append(Token("FUNCTION", ch, i, i + 1))
            i += 1
            continue

        op = next((candidate for candidate in _OPERATORS if source.startswith(candidate, i)), None)
        if op is not None:
            kind = "ASSIGN" if op == ":=" else "OP"
            tokens.append(Token(kind, op, i, i + len(op)))
            i += len(op)
            continue

        if ch in _SINGLE_TOKENS:
            tokens.append(Token(_SINGLE_TOKENS[ch], ch, i, i + 1))
            i += 1
            continue

        if _is_ident_start(ch):
            ident, end = _scan_while(source, i, _is_ident_continue)
            tokens.append(Token(_KEYWORDS.get(ident, "NAME"), ident, i, end))
            i = end
            continue

        raise SyntaxError(f"Unexpected character {ch!r} at index {i}")

    tokens.append(Token("EOF", "", len(source), len(source)))
    return tokens
