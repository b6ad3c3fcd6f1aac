"""Parser for the jsonexpr query language."""

from __future__ import annotations

from dataclasses import dataclass

from .ast import (
    ArrayConstructor,
    Assign,
    Binary,
    Block,
    Boolean,
    Chain,
    Condition,
    Expr,
    Filter,
    FunctionCall,
    FunctionDecl,
    Name,
    Null,
    Number,
    ObjectConstructor,
    Path,
    Range,
    String,
    Unary,
    Variable,
)
from .lexer import Token, tokenize

# Left binding powers; postfix forms bind tightest.
_BINDING_POWERS = {
    ":=": 10,
    "?": 20,
    "or": 25,
    "and": 30,
    "=": 40,
    "!=": 40,
    "<": 40,
    "<=": 40,
    ">": 40,
    ">=": 40,
    "in": 40,
    "~>": 40,
    "&": 50,
    "+": 50,
    "-": 50,
    "*": 60,
    "/": 60,
    "%": 60,
    ".": 75,
    "[": 80,
    "(": 80,
}
_UNARY_BP = 70

_EXPR_START = ("NUMBER", "STRING", "TRUE", "FALSE", "NULL", "NAME", "VARIABLE", "FUNCTION", "LPAREN", "LBRACK", "LBRACE", "OP(-)")


class ParseError(SyntaxError):
    def __init__(
        self,
        message: str,
        start: int,
        end: int,
        expected: tuple[str, ...] = (),
        found: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.start = start
        self.end = end
        self.expected = expected
        self.found = found

    def __str__(self) -> str:
        expected_text = ""
        if self.expected:
            expected_text = f"; expected {', '.join(self.expected)}"
        found_text = ""
        if self.found is not None:
            found_text = f"; found {self.found}"
        return f"{self.message} at span [{self.start}, {self.end}){expected_text}{found_text}"


@dataclass
class _Parser:
    tokens: list[Token]
    index: int = 0

    def parse_expression_only(self) -> Expr:
        if self._peek().kind == "EOF":
            self._error(message="Empty expression", expected=_EXPR_START)
        expr = self._parse_expression(0)
        self._expect("EOF")
        return expr

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        tok = self.tokens[self.index]
        self.index += 1
        return tok

    def _expect(self, kind: str, text: str | None = None) -> Token:
        tok = self._peek()
        if tok.kind != kind or (text is not None and tok.text != text):
            self._error(tok, expected=(kind if text is None else f"{kind}({text})",))
        return self._advance()

    def _error(self, tok: Token | None = None, *, message: str | None = None, expected: tuple[str, ...] = ()) -> None:
        token = tok if tok is not None else self._peek()
        detail = message if message is not None else "Unexpected token"
        normalized_expected = tuple(dict.fromkeys(expected))
        if token.kind == "EOF":
            found = "EOF"
        elif token.text:
            found = f"{token.kind}({token.text})"
        else:
            found = token.kind
        raise ParseError(detail, token.pos, token.end, expected=normalized_expected, found=found)

    def _match(self, kind: str, text: str | None = None) -> bool:
        tok = self._peek()
        if tok.kind == kind and (text is None or tok.text == text):
            self._advance()
            return True
        return False

    def _infix_symbol(self, tok: Token) -> str | None:
        if tok.kind in {"OP", "ASSIGN"}:
            return tok.text
        if tok.kind == "QMARK":
            return "?"
        if tok.kind == "DOT":
            return "."
        if tok.kind == "LBRACK":
            return "["
        if tok.kind == "LPAREN":
            return "("
        return None

    def _parse_expression(self, min_bp: int) -> Expr:
        left = self._parse_prefix()

        while True:
            tok = self._peek()
            symbol = self._infix_symbol(tok)
            if symbol is None or symbol not in _BINDING_POWERS:
                break
            lbp = _BINDING_POWERS[symbol]
            if lbp <= min_bp:
                break
            self._advance()
            left = self._parse_infix(symbol, tok, left, lbp)

        return left

    def _parse_infix(self, symbol: str, tok: Token, left: Expr, lbp: int) -> Expr:
        if symbol == ".":
            step = self._parse_expression(lbp)
            if isinstance(left, Path):
                return Path(steps=(*left.steps, step))
            return Path(steps=(left, step))

        if symbol == "[":
            if self._peek().kind == "RBRACK":
                self._error(message="Empty predicate", expected=_EXPR_START)
            predicate = self._parse_expression(0)
            self._expect("RBRACK")
            return Filter(value=left, predicate=predicate)

        if symbol == "(":
            args = self._parse_delimited("RPAREN")
            return FunctionCall(callee=left, args=tuple(args))

        if symbol == "?":
            then = self._parse_expression(0)
            otherwise = None
            if self._match("COLON"):
                otherwise = self._parse_expression(0)
            return Condition(test=left, then=then, otherwise=otherwise)

        if symbol == ":=":
            if not isinstance(left, Variable) or left.name in {"", "$"}:
                self._error(tok, message="Left side of := must be a variable name")
            # Right-associative.
            value = self._parse_expression(lbp - 1)
            return Assign(name=left.name, value=value)

        if symbol == "~>":
            return Chain(left=left, right=self._parse_expression(lbp))

        right = self._parse_expression(lbp)
        return Binary(op=symbol, left=left, right=right)

    def _parse_delimited(self, closing_kind: str) -> list[Expr]:
        items: list[Expr] = []
        if self._match(closing_kind):
            return items
        while True:
            items.append(self._parse_expression(0))
            if self._match("COMMA"):
                continue
            self._expect(closing_kind)
            return items

    def _parse_prefix(self) -> Expr:
        tok = self._peek()

        if tok.kind == "NUMBER":
            self._advance()
            if any(ch in tok.text for ch in ".eE"):
                return Number(value=float(tok.text))
            return Number(value=int(tok.text))

        if tok.kind == "STRING":
            self._advance()
            return String(value=tok.text)

        if tok.kind in {"TRUE", "FALSE"}:
            self._advance()
            return Boolean(value=tok.kind == "TRUE")

        if tok.kind == "NULL":
            self._advance()
            return Null()

        if tok.kind == "NAME":
            self._advance()
            return Name(value=tok.text)

        if tok.kind == "VARIABLE":
            self._advance()
            return Variable(name=tok.text)

        if tok.kind == "OP" and tok.text == "-":
            self._advance()
            return Unary(op="-", operand=self._parse_expression(_UNARY_BP))

        if tok.kind == "FUNCTION":
            self._advance()
            return self._parse_function_decl()

        if self._match("LPAREN"):
            return self._parse_block()

        if self._match("LBRACK"):
            return self._parse_array_constructor()

        if self._match("LBRACE"):
            return self._parse_object_constructor()

        self._error(tok, expected=_EXPR_START)
        raise AssertionError("unreachable")

    def _parse_block(self) -> Expr:
        expressions: list[Expr] = []
        while self._peek().kind != "RPAREN":
            expressions.append(self._parse_expression(0))
            if not self._match("SEMI"):
                break
        self._expect("RPAREN")
        return Block(expressions=tuple(expressions))

    def _parse_array_constructor(self) -> Expr:
        items: list[Expr] = []
        if self._match("RBRACK"):
            return ArrayConstructor(items=())
        while True:
            item = self._parse_expression(0)
            if self._match("OP", ".."):
                item = Range(start=item, end=self._parse_expression(0))
            items.append(item)
            if self._match("COMMA"):
                continue
            self._expect("RBRACK")
            return ArrayConstructor(items=tuple(items))

    def _parse_object_constructor(self) -> Expr:
        pairs: list[tuple[Expr, Expr]] = []
        if self._match("RBRACE"):
            return ObjectConstructor(pairs=())
        while True:
            key = self._parse_expression(0)
            self._expect("COLON")
            value = self._parse_expression(0)
            pairs.append((key, value))
            if self._match("COMMA"):
                continue
            self._expect("RBRACE")
            return ObjectConstructor(pairs=tuple(pairs))

    def _parse_function_decl(self) -> Expr:
        self._expect("LPAREN")
        params: list[str] = []
        if not self._match("RPAREN"):
            while True:
                tok = self._expect("VARIABLE")
                if tok.text in {"", "$"}:
                    self._error(tok, message="Function parameters must be named variables")
                if tok.text in params:
                    self._error(tok, message=f"Duplicate parameter ${tok.text}")
                params.append(tok.text)
                if self._match("COMMA"):
                    continue
                self._expect("RPAREN")
                break

        self._expect("LBRACE")
        expressions: list[Expr] = []
        while self._peek().kind != "RBRACE":
            expressions.append(self._parse_expression(0))
            if not self._match("SEMI"):
                break
        end_tok = self._expect("RBRACE")
        if not expressions:
            self._error(end_tok, message="Function body cannot be empty", expected=_EXPR_START)
        body = expressions[0] if len(expressions) == 1 else Block(expressions=tuple(expressions))
        return FunctionDecl(params=tuple(params), body=body)


def parse(source: str) -> Expr:
    tokens = tokenize(source)
    parser = _Parser(tokens=tokens)
    return parser.parse_expression_only()
