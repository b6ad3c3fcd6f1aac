"""AST nodes for the jsonexpr query language."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Number:
    value: int | float


@dataclass(frozen=True)
class String:
    value: str


@dataclass(frozen=True)
class Boolean:
    value: bool


@dataclass(frozen=True)
class Null:
    pass


@dataclass(frozen=True)
class Name:
    """Field lookup step, e.g. ``Account`` in ``Account.Order``."""

    value: str


@dataclass(frozen=True)
class Variable:
    """``$name`` reference; ``$`` is the context (``""``) and ``$$`` the root (``"$"``)."""

    name: str


@dataclass(frozen=True)
class ArrayConstructor:
    items: tuple["Expr", ...]


@dataclass(frozen=True)
class ObjectConstructor:
    pairs: tuple[tuple["Expr", "Expr"], ...]


@dataclass(frozen=True)
class Range:
    start: "Expr"
    end: "Expr"


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Expr"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Condition:
    test: "Expr"
    then: "Expr"
    otherwise: "Expr | None" = None


@dataclass(frozen=True)
class Path:
    steps: tuple["Expr", ...]


@dataclass(frozen=True)
class Filter:
    value: "Expr"
    predicate: "Expr"


@dataclass(frozen=True)
class Block:
    expressions: tuple["Expr", ...]


@dataclass(frozen=True)
class Assign:
    name: str
    value: "Expr"


@dataclass(frozen=True)
class FunctionDecl:
    params: tuple[str, ...]
    body: "Expr"


@dataclass(frozen=True)
class FunctionCall:
    callee: "Expr"
    args: tuple["Expr", ...]


@dataclass(frozen=True)
class Chain:
    """``left ~> right``: ``right`` is invoked with ``left`` as its context."""

    left: "Expr"
    right: "Expr"


Expr = Union[
    Number,
    String,
    Boolean,
    Null,
    Name,
    Variable,
    ArrayConstructor,
    ObjectConstructor,
    Range,
    Unary,
    Binary,
    Condition,
    Path,
    Filter,
    Block,
    Assign,
    FunctionDecl,
    FunctionCall,
    Chain,
]
