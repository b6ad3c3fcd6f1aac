"""The ``$reduce`` higher-order fold.

``$reduce(array, function [, init])`` folds ``array`` left to right. The
function-position argument is classified once, before the loop, as a builtin
reference, a reference to a user-declared function, or an inline lambda.
Each step calls it with ``(accumulator, element, index, array)`` truncated to
the number of parameters it declares.

The fold only talks to the evaluator through a small host interface
(:class:`FoldHost`), so it can be driven by stub hosts in isolation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar, Final, Protocol, Union

from .ast import Expr, FunctionCall, FunctionDecl, Variable
from .errors import ArgumentTypeError, CallableArityError, EvaluationError, UnresolvedFunctionReferenceError
from .signature import Signature
from .values import UNDEFINED, is_array

logger = logging.getLogger(__name__)

_FRAME_WIDTH: Final[int] = 4
_MIN_CALLABLE_ARITY: Final[int] = 2


class FunctionLookup(Protocol):
    def lookup(self, name: str) -> object | None:
        ...


class FoldHost(Protocol):
    """Evaluator capabilities the fold needs."""

    builtins: FunctionLookup
    functions: FunctionLookup
    in_context: bool
    context: object

    def evaluate(self, node: Expr) -> object:
        ...

    def declare(self, node: FunctionDecl) -> object:
        ...

    def invoke_closure(self, closure: object, args: list[object]) -> object:
        ...


@dataclass(frozen=True)
class BuiltinRef:
    name: str
    function: object

    @property
    def arity(self) -> int:
        return self.function.arity


@dataclass(frozen=True)
class UserFunctionRef:
    name: str
    closure: object

    @property
    def arity(self) -> int:
        return self.closure.arity


@dataclass(frozen=True)
class InlineLambda:
    params: tuple[str, ...]
    body: Expr
    closure: object

    @property
    def arity(self) -> int:
        return len(self.params)


FoldCallable = Union[BuiltinRef, UserFunctionRef, InlineLambda]


@dataclass(frozen=True)
class CallFrame:
    """Arguments for one invocation of the fold callable."""

    accumulator: object
    element: object
    index: int
    array: list[object]

    def arguments(self, arity: int) -> list[object]:
        values = [self.accumulator, self.element, self.index, self.array]
        return values[: min(arity, _FRAME_WIDTH)]


@dataclass(frozen=True)
class _Plan:
    array: list[object]
    function: Expr
    init: Expr | None


def _split_arguments(host: FoldHost, call: FunctionCall) -> _Plan:
    args = call.args
    if host.in_context:
        array = host.context
    else:
        if not args:
            raise ArgumentTypeError("reduce", 1, "array")
        array = host.evaluate(args[0])
        args = args[1:]

    if not is_array(array):
        raise ArgumentTypeError("reduce", 1, "array")
    if not args:
        raise ArgumentTypeError("reduce", 2, "function")
    if len(args) > 2:
        raise ArgumentTypeError("reduce", 4, "at most 3 arguments")
    return _Plan(array=array, function=args[0], init=args[1] if len(args) == 2 else None)


def classify_callable(node: Expr, host: FoldHost) -> FoldCallable:
    if isinstance(node, Variable) and node.name not in {"", "$"}:
        builtin = host.builtins.lookup(node.name)
        if builtin is not None:
            return BuiltinRef(name=node.name, function=builtin)
        closure = host.functions.lookup(node.name)
        if closure is not None:
            return UserFunctionRef(name=node.name, closure=closure)
        raise UnresolvedFunctionReferenceError(node.name)

    if isinstance(node, FunctionDecl):
        return InlineLambda(params=node.params, body=node.body, closure=host.declare(node))

    raise ArgumentTypeError("reduce", 2, "function reference or function declaration")


def _resolve_seed(plan: _Plan, host: FoldHost) -> tuple[object, int]:
    if plan.init is not None:
        return host.evaluate(plan.init), 0
    if not plan.array:
        return UNDEFINED, 0
    return plan.array[0], 1


def _apply(fn: FoldCallable, frame: CallFrame, host: FoldHost) -> object:
    args = frame.arguments(fn.arity)
    if isinstance(fn, BuiltinRef):
        return fn.function.call(args)
    if isinstance(fn, (UserFunctionRef, InlineLambda)):
        return host.invoke_closure(fn.closure, args)
    raise AssertionError(f"unhandled fold callable {fn!r}")


def fold(array: list[object], fn: FoldCallable, host: FoldHost, *, accumulator: object, start: int) -> object:
    for index in range(start, len(array)):
        frame = CallFrame(accumulator=accumulator, element=array[index], index=index, array=array)
        accumulator = _apply(fn, frame, host)
    return accumulator


@dataclass(frozen=True)
class ReduceFunction:
    """``$reduce`` as a builtin that receives its argument nodes unevaluated."""

    name: ClassVar[str] = "reduce"
    signature: ClassVar[Signature] = Signature.parse("<a-fj?:j>")
    _jsonexpr_function: ClassVar[bool] = True
    _jsonexpr_syntax: ClassVar[bool] = True

    @property
    def arity(self) -> int:
        return 3

    def invoke(self, host: FoldHost, call: FunctionCall) -> object:
        plan = _split_arguments(host, call)
        fn = classify_callable(plan.function, host)
        if fn.arity < _MIN_CALLABLE_ARITY:
            raise CallableArityError(self.name, fn.arity, _MIN_CALLABLE_ARITY)

        accumulator, start = _resolve_seed(plan, host)
        logger.debug(
            "reduce: %s callable of arity %d, %s seed, %d step(s)",
            type(fn).__name__,
            fn.arity,
            "explicit" if plan.init is not None else "element 0",
            max(0, len(plan.array) - start),
        )
        return fold(plan.array, fn, host, accumulator=accumulator, start=start)

    def call(self, args: list[object]) -> object:
        raise EvaluationError("$reduce must be called directly; it cannot be applied to evaluated arguments")

    def __repr__(self) -> str:
        return f"ReduceFunction(${self.name}{self.signature.text})"
