"""Tree-walking evaluator for jsonexpr query expressions."""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import ClassVar, Final, overload

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
from .builtins import DEFAULT_REGISTRY, BuiltinRegistry, NativeFunction
from .errors import EvaluationDepthError, EvaluationError, JsonExprError, JsonExprParseError, classify_runtime_exception
from .parser import ParseError, parse
from .values import (
    UNDEFINED,
    deep_equal,
    is_array,
    is_function,
    is_number,
    is_object,
    normalize_number,
    to_boolean,
    to_string,
    validate_value,
)

logger = logging.getLogger(__name__)

_MISSING: Final = object()
_PROGRAM_CACHE_MAX: Final[int] = max(1, int(os.environ.get("JSONEXPR_PROGRAM_CACHE_MAX", "256")))
_MAX_DEPTH: Final[int] = max(1, int(os.environ.get("JSONEXPR_MAX_DEPTH", "100")))
_MAX_RANGE: Final[int] = 10_000_000


@lru_cache(maxsize=_PROGRAM_CACHE_MAX)
def _parse_cached(source: str) -> Expr:
    return parse(source)


class Scope(MutableMapping[str, object]):
    """Lexical variable bindings with a parent link.

    Also serves as the user function table: :meth:`lookup` only reports
    bindings whose value is a function.
    """

    def __init__(self, data: Mapping[str, object] | None = None, parent: "Scope | None" = None) -> None:
        self.data: dict[str, object] = {}
        self.parent = parent
        if data is not None:
            for key, value in data.items():
                validate_value(value, where=f"env[{key!r}]")
                self.data[key] = value

    def child(self) -> "Scope":
        return Scope(parent=self)

    def find_scope(self, key: str) -> "Scope | None":
        scope: Scope | None = self
        while scope is not None:
            if key in scope.data:
                return scope
            scope = scope.parent
        return None

    def resolve(self, key: str, default: object = UNDEFINED) -> object:
        scope = self.find_scope(key)
        return default if scope is None else scope.data[key]

    def lookup(self, name: str) -> object | None:
        value = self.resolve(name)
        return value if is_function(value) else None

    def __getitem__(self, key: str) -> object:
        scope = self.find_scope(key)
        if scope is None:
            raise KeyError(key)
        return scope.data[key]

    def __setitem__(self, key: str, value: object) -> None:
        self.data[key] = value

    def __delitem__(self, key: str) -> None:
        del self.data[key]

    def __iter__(self):
        seen: set[str] = set()
        current: Scope | None = self
        while current is not None:
            for key in current.data:
                if key not in seen:
                    seen.add(key)
                    yield key
            current = current.parent

    def __len__(self) -> int:
        return sum(1 for _ in self.__iter__())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.find_scope(key) is not None


@dataclass(frozen=True, eq=False)
class Lambda:
    """User function: parameters, body and the scope it was declared in."""

    params: tuple[str, ...]
    body: Expr
    closure: Scope
    current: object = UNDEFINED
    _jsonexpr_function: ClassVar[bool] = True

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        return f"Lambda({', '.join('$' + p for p in self.params)})"


class EvaluationEnvironment(MutableMapping[str, object]):
    """Persistent evaluation environment for stateful evaluate() calls."""

    _scope: Scope

    def __init__(self, data: Mapping[str, object] | None = None) -> None:
        self._scope = Scope(data=data)

    def __getitem__(self, key: str) -> object:
        return self._scope[key]

    def __setitem__(self, key: str, value: object) -> None:
        validate_value(value, where=f"env[{key!r}]")
        self._scope[key] = value

    def __delitem__(self, key: str) -> None:
        del self._scope[key]

    def __iter__(self):
        return iter(self._scope)

    def __len__(self) -> int:
        return len(self._scope)

    @property
    def values(self) -> dict[str, object]:
        return {name: self._scope[name] for name in self._scope}


@dataclass
class StatefulEvaluate:
    """Callable wrapper that evaluates source in a persistent environment."""

    env: EvaluationEnvironment

    def __call__(self, source: str, data: object = UNDEFINED):
        result, _ = evaluate(source, data, self.env)
        return result


@dataclass(frozen=True)
class _CallContext:
    value: object
    chain: bool


@dataclass
class _FoldHost:
    interpreter: "_Interpreter"
    scope: Scope
    current: object
    in_context: bool
    context: object

    @property
    def builtins(self) -> BuiltinRegistry:
        return self.interpreter.registry

    @property
    def functions(self) -> Scope:
        return self.scope

    def evaluate(self, node: Expr) -> object:
        return self.interpreter.eval(node, self.scope, self.current)

    def declare(self, node: FunctionDecl) -> Lambda:
        return Lambda(params=node.params, body=node.body, closure=self.scope, current=self.current)

    def invoke_closure(self, closure: object, args: list[object]) -> object:
        return self.interpreter.apply(closure, args)


def _collapse(items: list[object]) -> object:
    if not items:
        return UNDEFINED
    if len(items) == 1:
        return items[0]
    return items


def _field(value: object, name: str) -> object:
    if is_object(value):
        return value.get(name, UNDEFINED)
    if is_array(value):
        out: list[object] = []
        for item in value:
            found = _field(item, name)
            if found is UNDEFINED:
                continue
            if is_array(found):
                out.extend(found)
            else:
                out.append(found)
        return _collapse(out)
    return UNDEFINED


def _require_number(op: str, side: str, value: object) -> float | int:
    if not is_number(value):
        raise EvaluationError(f"The {side} side of the {op!r} operator must evaluate to a number", code="T2001")
    return value


def _arithmetic(op: str, left: object, right: object) -> object:
    if left is UNDEFINED or right is UNDEFINED:
        return UNDEFINED
    lhs = _require_number(op, "left", left)
    rhs = _require_number(op, "right", right)
    if op == "+":
        return normalize_number(lhs + rhs)
    if op == "-":
        return normalize_number(lhs - rhs)
    if op == "*":
        return normalize_number(lhs * rhs)
    if rhs == 0:
        raise EvaluationError(f"Number out of range: division by zero in {op!r}", code="D1001")
    if op == "/":
        return normalize_number(lhs / rhs)
    return normalize_number(math.fmod(lhs, rhs))


def _compare(op: str, left: object, right: object) -> object:
    if left is UNDEFINED or right is UNDEFINED:
        return UNDEFINED
    comparable = (is_number(left) and is_number(right)) or (isinstance(left, str) and isinstance(right, str))
    if not comparable:
        raise EvaluationError(
            f"The values {to_string(left)!r} and {to_string(right)!r} either side of {op!r} must be both numbers or both strings",
            code="T2010",
        )
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


@dataclass
class _Interpreter:
    registry: BuiltinRegistry
    root: object
    max_depth: int = _MAX_DEPTH
    depth: int = field(default=0, init=False)

    def eval(self, node: Expr, scope: Scope, current: object) -> object:
        if isinstance(node, Number):
            return node.value
        if isinstance(node, String):
            return node.value
        if isinstance(node, Boolean):
            return node.value
        if isinstance(node, Null):
            return None
        if isinstance(node, Name):
            return _field(current, node.value)
        if isinstance(node, Variable):
            return self._eval_variable(node.name, scope, current)
        if isinstance(node, Path):
            return self._eval_path(node, scope, current)
        if isinstance(node, Filter):
            return self._eval_filter(node, scope, current)
        if isinstance(node, FunctionCall):
            return self._eval_call(node, scope, current, None)
        if isinstance(node, Chain):
            return self._eval_chain(node, scope, current)
        if isinstance(node, FunctionDecl):
            return Lambda(params=node.params, body=node.body, closure=scope, current=current)
        if isinstance(node, Binary):
            return self._eval_binary(node, scope, current)
        if isinstance(node, Unary):
            operand = self.eval(node.operand, scope, current)
            if operand is UNDEFINED:
                return UNDEFINED
            return normalize_number(-_require_number("-", "right", operand))
        if isinstance(node, Condition):
            if to_boolean(self.eval(node.test, scope, current)):
                return self.eval(node.then, scope, current)
            if node.otherwise is None:
                return UNDEFINED
            return self.eval(node.otherwise, scope, current)
        if isinstance(node, Block):
            inner = scope.child()
            result: object = UNDEFINED
            for expr in node.expressions:
                result = self.eval(expr, inner, current)
            return result
        if isinstance(node, Assign):
            value = self.eval(node.value, scope, current)
            scope[node.name] = value
            return value
        if isinstance(node, ArrayConstructor):
            return self._eval_array(node, scope, current)
        if isinstance(node, ObjectConstructor):
            return self._eval_object(node, scope, current)
        if isinstance(node, Range):
            raise EvaluationError("The range operator '..' can only be used inside an array constructor", code="S0201")
        raise TypeError(f"Unsupported expression node: {type(node).__name__}")

    def _eval_variable(self, name: str, scope: Scope, current: object) -> object:
        if name == "":
            return current
        if name == "$":
            return self.root
        value = scope.resolve(name, _MISSING)
        if value is not _MISSING:
            return value
        builtin = self.registry.lookup(name)
        return UNDEFINED if builtin is None else builtin

    def _eval_path(self, node: Path, scope: Scope, current: object) -> object:
        value = self.eval(node.steps[0], scope, current)
        for step in node.steps[1:]:
            if value is UNDEFINED and not self._runs_on_absent(step, scope):
                continue
            value = self._eval_step(step, value, scope)
        return value

    def _runs_on_absent(self, step: Expr, scope: Scope) -> bool:
        # Syntax-level callees check their own context value.
        if not isinstance(step, FunctionCall):
            return False
        return bool(getattr(self.eval(step.callee, scope, UNDEFINED), "_jsonexpr_syntax", False))

    def _eval_step(self, step: Expr, value: object, scope: Scope) -> object:
        if isinstance(step, FunctionCall):
            return self._eval_call(step, scope, value, _CallContext(value=value, chain=False))
        if not is_array(value):
            return self.eval(step, scope, value)

        out: list[object] = []
        for item in value:
            result = self.eval(step, scope, item)
            if result is UNDEFINED:
                continue
            if is_array(result) and not isinstance(step, ArrayConstructor):
                out.extend(result)
            else:
                out.append(result)
        return _collapse(out)

    def _eval_filter(self, node: Filter, scope: Scope, current: object) -> object:
        value = self.eval(node.value, scope, current)
        if value is UNDEFINED:
            return UNDEFINED
        items = value if is_array(value) else [value]
        out: list[object] = []
        for index, item in enumerate(items):
            predicate = self.eval(node.predicate, scope, item)
            if is_number(predicate):
                target = math.floor(predicate)
                if target < 0:
                    target += len(items)
                if target == index:
                    out.append(item)
            elif to_boolean(predicate):
                out.append(item)
        return _collapse(out)

    def _eval_chain(self, node: Chain, scope: Scope, current: object) -> object:
        value = self.eval(node.left, scope, current)
        if isinstance(node.right, FunctionCall):
            return self._eval_call(node.right, scope, current, _CallContext(value=value, chain=True))
        fn = self.eval(node.right, scope, current)
        if not is_function(fn):
            raise EvaluationError("The right side of the function application operator ~> must be a function", code="T2006")
        return self.apply(fn, [value])

    def _eval_call(self, node: FunctionCall, scope: Scope, current: object, context: _CallContext | None) -> object:
        fn = self.eval(node.callee, scope, current)
        if not is_function(fn):
            raise EvaluationError("Attempted to invoke a non-function", code="T1006")

        if getattr(fn, "_jsonexpr_syntax", False):
            host = _FoldHost(
                interpreter=self,
                scope=scope,
                current=current,
                in_context=context is not None,
                context=UNDEFINED if context is None else context.value,
            )
            return fn.invoke(host, node)

        args = [self.eval(arg, scope, current) for arg in node.args]
        if context is not None:
            if context.chain:
                args.insert(0, context.value)
            elif isinstance(fn, NativeFunction) and fn.signature.accepts_context and len(args) < fn.signature.min_arity:
                args.insert(0, context.value)
        return self.apply(fn, args)

    def apply(self, fn: object, args: list[object]) -> object:
        if isinstance(fn, Lambda):
            return self._invoke_lambda(fn, args)
        if is_function(fn):
            return fn.call(args)
        raise EvaluationError("Attempted to invoke a non-function", code="T1006")

    def _invoke_lambda(self, fn: Lambda, args: list[object]) -> object:
        if self.depth >= self.max_depth:
            raise EvaluationDepthError(
                f"Stack overflow error: function nesting exceeded {self.max_depth} levels"
            )
        frame = fn.closure.child()
        for index, name in enumerate(fn.params):
            frame[name] = args[index] if index < len(args) else UNDEFINED
        self.depth += 1
        try:
            logger.debug("invoke %r with %d argument(s) at depth %d", fn, len(args), self.depth)
            return self.eval(fn.body, frame, fn.current)
        finally:
            self.depth -= 1

    def _eval_binary(self, node: Binary, scope: Scope, current: object) -> object:
        op = node.op
        if op == "and":
            return to_boolean(self.eval(node.left, scope, current)) and to_boolean(self.eval(node.right, scope, current))
        if op == "or":
            return to_boolean(self.eval(node.left, scope, current)) or to_boolean(self.eval(node.right, scope, current))

        left = self.eval(node.left, scope, current)
        right = self.eval(node.right, scope, current)
        if op in {"+", "-", "*", "/", "%"}:
            return _arithmetic(op, left, right)
        if op == "&":
            return to_string(left) + to_string(right)
        if op == "=":
            return deep_equal(left, right)
        if op == "!=":
            if left is UNDEFINED or right is UNDEFINED:
                return False
            return not deep_equal(left, right)
        if op in {"<", "<=", ">", ">="}:
            return _compare(op, left, right)
        if op == "in":
            if left is UNDEFINED or right is UNDEFINED:
                return False
            candidates = right if is_array(right) else [right]
            return any(deep_equal(left, item) for item in candidates)
        raise TypeError(f"Unsupported binary operator: {op!r}")

    def _eval_array(self, node: ArrayConstructor, scope: Scope, current: object) -> list[object]:
        out: list[object] = []
        for item in node.items:
            if isinstance(item, Range):
                out.extend(self._eval_range(item, scope, current))
                continue
            value = self.eval(item, scope, current)
            if value is UNDEFINED:
                continue
            if is_array(value) and not isinstance(item, ArrayConstructor):
                out.extend(value)
            else:
                out.append(value)
        return out

    def _eval_range(self, node: Range, scope: Scope, current: object) -> list[int]:
        start = self.eval(node.start, scope, current)
        end = self.eval(node.end, scope, current)
        if start is UNDEFINED or end is UNDEFINED:
            return []
        for side, bound in (("left", start), ("right", end)):
            if not (is_number(bound) and float(bound).is_integer()):
                raise EvaluationError(f"The {side} side of the range operator (..) must evaluate to an integer", code="T2003")
        size = int(end) - int(start) + 1
        if size > _MAX_RANGE:
            raise EvaluationError(f"The size of the sequence allocated by the range operator (..) must not exceed {_MAX_RANGE}", code="D2014")
        return list(range(int(start), int(end) + 1))

    def _eval_object(self, node: ObjectConstructor, scope: Scope, current: object) -> dict[str, object]:
        out: dict[str, object] = {}
        for key_node, value_node in node.pairs:
            key = self.eval(key_node, scope, current)
            if not isinstance(key, str):
                raise EvaluationError(f"Key in object structure must evaluate to a string; got {to_string(key)!r}", code="T1003")
            value = self.eval(value_node, scope, current)
            if value is not UNDEFINED:
                out[key] = value
        return out


def _evaluate_with_scope(source: str, data: object, runtime_env: Scope, registry: BuiltinRegistry):
    validate_value(data, where="input")
    expr = _parse_cached(source)
    interpreter = _Interpreter(registry=registry, root=data)
    result = interpreter.eval(expr, runtime_env, data)
    validate_value(result, where="result")
    return result


@overload
def evaluate(source: str) -> object:
    ...


@overload
def evaluate(source: str, data: object) -> object:
    ...


@overload
def evaluate(source: str, data: object, env: Mapping[str, object]) -> object:
    ...


@overload
def evaluate(source: str, data: object, env: EvaluationEnvironment) -> tuple[object, EvaluationEnvironment]:
    ...


@overload
def evaluate(source: EvaluationEnvironment) -> StatefulEvaluate:
    ...


@overload
def evaluate(source: MutableMapping[str, object]) -> StatefulEvaluate:
    ...


def evaluate(
    source_or_env: str | EvaluationEnvironment | MutableMapping[str, object],
    data: object = UNDEFINED,
    env: Mapping[str, object] | EvaluationEnvironment | None = None,
    *,
    registry: BuiltinRegistry = DEFAULT_REGISTRY,
):
    """Parse and evaluate an expression against ``data``, with optional persistent bindings."""
    if isinstance(source_or_env, str):
        if isinstance(env, EvaluationEnvironment):
            result = _evaluate_with_scope(source_or_env, data, env._scope, registry)
            return result, env

        runtime_env = Scope(data=env)
        return _evaluate_with_scope(source_or_env, data, runtime_env, registry)

    if data is not UNDEFINED or env is not None:
        raise TypeError("evaluate(env) form takes exactly one argument")

    if isinstance(source_or_env, EvaluationEnvironment):
        return StatefulEvaluate(source_or_env)

    if isinstance(source_or_env, MutableMapping):
        return StatefulEvaluate(EvaluationEnvironment(source_or_env))

    raise TypeError("evaluate() expects either source text, an EvaluationEnvironment, or a mapping")


def evaluate_with_errors(source: str, data: object = UNDEFINED, *, env: Mapping[str, object] | None = None):
    """Evaluate with structured error classes for parse and runtime failures."""
    try:
        return evaluate(source, data, env)
    except ParseError as err:
        raise JsonExprParseError.from_parse_error(err) from err
    except SyntaxError as err:
        raise JsonExprParseError(message=err.msg or str(err), start=err.offset or 0, end=err.offset or 0) from err
    except JsonExprError:
        raise
    except Exception as err:
        raise classify_runtime_exception(err) from err
