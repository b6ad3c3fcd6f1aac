"""Builtin function registry."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable, ClassVar, Final, Iterator

from .errors import ArgumentTypeError, EvaluationError
from .lexer import _NUMBER_RE
from .reduce import ReduceFunction
from .signature import Signature
from .values import UNDEFINED, is_array, is_number, is_object, normalize_number, to_boolean, to_string

# Frame width handed to variadic natives by higher-order callers.
_VARIADIC_FRAME_ARITY: Final[int] = 4

_NUMERIC_STRING_RE: Final = re.compile(rf"-?{_NUMBER_RE.pattern}")


@dataclass(frozen=True)
class NativeFunction:
    """Builtin that operates on already-evaluated argument values."""

    name: str
    signature: Signature
    impl: Callable[..., object]
    _jsonexpr_function: ClassVar[bool] = True

    @property
    def arity(self) -> int:
        limit = self.signature.max_arity
        return _VARIADIC_FRAME_ARITY if limit is None else limit

    def call(self, args: list[object]) -> object:
        self.signature.validate(self.name, args)
        return self.impl(*args)

    def __repr__(self) -> str:
        return f"NativeFunction(${self.name}{self.signature.text})"


class BuiltinRegistry(Mapping[str, object]):
    """Read-only name -> builtin table."""

    def __init__(self, functions: Mapping[str, object]) -> None:
        self._functions: dict[str, object] = dict(functions)

    def lookup(self, name: str) -> object | None:
        return self._functions.get(name)

    def __getitem__(self, key: str) -> object:
        return self._functions[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)


def _numbers(name: str, values: list[object]) -> list[float | int]:
    for idx, item in enumerate(values):
        if not is_number(item):
            raise ArgumentTypeError(name, 1, f"array of numbers (item {idx} is not a number)")
    return values  # type: ignore[return-value]


def _as_list(value: object) -> list[object]:
    return value if is_array(value) else [value]


def _sum(values=UNDEFINED):
    if values is UNDEFINED:
        return UNDEFINED
    return normalize_number(math.fsum(_numbers("sum", _as_list(values))))


def _count(values=UNDEFINED):
    if values is UNDEFINED:
        return 0
    return len(_as_list(values))


def _max(values=UNDEFINED):
    if values is UNDEFINED:
        return UNDEFINED
    items = _numbers("max", _as_list(values))
    return max(items) if items else UNDEFINED


def _min(values=UNDEFINED):
    if values is UNDEFINED:
        return UNDEFINED
    items = _numbers("min", _as_list(values))
    return min(items) if items else UNDEFINED


def _average(values=UNDEFINED):
    if values is UNDEFINED:
        return UNDEFINED
    items = _numbers("average", _as_list(values))
    if not items:
        return UNDEFINED
    return normalize_number(math.fsum(items) / len(items))


def _append(first=UNDEFINED, second=UNDEFINED):
    if first is UNDEFINED:
        return second
    if second is UNDEFINED:
        return first
    return [*_as_list(first), *_as_list(second)]


def _string(value=UNDEFINED, prettify=False):
    if value is UNDEFINED:
        return UNDEFINED
    return to_string(value, prettify=prettify)


def _length(value=UNDEFINED):
    if value is UNDEFINED:
        return UNDEFINED
    return len(value)


def _uppercase(value=UNDEFINED):
    return UNDEFINED if value is UNDEFINED else value.upper()


def _lowercase(value=UNDEFINED):
    return UNDEFINED if value is UNDEFINED else value.lower()


def _substring(value=UNDEFINED, start=0, length=UNDEFINED):
    if value is UNDEFINED:
        return UNDEFINED
    start = int(start)
    if start < 0:
        start = max(0, len(value) + start)
    if length is UNDEFINED:
        return value[start:]
    if length <= 0:
        return ""
    return value[start : start + int(length)]


def _join(values=UNDEFINED, separator=""):
    if values is UNDEFINED:
        return UNDEFINED
    items = _as_list(values)
    if not all(isinstance(item, str) for item in items):
        raise ArgumentTypeError("join", 1, "array of strings")
    return separator.join(items)


def _keys(value=UNDEFINED):
    if is_object(value):
        return list(value.keys())
    if is_array(value):
        out: dict[str, None] = {}
        for item in value:
            if is_object(item):
                out.update(dict.fromkeys(item))
        return list(out) if out else UNDEFINED
    return UNDEFINED


def _lookup(value=UNDEFINED, key=""):
    if is_object(value):
        return value.get(key, UNDEFINED)
    if is_array(value):
        found = [item[key] for item in value if is_object(item) and key in item]
        if not found:
            return UNDEFINED
        return found[0] if len(found) == 1 else found
    return UNDEFINED


def _number(value=UNDEFINED):
    if value is UNDEFINED:
        return UNDEFINED
    if isinstance(value, bool):
        return 1 if value else 0
    if is_number(value):
        return value
    if _NUMERIC_STRING_RE.fullmatch(value) is None:
        raise EvaluationError(f"Unable to cast value to a number: {value!r}", code="D3030")
    try:
        return normalize_number(float(value) if any(ch in value for ch in ".eE") else int(value))
    except ValueError as exc:
        raise EvaluationError(f"Unable to cast value to a number: {value!r}", code="D3030") from exc


def _unary_math(fn: Callable[[float], float]) -> Callable[..., object]:
    def apply(value=UNDEFINED):
        if value is UNDEFINED:
            return UNDEFINED
        return normalize_number(fn(value))

    return apply


def _round(value=UNDEFINED, precision=0):
    if value is UNDEFINED:
        return UNDEFINED
    # round() is half-to-even, which is the documented rounding mode.
    return normalize_number(round(value, int(precision)))


def _power(base=UNDEFINED, exponent=UNDEFINED):
    if base is UNDEFINED:
        return UNDEFINED
    message = f"The power function has resulted in a value that cannot be represented: {base} ** {exponent}"
    try:
        result = float(base) ** exponent
    except (ZeroDivisionError, OverflowError) as exc:
        raise EvaluationError(message, code="D3061") from exc
    if isinstance(result, complex) or not math.isfinite(result):
        raise EvaluationError(message, code="D3061")
    return normalize_number(result)


def _sqrt(value=UNDEFINED):
    if value is UNDEFINED:
        return UNDEFINED
    if value < 0:
        raise EvaluationError(f"The sqrt function cannot be applied to a negative number: {value}")
    return normalize_number(math.sqrt(value))


def _exists(value=UNDEFINED):
    return value is not UNDEFINED


def _not(value=UNDEFINED):
    if value is UNDEFINED:
        return UNDEFINED
    return not to_boolean(value)


def _boolean(value=UNDEFINED):
    if value is UNDEFINED:
        return UNDEFINED
    return to_boolean(value)


def _reverse(values=UNDEFINED):
    if values is UNDEFINED:
        return UNDEFINED
    return list(reversed(values))


_NATIVE_SPECS: Final[tuple[tuple[str, str, Callable[..., object]], ...]] = (
    ("sum", "<a<n>:n>", _sum),
    ("count", "<a:n>", _count),
    ("max", "<a<n>:n>", _max),
    ("min", "<a<n>:n>", _min),
    ("average", "<a<n>:n>", _average),
    ("append", "<xx:a>", _append),
    ("string", "<x-b?:s>", _string),
    ("length", "<s-:n>", _length),
    ("uppercase", "<s-:s>", _uppercase),
    ("lowercase", "<s-:s>", _lowercase),
    ("substring", "<s-nn?:s>", _substring),
    ("join", "<a<s>s?:s>", _join),
    ("keys", "<x-:a<s>>", _keys),
    ("lookup", "<x-s:x>", _lookup),
    ("number", "<(nsb)-:n>", _number),
    ("abs", "<n-:n>", _unary_math(abs)),
    ("floor", "<n-:n>", _unary_math(math.floor)),
    ("ceil", "<n-:n>", _unary_math(math.ceil)),
    ("round", "<n-n?:n>", _round),
    ("power", "<n-n:n>", _power),
    ("sqrt", "<n-:n>", _sqrt),
    ("exists", "<x:b>", _exists),
    ("not", "<x-:b>", _not),
    ("boolean", "<x-:b>", _boolean),
    ("reverse", "<a:a>", _reverse),
)


def native_functions() -> dict[str, NativeFunction]:
    return {
        name: NativeFunction(name=name, signature=Signature.parse(text), impl=impl)
        for name, text, impl in _NATIVE_SPECS
    }


def build_registry(extra: Mapping[str, object] | None = None) -> BuiltinRegistry:
    functions: dict[str, object] = dict(native_functions())
    functions["reduce"] = ReduceFunction()
    if extra:
        functions.update(extra)
    return BuiltinRegistry(functions)


DEFAULT_REGISTRY: Final[BuiltinRegistry] = build_registry()
