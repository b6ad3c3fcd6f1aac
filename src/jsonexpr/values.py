"""Runtime value model and validators for the jsonexpr evaluator."""

from __future__ import annotations

import json
import math
import numbers
from dataclasses import dataclass
from enum import Enum
from typing import Final


class _Undefined:
    """The absent value: a lookup that found nothing, not JSON ``null``."""

    _instance: "_Undefined | None" = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED: Final = _Undefined()


class ValueKind(str, Enum):
    ARRAY = "array"
    OBJECT = "object"
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    NULL = "null"
    ABSENT = "absent"
    FUNCTION = "function"


@dataclass(frozen=True)
class ValueInfo:
    kind: ValueKind
    length: int | None


def is_undefined(value: object) -> bool:
    return value is UNDEFINED


def is_array(value: object) -> bool:
    return isinstance(value, list)


def is_object(value: object) -> bool:
    return isinstance(value, dict)


def is_number(value: object) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def is_function(value: object) -> bool:
    return bool(getattr(value, "_jsonexpr_function", False))


def kind_of(value: object) -> ValueKind:
    if value is UNDEFINED:
        return ValueKind.ABSENT
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if is_number(value):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if is_array(value):
        return ValueKind.ARRAY
    if is_object(value):
        return ValueKind.OBJECT
    if is_function(value):
        return ValueKind.FUNCTION
    raise TypeError(f"Unsupported runtime type {type(value).__name__}")


def value_info(value: object) -> ValueInfo:
    kind = kind_of(value)
    length = len(value) if kind in {ValueKind.ARRAY, ValueKind.OBJECT, ValueKind.STRING} else None
    return ValueInfo(kind=kind, length=length)


def normalize_number(value: float | int) -> float | int:
    if isinstance(value, bool):
        raise TypeError("booleans are not numbers")
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("Number out of range: result is not a finite number")
        if value.is_integer() and abs(value) < 2**53:
            return int(value)
    return value


def to_boolean(value: object) -> bool:
    if value is UNDEFINED or value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0
    if isinstance(value, str):
        return len(value) > 0
    if is_array(value):
        return any(to_boolean(item) for item in value)
    if is_object(value):
        return len(value) > 0
    return False


def validate_value(value: object, *, where: str = "value") -> None:
    if value is UNDEFINED or value is None or isinstance(value, (bool, str)):
        return
    if is_number(value):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"{where} is not a finite number")
        return
    if is_array(value):
        for idx, item in enumerate(value):
            validate_value(item, where=f"{where}[{idx}]")
        return
    if is_object(value):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{where} has non-string key {key!r}")
            validate_value(item, where=f"{where}[{key!r}]")
        return
    if is_function(value):
        return
    raise TypeError(f"{where} has unsupported runtime type {type(value).__name__}")


def to_json(value: object) -> object:
    """Strip absent values so the result is plain ``json``-serializable data."""
    if value is UNDEFINED:
        return None
    if is_array(value):
        return [to_json(item) for item in value if item is not UNDEFINED]
    if is_object(value):
        return {key: to_json(item) for key, item in value.items() if item is not UNDEFINED}
    if is_function(value):
        return ""
    return value


def format_number(value: float | int) -> str:
    if isinstance(value, int):
        return str(value)
    return format(value, ".15g")


def to_string(value: object, *, prettify: bool = False) -> str:
    """String casting used by ``$string`` and the ``&`` operator."""
    if isinstance(value, str):
        return value
    if value is UNDEFINED or is_function(value):
        return ""
    if is_number(value):
        return format_number(value)
    if prettify:
        return json.dumps(to_json(value), indent=2, ensure_ascii=False)
    return json.dumps(to_json(value), separators=(",", ":"), ensure_ascii=False)


def deep_equal(left: object, right: object) -> bool:
    if left is UNDEFINED or right is UNDEFINED:
        return False
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_number(left) and is_number(right):
        return left == right
    if is_array(left) and is_array(right):
        return len(left) == len(right) and all(deep_equal(a, b) for a, b in zip(left, right))
    if is_object(left) and is_object(right):
        return left.keys() == right.keys() and all(deep_equal(left[key], right[key]) for key in left)
    if type(left) is not type(right):
        return False
    return left == right
