"""Structured error types for parser/runtime separation."""

from __future__ import annotations

from dataclasses import dataclass

from .parser import ParseError


class JsonExprError(Exception):
    """Base class for structured jsonexpr errors."""


@dataclass(frozen=True)
class JsonExprParseError(JsonExprError):
    """Wraps parser failures with explicit parse-stage typing."""

    message: str
    start: int
    end: int
    expected: tuple[str, ...] = ()
    found: str | None = None

    @classmethod
    def from_parse_error(cls, err: ParseError) -> "JsonExprParseError":
        return cls(
            message=err.message,
            start=err.start,
            end=err.end,
            expected=err.expected,
            found=err.found,
        )

    def __str__(self) -> str:
        expected = ""
        if self.expected:
            expected = f"; expected {', '.join(self.expected)}"
        found = ""
        if self.found is not None:
            found = f"; found {self.found}"
        return f"{self.message} at span [{self.start}, {self.end}){expected}{found}"


class EvaluationError(JsonExprError):
    """Generic runtime failure after successful parse."""

    code = "D1001"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ArgumentTypeError(EvaluationError):
    """An argument does not match the function signature."""

    code = "T0410"

    def __init__(self, function: str, position: int, expected: str | None = None) -> None:
        message = f"Argument {position} of function {function!r} does not match function signature"
        if expected:
            message = f"{message}; expected {expected}"
        super().__init__(message)
        self.function = function
        self.position = position
        self.expected = expected


class UnresolvedFunctionReferenceError(EvaluationError):
    """A variable in function position names neither a builtin nor a declared function."""

    code = "T1006"

    def __init__(self, name: str) -> None:
        super().__init__(f"Expected function variable reference ${name} to resolve to a declared function")
        self.name = name


class CallableArityError(EvaluationError):
    """A callable declares too few parameters for the higher-order function using it."""

    code = "D3050"

    def __init__(self, function: str, arity: int, minimum: int = 2) -> None:
        super().__init__(
            f"The function passed to {function!r} must accept at least {minimum} arguments; it declares {arity}"
        )
        self.function = function
        self.arity = arity
        self.minimum = minimum


class EvaluationDepthError(EvaluationError):
    """Nested function invocation exceeded the configured depth limit."""

    code = "U1001"


def classify_runtime_exception(err: Exception) -> EvaluationError:
    """Best-effort runtime error classification for structured APIs."""
    if isinstance(err, EvaluationError):
        return err
    if isinstance(err, RecursionError):
        return EvaluationDepthError("Stack overflow error: check for non-terminating recursive function")

    message = str(err) or type(err).__name__
    if isinstance(err, ZeroDivisionError):
        return EvaluationError(f"Division by zero: {message}")
    if isinstance(err, (TypeError, ValueError, OverflowError)):
        return EvaluationError(f"Invalid operand: {message}")
    return EvaluationError(message)
