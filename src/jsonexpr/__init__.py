"""jsonexpr public API."""

from .parser import ParseError, parse
from .errors import (
    ArgumentTypeError,
    CallableArityError,
    EvaluationDepthError,
    EvaluationError,
    JsonExprError,
    JsonExprParseError,
    UnresolvedFunctionReferenceError,
)
from .values import UNDEFINED, to_json
from .builtins import DEFAULT_REGISTRY, BuiltinRegistry, NativeFunction, build_registry
from .reduce import BuiltinRef, CallFrame, InlineLambda, ReduceFunction, UserFunctionRef
from .evaluator import EvaluationEnvironment, Lambda, StatefulEvaluate, evaluate, evaluate_with_errors

__all__ = [
    "parse",
    "ParseError",
    "evaluate",
    "evaluate_with_errors",
    "EvaluationEnvironment",
    "StatefulEvaluate",
    "Lambda",
    "UNDEFINED",
    "to_json",
    "BuiltinRegistry",
    "NativeFunction",
    "DEFAULT_REGISTRY",
    "build_registry",
    "ReduceFunction",
    "BuiltinRef",
    "UserFunctionRef",
    "InlineLambda",
    "CallFrame",
    "JsonExprError",
    "JsonExprParseError",
    "EvaluationError",
    "ArgumentTypeError",
    "UnresolvedFunctionReferenceError",
    "CallableArityError",
    "EvaluationDepthError",
]
