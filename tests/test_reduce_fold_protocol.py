from __future__ import annotations

import copy
import unittest
from dataclasses import dataclass, field
from typing import Callable

from jsonexpr.ast import ArrayConstructor, FunctionCall, FunctionDecl, Number, String, Variable
from jsonexpr.errors import ArgumentTypeError, CallableArityError, EvaluationError, UnresolvedFunctionReferenceError
from jsonexpr.reduce import BuiltinRef, CallFrame, InlineLambda, ReduceFunction, UserFunctionRef, classify_callable
from jsonexpr.values import UNDEFINED


@dataclass
class _Closure:
    arity: int
    impl: Callable[[list[object]], object]


@dataclass
class _Builtin:
    arity: int
    impl: Callable[[list[object]], object]
    calls: list[list[object]] = field(default_factory=list)

    def call(self, args: list[object]) -> object:
        self.calls.append(list(args))
        return self.impl(args)


@dataclass
class _Table:
    entries: dict[str, object] = field(default_factory=dict)
    lookups: list[str] = field(default_factory=list)

    def lookup(self, name: str) -> object | None:
        self.lookups.append(name)
        return self.entries.get(name)


@dataclass
class _StubHost:
    values: dict[object, object] = field(default_factory=dict)
    builtins: _Table = field(default_factory=_Table)
    functions: _Table = field(default_factory=_Table)
    in_context: bool = False
    context: object = UNDEFINED
    evaluated: list[object] = field(default_factory=list)
    invocations: list[list[object]] = field(default_factory=list)
    declared: list[FunctionDecl] = field(default_factory=list)

    def evaluate(self, node):
        self.evaluated.append(node)
        return self.values[node]

    def declare(self, node: FunctionDecl) -> _Closure:
        self.declared.append(node)
        return _Closure(arity=len(node.params), impl=lambda args: args[0] + args[1])

    def invoke_closure(self, closure, args):
        self.invocations.append(list(args))
        return closure.impl(args)


_ARRAY = ArrayConstructor(items=())
_SEED = Number(100)


def _add_decl(*params: str) -> FunctionDecl:
    return FunctionDecl(params=params or ("a", "b"), body=Number(0))


class ReduceFoldProtocolTests(unittest.TestCase):
    def _reduce(self, host: _StubHost, *args) -> object:
        return ReduceFunction().invoke(host, FunctionCall(callee=Variable("reduce"), args=args))

    def test_builtin_registry_is_consulted_before_user_functions(self) -> None:
        builtin = _Builtin(arity=2, impl=lambda args: args[0])
        host = _StubHost(
            builtins=_Table({"f": builtin}),
            functions=_Table({"f": _Closure(arity=2, impl=lambda args: args[0])}),
        )
        classified = classify_callable(Variable("f"), host)
        self.assertEqual(classified, BuiltinRef(name="f", function=builtin))
        self.assertEqual(host.functions.lookups, [])

    def test_user_function_reference(self) -> None:
        closure = _Closure(arity=2, impl=lambda args: args[0])
        host = _StubHost(functions=_Table({"product": closure}))
        classified = classify_callable(Variable("product"), host)
        self.assertEqual(classified, UserFunctionRef(name="product", closure=closure))
        self.assertEqual(host.builtins.lookups, ["product"])

    def test_unresolved_reference_names_the_variable(self) -> None:
        with self.assertRaises(UnresolvedFunctionReferenceError) as ctx:
            classify_callable(Variable("missing"), _StubHost())
        self.assertEqual(ctx.exception.name, "missing")
        self.assertEqual(ctx.exception.code, "T1006")
        self.assertIn("$missing", str(ctx.exception))

    def test_inline_lambda_skips_registry_lookups(self) -> None:
        host = _StubHost()
        decl = _add_decl("acc", "x")
        classified = classify_callable(decl, host)
        self.assertIsInstance(classified, InlineLambda)
        self.assertEqual(classified.params, ("acc", "x"))
        self.assertEqual(classified.arity, 2)
        self.assertEqual(host.declared, [decl])
        self.assertEqual(host.builtins.lookups, [])
        self.assertEqual(host.functions.lookups, [])

    def test_other_node_shapes_are_rejected_as_argument_two(self) -> None:
        for node in (Number(1), String("f"), Variable(""), Variable("$")):
            with self.subTest(node=node):
                with self.assertRaises(ArgumentTypeError) as ctx:
                    classify_callable(node, _StubHost())
                self.assertEqual(ctx.exception.position, 2)

    def test_call_frame_truncates_to_declared_arity(self) -> None:
        array = [5, 6]
        frame = CallFrame(accumulator=1, element=6, index=1, array=array)
        self.assertEqual(frame.arguments(2), [1, 6])
        self.assertEqual(frame.arguments(3), [1, 6, 1])
        self.assertIs(frame.arguments(4)[3], array)
        self.assertEqual(len(frame.arguments(7)), 4)

    def test_frames_follow_callable_arity(self) -> None:
        array = [1, 2, 3]
        for arity, width in ((2, 2), (3, 3), (4, 4), (6, 4)):
            with self.subTest(arity=arity):
                closure = _Closure(arity=arity, impl=lambda args: args[0] + args[1])
                host = _StubHost(values={_ARRAY: array}, functions=_Table({"f": closure}))
                self.assertEqual(self._reduce(host, _ARRAY, Variable("f")), 6)
                self.assertEqual([len(args) for args in host.invocations], [width, width])
                if width >= 3:
                    self.assertEqual([args[2] for args in host.invocations], [1, 2])
                if width == 4:
                    self.assertTrue(all(args[3] is array for args in host.invocations))

    def test_seeded_fold_starts_at_element_zero(self) -> None:
        host = _StubHost(values={_ARRAY: [1, 2, 3], _SEED: 100})
        self.assertEqual(self._reduce(host, _ARRAY, _add_decl(), _SEED), 106)
        self.assertEqual(host.invocations, [[100, 1], [101, 2], [103, 3]])

    def test_unseeded_fold_uses_element_zero_as_seed(self) -> None:
        host = _StubHost(values={_ARRAY: [1, 2, 3]})
        self.assertEqual(self._reduce(host, _ARRAY, _add_decl()), 6)
        self.assertEqual(host.invocations, [[1, 2], [3, 3]])

    def test_singleton_without_seed_never_invokes(self) -> None:
        host = _StubHost(values={_ARRAY: [42]})
        self.assertEqual(self._reduce(host, _ARRAY, _add_decl()), 42)
        self.assertEqual(host.invocations, [])

    def test_empty_array(self) -> None:
        host = _StubHost(values={_ARRAY: []})
        self.assertIs(self._reduce(host, _ARRAY, _add_decl()), UNDEFINED)
        seeded = _StubHost(values={_ARRAY: [], _SEED: 100})
        self.assertEqual(self._reduce(seeded, _ARRAY, _add_decl(), _SEED), 100)
        self.assertEqual(host.invocations + seeded.invocations, [])

    def test_builtin_callable_receives_frame_values(self) -> None:
        builtin = _Builtin(arity=2, impl=lambda args: args[0] * args[1])
        host = _StubHost(values={_ARRAY: [2, 3, 4]}, builtins=_Table({"mul": builtin}))
        self.assertEqual(self._reduce(host, _ARRAY, Variable("mul")), 24)
        self.assertEqual(builtin.calls, [[2, 3], [6, 4]])

    def test_context_mode_takes_array_from_context(self) -> None:
        host = _StubHost(values={_SEED: 100}, in_context=True, context=[1, 2])
        self.assertEqual(self._reduce(host, _add_decl(), _SEED), 103)
        self.assertEqual(host.evaluated, [_SEED])

    def test_context_mode_rejects_non_array_context(self) -> None:
        host = _StubHost(in_context=True, context={"a": 1})
        with self.assertRaises(ArgumentTypeError) as ctx:
            self._reduce(host, _add_decl())
        self.assertEqual(ctx.exception.position, 1)

    def test_non_array_input_is_argument_one_error(self) -> None:
        for value in ("text", 3, {"a": 1}, None, UNDEFINED):
            with self.subTest(value=value):
                host = _StubHost(values={_ARRAY: value})
                with self.assertRaises(ArgumentTypeError) as ctx:
                    self._reduce(host, _ARRAY, _add_decl())
                self.assertEqual(ctx.exception.position, 1)
                self.assertEqual(ctx.exception.code, "T0410")

    def test_argument_count_errors(self) -> None:
        host = _StubHost(values={_ARRAY: [1]})
        with self.assertRaises(ArgumentTypeError) as ctx:
            self._reduce(host)
        self.assertEqual(ctx.exception.position, 1)
        with self.assertRaises(ArgumentTypeError) as ctx:
            self._reduce(host, _ARRAY)
        self.assertEqual(ctx.exception.position, 2)
        with self.assertRaises(ArgumentTypeError):
            self._reduce(host, _ARRAY, _add_decl(), _SEED, _SEED)

    def test_callable_with_too_few_parameters_is_rejected_before_seeding(self) -> None:
        host = _StubHost(values={_ARRAY: [1, 2], _SEED: 0})
        with self.assertRaises(CallableArityError) as ctx:
            self._reduce(host, _ARRAY, FunctionDecl(params=("only",), body=Number(0)), _SEED)
        self.assertEqual(ctx.exception.arity, 1)
        self.assertEqual(host.evaluated, [_ARRAY])
        self.assertEqual(host.invocations, [])

    def test_classification_happens_once_per_fold(self) -> None:
        closure = _Closure(arity=2, impl=lambda args: args[0] + args[1])
        host = _StubHost(values={_ARRAY: list(range(10))}, functions=_Table({"f": closure}))
        self.assertEqual(self._reduce(host, _ARRAY, Variable("f")), 45)
        self.assertEqual(host.functions.lookups, ["f"])
        self.assertEqual(host.evaluated, [_ARRAY])

    def test_invocation_errors_propagate_without_partial_result(self) -> None:
        def boom(args):
            if args[1] == 3:
                raise EvaluationError("boom")
            return args[0] + args[1]

        host = _StubHost(values={_ARRAY: [1, 2, 3, 4]}, functions=_Table({"f": _Closure(arity=2, impl=boom)}))
        with self.assertRaises(EvaluationError) as ctx:
            self._reduce(host, _ARRAY, Variable("f"))
        self.assertEqual(ctx.exception.message, "boom")
        self.assertEqual(len(host.invocations), 2)

    def test_input_array_is_not_mutated(self) -> None:
        array = [[1], [2], [3]]
        before = copy.deepcopy(array)
        closure = _Closure(arity=2, impl=lambda args: [*args[0], *args[1]])
        host = _StubHost(values={_ARRAY: array}, functions=_Table({"cat": closure}))
        self.assertEqual(self._reduce(host, _ARRAY, Variable("cat")), [1, 2, 3])
        self.assertEqual(array, before)

    def test_reduce_cannot_be_applied_to_evaluated_arguments(self) -> None:
        with self.assertRaises(EvaluationError):
            ReduceFunction().call([[1, 2], None])
        self.assertEqual(ReduceFunction.signature.text, "<a-fj?:j>")
        self.assertTrue(ReduceFunction.signature.accepts_context)


class ReduceEvaluationTests(unittest.TestCase):
    def test_product_with_inline_lambda(self) -> None:
        from jsonexpr import evaluate

        self.assertEqual(evaluate("$reduce([1, 2, 3, 4, 5], function($i, $j) { $i * $j })"), 120)

    def test_seeded_sum(self) -> None:
        from jsonexpr import evaluate

        self.assertEqual(evaluate("$reduce([1, 2, 3], function($i, $j) { $i + $j }, 10)"), 16)

    def test_named_user_function(self) -> None:
        from jsonexpr import evaluate

        source = "($product := function($i, $j) { $i * $j }; $reduce([2, 3, 4], $product))"
        self.assertEqual(evaluate(source), 24)

    def test_fold_is_left_to_right(self) -> None:
        from jsonexpr import evaluate

        self.assertEqual(evaluate("$reduce([10, 3, 2], function($a, $b) { $a - $b })"), 5)
        self.assertEqual(evaluate("$reduce([2, 3, 2], $power)"), 64)
        self.assertEqual(evaluate("$reduce(['a', 'b', 'c'], function($a, $b) { $a & $b }, '>')"), ">abc")

    def test_seed_source_decides_first_element(self) -> None:
        from jsonexpr import evaluate

        join = "function($a, $b) { $a & ',' & $b }"
        self.assertEqual(evaluate(f"$reduce([1, 2, 3], {join}, 's')"), "s,1,2,3")
        self.assertEqual(evaluate(f"$reduce([1, 2, 3], {join})"), "1,2,3")

    def test_singleton_returns_element_without_invoking(self) -> None:
        from jsonexpr import evaluate

        self.assertEqual(evaluate("$reduce([7], function($a, $b) { $a + 'x' })"), 7)

    def test_builtin_reference_matches_equivalent_lambda(self) -> None:
        from jsonexpr import evaluate

        for name, lam in (
            ("$power", "function($a, $b) { $power($a, $b) }"),
            ("$append", "function($a, $b) { $append($a, $b) }"),
        ):
            with self.subTest(name=name):
                data = [2, 3, 2]
                self.assertEqual(evaluate(f"$reduce($, {name})", data), evaluate(f"$reduce($, {lam})", data))

    def test_index_and_array_frame_values(self) -> None:
        from jsonexpr import evaluate

        source = "$reduce(['a', 'b', 'c'], function($acc, $v, $i, $arr) { $acc & $v & $i & $count($arr) }, '')"
        self.assertEqual(evaluate(source), "a03b13c23")

    def test_extra_parameters_stay_undefined(self) -> None:
        from jsonexpr import evaluate

        source = "$reduce([1, 2], function($a, $b, $i, $arr, $extra) { $exists($extra) ? 'bound' : $a + $b })"
        self.assertEqual(evaluate(source), 3)

    def test_path_step_uses_context_array(self) -> None:
        from jsonexpr import evaluate

        data = {"items": [{"qty": 2}, {"qty": 1}, {"qty": 1}]}
        self.assertEqual(evaluate("[1, 2, 3].$reduce(function($a, $b) { $a + $b })"), 6)
        self.assertEqual(evaluate("items.qty.$reduce(function($a, $b) { $a + $b }, 10)", data), 14)

    def test_chain_uses_context_array(self) -> None:
        from jsonexpr import evaluate

        self.assertEqual(evaluate("[1, 2, 3] ~> $reduce(function($a, $b) { $a + $b }, 100)"), 106)
        self.assertEqual(evaluate("[[1], [2]] ~> $reduce($append)"), [1, 2])

    def test_builtin_names_win_over_user_bindings(self) -> None:
        from jsonexpr import evaluate

        source = "($append := function($a, $b) { 'user' }; $reduce([1, 2], $append))"
        self.assertEqual(evaluate(source), [1, 2])

    def test_nested_reduce(self) -> None:
        from jsonexpr import evaluate

        source = "$reduce([[1, 2], [3]], function($a, $b) { $a + $reduce($b, function($x, $y) { $x + $y }) }, 0)"
        self.assertEqual(evaluate(source), 6)

    def test_empty_input(self) -> None:
        from jsonexpr import UNDEFINED, evaluate

        self.assertIs(evaluate("$reduce([], function($a, $b) { $a })"), UNDEFINED)
        self.assertEqual(evaluate("$reduce([], function($a, $b) { $a }, 5)"), 5)

    def test_data_is_not_mutated(self) -> None:
        from jsonexpr import evaluate

        data = {"xs": [[1], [2], [3]]}
        before = copy.deepcopy(data)
        self.assertEqual(evaluate("$reduce(xs, $append)", data), [1, 2, 3])
        self.assertEqual(data, before)

    def test_error_scenarios(self) -> None:
        from jsonexpr import evaluate

        with self.assertRaises(ArgumentTypeError) as ctx:
            evaluate("$reduce('not-an-array', function($a, $b) { $a })")
        self.assertEqual(ctx.exception.position, 1)

        with self.assertRaises(ArgumentTypeError) as ctx:
            evaluate("$reduce(missing, function($a, $b) { $a })")
        self.assertEqual(ctx.exception.position, 1)

        for source in (
            "missing.$reduce(function($a, $b) { $a + $b })",
            "missing.deeper.$reduce(function($a, $b) { $a + $b })",
            "missing ~> $reduce(function($a, $b) { $a + $b })",
        ):
            with self.subTest(source=source):
                with self.assertRaises(ArgumentTypeError) as ctx:
                    evaluate(source, {})
                self.assertEqual(ctx.exception.position, 1)
        self.assertIs(evaluate("missing.$count()", {}), UNDEFINED)

        with self.assertRaises(UnresolvedFunctionReferenceError) as ctx:
            evaluate("$reduce([1, 2], $nope)")
        self.assertEqual(ctx.exception.name, "nope")

        with self.assertRaises(ArgumentTypeError) as ctx:
            evaluate("$reduce([1, 2], 5)")
        self.assertEqual(ctx.exception.position, 2)

        with self.assertRaises(ArgumentTypeError) as ctx:
            evaluate("$reduce([1, 2])")
        self.assertEqual(ctx.exception.position, 2)

        with self.assertRaises(CallableArityError):
            evaluate("$reduce([1, 2], $sum)")

        with self.assertRaises(EvaluationError) as ctx:
            evaluate("$reduce([1, 'a'], function($a, $b) { $a + $b })")
        self.assertEqual(ctx.exception.code, "T2001")

        with self.assertRaises(EvaluationError) as ctx:
            evaluate("$reduce([0, -1], $power)")
        self.assertEqual(ctx.exception.code, "D3061")

    def test_reduce_applied_as_a_value_is_rejected(self) -> None:
        from jsonexpr import evaluate

        with self.assertRaises(EvaluationError):
            evaluate("[1, 2] ~> $reduce")

    def test_fold_logs_classification(self) -> None:
        from jsonexpr import evaluate

        with self.assertLogs("jsonexpr.reduce", level="DEBUG") as logs:
            evaluate("$reduce([1, 2, 3], function($a, $b) { $a + $b })")
        self.assertTrue(any("InlineLambda" in line and "2 step(s)" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
