"""
Condition and edge-guard evaluation.
"""
import pytest

from onboarding_graph.core.conditions import (
    EdgeConditionEvaluator,
    clause_satisfied,
    evaluate_operator,
    is_blank,
)
from onboarding_graph.core.ontology import EdgeGuard, EdgeSpec, GuardType, Operator


class TestOperators:
    @pytest.mark.parametrize("actual,op,expected,result", [
        ("individual", Operator.EQ, "individual", True),
        ("individual", Operator.NE, "", True),
        ("", Operator.NE, "", False),
        ("llp", Operator.IN, "private_limited,llp", True),
        ("llp", Operator.IN, ["private_limited", "public_limited"], False),
        ("llp", Operator.NOT_IN, "private_limited, public_limited", True),
        ("https://shop.example", Operator.CONTAINS, "shop", True),
        (["a", "b"], Operator.CONTAINS, "b", True),
        ("abc", Operator.NOT_CONTAINS, "z", True),
        ("ABCDE1234F", Operator.CUSTOM, "pan_validation", True),
        ("   ", Operator.CUSTOM, "pan_validation", False),
    ])
    def test_evaluate_operator(self, actual, op, expected, result):
        assert evaluate_operator(actual, op, expected) is result

    def test_missing_field_is_false_for_every_operator(self):
        for op in Operator:
            assert clause_satisfied({}, "business_type", op, "") is False

    def test_blank_values(self):
        assert is_blank(None)
        assert is_blank("  \t")
        assert is_blank([])
        assert not is_blank(0)
        assert not is_blank(False)


class TestEdgeConditionEvaluator:
    def test_always(self):
        evaluator = EdgeConditionEvaluator()
        assert evaluator.guard_holds(EdgeGuard(), {})

    def test_field_value_absent_field_never_raises(self):
        evaluator = EdgeConditionEvaluator()
        guard = EdgeGuard(type=GuardType.FIELD_VALUE, field="business_type", operator=Operator.NE, value="")
        assert evaluator.guard_holds(guard, {}) is False
        assert evaluator.guard_holds(guard, {"business_type": "llp"}) is True

    def test_completion_check_delegates(self):
        calls = []

        def probe(answers):
            calls.append(dict(answers))
            return answers.get("done") == "yes"

        evaluator = EdgeConditionEvaluator(probe)
        edge = EdgeSpec(id="e", source="a", target="b", guard=EdgeGuard(type=GuardType.COMPLETION_CHECK))
        assert evaluator.is_traversable(edge, {"done": "no"}) is False
        assert evaluator.is_traversable(edge, {"done": "yes"}) is True
        assert len(calls) == 2

    def test_completion_check_without_probe_is_closed(self):
        guard = EdgeGuard(type=GuardType.COMPLETION_CHECK)
        assert EdgeConditionEvaluator().guard_holds(guard, {"anything": 1}) is False
