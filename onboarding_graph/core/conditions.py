"""
CONDITION EVALUATION
The one operator set shared by edge guards, conditional validation rules
and dependency clauses. Evaluation never raises: a field that is absent
from the answer map makes the condition false.
"""
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from onboarding_graph.core.ontology import EdgeGuard, EdgeSpec, GuardType, Operator

logger = logging.getLogger("Onboarding.Conditions")

CompletionCheck = Callable[[Mapping[str, Any]], bool]


def is_blank(value: Any) -> bool:
    """None, empty containers and whitespace-only strings count as missing."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _members(expected: Any) -> list:
    if isinstance(expected, str):
        return [part.strip() for part in expected.split(",")]
    if isinstance(expected, (list, tuple, set, frozenset)):
        return list(expected)
    return [expected]


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return expected in actual
    return False


def evaluate_operator(actual: Any, operator: Union[Operator, str], expected: Any) -> bool:
    """Apply `operator` to a value that is known to be present."""
    op = Operator(operator)
    if op == Operator.EQ:
        return actual == expected
    if op == Operator.NE:
        return actual != expected
    if op == Operator.IN:
        return actual in _members(expected)
    if op == Operator.NOT_IN:
        return actual not in _members(expected)
    if op == Operator.CONTAINS:
        return _contains(actual, expected)
    if op == Operator.NOT_CONTAINS:
        return not _contains(actual, expected)
    if op == Operator.CUSTOM:
        return not is_blank(actual)
    return False


def clause_satisfied(
    answers: Mapping[str, Any],
    field: Optional[str],
    operator: Union[Operator, str],
    expected: Any,
) -> bool:
    """True iff `field` is present in `answers` and the comparison holds."""
    if not field or field not in answers:
        return False
    return evaluate_operator(answers[field], operator, expected)


class EdgeConditionEvaluator:
    """
    Decides whether an edge is traversable for the current answers.

    `completion_check` is the rule-group evaluator's boolean probe; without
    one, completion-check guards are never traversable.
    """

    def __init__(self, completion_check: Optional[CompletionCheck] = None):
        self.completion_check = completion_check

    def guard_holds(self, guard: EdgeGuard, answers: Mapping[str, Any]) -> bool:
        if guard.type == GuardType.ALWAYS:
            return True
        if guard.type == GuardType.FIELD_VALUE:
            return clause_satisfied(answers, guard.field, guard.operator, guard.value)
        if guard.type == GuardType.COMPLETION_CHECK:
            if self.completion_check is None:
                return False
            return bool(self.completion_check(answers))
        logger.debug(f"Unknown guard type {guard.type!r}, treating as closed")
        return False

    def is_traversable(self, edge: EdgeSpec, answers: Mapping[str, Any]) -> bool:
        return self.guard_holds(edge.guard, answers)
