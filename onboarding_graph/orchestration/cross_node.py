"""
CROSS-NODE VALIDATION
Consistency checks over fields that live on different nodes.

Policy notes:
- A rule whose referenced field is absent from the answers is reported as
  passed and skipped; it starts biting once all of its data has arrived.
- Only failures with ERROR severity block completion.
- Comparisons are case-insensitive on trimmed string forms.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from onboarding_graph.core.ontology import (
    CrossNodeCondition,
    CrossNodeConditionType,
    CrossNodeRule,
    MatchOperator,
    Severity,
)

logger = logging.getLogger("Onboarding.CrossNode")


def _norm(value: Any) -> str:
    return str(value).strip().lower()


# =============================================================================
# CUSTOM LOGIC TABLE
# =============================================================================

class CustomLogic(str, Enum):
    BUSINESS_NAME_MATCHES_BANK_NAME = "business_name_matches_bank_name"
    PAN_MATCHES_SIGNATORY_PAN = "pan_matches_signatory_pan"
    ADDRESS_CONSISTENCY = "address_consistency"


def _business_name_matches_bank_name(values: Mapping[str, Any]) -> bool:
    if "business_name" not in values or "bank_name" not in values:
        return False
    business = _norm(values["business_name"])
    bank = _norm(values["bank_name"])
    return business in bank or bank in business


def _pan_matches_signatory_pan(values: Mapping[str, Any]) -> bool:
    if "pan_number" not in values or "signatory_pan" not in values:
        return False
    return str(values["pan_number"]) == str(values["signatory_pan"])


def _address_consistency(values: Mapping[str, Any]) -> bool:
    parts = ("business_city", "business_state", "business_pincode")
    return all(p in values and str(values[p]).strip() for p in parts)


CUSTOM_LOGIC_CHECKS: Dict[CustomLogic, Callable[[Mapping[str, Any]], bool]] = {
    CustomLogic.BUSINESS_NAME_MATCHES_BANK_NAME: _business_name_matches_bank_name,
    CustomLogic.PAN_MATCHES_SIGNATORY_PAN: _pan_matches_signatory_pan,
    CustomLogic.ADDRESS_CONSISTENCY: _address_consistency,
}


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class CrossNodeResult:
    rule_id: str
    rule_name: str
    passed: bool
    severity: Severity
    message: str = ""
    fields: List[str] = field(default_factory=list)
    skipped: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def blocking(self) -> bool:
        return not self.passed and self.severity == Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "passed": self.passed,
            "severity": self.severity.value,
            "message": self.message,
            "fields": list(self.fields),
            "skipped": self.skipped,
        }


# =============================================================================
# VALIDATOR
# =============================================================================

class CrossNodeValidator:
    def validate(
        self,
        rules: List[CrossNodeRule],
        answers: Mapping[str, Any],
        discriminator: str = "",
    ) -> List[CrossNodeResult]:
        """Run every enabled rule that applies to `discriminator`."""
        results = []
        for rule in rules:
            if not rule.enabled:
                continue
            if rule.discriminator and rule.discriminator != discriminator:
                logger.debug(f"Skipping rule {rule.id} for discriminator {discriminator}")
                continue
            results.append(self.validate_rule(rule, answers))

        failed = sum(1 for r in results if not r.passed)
        logger.info(f"Cross-node validation: {len(results)} rules, {len(results) - failed} passed, {failed} failed")
        return results

    def validate_rule(self, rule: CrossNodeRule, answers: Mapping[str, Any]) -> CrossNodeResult:
        result = CrossNodeResult(rule_id=rule.id, rule_name=rule.name, passed=False, severity=rule.severity)

        values: Dict[str, Any] = {}
        for ref in rule.fields:
            if ref.field_id not in answers:
                logger.debug(f"Rule {rule.id}: {ref.node_id}.{ref.field_id} not answered yet, skipping")
                result.passed = True
                result.skipped = True
                result.message = f"Field {ref.field_id} not found in session data"
                return result
            values[ref.alias] = answers[ref.field_id]
            result.fields.append(ref.field_id)
            result.details[ref.alias] = {"node_id": ref.node_id, "field_id": ref.field_id}

        cond = rule.condition
        if cond.type == CrossNodeConditionType.FIELD_MATCH:
            result.passed = self._field_match(rule.id, cond, values)
        elif cond.type == CrossNodeConditionType.FIELD_CONTAINS:
            result.passed = self._field_contains(rule.id, cond, values)
        elif cond.type == CrossNodeConditionType.CUSTOM_LOGIC:
            result.passed = self._custom_logic(rule.id, cond, values)

        if not result.passed:
            result.message = rule.message or f"Cross-node rule {rule.id} failed"
        return result

    def blocking_failures(self, results: List[CrossNodeResult]) -> List[CrossNodeResult]:
        return [r for r in results if r.blocking]

    # -------------------------------------------------------------------------

    def _field_match(self, rule_id: str, cond: CrossNodeCondition, values: Mapping[str, Any]) -> bool:
        if not cond.fields:
            logger.error(f"Rule {rule_id}: field_match needs at least one field")
            return False
        for alias in cond.fields:
            if alias not in values:
                logger.error(f"Rule {rule_id}: alias {alias} is not a referenced field")
                return False

        reference = values[cond.fields[0]]
        if len(cond.fields) < 2:
            # Single field: compare against the static value
            if cond.value is None:
                logger.error(f"Rule {rule_id}: field_match with one field needs a value")
                return False
            return self._compare(reference, cond.value, cond.operator)

        return all(self._compare(reference, values[alias], cond.operator) for alias in cond.fields[1:])

    def _field_contains(self, rule_id: str, cond: CrossNodeCondition, values: Mapping[str, Any]) -> bool:
        if cond.value is None:
            logger.error(f"Rule {rule_id}: field_contains needs a value")
            return False
        for alias in cond.fields:
            if alias not in values:
                logger.error(f"Rule {rule_id}: alias {alias} is not a referenced field")
                return False
            if not self._contains(values[alias], cond.value, cond.operator):
                return False
        return True

    def _custom_logic(self, rule_id: str, cond: CrossNodeCondition, values: Mapping[str, Any]) -> bool:
        try:
            logic = CustomLogic(cond.logic)
        except ValueError:
            logger.warning(f"Rule {rule_id}: unknown custom logic {cond.logic!r}, treating as passed")
            return True
        return CUSTOM_LOGIC_CHECKS[logic](values)

    @staticmethod
    def _compare(left: Any, right: Any, operator: MatchOperator) -> bool:
        a, b = _norm(left), _norm(right)
        if operator == MatchOperator.EQUALS:
            return a == b
        if operator == MatchOperator.NOT_EQUALS:
            return a != b
        if operator == MatchOperator.CONTAINS:
            return a in b or b in a
        if operator == MatchOperator.STARTS_WITH:
            return a.startswith(b)
        if operator == MatchOperator.ENDS_WITH:
            return a.endswith(b)
        if operator == MatchOperator.MATCHES:
            return _regex(b, a)
        return False

    @staticmethod
    def _contains(value: Any, needle: Any, operator: MatchOperator) -> bool:
        text, target = _norm(value), _norm(needle)
        if operator == MatchOperator.CONTAINS:
            return target in text
        if operator == MatchOperator.STARTS_WITH:
            return text.startswith(target)
        if operator == MatchOperator.ENDS_WITH:
            return text.endswith(target)
        if operator == MatchOperator.MATCHES:
            return _regex(target, text)
        logger.error(f"Operator {operator.value} is not valid for field_contains")
        return False


def _regex(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text) is not None
    except re.error as e:
        logger.warning(f"Invalid cross-node pattern {pattern!r}: {e}")
        return False
