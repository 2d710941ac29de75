"""
NODE VALIDATOR
Checks a proposed answer map against one node's static and conditional
field requirements. Pure predicate: no state, no side effects beyond logging.

Order of checks:
1. Required fields listed on the node (and fields flagged `required`)
2. Conditional rules whose condition currently holds
3. Per-field constraint blocks for every field present in the map
4. Node-level custom rules
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from onboarding_graph.core.conditions import clause_satisfied, is_blank
from onboarding_graph.core.ontology import FieldSpec, FieldType, NodeSpec

logger = logging.getLogger("Onboarding.Validator")

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


# =============================================================================
# CUSTOM RULES
# =============================================================================

class CustomRule(str, Enum):
    """Named format checks that fields and nodes may reference."""
    PAN = "pan"
    AADHAAR = "aadhaar"
    GST = "gst"

    @classmethod
    def lookup(cls, name: str) -> Optional["CustomRule"]:
        return CUSTOM_RULE_NAMES.get(name.strip().lower())


CUSTOM_RULE_NAMES: Dict[str, CustomRule] = {
    "pan_validation": CustomRule.PAN,
    "pan_format": CustomRule.PAN,
    "aadhaar_validation": CustomRule.AADHAAR,
    "aadhaar_format": CustomRule.AADHAAR,
    "gst_validation": CustomRule.GST,
    "gst_format": CustomRule.GST,
}

_PAN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
_AADHAAR = re.compile(r"^[0-9]{12}$")
_GSTIN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")

CUSTOM_RULE_CHECKS: Dict[CustomRule, Callable[[str], bool]] = {
    CustomRule.PAN: lambda v: bool(_PAN.match(v)),
    CustomRule.AADHAAR: lambda v: bool(_AADHAAR.match(v)),
    CustomRule.GST: lambda v: bool(_GSTIN.match(v)),
}

# Answer keys that node-level rules read when no field is named
CUSTOM_RULE_SOURCE_FIELDS: Dict[CustomRule, str] = {
    CustomRule.PAN: "pan_number",
    CustomRule.AADHAAR: "aadhaar_number",
    CustomRule.GST: "gst_number",
}


def check_custom_rule(name: str, value: Any) -> bool:
    """Run a named rule against a value. Unknown rule names pass."""
    rule = CustomRule.lookup(name)
    if rule is None:
        logger.debug(f"Unknown custom rule '{name}', treating as valid")
        return True
    return CUSTOM_RULE_CHECKS[rule](str(value).strip())


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ValidationIssue:
    field: str
    message: str
    code: str


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    def add_error(self, field_id: str, message: str, code: str):
        self.valid = False
        self.errors.append(ValidationIssue(field_id, message, code))

    def add_warning(self, field_id: str, message: str, code: str):
        self.warnings.append(ValidationIssue(field_id, message, code))

    def error_codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [vars(e) for e in self.errors],
            "warnings": [vars(w) for w in self.warnings],
        }


def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


# =============================================================================
# VALIDATOR
# =============================================================================

class NodeValidator:
    """Validates merged answers for a single node."""

    def validate(self, node: NodeSpec, answers: Mapping[str, Any]) -> ValidationResult:
        """
        Validate `answers` (session answers overlaid with the submission).

        Args:
            node: The node being submitted
            answers: The proposed merged answer map

        Returns:
            ValidationResult with field-level errors and warnings
        """
        result = ValidationResult()
        missing = set()

        required = list(node.validation.required_fields)
        required += [f.id for f in node.fields if f.required and f.id not in required]
        for field_id in required:
            if is_blank(answers.get(field_id)):
                missing.add(field_id)
                result.add_error(field_id, f"Field {field_id} is required", "required-field-missing")

        for rule in node.validation.conditional_rules:
            if not clause_satisfied(answers, rule.field, rule.operator, rule.value):
                continue
            reason = rule.rule or f"{rule.field} {rule.operator.value} {rule.value!r}"
            for field_id in rule.required_fields:
                if field_id in missing or not is_blank(answers.get(field_id)):
                    continue
                missing.add(field_id)
                result.add_error(
                    field_id,
                    f"Field {field_id} required because {reason}",
                    "conditional-field-missing",
                )

        for spec in node.fields:
            value = answers.get(spec.id)
            if spec.id not in answers or is_blank(value):
                continue
            self._check_field(spec, value, result)

        for rule_name in node.validation.custom_rules:
            rule = CustomRule.lookup(rule_name)
            if rule is None:
                logger.debug(f"Node {node.id}: unknown custom rule '{rule_name}' skipped")
                continue
            source = CUSTOM_RULE_SOURCE_FIELDS[rule]
            if source in answers and not is_blank(answers[source]):
                if not CUSTOM_RULE_CHECKS[rule](str(answers[source]).strip()):
                    result.add_error(source, f"Custom rule {rule_name} failed", "custom-rule-failed")

        return result

    def _check_field(self, spec: FieldSpec, value: Any, result: ValidationResult):
        c = spec.constraints
        text = str(value)

        if c.min_length is not None and len(text) < c.min_length:
            result.add_error(
                spec.id, f"Field {spec.id} must be at least {c.min_length} characters long", "min-length"
            )
        if c.max_length is not None and len(text) > c.max_length:
            result.add_error(
                spec.id, f"Field {spec.id} must be at most {c.max_length} characters long", "max-length"
            )

        if spec.type == FieldType.NUMBER:
            number = _parse_number(value)
            if number is None:
                result.add_warning(spec.id, f"Field {spec.id} is not numeric, bounds not checked", "not-numeric")
            else:
                if c.min_value is not None and number < c.min_value:
                    result.add_error(spec.id, f"Field {spec.id} must be at least {c.min_value:g}", "min-value")
                if c.max_value is not None and number > c.max_value:
                    result.add_error(spec.id, f"Field {spec.id} must be at most {c.max_value:g}", "max-value")

        if c.pattern:
            try:
                if not re.search(c.pattern, text):
                    result.add_error(spec.id, f"Field {spec.id} does not match required pattern", "pattern-mismatch")
            except re.error as e:
                logger.warning(f"Invalid pattern {c.pattern!r} on field {spec.id}: {e}")

        if spec.type == FieldType.EMAIL and not EMAIL_PATTERN.match(text):
            result.add_error(spec.id, f"Field {spec.id} must be a valid email address", "invalid-email")

        if spec.type == FieldType.SELECT and spec.options and text not in spec.options:
            result.add_error(spec.id, f"Field {spec.id} must be one of {', '.join(spec.options)}", "invalid-option")

        for rule_name in c.custom_rules:
            if not check_custom_rule(rule_name, value):
                result.add_error(
                    spec.id, f"Custom validation rule failed for field {spec.id}: {rule_name}", "custom-rule-failed"
                )
