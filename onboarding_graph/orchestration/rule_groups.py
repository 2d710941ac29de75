"""
RULE-GROUP COMPLETION
A session is complete when ANY rule group registered for its discriminator
has every required field filled (OR of ANDs). Missing-requirement strings
are for diagnostics only.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from onboarding_graph.core.conditions import clause_satisfied, is_blank
from onboarding_graph.core.requirements import RequirementCatalog, RuleGroup

logger = logging.getLogger("Onboarding.RuleGroups")


@dataclass
class RuleGroupResult:
    complete: bool
    satisfied_group: Optional[str] = None
    missing: List[str] = field(default_factory=list)
    groups_checked: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "complete": self.complete,
            "satisfied_group": self.satisfied_group,
            "missing": list(self.missing),
            "groups_checked": self.groups_checked,
        }


class RuleGroupEvaluator:
    def __init__(self, catalog: Optional[RequirementCatalog] = None):
        self.catalog = catalog or RequirementCatalog()

    def missing_for_group(self, group: RuleGroup, answers: Mapping[str, Any]) -> List[str]:
        """Requirement strings of one group that `answers` does not meet."""
        missing: List[str] = []
        for node_id in group.required_nodes:
            required = list(group.required_fields.get(node_id, []))
            for rule in group.conditional_fields:
                if rule.node_id != node_id or rule.field in required:
                    continue
                if clause_satisfied(answers, rule.trigger_field, rule.operator, rule.value):
                    required.append(rule.field)
            for field_id in required:
                if is_blank(answers.get(field_id)):
                    missing.append(f"{group.id}: {node_id}.{field_id}")
        return missing

    def evaluate(self, discriminator: str, answers: Mapping[str, Any]) -> RuleGroupResult:
        """
        Check the groups registered for `discriminator` in order.

        Returns:
            RuleGroupResult for the first passing group, or the union of
            every group's missing requirements when none passes
        """
        groups = self.catalog.rule_groups_for(discriminator)
        result = RuleGroupResult(complete=False)
        for group in groups:
            result.groups_checked += 1
            missing = self.missing_for_group(group, answers)
            if not missing:
                logger.debug(f"Rule group {group.id} satisfied for {discriminator}")
                return RuleGroupResult(
                    complete=True,
                    satisfied_group=group.id,
                    groups_checked=result.groups_checked,
                )
            for item in missing:
                if item not in result.missing:
                    result.missing.append(item)
        return result

    def is_complete(self, discriminator: str, answers: Mapping[str, Any]) -> bool:
        return self.evaluate(discriminator, answers).complete

    def probe(self, discriminator: str):
        """Bind a discriminator; the result fits EdgeConditionEvaluator and DynamicGraph."""
        return lambda answers: self.is_complete(discriminator, answers)
