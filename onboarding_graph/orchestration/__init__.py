"""
Onboarding Orchestration Layer

- dynamic_engine: per-session node status view
- rule_groups: OR-of-ANDs completion
- cross_node: consistency checks across screens
- persistence: dynamic state <-> session record
- navigator: next / eligible / previous node
- service: the operations exposed to transports
"""
from onboarding_graph.orchestration.dynamic_engine import DynamicEngine, DynamicGraph, DynamicNode
from onboarding_graph.orchestration.rule_groups import RuleGroupEvaluator, RuleGroupResult
from onboarding_graph.orchestration.cross_node import CrossNodeResult, CrossNodeValidator
from onboarding_graph.orchestration.persistence import PersistenceBridge
from onboarding_graph.orchestration.navigator import Navigator
from onboarding_graph.orchestration.service import (
    NodeValidationError,
    OnboardingService,
    RetryLimitExceededError,
    SessionStateError,
    SubmissionResult,
)

__all__ = [
    'DynamicEngine',
    'DynamicGraph',
    'DynamicNode',
    'RuleGroupEvaluator',
    'RuleGroupResult',
    'CrossNodeResult',
    'CrossNodeValidator',
    'PersistenceBridge',
    'Navigator',
    'OnboardingService',
    'SubmissionResult',
    'NodeValidationError',
    'SessionStateError',
    'RetryLimitExceededError',
]
