"""
NODE STATUS MACHINE
Enforces legal dynamic-status transitions for onboarding nodes.

COMPLETED has no outgoing transitions. The only way back out of it is a
discriminator change, which re-derives the node from scratch instead of
transitioning it.
"""
import logging
from typing import Dict, List, Optional, Set

from onboarding_graph.core.ontology import NodeStatus, NodeType

logger = logging.getLogger("Onboarding.StateMachine")


# Valid transitions: from_status -> {to_statuses}
VALID_TRANSITIONS: Dict[NodeStatus, Set[NodeStatus]] = {
    NodeStatus.MANDATORY: {
        NodeStatus.COMPLETED,    # Data submitted
        NodeStatus.DISABLED,     # Operator switched the step off
    },
    NodeStatus.OPTIONAL: {
        NodeStatus.COMPLETED,
        NodeStatus.DISABLED,
    },
    NodeStatus.DEPENDENT: {
        NodeStatus.MANDATORY,    # A dependency clause became true
        NodeStatus.COMPLETED,    # Filled in before its dependency fired
        NodeStatus.DISABLED,
    },
    NodeStatus.DISABLED: {
        NodeStatus.MANDATORY,    # Re-enabled back to its initial status
        NodeStatus.OPTIONAL,
        NodeStatus.DEPENDENT,
    },
    NodeStatus.COMPLETED: set(),
}

# Node types that can never be switched off
UNDISABLEABLE_TYPES = {NodeType.START}


class StateTransitionError(Exception):
    """Raised when an illegal status change is attempted."""

    def __init__(self, node_id: str, from_status: NodeStatus, to_status: NodeStatus, detail: str = ""):
        self.node_id = node_id
        self.from_status = from_status
        self.to_status = to_status
        message = f"Invalid transition for node {node_id}: {from_status.value} -> {to_status.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class NodeStateMachine:
    """Validates and records status transitions for one dynamic graph."""

    def __init__(self):
        self._transition_history: Dict[str, List[dict]] = {}

    def validate_transition(
        self,
        node_id: str,
        from_status: NodeStatus,
        to_status: NodeStatus,
        node_type: Optional[NodeType] = None,
    ) -> bool:
        """
        Raises:
            StateTransitionError if the move is not allowed
        """
        from_status = NodeStatus(from_status)
        to_status = NodeStatus(to_status)
        if from_status == to_status:
            return True

        if to_status not in VALID_TRANSITIONS.get(from_status, set()):
            valid = sorted(s.value for s in VALID_TRANSITIONS.get(from_status, set()))
            raise StateTransitionError(node_id, from_status, to_status, f"valid targets: {valid}")

        if to_status == NodeStatus.DISABLED and node_type in UNDISABLEABLE_TYPES:
            raise StateTransitionError(node_id, from_status, to_status, f"{node_type.value} nodes cannot be disabled")

        return True

    def transition(
        self,
        node_id: str,
        from_status: NodeStatus,
        to_status: NodeStatus,
        node_type: Optional[NodeType] = None,
        reason: str = "",
    ) -> bool:
        """Validate, then record the transition for audit."""
        self.validate_transition(node_id, from_status, to_status, node_type)
        if from_status == to_status:
            return False

        self._transition_history.setdefault(node_id, []).append({
            "from": NodeStatus(from_status).value,
            "to": NodeStatus(to_status).value,
            "reason": reason,
        })
        logger.debug(f"Status transition: {node_id} {from_status} -> {to_status} ({reason})")
        return True

    def get_history(self, node_id: str) -> List[dict]:
        return list(self._transition_history.get(node_id, []))
