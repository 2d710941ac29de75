"""
SESSION RECORDS
Durable per-user state: answers, step history, and the mirror of the
dynamic status engine. These shapes are what storage persists; keep them
stable across releases.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from onboarding_graph.core.ontology import NodeStatus, Operator, SessionStatus, StepDirection


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStep(BaseModel):
    node_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    direction: StepDirection = StepDirection.FORWARD


class DependencyClause(BaseModel):
    """One condition that, once true, promotes a dependent node to mandatory."""
    field: str
    operator: Operator
    value: Any = None
    condition: str = ""
    discriminator: str = ""


class NodeStatusInfo(BaseModel):
    status: NodeStatus
    initial_status: NodeStatus
    dependencies: List[DependencyClause] = Field(default_factory=list)
    updated_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CompletionSummary(BaseModel):
    total_nodes: int = 0
    mandatory_nodes: int = 0
    optional_nodes: int = 0
    dependent_nodes: int = 0
    completed_nodes: int = 0
    disabled_nodes: int = 0
    required_completed: int = 0
    required_total: int = 0
    rule_group_satisfied: bool = False
    can_complete: bool = False


class DynamicSessionState(BaseModel):
    discriminator: str
    node_statuses: Dict[str, NodeStatusInfo] = Field(default_factory=dict)
    completion_summary: CompletionSummary = Field(default_factory=CompletionSummary)
    evaluated_at: datetime


class Session(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    graph_id: str
    current_node_id: str
    answers: Dict[str, Any] = Field(default_factory=dict)
    history: List[SessionStep] = Field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    retry_count: int = 0
    dynamic_state: Optional[DynamicSessionState] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.EXPIRED)

    def record_step(
        self,
        node_id: str,
        data: Optional[Dict[str, Any]] = None,
        direction: StepDirection = StepDirection.FORWARD,
    ) -> SessionStep:
        step = SessionStep(node_id=node_id, data=dict(data or {}), direction=direction)
        self.history.append(step)
        self.updated_at = step.timestamp
        return step
