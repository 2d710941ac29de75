"""
ONBOARDING ONTOLOGY - The static shape of an onboarding flow

This module defines the declarative graph that a session walks through.
Nodes are screens, edges are guarded transitions, fields carry their own
constraint blocks. Nothing here evaluates anything; the validator, the
condition evaluator and the dynamic engine CONSULT these models.

Key Principles:
1. A GraphSpec is authored once and is read-only at session time
2. Every edge endpoint must be a node of the same graph
3. Guards and dependency clauses share one small operator set
"""
from enum import Enum
from typing import Any, Dict, List, Optional

import networkx as nx
from pydantic import BaseModel, Field, PrivateAttr, model_validator


# =============================================================================
# ENUMS
# =============================================================================

class NodeType(str, Enum):
    """Kinds of nodes in an onboarding graph."""
    START = "start"          # Entry screen, always mandatory
    INPUT = "input"          # Plain data-collection screen
    DECISION = "decision"    # Screen whose answers steer branching
    END = "end"              # Terminal acknowledgment screen


class FieldType(str, Enum):
    """Semantic field types."""
    TEXT = "text"
    EMAIL = "email"
    NUMBER = "number"
    SELECT = "select"
    FILE = "file"
    CHECKBOX = "checkbox"
    DATE = "date"


class NodeStatus(str, Enum):
    """Dynamic requiredness of a node within one session."""
    MANDATORY = "mandatory"
    OPTIONAL = "optional"
    DEPENDENT = "dependent"      # Waiting on a dependency clause
    COMPLETED = "completed"      # Sticky until the discriminator changes
    DISABLED = "disabled"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class StepDirection(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


class GuardType(str, Enum):
    """Edge guard kinds."""
    ALWAYS = "always"
    FIELD_VALUE = "field_value"
    COMPLETION_CHECK = "completion_check"


class Operator(str, Enum):
    """Comparison operators for guards, conditional rules and dependencies."""
    EQ = "eq"
    NE = "ne"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    CUSTOM = "custom"            # Dependency on a custom-rule field: satisfied once present

    @classmethod
    def _missing_(cls, value):
        aliases = {
            "equals": cls.EQ,
            "==": cls.EQ,
            "not_equals": cls.NE,
            "!=": cls.NE,
        }
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class CrossNodeConditionType(str, Enum):
    FIELD_MATCH = "field_match"
    FIELD_CONTAINS = "field_contains"
    CUSTOM_LOGIC = "custom_logic"


class MatchOperator(str, Enum):
    """Operators for cross-node comparisons (case-insensitive, trimmed)."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"

    @classmethod
    def _missing_(cls, value):
        aliases = {"eq": cls.EQUALS, "ne": cls.NOT_EQUALS, "regex": cls.MATCHES}
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class GraphValidationError(Exception):
    """Raised when an authored graph cannot be accepted."""

    def __init__(self, graph_id: str, errors: List[str]):
        self.graph_id = graph_id
        self.errors = errors
        super().__init__(f"Invalid graph '{graph_id}': {'; '.join(errors)}")


# =============================================================================
# FIELDS & NODES
# =============================================================================

class FieldConstraints(BaseModel):
    """Per-field constraint block. Unset bounds are not checked."""
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    pattern: Optional[str] = None
    custom_rules: List[str] = Field(default_factory=list)


class FieldSpec(BaseModel):
    id: str
    label: str = ""
    type: FieldType = FieldType.TEXT
    required: bool = False
    options: List[str] = Field(default_factory=list)
    constraints: FieldConstraints = Field(default_factory=FieldConstraints)


class ConditionalRule(BaseModel):
    """
    Requires `required_fields` only while `field <operator> value` holds.

    `rule` is the human-readable reason surfaced in
    "field X required because <rule>" messages.
    """
    field: str
    operator: Operator = Operator.EQ
    value: Any = None
    rule: str = ""
    required_fields: List[str] = Field(default_factory=list)


class ValidationRules(BaseModel):
    required_fields: List[str] = Field(default_factory=list)
    conditional_rules: List[ConditionalRule] = Field(default_factory=list)
    custom_rules: List[str] = Field(default_factory=list)


class NodeDependency(BaseModel):
    """An explicitly authored dependency clause on a node."""
    field: str
    operator: Operator = Operator.NE
    value: Any = ""
    condition: str = ""


class NodeSpec(BaseModel):
    id: str
    name: str = ""
    type: NodeType = NodeType.INPUT
    description: str = ""
    fields: List[FieldSpec] = Field(default_factory=list)
    validation: ValidationRules = Field(default_factory=ValidationRules)
    dependencies: List[NodeDependency] = Field(default_factory=list)

    def get_field(self, field_id: str) -> Optional[FieldSpec]:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None

    def field_ids(self) -> List[str]:
        return [f.id for f in self.fields]


# =============================================================================
# EDGES
# =============================================================================

class EdgeGuard(BaseModel):
    type: GuardType = GuardType.ALWAYS
    field: Optional[str] = None
    operator: Operator = Operator.EQ
    value: Any = None


class EdgeSpec(BaseModel):
    id: str
    source: str
    target: str
    guard: EdgeGuard = Field(default_factory=EdgeGuard)
    priority: int = 0


# =============================================================================
# CROSS-NODE RULES
# =============================================================================

class FieldRef(BaseModel):
    """A (node, field) pair exposed to a cross-node rule under `alias`."""
    node_id: str
    field_id: str
    alias: str


class CrossNodeCondition(BaseModel):
    type: CrossNodeConditionType
    operator: MatchOperator = MatchOperator.EQUALS
    fields: List[str] = Field(default_factory=list)    # aliases
    value: Optional[str] = None
    logic: Optional[str] = None                        # custom-logic name


class CrossNodeRule(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    fields: List[FieldRef] = Field(default_factory=list)
    condition: CrossNodeCondition
    message: str = ""
    severity: Severity = Severity.ERROR
    enabled: bool = True
    discriminator: str = ""          # empty = applies to every discriminator


# =============================================================================
# GRAPH
# =============================================================================

class GraphSpec(BaseModel):
    """
    A complete onboarding flow.

    Nodes keep their authoring order; that order is the final tie-breaker
    wherever the runtime has to choose between equally ranked nodes.
    """
    id: str
    name: str = ""
    version: str = "1.0"
    start_node_id: str
    nodes: Dict[str, NodeSpec]
    edges: List[EdgeSpec] = Field(default_factory=list)
    cross_node_rules: List[CrossNodeRule] = Field(default_factory=list)

    _nx: Optional[nx.MultiDiGraph] = PrivateAttr(default=None)

    @model_validator(mode="after")
    def _check_references(self) -> "GraphSpec":
        for node_id, node in self.nodes.items():
            if node.id != node_id:
                raise ValueError(
                    f"Node keyed as '{node_id}' declares id '{node.id}'"
                )
        if self.start_node_id not in self.nodes:
            raise ValueError(f"Start node '{self.start_node_id}' not in graph '{self.id}'")
        for edge in self.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in self.nodes:
                    raise ValueError(
                        f"Edge '{edge.id}' references unknown node '{endpoint}'"
                    )
        return self

    def to_networkx(self) -> nx.MultiDiGraph:
        """Directed multigraph view; edge data carries the EdgeSpec."""
        if self._nx is None:
            g = nx.MultiDiGraph(graph_id=self.id)
            for node_id, node in self.nodes.items():
                g.add_node(node_id, type=node.type.value, name=node.name)
            for edge in self.edges:
                g.add_edge(edge.source, edge.target, key=edge.id, spec=edge)
            self._nx = g
        return self._nx

    def outgoing(self, node_id: str) -> List[EdgeSpec]:
        edges = [e for e in self.edges if e.source == node_id]
        return sorted(edges, key=lambda e: e.priority)

    def incoming(self, node_id: str) -> List[EdgeSpec]:
        return [e for e in self.edges if e.target == node_id]

    def end_node_ids(self) -> List[str]:
        return [n.id for n in self.nodes.values() if n.type == NodeType.END]

    def authoring_index(self) -> Dict[str, int]:
        return {node_id: i for i, node_id in enumerate(self.nodes)}

    def distances_from_start(self) -> Dict[str, int]:
        """Breadth-first hop count from the start node (unreachable nodes omitted)."""
        return dict(nx.single_source_shortest_path_length(self.to_networkx(), self.start_node_id))
