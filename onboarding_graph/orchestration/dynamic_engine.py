"""
DYNAMIC STATUS ENGINE
Wraps a static GraphSpec with per-node requiredness that follows the answers.

Status lifecycle per node:
    dependent --(any dependency clause true)--> mandatory
    mandatory / optional / dependent --(data submitted)--> completed
    completed is sticky; only re-derivation for a new discriminator resets it

Every externally triggered event (completion, field write, refresh) runs
one flat sweep over the dependent nodes under the write lock. Resulting
status events are published after the lock is released and drained by the
event bus, so listeners may read the graph but never re-enter a sweep.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from onboarding_graph.core.conditions import CompletionCheck, clause_satisfied
from onboarding_graph.core.ontology import GraphSpec, NodeSpec, NodeStatus, NodeType, Operator
from onboarding_graph.core.requirements import RequirementCatalog
from onboarding_graph.core.session import CompletionSummary, DependencyClause, utcnow
from onboarding_graph.core.state_machine import NodeStateMachine
from onboarding_graph.infrastructure.event_bus import ALL_EVENTS, EventBus, EventType, Listener, StatusEvent
from onboarding_graph.infrastructure.locks import ReadWriteLock

logger = logging.getLogger("Onboarding.DynamicEngine")


@dataclass
class DynamicNode:
    spec: NodeSpec
    status: NodeStatus
    initial_status: NodeStatus
    dependencies: List[DependencyClause] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def type(self) -> NodeType:
        return self.spec.type

    def clone(self, updated_at: Optional[datetime] = None) -> "DynamicNode":
        return DynamicNode(
            spec=self.spec,
            status=self.status,
            initial_status=self.initial_status,
            dependencies=[d.model_copy() for d in self.dependencies],
            updated_at=updated_at or self.updated_at,
        )


# =============================================================================
# DERIVATION
# =============================================================================

def extract_dependencies(node: NodeSpec, discriminator: str) -> List[DependencyClause]:
    """
    Fold everything that can make a node required into one clause list.

    Sources, in order: conditional validation rules, required fields that
    carry custom rules, explicitly authored node dependencies.
    """
    clauses: List[DependencyClause] = []

    for rule in node.validation.conditional_rules:
        clauses.append(DependencyClause(
            field=rule.field,
            operator=rule.operator,
            value=rule.value,
            condition=rule.rule,
            discriminator=discriminator,
        ))

    required = set(node.validation.required_fields) | {f.id for f in node.fields if f.required}
    for spec in node.fields:
        if spec.id in required and spec.constraints.custom_rules:
            clauses.append(DependencyClause(
                field=spec.id,
                operator=Operator.CUSTOM,
                value=",".join(spec.constraints.custom_rules),
                condition=f"{spec.id} must satisfy {', '.join(spec.constraints.custom_rules)}",
                discriminator=discriminator,
            ))

    for dep in node.dependencies:
        clauses.append(DependencyClause(
            field=dep.field,
            operator=dep.operator,
            value=dep.value,
            condition=dep.condition,
            discriminator=discriminator,
        ))

    return clauses


def determine_initial_status(node: NodeSpec, required_nodes: Iterable[str], has_dependencies: bool) -> NodeStatus:
    if node.type == NodeType.START:
        return NodeStatus.MANDATORY
    if node.type == NodeType.END:
        return NodeStatus.OPTIONAL
    required = set(required_nodes)
    if node.id in required or (node.name and node.name in required):
        return NodeStatus.MANDATORY
    if has_dependencies:
        return NodeStatus.DEPENDENT
    return NodeStatus.OPTIONAL


def describe_clause(clause: DependencyClause) -> str:
    return clause.condition or f"{clause.field} {clause.operator.value} {clause.value!r}"


# =============================================================================
# DYNAMIC GRAPH
# =============================================================================

class DynamicGraph:
    """
    Per-session, per-discriminator status view over a graph.

    Reads take the read lock; every mutation takes the write lock only for
    the in-memory change, then publishes and drains events.
    """

    def __init__(
        self,
        graph: GraphSpec,
        discriminator: str,
        nodes: Dict[str, DynamicNode],
        history_limit: int = 500,
    ):
        self.graph = graph
        self.discriminator = discriminator
        self.nodes = nodes
        self.event_bus = EventBus(history_limit=history_limit)
        self.state_machine = NodeStateMachine()
        self.completion_probe: Optional[CompletionCheck] = None
        self.evaluated_at: datetime = utcnow()
        self._answers: Dict[str, Any] = {}
        self._lock = ReadWriteLock()

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, callback: Listener, event_type: str = ALL_EVENTS):
        self.event_bus.subscribe(event_type, callback)

    def remove_listener(self, callback: Listener, event_type: str = ALL_EVENTS):
        self.event_bus.unsubscribe(event_type, callback)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_status(self, node_id: str) -> NodeStatus:
        with self._lock.read():
            return self._require(node_id).status

    def get_node(self, node_id: str) -> DynamicNode:
        """Snapshot copy of one dynamic node."""
        with self._lock.read():
            return self._require(node_id).clone()

    def statuses(self) -> Dict[str, NodeStatus]:
        with self._lock.read():
            return {node_id: dyn.status for node_id, dyn in self.nodes.items()}

    def snapshot(self) -> List[DynamicNode]:
        with self._lock.read():
            return [dyn.clone() for dyn in self.nodes.values()]

    @property
    def answers(self) -> Dict[str, Any]:
        with self._lock.read():
            return dict(self._answers)

    def is_dependency_satisfied(self, node_id: str, answers: Optional[Mapping[str, Any]] = None) -> bool:
        with self._lock.read():
            dyn = self._require(node_id)
            source = self._answers if answers is None else answers
            return self._first_satisfied(dyn, source) is not None

    def completion_summary(self) -> CompletionSummary:
        with self._lock.read():
            summary = CompletionSummary(total_nodes=len(self.nodes))
            for dyn in self.nodes.values():
                if dyn.status == NodeStatus.MANDATORY:
                    summary.mandatory_nodes += 1
                    summary.required_total += 1
                elif dyn.status == NodeStatus.OPTIONAL:
                    summary.optional_nodes += 1
                elif dyn.status == NodeStatus.DEPENDENT:
                    summary.dependent_nodes += 1
                elif dyn.status == NodeStatus.DISABLED:
                    summary.disabled_nodes += 1
                elif dyn.status == NodeStatus.COMPLETED:
                    summary.completed_nodes += 1
                    if self._counts_as_required(dyn):
                        summary.required_total += 1
                        summary.required_completed += 1
            answers = dict(self._answers)

        if self.completion_probe is not None:
            summary.rule_group_satisfied = bool(self.completion_probe(answers))
        mandatory_done = summary.required_total > 0 and summary.required_completed == summary.required_total
        summary.can_complete = mandatory_done or summary.rule_group_satisfied
        return summary

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def mark_completed(self, node_id: str, answers: Optional[Mapping[str, Any]] = None) -> List[StatusEvent]:
        """Mark a node completed and re-evaluate every dependent node."""
        def mutate(events: List[StatusEvent]):
            self._absorb(answers)
            self._complete(node_id, events)
            self._sweep(events)
        return self._run(mutate)

    def record_data_change(
        self,
        node_id: str,
        delta: Mapping[str, Any],
        answers: Optional[Mapping[str, Any]] = None,
    ) -> List[StatusEvent]:
        """Register field writes and re-evaluate every dependent node."""
        def mutate(events: List[StatusEvent]):
            self._absorb(answers, delta)
            self._data_events(node_id, delta, events)
            self._sweep(events)
        return self._run(mutate)

    def apply_submission(
        self,
        node_id: str,
        delta: Mapping[str, Any],
        answers: Optional[Mapping[str, Any]] = None,
    ) -> List[StatusEvent]:
        """A submitted screen: field writes plus completion, one sweep."""
        def mutate(events: List[StatusEvent]):
            self._absorb(answers, delta)
            self._data_events(node_id, delta, events)
            self._complete(node_id, events)
            self._sweep(events)
        return self._run(mutate)

    def refresh(self, answers: Optional[Mapping[str, Any]] = None) -> List[StatusEvent]:
        """Sweep only. Used after restoring persisted state."""
        def mutate(events: List[StatusEvent]):
            self._absorb(answers)
            self._sweep(events)
        return self._run(mutate)

    def disable_node(self, node_id: str, reason: str = "") -> List[StatusEvent]:
        def mutate(events: List[StatusEvent]):
            dyn = self._require(node_id)
            self._set_status(dyn, NodeStatus.DISABLED, reason or "disabled", events)
        return self._run(mutate)

    def enable_node(self, node_id: str) -> List[StatusEvent]:
        """Return a disabled node to its initial status, then sweep."""
        def mutate(events: List[StatusEvent]):
            dyn = self._require(node_id)
            if dyn.status == NodeStatus.DISABLED:
                self._set_status(dyn, dyn.initial_status, "enabled", events)
            self._sweep(events)
        return self._run(mutate)

    def restore_node(
        self,
        node_id: str,
        status: NodeStatus,
        initial_status: NodeStatus,
        dependencies: List[DependencyClause],
        updated_at: datetime,
    ):
        """Raw overwrite from persisted state. No transition check, no events."""
        with self._lock.write():
            dyn = self._require(node_id)
            dyn.status = NodeStatus(status)
            dyn.initial_status = NodeStatus(initial_status)
            dyn.dependencies = [d.model_copy() for d in dependencies]
            dyn.updated_at = updated_at

    def restore_evaluated_at(self, evaluated_at: datetime):
        with self._lock.write():
            self.evaluated_at = evaluated_at

    # -------------------------------------------------------------------------
    # Internals (write lock held)
    # -------------------------------------------------------------------------

    def _require(self, node_id: str) -> DynamicNode:
        if node_id not in self.nodes:
            raise KeyError(f"Node not in dynamic graph: {node_id}")
        return self.nodes[node_id]

    def _run(self, mutate: Callable[[List[StatusEvent]], None]) -> List[StatusEvent]:
        events: List[StatusEvent] = []
        with self._lock.write():
            mutate(events)
            if events:
                self.evaluated_at = utcnow()
        for event in events:
            self.event_bus.publish(event)
        self.event_bus.drain()
        return events

    def _absorb(self, answers: Optional[Mapping[str, Any]], delta: Optional[Mapping[str, Any]] = None):
        if answers is not None:
            self._answers = dict(answers)
        if delta:
            self._answers.update(delta)

    def _data_events(self, node_id: str, delta: Mapping[str, Any], events: List[StatusEvent]):
        for field_id in delta:
            events.append(StatusEvent(type=EventType.DATA_CHANGED, node_id=node_id, field_id=field_id))

    def _complete(self, node_id: str, events: List[StatusEvent]):
        dyn = self._require(node_id)
        if dyn.status == NodeStatus.COMPLETED:
            return
        old = dyn.status
        if self._set_status(dyn, NodeStatus.COMPLETED, "data submitted", events):
            events.append(StatusEvent(
                type=EventType.NODE_COMPLETED,
                node_id=node_id,
                old_status=old.value,
                new_status=NodeStatus.COMPLETED.value,
            ))

    def _set_status(self, dyn: DynamicNode, new_status: NodeStatus, reason: str, events: List[StatusEvent]) -> bool:
        old = dyn.status
        if not self.state_machine.transition(dyn.id, old, new_status, dyn.type, reason):
            return False
        dyn.status = new_status
        dyn.updated_at = utcnow()
        events.append(StatusEvent(
            type=EventType.STATUS_CHANGED,
            node_id=dyn.id,
            old_status=old.value,
            new_status=new_status.value,
            reason=reason,
        ))
        logger.debug(f"{dyn.id}: {old.value} -> {new_status.value} ({reason})")
        return True

    def _sweep(self, events: List[StatusEvent]):
        """One flat pass. Promotion reads answers only, so a single pass is enough."""
        for dyn in self.nodes.values():
            if dyn.status != NodeStatus.DEPENDENT:
                continue
            clause = self._first_satisfied(dyn, self._answers)
            if clause is not None:
                self._set_status(dyn, NodeStatus.MANDATORY, describe_clause(clause), events)

    @staticmethod
    def _first_satisfied(dyn: DynamicNode, answers: Mapping[str, Any]) -> Optional[DependencyClause]:
        # Clauses are OR-ed: the first true clause promotes the node.
        for clause in dyn.dependencies:
            if clause_satisfied(answers, clause.field, clause.operator, clause.value):
                return clause
        return None

    def _counts_as_required(self, dyn: DynamicNode) -> bool:
        if dyn.initial_status == NodeStatus.MANDATORY:
            return True
        return self._first_satisfied(dyn, self._answers) is not None


# =============================================================================
# ENGINE (derivation + template cache)
# =============================================================================

class DynamicEngine:
    """
    Derives DynamicGraph instances.

    Derived node templates are cached per (graph id, graph version,
    discriminator). Every derive() hands out fresh copies, so sessions with
    different discriminators, or different progress, never share state.
    """

    def __init__(self, catalog: Optional[RequirementCatalog] = None, history_limit: int = 500):
        self.catalog = catalog or RequirementCatalog()
        self.history_limit = history_limit
        self._templates: Dict[Tuple[str, str, str], Dict[str, DynamicNode]] = {}
        self._lock = threading.Lock()

    def derive(self, graph: GraphSpec, discriminator: str) -> DynamicGraph:
        key = (graph.id, graph.version, discriminator)
        with self._lock:
            template = self._templates.get(key)
            if template is None:
                template = self._build_template(graph, discriminator)
                self._templates[key] = template
        now = utcnow()
        nodes = {node_id: dyn.clone(updated_at=now) for node_id, dyn in template.items()}
        return DynamicGraph(graph, discriminator, nodes, history_limit=self.history_limit)

    def invalidate(self, graph_id: Optional[str] = None):
        with self._lock:
            if graph_id is None:
                self._templates.clear()
            else:
                for key in [k for k in self._templates if k[0] == graph_id]:
                    del self._templates[key]

    def cached_views(self) -> List[Tuple[str, str, str]]:
        with self._lock:
            return list(self._templates)

    def _build_template(self, graph: GraphSpec, discriminator: str) -> Dict[str, DynamicNode]:
        required = self.catalog.required_nodes_for(discriminator)
        template: Dict[str, DynamicNode] = {}
        for node_id, spec in graph.nodes.items():
            clauses = extract_dependencies(spec, discriminator)
            status = determine_initial_status(spec, required, bool(clauses))
            template[node_id] = DynamicNode(
                spec=spec,
                status=status,
                initial_status=status,
                dependencies=clauses,
            )
        logger.info(
            f"Derived dynamic view for graph {graph.id} ({discriminator}): "
            f"{sum(1 for d in template.values() if d.status == NodeStatus.MANDATORY)} mandatory, "
            f"{sum(1 for d in template.values() if d.status == NodeStatus.DEPENDENT)} dependent"
        )
        return template
