"""
ONBOARDING SERVICE
The operations a transport layer calls. One submission runs synchronously:

    validate node -> merge answers -> status sweep -> rule groups
    -> cross-node checks -> pick next node -> persist

Sessions are serialized per id; different sessions run concurrently.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from onboarding_graph.config import OnboardingConfig, load_config
from onboarding_graph.core.conditions import EdgeConditionEvaluator, is_blank
from onboarding_graph.core.ontology import GraphSpec, GraphValidationError, SessionStatus, StepDirection
from onboarding_graph.core.requirements import RequirementCatalog
from onboarding_graph.core.session import Session, SessionStep, utcnow
from onboarding_graph.core.validators import NodeValidator, ValidationResult
from onboarding_graph.infrastructure.event_bus import ALL_EVENTS, EventType, Listener, StatusEvent
from onboarding_graph.infrastructure.storage import JSONFileStorage, MemoryStorage, Storage
from onboarding_graph.logging_setup import SessionContext, setup_logging
from onboarding_graph.orchestration.cross_node import CrossNodeResult, CrossNodeValidator
from onboarding_graph.orchestration.dynamic_engine import DynamicEngine, DynamicGraph
from onboarding_graph.orchestration.navigator import UNAVAILABLE, Navigator
from onboarding_graph.orchestration.persistence import PersistenceBridge
from onboarding_graph.orchestration.rule_groups import RuleGroupEvaluator, RuleGroupResult

logger = logging.getLogger("Onboarding.Service")


# =============================================================================
# ERRORS
# =============================================================================

class NodeValidationError(Exception):
    """Submitted data failed the node validator. The session was not changed."""

    def __init__(self, node_id: str, result: ValidationResult):
        self.node_id = node_id
        self.result = result
        codes = ", ".join(f"{e.field}:{e.code}" for e in result.errors)
        super().__init__(f"Validation failed for node {node_id}: {codes}")


class SessionStateError(Exception):
    """The session's status does not allow the requested operation."""

    def __init__(self, session_id: str, status: SessionStatus, action: str = "modify"):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Cannot {action} session {session_id} in status {status.value}")


class RetryLimitExceededError(Exception):
    def __init__(self, session_id: str, retries: int, max_retries: int):
        self.session_id = session_id
        self.retries = retries
        self.max_retries = max_retries
        super().__init__(f"Session {session_id} exceeded retry limit ({retries}/{max_retries})")


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class SubmissionResult:
    session_id: str
    completed_node_id: str
    next_node_id: Optional[str]
    available_next_node_ids: List[str]
    can_go_back: bool
    session_status: SessionStatus
    warnings: List[str] = field(default_factory=list)
    rule_groups: Optional[RuleGroupResult] = None
    cross_node_results: List[CrossNodeResult] = field(default_factory=list)
    events: List[StatusEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "completed_node_id": self.completed_node_id,
            "next_node_id": self.next_node_id,
            "available_next_node_ids": list(self.available_next_node_ids),
            "can_go_back": self.can_go_back,
            "session_status": self.session_status.value,
            "warnings": list(self.warnings),
            "rule_groups": self.rule_groups.to_dict() if self.rule_groups else None,
            "cross_node_results": [r.to_dict() for r in self.cross_node_results],
        }


# =============================================================================
# SERVICE
# =============================================================================

class OnboardingService:
    def __init__(
        self,
        storage: Optional[Storage] = None,
        config: Optional[OnboardingConfig] = None,
        catalog: Optional[RequirementCatalog] = None,
    ):
        self.config = config or OnboardingConfig()
        if storage is None:
            if self.config.storage_path:
                storage = JSONFileStorage(self.config.storage_path)
            else:
                storage = MemoryStorage()
        self.storage = storage
        if catalog is None:
            if self.config.requirements_path:
                catalog = RequirementCatalog.from_yaml(self.config.requirements_path)
            else:
                catalog = RequirementCatalog()
        self.catalog = catalog
        self.engine = DynamicEngine(catalog, history_limit=self.config.event_history_limit)
        self.rule_groups = RuleGroupEvaluator(catalog)
        self.validator = NodeValidator()
        self.cross_node = CrossNodeValidator()
        self.bridge = PersistenceBridge(self.config.discriminator_field)
        self._listeners: List[Tuple[Listener, str]] = []
        # Entries live only while some caller holds the lock
        self._session_locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, path: Optional[str] = None, log_dir: Optional[str] = None) -> "OnboardingService":
        """
        Build a service from a YAML config file and the environment.

        Logging is configured at the config's log_level. Storage is
        file-backed when storage_path is set, in-memory otherwise.
        """
        config = load_config(path)
        setup_logging(config.log_level, log_dir=log_dir)
        return cls(config=config)

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, callback: Listener, event_type: str = ALL_EVENTS):
        """Receive status events from every dynamic view this service builds."""
        self._listeners.append((callback, event_type))

    def remove_listener(self, callback: Listener, event_type: str = ALL_EVENTS):
        if (callback, event_type) in self._listeners:
            self._listeners.remove((callback, event_type))

    # -------------------------------------------------------------------------
    # Graphs
    # -------------------------------------------------------------------------

    def create_graph(self, graph: Union[GraphSpec, Mapping[str, Any]]) -> GraphSpec:
        if not isinstance(graph, GraphSpec):
            try:
                graph = GraphSpec.model_validate(graph)
            except ValidationError as e:
                graph_id = str(graph.get("id", "?"))
                raise GraphValidationError(graph_id, [err["msg"] for err in e.errors()]) from e
        self.storage.save_graph(graph)
        self.engine.invalidate(graph.id)
        logger.info(f"Stored graph {graph.id} v{graph.version}: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
        return graph

    def get_graph(self, graph_id: str) -> GraphSpec:
        return self.storage.get_graph(graph_id)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def start_session(self, graph_id: str, user_id: str, discriminator: Optional[str] = None) -> Session:
        """Create a session on the graph's start node with a freshly derived status view."""
        graph = self.storage.get_graph(graph_id)
        session = Session(user_id=user_id, graph_id=graph_id, current_node_id=graph.start_node_id)
        SessionContext.set(session.id, graph_id)
        try:
            dyn = self._derive(graph, discriminator or self.config.default_discriminator)
            dyn.refresh(session.answers)
            self.bridge.save(session, dyn)
            self.storage.save_session(session)
            logger.info(f"Started session {session.id} for user {user_id} ({dyn.discriminator})")
        finally:
            SessionContext.clear()
        return session

    def get_session(self, session_id: str) -> Session:
        return self.storage.get_session(session_id)

    def submit_node_data(self, session_id: str, values: Mapping[str, Any]) -> SubmissionResult:
        """
        Submit answers for the session's current node.

        Raises:
            NodeValidationError: the merged answers fail the node validator
            SessionStateError: the session is not active
        """
        with self._session_scope(session_id) as session:
            self._ensure_active(session, "submit to")
            graph = self.storage.get_graph(session.graph_id)
            node_id = session.current_node_id
            node = graph.nodes[node_id]

            merged = {**session.answers, **values}
            result = self.validator.validate(node, merged)
            if not result.valid:
                logger.info(f"Node {node_id} rejected: {result.error_codes()}")
                raise NodeValidationError(node_id, result)

            discriminator = self._discriminator(session)
            submitted = values.get(self.config.discriminator_field)
            if self.config.discriminator_field in values and not is_blank(submitted) and str(submitted) != discriminator:
                session.answers.update(values)
                dyn = self._rederive(session, graph, str(submitted))
            else:
                session.answers.update(values)
                dyn = self._load(session, graph)

            session.record_step(node_id, values)
            events = dyn.apply_submission(node_id, values, session.answers)

            rule_result = self.rule_groups.evaluate(dyn.discriminator, session.answers)
            cross_results = self.cross_node.validate(graph.cross_node_rules, session.answers, dyn.discriminator)
            blocking = self.cross_node.blocking_failures(cross_results)
            navigator = self._navigator(dyn)

            warnings = [w.message for w in result.warnings]
            warnings += [r.message for r in cross_results if not r.passed]

            if rule_result.complete and not blocking:
                session.status = SessionStatus.COMPLETED
                session.completed_at = utcnow()
                end_nodes = graph.end_node_ids()
                next_node_id = end_nodes[0] if end_nodes else None
                logger.info(f"Session {session.id} completed via rule group {rule_result.satisfied_group}")
            else:
                next_node_id = navigator.next_node(graph, dyn, node_id, session.answers)
                if rule_result.complete:
                    logger.info(f"Session {session.id}: rule group satisfied but {len(blocking)} cross-node errors block completion")
            if next_node_id:
                session.current_node_id = next_node_id

            statuses = dyn.statuses()
            available = [
                t for t in navigator.traversable_targets(graph, node_id, session.answers)
                if statuses[t] not in UNAVAILABLE
            ]

            self.bridge.save(session, dyn)
            self.storage.save_session(session)

            return SubmissionResult(
                session_id=session.id,
                completed_node_id=node_id,
                next_node_id=next_node_id,
                available_next_node_ids=available,
                can_go_back=navigator.can_go_back(graph, session),
                session_status=session.status,
                warnings=warnings,
                rule_groups=rule_result,
                cross_node_results=cross_results,
                events=events,
            )

    def get_node_status(self, session_id: str) -> Dict[str, Any]:
        """Per-node status map plus the completion summary."""
        with self._session_scope(session_id) as session:
            graph = self.storage.get_graph(session.graph_id)
            dyn = self._load(session, graph)
            nodes = {}
            for node in dyn.snapshot():
                nodes[node.id] = {
                    "name": node.name,
                    "type": node.type.value,
                    "status": node.status.value,
                    "initial_status": node.initial_status.value,
                    "dependencies": [d.model_dump(mode="json") for d in node.dependencies],
                    "updated_at": node.updated_at.isoformat(),
                }
            return {
                "session_id": session.id,
                "discriminator": dyn.discriminator,
                "current_node_id": session.current_node_id,
                "session_status": session.status.value,
                "nodes": nodes,
                "completion_summary": dyn.completion_summary().model_dump(),
            }

    def update_discriminator(self, session_id: str, value: Any) -> Dict[str, Any]:
        """Re-derive the status view for a new discriminator and persist it."""
        with self._session_scope(session_id) as session:
            self._ensure_active(session, "change discriminator of")
            value = str(value)
            graph = self.storage.get_graph(session.graph_id)
            session.answers[self.config.discriminator_field] = value
            session.updated_at = utcnow()
            dyn = self._rederive(session, graph, value)
            self.bridge.save(session, dyn)
            self.storage.save_session(session)
            return {
                "session_id": session.id,
                "discriminator": dyn.discriminator,
                "statuses": {k: v.value for k, v in dyn.statuses().items()},
                "completion_summary": dyn.completion_summary().model_dump(),
            }

    def get_state_summary(self, session_id: str) -> Dict[str, Any]:
        with self._session_scope(session_id) as session:
            graph = self.storage.get_graph(session.graph_id)
            dyn = self._load(session, graph)
            return self.bridge.summarize(session, dyn)

    def go_back(self, session_id: str) -> Optional[str]:
        """Move to the previously visited node. Returns its id, or None if there is nowhere to go."""
        with self._session_scope(session_id) as session:
            self._ensure_active(session, "navigate")
            graph = self.storage.get_graph(session.graph_id)
            previous = Navigator().previous_node(graph, session)
            if previous is None:
                return None
            session.record_step(previous, direction=StepDirection.BACKWARD)
            session.current_node_id = previous
            self.storage.save_session(session)
            logger.info(f"Session {session.id} went back to {previous}")
            return previous

    def get_session_history(self, session_id: str) -> List[SessionStep]:
        return list(self.storage.get_session(session_id).history)

    def get_eligible_nodes(self, session_id: str) -> List[str]:
        with self._session_scope(session_id) as session:
            graph = self.storage.get_graph(session.graph_id)
            dyn = self._load(session, graph)
            return self._navigator(dyn).eligible_nodes(graph, dyn)

    def pause_session(self, session_id: str) -> Session:
        with self._session_scope(session_id) as session:
            self._ensure_active(session, "pause")
            session.status = SessionStatus.PAUSED
            session.updated_at = utcnow()
            self.storage.save_session(session)
            return session

    def resume_session(self, session_id: str) -> Session:
        with self._session_scope(session_id) as session:
            if session.status != SessionStatus.PAUSED:
                raise SessionStateError(session.id, session.status, "resume")
            session.status = SessionStatus.ACTIVE
            session.updated_at = utcnow()
            self.storage.save_session(session)
            return session

    def fail_session(self, session_id: str, reason: str = "") -> Session:
        with self._session_scope(session_id) as session:
            if session.is_terminal:
                raise SessionStateError(session.id, session.status, "fail")
            session.status = SessionStatus.FAILED
            session.updated_at = utcnow()
            self.storage.save_session(session)
            logger.warning(f"Session {session.id} failed: {reason}")
            return session

    def retry_session(self, session_id: str) -> Session:
        """
        Reactivate a failed session.

        Raises:
            SessionStateError: the session is not failed
            RetryLimitExceededError: retry_count already reached max_retries
        """
        with self._session_scope(session_id) as session:
            if session.status != SessionStatus.FAILED:
                raise SessionStateError(session.id, session.status, "retry")
            if session.retry_count >= self.config.max_retries:
                logger.error(f"Session {session.id} hit retry limit {self.config.max_retries}")
                raise RetryLimitExceededError(session.id, session.retry_count, self.config.max_retries)
            session.retry_count += 1
            session.status = SessionStatus.ACTIVE
            session.updated_at = utcnow()
            self.storage.save_session(session)
            logger.info(f"Session {session.id} retry {session.retry_count}/{self.config.max_retries}")
            return session

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @contextmanager
    def _session_scope(self, session_id: str):
        with self._locks_guard:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._session_locks[session_id] = lock
        with lock:
            SessionContext.set(session_id)
            try:
                session = self.storage.get_session(session_id)
                SessionContext.set(session_id, session.graph_id)
                yield session
            finally:
                SessionContext.clear()

    def _ensure_active(self, session: Session, action: str):
        if session.status == SessionStatus.ACTIVE and self._expired(session):
            session.status = SessionStatus.EXPIRED
            session.updated_at = utcnow()
            self.storage.save_session(session)
            logger.info(f"Session {session.id} expired")
        if session.status != SessionStatus.ACTIVE:
            raise SessionStateError(session.id, session.status, action)

    def _expired(self, session: Session) -> bool:
        timeout = timedelta(seconds=self.config.session_timeout_seconds)
        return utcnow() - session.updated_at > timeout

    def _discriminator(self, session: Session) -> str:
        if session.dynamic_state is not None:
            return session.dynamic_state.discriminator
        implied = session.answers.get(self.config.discriminator_field)
        if not is_blank(implied):
            return str(implied)
        return self.config.default_discriminator

    def _derive(self, graph: GraphSpec, discriminator: str) -> DynamicGraph:
        dyn = self.engine.derive(graph, discriminator)
        dyn.completion_probe = self.rule_groups.probe(discriminator)
        for callback, event_type in self._listeners:
            dyn.add_listener(callback, event_type)
        return dyn

    def _load(self, session: Session, graph: GraphSpec) -> DynamicGraph:
        dyn = self._derive(graph, self._discriminator(session))
        self.bridge.restore(session, dyn)
        return dyn

    def _rederive(self, session: Session, graph: GraphSpec, discriminator: str) -> DynamicGraph:
        previous = self._discriminator(session)
        session.dynamic_state = None
        dyn = self._derive(graph, discriminator)
        dyn.event_bus.publish(StatusEvent(
            type=EventType.RE_DERIVED,
            node_id=graph.start_node_id,
            reason=f"discriminator {previous} -> {discriminator}",
        ))
        dyn.refresh(session.answers)
        logger.info(f"Session {session.id}: re-derived status view {previous} -> {discriminator}")
        return dyn

    def _navigator(self, dyn: DynamicGraph) -> Navigator:
        return Navigator(EdgeConditionEvaluator(dyn.completion_probe))
