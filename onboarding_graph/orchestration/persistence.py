"""
DYNAMIC STATE PERSISTENCE
Mirrors a DynamicGraph into Session.dynamic_state and back.

save      full overwrite, one NodeStatusInfo per node
restore   raw status copy for known nodes, then one dependency sweep
validate  diagnostics only; integrity problems are logged and returned,
          never raised

Persisted entries for nodes that no longer exist in the graph are kept on
save, flagged with metadata `orphaned: true`, so they stay visible to
validate() until someone cleans them up.
"""
import logging
from typing import Any, Dict, List

from onboarding_graph.core.conditions import is_blank
from onboarding_graph.core.session import DynamicSessionState, NodeStatusInfo, Session
from onboarding_graph.orchestration.dynamic_engine import DynamicGraph

logger = logging.getLogger("Onboarding.Persistence")


class PersistenceBridge:
    def __init__(self, discriminator_field: str = "business_type"):
        self.discriminator_field = discriminator_field

    def save(self, session: Session, dyn: DynamicGraph) -> DynamicSessionState:
        """
        Write the engine's state into `session.dynamic_state`.

        Args:
            session: Session to update in place
            dyn: The session's dynamic graph

        Returns:
            The new DynamicSessionState
        """
        statuses: Dict[str, NodeStatusInfo] = {}
        for node in dyn.snapshot():
            statuses[node.id] = NodeStatusInfo(
                status=node.status,
                initial_status=node.initial_status,
                dependencies=node.dependencies,
                updated_at=node.updated_at,
                metadata={"node_name": node.name, "node_type": node.type.value},
            )

        previous = session.dynamic_state
        if previous is not None:
            for node_id, info in previous.node_statuses.items():
                if node_id in statuses:
                    continue
                carried = info.model_copy(deep=True)
                carried.metadata["orphaned"] = True
                statuses[node_id] = carried
                logger.warning(f"Session {session.id}: keeping orphaned state for node {node_id}")

        state = DynamicSessionState(
            discriminator=dyn.discriminator,
            node_statuses=statuses,
            completion_summary=dyn.completion_summary(),
            evaluated_at=dyn.evaluated_at,
        )
        session.dynamic_state = state
        logger.debug(f"Session {session.id}: saved dynamic state for {len(statuses)} nodes")
        return state

    def restore(self, session: Session, dyn: DynamicGraph) -> List[str]:
        """
        Load persisted statuses into `dyn`, then re-run the dependency sweep
        against the session's current answers.

        Returns:
            Node ids of orphaned entries (persisted but not in the graph)
        """
        state = session.dynamic_state
        if state is None:
            dyn.refresh(session.answers)
            return []

        orphans = []
        for node_id, info in state.node_statuses.items():
            if node_id not in dyn.nodes:
                logger.warning(f"Session {session.id}: orphaned state for node {node_id}, skipping")
                orphans.append(node_id)
                continue
            dyn.restore_node(node_id, info.status, info.initial_status, info.dependencies, info.updated_at)

        dyn.restore_evaluated_at(state.evaluated_at)
        events = dyn.refresh(session.answers)
        if events:
            logger.info(f"Session {session.id}: {len(events)} status changes after restore")
        return orphans

    def validate(self, session: Session, dyn: DynamicGraph) -> List[str]:
        """Human-readable integrity issues; empty when everything lines up."""
        state = session.dynamic_state
        if state is None:
            return [f"No dynamic state for session: {session.id}"]

        issues = []
        for node_id in dyn.nodes:
            if node_id not in state.node_statuses:
                issues.append(f"Missing state for node: {node_id}")
        for node_id in state.node_statuses:
            if node_id not in dyn.nodes:
                issues.append(f"Orphaned state for node: {node_id}")

        implied = session.answers.get(self.discriminator_field)
        if not is_blank(implied) and str(implied) != state.discriminator:
            issues.append("Discriminator mismatch between session data and dynamic state")
        if dyn.discriminator != state.discriminator:
            issues.append(
                f"Dynamic view discriminator {dyn.discriminator!r} differs from persisted {state.discriminator!r}"
            )

        for issue in issues:
            logger.warning(f"Session {session.id}: {issue}")
        return issues

    def summarize(self, session: Session, dyn: DynamicGraph) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for status in dyn.statuses().values():
            counts[status.value] = counts.get(status.value, 0) + 1
        state = session.dynamic_state
        return {
            "session_id": session.id,
            "discriminator": state.discriminator if state else dyn.discriminator,
            "has_dynamic_state": state is not None,
            "counts_by_status": counts,
            "evaluated_at": state.evaluated_at.isoformat() if state else None,
            "completion_summary": dyn.completion_summary().model_dump(),
            "validation_issues": self.validate(session, dyn),
        }

    def migrate(self, session: Session, dyn: DynamicGraph) -> bool:
        """Attach dynamic state to a session that predates it. False if already present."""
        if session.dynamic_state is not None:
            return False
        dyn.refresh(session.answers)
        self.save(session, dyn)
        logger.info(f"Session {session.id}: migrated to dynamic state ({dyn.discriminator})")
        return True
