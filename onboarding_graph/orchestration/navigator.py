"""
NAVIGATION
Chooses what to show next, what can be shown at all, and where "back" goes.

Traversal is breadth-first with a visited set, so cyclic edges cost at
most one visit per node.
"""
import logging
from collections import deque
from typing import Any, Dict, List, Mapping, Optional

from onboarding_graph.core.conditions import EdgeConditionEvaluator
from onboarding_graph.core.ontology import GraphSpec, NodeStatus, NodeType, StepDirection
from onboarding_graph.core.session import Session
from onboarding_graph.orchestration.dynamic_engine import DynamicGraph

logger = logging.getLogger("Onboarding.Navigator")

STATUS_PRIORITY = {
    NodeStatus.MANDATORY: 0,
    NodeStatus.DEPENDENT: 1,
    NodeStatus.OPTIONAL: 2,
}

UNAVAILABLE = {NodeStatus.COMPLETED, NodeStatus.DISABLED}


class Navigator:
    def __init__(self, evaluator: Optional[EdgeConditionEvaluator] = None):
        self.evaluator = evaluator or EdgeConditionEvaluator()

    def traversable_targets(self, graph: GraphSpec, node_id: str, answers: Mapping[str, Any]) -> List[str]:
        """Targets of open outgoing edges, in edge priority order, without duplicates."""
        targets: List[str] = []
        for edge in graph.outgoing(node_id):
            if edge.target not in targets and self.evaluator.is_traversable(edge, answers):
                targets.append(edge.target)
        return targets

    def next_node(self, graph: GraphSpec, dyn: DynamicGraph, current_id: str, answers: Mapping[str, Any]) -> Optional[str]:
        """
        Pick the next node to present.

        1. Open successors that are still outstanding, mandatory before
           dependent before optional
        2. Nearest outstanding mandatory node reachable through open edges
        3. Any outstanding mandatory node in the graph

        Returns:
            Node id, or None when nothing is left to present
        """
        statuses = dyn.statuses()
        rank = self._ranker(graph)

        candidates = [
            n for n in self.traversable_targets(graph, current_id, answers)
            if self._outstanding(graph, statuses, n, current_id)
        ]
        if candidates:
            return min(candidates, key=lambda n: (STATUS_PRIORITY[statuses[n]],) + rank(n))

        for node_id in self.reachable(graph, current_id, answers):
            if statuses[node_id] == NodeStatus.MANDATORY and self._outstanding(graph, statuses, node_id, current_id):
                return node_id

        leftovers = [
            n for n, status in statuses.items()
            if status == NodeStatus.MANDATORY and self._outstanding(graph, statuses, n, current_id)
        ]
        if leftovers:
            logger.debug(f"No open path from {current_id}; jumping to outstanding mandatory node")
            return min(leftovers, key=rank)
        return None

    def reachable(self, graph: GraphSpec, start_id: str, answers: Mapping[str, Any]) -> List[str]:
        """Breadth-first order of nodes reachable from `start_id` via open edges (excluding it)."""
        visited = {start_id}
        order: List[str] = []
        queue = deque([start_id])
        while queue:
            node_id = queue.popleft()
            for target in self.traversable_targets(graph, node_id, answers):
                if target in visited:
                    continue
                visited.add(target)
                order.append(target)
                queue.append(target)
        return order

    def eligible_nodes(self, graph: GraphSpec, dyn: DynamicGraph) -> List[str]:
        """Nodes the user may fill in now."""
        eligible = []
        for node in dyn.snapshot():
            if node.status in UNAVAILABLE or node.type == NodeType.END:
                continue
            if node.status == NodeStatus.DEPENDENT and not dyn.is_dependency_satisfied(node.id):
                continue
            eligible.append(node.id)
        return sorted(eligible, key=self._ranker(graph))

    def previous_node(self, graph: GraphSpec, session: Session) -> Optional[str]:
        current = session.current_node_id
        for step in reversed(session.history):
            if step.direction == StepDirection.FORWARD and step.node_id != current:
                return step.node_id
        incoming = graph.incoming(current)
        return incoming[0].source if incoming else None

    def can_go_back(self, graph: GraphSpec, session: Session) -> bool:
        return self.previous_node(graph, session) is not None

    @staticmethod
    def _outstanding(graph: GraphSpec, statuses: Dict[str, NodeStatus], node_id: str, current_id: str) -> bool:
        if node_id == current_id or statuses.get(node_id) in UNAVAILABLE:
            return False
        return graph.nodes[node_id].type != NodeType.END

    @staticmethod
    def _ranker(graph: GraphSpec):
        distances = graph.distances_from_start()
        order = graph.authoring_index()
        unreachable = len(order) + 1
        return lambda node_id: (distances.get(node_id, unreachable), order.get(node_id, unreachable))
