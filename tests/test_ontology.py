"""
Graph model tests: reference integrity, operator aliases, traversal views.
"""
import pytest
from pydantic import ValidationError

from onboarding_graph.core.ontology import (
    EdgeGuard,
    EdgeSpec,
    GraphSpec,
    MatchOperator,
    NodeSpec,
    NodeType,
    Operator,
)


class TestGraphIntegrity:
    def test_edge_to_unknown_node_rejected(self):
        with pytest.raises(ValidationError, match="unknown node 'ghost'"):
            GraphSpec(
                id="g",
                start_node_id="s",
                nodes={"s": NodeSpec(id="s", type=NodeType.START)},
                edges=[EdgeSpec(id="e", source="s", target="ghost")],
            )

    def test_missing_start_node_rejected(self):
        with pytest.raises(ValidationError, match="Start node"):
            GraphSpec(id="g", start_node_id="nope", nodes={"s": NodeSpec(id="s")})

    def test_node_key_must_match_id(self):
        with pytest.raises(ValidationError, match="declares id"):
            GraphSpec(id="g", start_node_id="s", nodes={"s": NodeSpec(id="other")})

    def test_merchant_graph_is_consistent(self, merchant_graph):
        assert merchant_graph.start_node_id == "business_type_selection"
        assert len(merchant_graph.nodes) == 10
        assert merchant_graph.end_node_ids() == ["completion_node_id"]
        for edge in merchant_graph.edges:
            assert edge.source in merchant_graph.nodes
            assert edge.target in merchant_graph.nodes


class TestOperators:
    def test_aliases(self):
        assert Operator("equals") == Operator.EQ
        assert Operator("not_equals") == Operator.NE
        assert MatchOperator("eq") == MatchOperator.EQUALS

    def test_alias_accepted_in_models(self):
        guard = EdgeGuard(type="field_value", field="a", operator="equals", value="x")
        assert guard.operator == Operator.EQ

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            Operator("between")


class TestTraversalViews:
    def test_networkx_view(self, tiny_graph):
        g = tiny_graph.to_networkx()
        assert set(g.nodes) == {"start", "a", "b", "end"}
        assert g.number_of_edges() == 4
        assert g.has_edge("b", "a")

    def test_distances_handle_cycles(self, tiny_graph):
        distances = tiny_graph.distances_from_start()
        assert distances == {"start": 0, "a": 1, "b": 2, "end": 3}

    def test_outgoing_sorted_by_priority(self, merchant_graph):
        priorities = [e.priority for e in merchant_graph.outgoing("business_type_selection")]
        assert priorities == sorted(priorities)

    def test_round_trip_through_json(self, merchant_graph):
        restored = GraphSpec.model_validate_json(merchant_graph.model_dump_json())
        assert restored.model_dump() == merchant_graph.model_dump()
