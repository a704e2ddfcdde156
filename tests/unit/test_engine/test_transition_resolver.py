"""Tests for TransitionResolver"""
import pytest

from approval_engine.domain.errors import CorruptGraphError
from approval_engine.domain.models import ResourceAttrs, WorkflowGraph
from approval_engine.engine.transition_resolver import TransitionResolver
from tests.conftest import approval_node, chain


@pytest.fixture
def resolver() -> TransitionResolver:
    return TransitionResolver()


def condition(node_id: str, field: str = "amount", operator: str = "gt", value=10000) -> dict:
    return {"id": node_id, "type": "condition", "field": field, "operator": operator, "value": value}


def branch(source: str, true_target: str, false_target: str) -> list:
    return [
        {"source": source, "target": true_target, "label": "true"},
        {"source": source, "target": false_target, "label": "false"},
    ]


class TestAdvance:

    def test_follows_single_edge(self, resolver, two_step_template):
        graph = two_step_template.graph
        node, branches = resolver.advance(graph, graph.node_by_id("manager_review"), ResourceAttrs())
        assert node.id == "cfo_review"
        assert branches == []

    @pytest.mark.parametrize("amount,expected", [(5000, "manager_review"), (15000, "cfo_review")])
    def test_condition_routes_on_snapshot(self, resolver, branching_template, amount, expected):
        graph = branching_template.graph
        node, branches = resolver.advance(graph, graph.start_node(), ResourceAttrs(amount=amount))
        assert node.id == expected
        assert branches == [("amount_check", amount > 10000)]

    def test_consecutive_conditions(self, resolver):
        graph = WorkflowGraph.model_validate({
            "nodes": [
                {"id": "start", "type": "start"},
                condition("c1"),
                condition("c2", field="status", operator="eq", value="urgent"),
                approval_node("fast"),
                approval_node("slow"),
                {"id": "end", "type": "end"},
            ],
            "edges": chain("start", "c1") + branch("c1", "c2", "slow") + branch("c2", "fast", "slow")
            + chain("fast", "end") + chain("slow", "end"),
        })
        snapshot = ResourceAttrs(amount=20000, status="urgent")

        node, branches = resolver.advance(graph, graph.start_node(), snapshot)

        assert node.id == "fast"
        assert branches == [("c1", True), ("c2", True)]

    def test_lands_on_end(self, resolver, linear_template):
        graph = linear_template.graph
        node, _ = resolver.advance(graph, graph.node_by_id("manager_review"), ResourceAttrs())
        assert node.type == "end"


class TestCorruptGraph:

    def test_missing_outgoing_edge(self, resolver):
        graph = WorkflowGraph.model_validate({
            "nodes": [{"id": "start", "type": "start"}, approval_node("a")],
            "edges": chain("start", "a"),
        })
        with pytest.raises(CorruptGraphError):
            resolver.advance(graph, graph.node_by_id("a"), ResourceAttrs())

    def test_edge_to_unknown_node(self, resolver):
        graph = WorkflowGraph.model_validate({
            "nodes": [{"id": "start", "type": "start"}],
            "edges": [{"source": "start", "target": "ghost"}],
        })
        with pytest.raises(CorruptGraphError) as exc_info:
            resolver.advance(graph, graph.start_node(), ResourceAttrs())
        assert exc_info.value.details["target"] == "ghost"

    def test_condition_without_matching_branch(self, resolver):
        graph = WorkflowGraph.model_validate({
            "nodes": [{"id": "start", "type": "start"}, condition("c1"), {"id": "end", "type": "end"}],
            "edges": chain("start", "c1") + [{"source": "c1", "target": "end", "label": "true"}],
        })
        with pytest.raises(CorruptGraphError):
            resolver.advance(graph, graph.start_node(), ResourceAttrs(amount=1))

    def test_condition_cycle_is_bounded(self, resolver):
        graph = WorkflowGraph.model_validate({
            "nodes": [{"id": "start", "type": "start"}, condition("c1"), condition("c2")],
            "edges": chain("start", "c1") + branch("c1", "c2", "c2") + branch("c2", "c1", "c1"),
        })
        with pytest.raises(CorruptGraphError):
            resolver.advance(graph, graph.start_node(), ResourceAttrs(amount=1))

    def test_end_node_has_no_successor(self, resolver, linear_template):
        graph = linear_template.graph
        with pytest.raises(CorruptGraphError):
            resolver.resolve_next_edge(graph, graph.node_by_id("end"))
