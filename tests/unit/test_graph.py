"""Unit tests for workflow graph utilities."""
import pytest

from office_engine.workflow_runtime.graph import (
    collect_skipped_nodes,
    get_downstream_nodes,
    get_upstream_outputs,
    SequentialStrategy,
    topological_sort,
)
from office_engine.workflow_runtime.models import (
    NodeOutput,
    NodeStatus,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowGraphError,
)


def edge(source, target, handle=None):
    return WorkflowEdge(id=f"{source}-{target}", source=source, target=target, source_handle=handle)


def done(node_id, status=NodeStatus.COMPLETED):
    return NodeOutput(node_id=node_id, node_type="trigger", status=status)


class TestTopologicalSort:
    """Test Kahn ordering."""

    def test_linear_chain(self):
        order = topological_sort(["c", "b", "a"], [edge("a", "b"), edge("b", "c")])

        assert order == ["a", "b", "c"]

    def test_ties_follow_declaration_order(self):
        edges = [edge("root", "z"), edge("root", "y"), edge("root", "x")]

        assert topological_sort(["root", "x", "y", "z"], edges) == ["root", "x", "y", "z"]
        assert topological_sort(["root", "z", "y", "x"], edges) == ["root", "z", "y", "x"]

    def test_every_edge_is_respected(self):
        node_ids = ["t", "a", "b", "c", "d"]
        edges = [edge("t", "a"), edge("t", "b"), edge("a", "c"), edge("b", "c"), edge("c", "d")]

        order = topological_sort(node_ids, edges)

        for e in edges:
            assert order.index(e.source) < order.index(e.target)

    def test_disconnected_nodes_are_included(self):
        assert topological_sort(["a", "lonely"], []) == ["a", "lonely"]

    def test_cycle_is_rejected(self):
        with pytest.raises(WorkflowGraphError, match="cycle"):
            topological_sort(["a", "b", "c"], [edge("a", "b"), edge("b", "c"), edge("c", "b")])


class TestNeighbours:
    """Test upstream/downstream helpers."""

    def test_upstream_outputs_only_include_finished_parents(self):
        edges = [edge("a", "c"), edge("b", "c")]
        outputs = {"a": done("a")}

        assert get_upstream_outputs("c", edges, outputs) == {"a": outputs["a"]}

    def test_downstream_by_handle(self):
        edges = [edge("c", "yes1", "yes"), edge("c", "no1", "no"), edge("c", "yes2", "yes")]

        assert get_downstream_nodes("c", edges) == ["yes1", "no1", "yes2"]
        assert get_downstream_nodes("c", edges, "yes") == ["yes1", "yes2"]


class TestSkipPropagation:
    """Test collect_skipped_nodes."""

    def test_untaken_branch_and_its_descendants(self):
        # c -(yes)-> a ; c -(no)-> b -> b2
        order = ["c", "a", "b", "b2"]
        edges = [edge("c", "a", "yes"), edge("c", "b", "no"), edge("b", "b2")]

        skipped = collect_skipped_nodes("c", "no", order, edges, {"c": done("c")})

        assert skipped == ["b", "b2"]

    def test_diamond_merge_is_not_skipped(self):
        # c -(yes)-> a -> m ; c -(no)-> b -> m
        order = ["c", "a", "b", "m"]
        edges = [edge("c", "a", "yes"), edge("c", "b", "no"), edge("a", "m"), edge("b", "m")]

        skipped = collect_skipped_nodes("c", "no", order, edges, {"c": done("c")})

        assert skipped == ["b"]

    def test_node_with_other_live_parent_is_not_skipped(self):
        order = ["t", "c", "b"]
        edges = [edge("t", "c"), edge("c", "b", "no"), edge("t", "b")]

        assert collect_skipped_nodes("c", "no", order, edges, {"t": done("t"), "c": done("c")}) == []

    def test_previously_skipped_nodes_propagate(self):
        order = ["c1", "x", "c2", "y"]
        edges = [edge("c1", "x", "no"), edge("c2", "y", "no"), edge("x", "y")]
        outputs = {"c1": done("c1"), "x": done("x", NodeStatus.SKIPPED), "c2": done("c2")}

        assert collect_skipped_nodes("c2", "no", order, edges, outputs) == ["y"]

    def test_nodes_with_outputs_are_left_alone(self):
        order = ["c", "b"]
        edges = [edge("c", "b", "no")]

        assert collect_skipped_nodes("c", "no", order, edges, {"c": done("c"), "b": done("b")}) == []


def test_sequential_strategy_schedules_topologically():
    definition = WorkflowDefinition.model_validate(
        {
            "nodes": [
                {"id": "o", "type": "output", "data": {}},
                {"id": "t", "type": "trigger", "data": {}},
            ],
            "edges": [{"id": "e1", "source": "t", "target": "o"}],
        }
    )

    assert SequentialStrategy().schedule(definition) == ["t", "o"]
