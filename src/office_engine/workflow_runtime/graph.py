"""
Graph utilities - ordering and traversal of workflow DAGs.

SYNC-CELERY SAFE: No async operations.
"""

from __future__ import annotations

import heapq
from typing import Dict, Iterable, List, Optional, Set

from .models import NodeOutput, NodeStatus, WorkflowDefinition, WorkflowEdge, WorkflowGraphError


def topological_sort(node_ids: List[str], edges: Iterable[WorkflowEdge]) -> List[str]:
    """
    Order node ids from sources to sinks.

    Uses Kahn's algorithm. Among nodes that are ready at the same time the one
    declared first in ``node_ids`` goes first, so the order is deterministic.

    Raises:
        WorkflowGraphError: If the graph contains a cycle
    """
    position = {node_id: index for index, node_id in enumerate(node_ids)}
    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_ids}
    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}

    for edge in edges:
        if edge.source not in adjacency or edge.target not in in_degree:
            continue
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    ready = [position[node_id] for node_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: List[str] = []

    while ready:
        node_id = node_ids[heapq.heappop(ready)]
        order.append(node_id)

        for downstream in adjacency[node_id]:
            in_degree[downstream] -= 1
            if in_degree[downstream] == 0:
                heapq.heappush(ready, position[downstream])

    if len(order) != len(node_ids):
        ordered = set(order)
        remaining = [node_id for node_id in node_ids if node_id not in ordered]
        raise WorkflowGraphError(f"Workflow graph contains a cycle involving: {remaining}")

    return order


def get_upstream_outputs(
    node_id: str,
    edges: Iterable[WorkflowEdge],
    outputs: Dict[str, NodeOutput],
) -> Dict[str, NodeOutput]:
    """Outputs of the direct parents of ``node_id`` that have already produced one."""
    upstream: Dict[str, NodeOutput] = {}
    for edge in edges:
        if edge.target == node_id and edge.source in outputs:
            upstream[edge.source] = outputs[edge.source]
    return upstream


def get_downstream_nodes(
    node_id: str,
    edges: Iterable[WorkflowEdge],
    handle: Optional[str] = None,
) -> List[str]:
    """Direct children of ``node_id``, optionally only along edges with ``handle``."""
    return [
        edge.target
        for edge in edges
        if edge.source == node_id and (handle is None or edge.source_handle == handle)
    ]


def collect_skipped_nodes(
    condition_id: str,
    untaken_handle: str,
    order: List[str],
    edges: List[WorkflowEdge],
    already_done: Dict[str, NodeOutput],
) -> List[str]:
    """
    Nodes that can only be reached through the untaken branch of a condition.

    A node without an output is skipped when it has at least one incoming
    edge and every incoming edge is either the untaken edge of the condition
    or comes from a skipped node. Nodes that also have a live parent (for
    instance the merge point of a diamond) are left to run.

    Args:
        condition_id: The condition node that just completed
        untaken_handle: ``yes`` or ``no``, the handle that was not taken
        order: Topological order of the whole graph
        edges: All edges of the graph
        already_done: Outputs recorded so far, keyed by node id

    Returns:
        Newly skipped node ids in topological order
    """
    incoming: Dict[str, List[WorkflowEdge]] = {}
    for edge in edges:
        incoming.setdefault(edge.target, []).append(edge)

    skipped: Set[str] = {
        node_id
        for node_id, output in already_done.items()
        if output.status == NodeStatus.SKIPPED
    }
    newly_skipped: List[str] = []

    for node_id in order:
        if node_id in already_done or node_id == condition_id:
            continue
        parents = incoming.get(node_id, [])
        if not parents:
            continue

        dead = all(
            (edge.source == condition_id and edge.source_handle == untaken_handle)
            or edge.source in skipped
            for edge in parents
        )
        if dead:
            skipped.add(node_id)
            newly_skipped.append(node_id)

    return newly_skipped


class SequentialStrategy:
    """
    Default execution strategy: walk the topological order one node at a time.

    The executor asks the strategy for the order to visit nodes in; a parallel
    scheduler can replace it without touching handlers.
    """

    def schedule(self, definition: WorkflowDefinition) -> List[str]:
        return topological_sort(definition.node_ids, definition.edges)


__all__ = [
    "collect_skipped_nodes",
    "get_downstream_nodes",
    "get_upstream_outputs",
    "SequentialStrategy",
    "topological_sort",
]
