# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Graph validation and scheduling

DAG validation and execution ordering using topological sort (Kahn's
algorithm). Ties between ready nodes are broken by declaration order.
"""

from typing import Dict, List, Sequence
from collections import deque

from flowrunner.core.errors import GraphCycleError, GraphValidationError
from flowrunner.models import WorkflowEdge, WorkflowNode


def validate_graph(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> None:
    """
    Validate workflow structure.

    Raises GraphValidationError if node ids repeat or an edge references
    a node that does not exist.
    """
    node_ids = [node.id for node in nodes]
    if len(node_ids) != len(set(node_ids)):
        duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
        raise GraphValidationError(f"Duplicate node IDs found: {duplicates}", field="nodes")

    node_id_set = set(node_ids)
    for edge in edges:
        if edge.source not in node_id_set:
            raise GraphValidationError(
                f"Edge references non-existent node: {edge.source}",
                field="edges"
            )
        if edge.target not in node_id_set:
            raise GraphValidationError(
                f"Edge references non-existent node: {edge.target}",
                field="edges"
            )


def topological_sort(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> List[WorkflowNode]:
    """
    Order nodes so every edge's source precedes its target.

    The queue is seeded with zero in-degree nodes in declaration order and
    neighbours are released in edge declaration order, so the result is
    deterministic for a given graph.

    Raises GraphCycleError if some nodes never reach zero in-degree.
    """
    validate_graph(nodes, edges)

    adjacency: Dict[str, List[str]] = {node.id: [] for node in nodes}
    in_degree: Dict[str, int] = {node.id: 0 for node in nodes}
    node_map: Dict[str, WorkflowNode] = {node.id: node for node in nodes}

    for edge in edges:
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    queue = deque([node.id for node in nodes if in_degree[node.id] == 0])

    order: List[WorkflowNode] = []
    while queue:
        node_id = queue.popleft()
        order.append(node_map[node_id])

        for neighbor in adjacency[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(order) != len(nodes):
        unprocessed = set(node_map) - {node.id for node in order}
        raise GraphCycleError(unprocessed)

    return order
