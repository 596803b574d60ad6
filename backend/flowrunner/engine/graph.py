# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Graph Model

Validated, indexed view over a workflow's nodes and edges.
"""

from typing import Dict, List, Optional, Sequence

from flowrunner.engine.validation import topological_sort
from flowrunner.models import Workflow, WorkflowEdge, WorkflowNode
from flowrunner.node_types import is_error_trigger


class WorkflowGraph:
    """
    Indexed workflow graph.

    Construction validates the graph and computes the execution order once.
    Error-trigger nodes are kept out of the forward order and exposed
    separately for the recovery path.
    """

    def __init__(self, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]):
        self.nodes: List[WorkflowNode] = list(nodes)
        self.edges: List[WorkflowEdge] = list(edges)

        ordered = topological_sort(self.nodes, self.edges)

        self._by_id: Dict[str, WorkflowNode] = {node.id: node for node in self.nodes}
        self._incoming: Dict[str, List[WorkflowEdge]] = {node.id: [] for node in self.nodes}
        for edge in self.edges:
            self._incoming[edge.target].append(edge)

        self.execution_order: List[WorkflowNode] = [n for n in ordered if not is_error_trigger(n.type)]
        self.error_triggers: List[WorkflowNode] = [n for n in ordered if is_error_trigger(n.type)]

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowGraph":
        return cls(workflow.nodes, workflow.edges)

    def node(self, node_id: str) -> Optional[WorkflowNode]:
        return self._by_id.get(node_id)

    def incoming(self, node_id: str) -> List[WorkflowEdge]:
        """Incoming edges of a node, in declaration order."""
        return list(self._incoming.get(node_id, []))

    def source_type(self, edge: WorkflowEdge) -> Optional[str]:
        source = self._by_id.get(edge.source)
        return source.type if source else None

    def __len__(self) -> int:
        return len(self.nodes)
