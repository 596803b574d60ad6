# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Conditional Router

Decides which incoming edges of a node are live given the outcomes already
recorded by upstream if/else and switch nodes, and whether the node must be
skipped.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowrunner.engine.graph import WorkflowGraph
from flowrunner.models import WorkflowEdge, WorkflowNode
from flowrunner.node_types import NodeType


def handle_text(value: Any) -> str:
    """Render a matched switch case the way edge handles are written."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class BranchResults:
    """
    Per-run record of branch outcomes.

    ``if_else`` maps an if/else node id to its boolean result; ``switch`` maps
    a switch node id to the matched case value (None when nothing matched).
    """

    def __init__(self):
        self.if_else: Dict[str, bool] = {}
        self.switch: Dict[str, Optional[Any]] = {}

    def record(self, node: WorkflowNode, output: Any) -> None:
        """Capture the branch outcome from a branch node's output envelope."""
        if not isinstance(output, dict):
            return
        if node.type == NodeType.IF_ELSE.value and isinstance(output.get("condition"), bool):
            self.if_else[node.id] = output["condition"]
        elif node.type == NodeType.SWITCH.value and "matchedCase" in output:
            self.switch[node.id] = output["matchedCase"]

    def is_edge_valid(self, edge: WorkflowEdge, source_type: Optional[str]) -> bool:
        if edge.source_handle is None:
            return True

        if source_type == NodeType.IF_ELSE.value:
            if edge.source not in self.if_else:
                return False
            result = self.if_else[edge.source]
            return (edge.source_handle == "true" and result) or (edge.source_handle == "false" and not result)

        if source_type == NodeType.SWITCH.value:
            if edge.source not in self.switch:
                return False
            matched = self.switch[edge.source]
            return matched is not None and handle_text(matched) == edge.source_handle

        # Tagged edge from a node that never branches
        return False


@dataclass
class RouteDecision:
    incoming: List[WorkflowEdge] = field(default_factory=list)
    valid: List[WorkflowEdge] = field(default_factory=list)
    skip: bool = False


def route(node: WorkflowNode, graph: WorkflowGraph, branches: BranchResults) -> RouteDecision:
    """
    Apply edge validity and the skip rule to one node.

    A node is skipped when it has incoming edges, every one of them is a
    tagged edge leaving an if/else or switch node, and none is valid.
    """
    incoming = graph.incoming(node.id)
    valid = [e for e in incoming if branches.is_edge_valid(e, graph.source_type(e))]

    only_branch_inputs = bool(incoming) and all(
        e.source_handle is not None
        and graph.source_type(e) in (NodeType.IF_ELSE.value, NodeType.SWITCH.value)
        for e in incoming
    )

    return RouteDecision(
        incoming=incoming,
        valid=valid,
        skip=only_branch_inputs and not valid,
    )
