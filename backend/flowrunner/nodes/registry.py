# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node Registry

Single canonical mapping from node type to handler. Handler modules register
themselves at import time:

    @registry.register(NodeType.NOOP)
    async def noop(node, data, ctx):
        return data
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from flowrunner.core.errors import NodeExecutionError
from flowrunner.engine.context import SharedContext
from flowrunner.models import WorkflowNode
from flowrunner.node_types import NodeType

NodeHandler = Callable[[WorkflowNode, Any, SharedContext], Awaitable[Any]]


class NodeRegistry:
    """Maps node type strings to async handlers."""

    def __init__(self):
        self._handlers: Dict[str, NodeHandler] = {}

    def register(self, *node_types: Union[NodeType, str]) -> Callable[[NodeHandler], NodeHandler]:
        """Decorator registering one handler for one or more node types."""
        def decorator(handler: NodeHandler) -> NodeHandler:
            for node_type in node_types:
                key = node_type.value if isinstance(node_type, NodeType) else node_type
                if key in self._handlers:
                    raise ValueError(f"Handler already registered for node type: {key}")
                self._handlers[key] = handler
            return handler
        return decorator

    def get(self, node_type: str) -> Optional[NodeHandler]:
        return self._handlers.get(node_type)

    def types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._handlers

    async def execute(self, node: WorkflowNode, data: Any, ctx: SharedContext) -> Any:
        """
        Dispatch a node to its handler.

        Raises:
            NodeExecutionError: Unknown node type, or whatever the handler raises
        """
        handler = self._handlers.get(node.type)
        if handler is None:
            raise NodeExecutionError(f"Unknown node type: {node.type}", node_name=node.name)
        return await handler(node, data, ctx)


registry = NodeRegistry()
