"""Node handler registry - closed map from node type to handler."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from office_engine.config.settings import Settings
from office_engine.observability import get_logger
from office_engine.runtime.executor import AgentExecutor
from office_engine.runtime.llm import LLMClient
from office_engine.runtime.tools import ToolRegistry

from ..models import NodeInput, NodeType, WorkflowRunContext
from .agent import AgentDirectory, AgentHandler
from .approval import ApprovalHandler
from .base import HandlerResult, NodeHandler, UnknownNodeTypeError
from .condition import ConditionHandler
from .delay import DelayHandler
from .output import OutputHandler
from .trigger import TriggerHandler


logger = get_logger(__name__)


class NodeHandlerRegistry:
    """Registry for node handlers."""

    def __init__(self):
        """Initialize handler registry."""
        self._handlers: Dict[NodeType, NodeHandler] = {}

    def register(self, handler: NodeHandler) -> None:
        """
        Register a handler for its node type.

        Args:
            handler: Handler instance

        Raises:
            UnknownNodeTypeError: If the handler's type is not a workflow node type
        """
        try:
            node_type = NodeType(handler.node_type)
        except ValueError:
            raise UnknownNodeTypeError(str(handler.node_type))
        self._handlers[node_type] = handler
        logger.debug(f"Node handler registered: {node_type.value}")

    def get(self, node_type: str) -> NodeHandler:
        """
        Get the handler for a node type.

        Raises:
            UnknownNodeTypeError: If no handler is registered for the type
        """
        try:
            return self._handlers[NodeType(node_type)]
        except (ValueError, KeyError):
            raise UnknownNodeTypeError(str(node_type))

    def execute(
        self,
        node_type: str,
        config: Any,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        """Execute a node with the handler registered for its type."""
        return self.get(node_type).execute(config, node_input, ctx)

    def list_types(self) -> List[str]:
        """List registered node types."""
        return [node_type.value for node_type in self._handlers]


def build_default_registry(
    agent_executor: AgentExecutor,
    tool_registry: ToolRegistry,
    agents: AgentDirectory,
    llm_client: Optional[LLMClient] = None,
    http_client: Optional[httpx.Client] = None,
    settings: Optional[Settings] = None,
) -> NodeHandlerRegistry:
    """Registry with the six built-in handlers."""
    registry = NodeHandlerRegistry()
    registry.register(TriggerHandler())
    registry.register(AgentHandler(agent_executor, tool_registry, agents, settings=settings))
    registry.register(ConditionHandler(llm_client, settings=settings))
    registry.register(ApprovalHandler())
    registry.register(DelayHandler())
    registry.register(OutputHandler(http_client, settings=settings))
    return registry
