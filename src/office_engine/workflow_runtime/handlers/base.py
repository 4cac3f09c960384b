"""
Node handler contract.

A handler turns one node config plus its upstream outputs into either a
NodeOutput or a Paused result. Handlers hold no per-run state; everything a
call needs arrives as parameters.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from ..models import NodeInput, NodeOutput, NodeType, WorkflowRunContext


_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class Paused:
    """
    Returned by approval/delay handlers: the run must suspend at this node.

    ``delay_ms`` is set for timed pauses and tells the caller when to
    re-enqueue the run.
    """
    reason: str
    delay_ms: Optional[int] = None


HandlerResult = Union[NodeOutput, Paused]


class UnknownNodeTypeError(ValueError):
    """Raised when no handler is registered for a node type."""

    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"No handler registered for node type: {node_type}")


class NodeHandler(ABC):
    """Base class for the six built-in node handlers."""

    node_type: NodeType

    @abstractmethod
    def execute(
        self,
        config: Any,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        """Execute the node."""
        ...

    def completed(self, data: Any = None, response: Optional[str] = None) -> NodeOutput:
        return NodeOutput(node_type=self.node_type.value, status="completed", data=data, response=response)

    def failed(self, data: Any = None, response: Optional[str] = None) -> NodeOutput:
        return NodeOutput(node_type=self.node_type.value, status="failed", data=data, response=response)


def resolve_template(template: str, variables: Dict[str, str]) -> str:
    """Replace ``{{key}}`` placeholders; unknown keys become empty strings."""
    return _PLACEHOLDER.sub(lambda match: str(variables.get(match.group(1), "")), template)


def outputs_as_json(outputs: Dict[str, NodeOutput]) -> Dict[str, Any]:
    """Upstream outputs as plain JSON data with camelCase keys."""
    return {node_id: output.model_dump(mode="json", by_alias=True) for node_id, output in outputs.items()}


def dump_outputs(outputs: Dict[str, NodeOutput]) -> str:
    """Compact JSON text of upstream outputs."""
    return json.dumps(outputs_as_json(outputs), separators=(",", ":"), default=str)
