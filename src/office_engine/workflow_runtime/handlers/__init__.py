"""Built-in workflow node handlers."""

from .agent import AgentDirectory, AgentHandler
from .approval import ApprovalHandler
from .base import HandlerResult, NodeHandler, Paused, resolve_template, UnknownNodeTypeError
from .condition import ConditionHandler
from .delay import delay_to_ms, DelayHandler
from .output import OutputHandler
from .registry import build_default_registry, NodeHandlerRegistry
from .trigger import TriggerHandler

__all__ = [
    "AgentDirectory",
    "AgentHandler",
    "ApprovalHandler",
    "build_default_registry",
    "ConditionHandler",
    "delay_to_ms",
    "DelayHandler",
    "HandlerResult",
    "NodeHandler",
    "NodeHandlerRegistry",
    "OutputHandler",
    "Paused",
    "resolve_template",
    "TriggerHandler",
    "UnknownNodeTypeError",
]
