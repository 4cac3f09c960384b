"""Trigger node - marks the start of a workflow."""

from __future__ import annotations

from ..models import NodeInput, NodeType, TriggerNodeConfig, WorkflowRunContext
from .base import HandlerResult, NodeHandler


class TriggerHandler(NodeHandler):
    node_type = NodeType.TRIGGER

    def execute(
        self,
        config: TriggerNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        return self.completed(
            data={
                "triggerType": config.trigger_type,
                "variables": dict(ctx.variables),
            }
        )
