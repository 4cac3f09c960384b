"""Approval node - suspends the run until a human decides."""

from __future__ import annotations

from ..models import ApprovalNodeConfig, NodeInput, NodeType, WorkflowRunContext
from .base import HandlerResult, NodeHandler, Paused


class ApprovalHandler(NodeHandler):
    """
    Pauses the first time the node is reached. When the run is resumed at
    this node the approval has been granted and the node completes.
    """

    node_type = NodeType.APPROVAL

    def execute(
        self,
        config: ApprovalNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        if node_input.resumed:
            return self.completed(
                data={"approved": True, "approverRole": config.approver_role}
            )

        reason = f"Waiting for {config.approver_role} approval"
        if config.timeout_minutes:
            reason += f" (timeout: {config.timeout_minutes}m)"
        return Paused(reason=reason)
