"""Output node - terminal emit (log, webhook, email)."""

from __future__ import annotations

from typing import Optional

import httpx

from office_engine.config import get_settings
from office_engine.config.settings import Settings
from office_engine.observability import get_logger

from ..models import NodeInput, NodeOutput, NodeType, OutputNodeConfig, WorkflowRunContext
from .base import HandlerResult, NodeHandler, dump_outputs, outputs_as_json, resolve_template


logger = get_logger(__name__)


class OutputHandler(NodeHandler):
    """
    Emits the node content.

    Content is ``templateContent`` with variables resolved, or the JSON of the
    upstream outputs when no template is set. Webhook delivery problems give a
    failed output instead of an exception.
    """

    node_type = NodeType.OUTPUT

    def __init__(self, http_client: Optional[httpx.Client] = None, settings: Optional[Settings] = None):
        self._http_client = http_client
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def execute(
        self,
        config: OutputNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        if config.template_content:
            content = resolve_template(config.template_content, node_input.variables)
        else:
            content = dump_outputs(node_input.upstream_outputs)

        if config.output_type == "log":
            logger.info(
                f"Workflow output: {content}",
                extra={"workflow_run_id": ctx.workflow_run_id, "workflow_id": ctx.workflow_id},
            )
            return self.completed(data={"outputType": "log", "content": content})

        if config.output_type == "webhook":
            return self._send_webhook(config, node_input, ctx, content)

        if config.output_type == "email":
            # Delivery belongs to the email tool; the node only records it
            logger.info(
                f"Workflow email output to {config.destination}",
                extra={"workflow_run_id": ctx.workflow_run_id, "content": content},
            )
            return self.completed(
                data={
                    "outputType": "email",
                    "destination": config.destination,
                    "content": content,
                }
            )

        return self.completed(data={"outputType": config.output_type, "content": content})

    def _send_webhook(
        self,
        config: OutputNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
        content: str,
    ) -> NodeOutput:
        if not config.destination:
            return self.failed(data={"error": "Webhook destination URL is required"})

        payload = {
            "workflowRunId": ctx.workflow_run_id,
            "content": content,
            "upstreamOutputs": outputs_as_json(node_input.upstream_outputs),
        }
        timeout = self.settings.webhook_timeout_s

        try:
            if self._http_client is not None:
                response = self._http_client.post(config.destination, json=payload, timeout=timeout)
            else:
                with httpx.Client(timeout=timeout) as client:
                    response = client.post(config.destination, json=payload)
        except httpx.HTTPError as e:
            logger.warning(
                "Webhook output failed",
                extra={"workflow_run_id": ctx.workflow_run_id, "error": str(e)},
            )
            return self.failed(data={"outputType": "webhook", "error": str(e)})

        data = {
            "outputType": "webhook",
            "statusCode": response.status_code,
            "destination": config.destination,
        }
        if response.is_success:
            return self.completed(data=data)
        return self.failed(data=data)
