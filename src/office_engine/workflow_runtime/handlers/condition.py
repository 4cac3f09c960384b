"""Condition node - evaluates a boolean against upstream data."""

from __future__ import annotations

import json
from typing import Any, Optional

from office_engine.config import get_settings
from office_engine.config.settings import Settings
from office_engine.runtime.llm import LLMCallContext, LLMClient, LLMRequest

from ..models import ConditionNodeConfig, NodeInput, NodeType, WorkflowRunContext
from .base import HandlerResult, NodeHandler, dump_outputs, outputs_as_json


EVALUATOR_SYSTEM_PROMPT = (
    "You are a condition evaluator. Given data and a condition, respond with "
    "exactly YES or NO. No explanation."
)

_MISSING = object()


def _as_text(value: Any) -> str:
    """Render a JSON value the way it is written in the editor."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def resolve_json_path(data: Any, path: str) -> Any:
    """Follow a dot path through nested dicts; returns a sentinel when it breaks."""
    value = data
    for key in path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return _MISSING
    return value


class ConditionHandler(NodeHandler):
    """
    Condition types:
    - contains: the condition text appears in the upstream outputs JSON
    - json_path: a dot path into the upstream outputs equals ``expectedValue``
    - llm_eval: a small model answers YES or NO

    The node's data is the boolean result.
    """

    node_type = NodeType.CONDITION

    def __init__(self, llm_client: Optional[LLMClient] = None, settings: Optional[Settings] = None):
        self.llm_client = llm_client
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def execute(
        self,
        config: ConditionNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        if config.condition_type == "contains":
            result = config.condition in dump_outputs(node_input.upstream_outputs)
        elif config.condition_type == "json_path":
            result = self._evaluate_json_path(config, node_input)
        else:
            result = self._evaluate_with_llm(config, node_input, ctx)

        return self.completed(data=result)

    def _evaluate_json_path(self, config: ConditionNodeConfig, node_input: NodeInput) -> bool:
        if not config.json_path or not config.expected_value:
            return False
        value = resolve_json_path(outputs_as_json(node_input.upstream_outputs), config.json_path)
        if value is _MISSING:
            return False
        return _as_text(value) == config.expected_value

    def _evaluate_with_llm(
        self,
        config: ConditionNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> bool:
        if self.llm_client is None:
            raise RuntimeError("llm_eval conditions need an LLM client")

        upstream = dump_outputs(node_input.upstream_outputs)
        request = LLMRequest(
            model=self.settings.condition_eval_model,
            max_tokens=10,
            temperature=0,
            system=EVALUATOR_SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": (
                        f"Given this data:\n{upstream}\n\n"
                        f"Evaluate: {config.condition}\n\nRespond YES or NO."
                    ),
                }
            ],
        )
        result = self.llm_client.call(
            request,
            LLMCallContext(
                project_id=ctx.project_id,
                agent_id="workflow-condition",
                session_id=ctx.workflow_run_id,
                agent_name="Workflow Condition",
            ),
        )
        answer = "".join(result.response.text_blocks()).strip().upper()
        return answer.startswith("YES")
