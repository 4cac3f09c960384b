"""Agent node - runs one agent session and returns its final text."""

from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol

from office_engine.config import get_settings
from office_engine.config.settings import Settings
from office_engine.observability import get_logger, with_trace_context
from office_engine.runtime.contracts import AgentProfile, MemoryEntry, SessionStatus
from office_engine.runtime.executor import AgentExecutor
from office_engine.runtime.session import prepare_session
from office_engine.runtime.tools import ToolRegistry

from ..models import AgentNodeConfig, NodeInput, NodeType, WorkflowRunContext
from .base import HandlerResult, NodeHandler, outputs_as_json, resolve_template


logger = get_logger(__name__)


class AgentDirectory(Protocol):
    """Where agent profiles and their memory come from."""

    def get_agent(self, agent_id: str) -> Optional[AgentProfile]: ...

    def load_memory(self, agent_id: str, project_id: str) -> List[MemoryEntry]: ...


class AgentHandler(NodeHandler):
    """
    Builds an agent context from the stored profile and the upstream outputs,
    then runs a bounded session.

    The node completes only when the session completed; aborted sessions
    (limits, approval required) produce a failed output and the run goes on.
    """

    node_type = NodeType.AGENT

    def __init__(
        self,
        executor: AgentExecutor,
        tool_registry: ToolRegistry,
        agents: AgentDirectory,
        settings: Optional[Settings] = None,
        session_id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.executor = executor
        self.tool_registry = tool_registry
        self.agents = agents
        self._settings = settings
        self._session_id_factory = session_id_factory

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def execute(
        self,
        config: AgentNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        profile = self.agents.get_agent(config.agent_id)
        if profile is None:
            return self.failed(data={"error": f"Agent not found: {config.agent_id}"})

        trigger_payload: Dict[str, Any] = {
            "workflowRunId": ctx.workflow_run_id,
            "variables": dict(ctx.variables),
            "upstreamOutputs": outputs_as_json(node_input.upstream_outputs),
        }
        if config.prompt_template:
            prompt = resolve_template(config.prompt_template, node_input.variables)
            if prompt:
                trigger_payload["prompt"] = prompt

        prepared = prepare_session(
            profile,
            ctx.project_id,
            self.tool_registry,
            self.agents.load_memory(profile.id, ctx.project_id),
            self.settings,
            trigger_payload=trigger_payload,
            session_id=self._session_id_factory(),
        )

        logger.info(
            "Running agent node",
            extra=with_trace_context(
                logger,
                session_id=prepared.session.session_id,
                agent_id=profile.id,
                project_id=ctx.project_id,
                workflow_id=ctx.workflow_id,
                workflow_run_id=ctx.workflow_run_id,
            ),
        )

        result = self.executor.execute(prepared.context, prepared.session, prepared.limits)

        data = {
            "agentId": profile.id,
            "agentName": profile.name,
            "sessionId": result.session_id,
            "status": result.status.value,
            "totalTokens": result.total_tokens,
            "totalCostUsd": result.total_cost_usd,
            "durationMs": result.duration_ms,
            "actionsCount": len(result.actions),
            "actionCount": result.action_count,
            "abortReason": result.abort_reason,
            "finalResponse": result.final_response,
        }
        if result.status == SessionStatus.COMPLETED:
            return self.completed(data=data, response=result.final_response)
        return self.failed(data=data, response=result.final_response)
