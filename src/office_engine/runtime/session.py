"""Assemble agent sessions from stored agent profiles."""
import uuid
from typing import Any

from pydantic import BaseModel

from office_engine.config.settings import Settings
from office_engine.runtime.contracts import (
    AgentContext,
    AgentProfile,
    AgentSession,
    MemoryEntry,
    SafetyLimits,
)
from office_engine.runtime.tools import ToolRegistry


class PreparedSession(BaseModel):
    """Everything AgentExecutor.execute needs for one session."""

    context: AgentContext
    session: AgentSession
    limits: SafetyLimits


def session_limits(profile: AgentProfile, settings: Settings) -> SafetyLimits:
    """Default limits with the agent's action cap and token budget applied."""
    return settings.default_safety_limits().model_copy(
        update={
            "max_actions_per_session": profile.max_actions_per_session,
            "max_tokens_per_session": profile.token_budget(),
        }
    )


def prepare_session(
    profile: AgentProfile,
    project_id: str,
    tool_registry: ToolRegistry,
    memory: list[MemoryEntry],
    settings: Settings,
    trigger_payload: Any = None,
    conversation_history: list[dict[str, Any]] | None = None,
    session_id: str | None = None,
) -> PreparedSession:
    """
    Build context, session and limits for an agent.

    Tools are the agent's named tools, or every registered tool when the
    profile does not restrict them.
    """
    tools = (
        tool_registry.get_by_names(profile.tools)
        if profile.tools is not None
        else tool_registry.get_all()
    )
    context = AgentContext(
        agent=profile.model_config_for_session(),
        system_prompt=profile.default_system_prompt(),
        tools=tools,
        memory=memory,
        conversation_history=conversation_history or [],
        trigger_payload=trigger_payload,
        approval_overrides=profile.approval_overrides,
    )
    session = AgentSession(
        session_id=session_id or str(uuid.uuid4()),
        agent_id=profile.id,
        project_id=project_id,
    )
    return PreparedSession(
        context=context,
        session=session,
        limits=session_limits(profile, settings),
    )
