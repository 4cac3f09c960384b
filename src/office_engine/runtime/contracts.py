"""Runtime contracts and data models for agent sessions."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from office_engine.runtime.tools import ToolDefinition


class SessionStatus(str, Enum):
    """Agent session status."""

    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERROR = "error"


class ActionType(str, Enum):
    """Kind of step recorded during a session."""

    LLM_CALL = "llm_call"
    TOOL_CALL = "tool_call"


class ApprovalAction(str, Enum):
    """Per-agent override of a tool's approval requirement."""

    ALWAYS_ALLOW = "always_allow"
    ALWAYS_BLOCK = "always_block"
    REQUIRE_APPROVAL = "require_approval"


class AgentStatus(str, Enum):
    """Availability of an agent for new sessions."""

    IDLE = "idle"
    WORKING = "working"
    ERROR = "error"


class SafetyLimits(BaseModel):
    """Ceilings that bound one agent session."""

    model_config = ConfigDict(frozen=True)

    max_actions_per_session: int = Field(default=20, gt=0)
    max_tokens_per_session: int = Field(default=100_000, gt=0)
    max_duration_ms: int = Field(default=5 * 60 * 1000, gt=0)
    max_consecutive_errors: int = Field(default=3, gt=0)
    tool_call_min_interval_ms: int = Field(default=2_000, ge=0)


DEFAULT_SAFETY_LIMITS = SafetyLimits()


class AgentSession(BaseModel):
    """Active execution session for an agent. Mutated in place by the executor."""

    session_id: str = Field(..., description="Session ID")
    agent_id: str = Field(..., description="Agent ID")
    project_id: str = Field(..., description="Project ID")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: SessionStatus = Field(default=SessionStatus.RUNNING)
    action_count: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    abort_reason: str | None = None


class ActionRecord(BaseModel):
    """Individual action recorded during execution."""

    model_config = ConfigDict(frozen=True)

    type: ActionType
    tool_name: str | None = None
    input: Any = None
    output: Any = None
    tokens_used: int | None = None
    cost_usd: float | None = None
    duration_ms: int = 0
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class AgentModelConfig(BaseModel):
    """Identity and model parameters of the agent being run."""

    id: str
    name: str
    archetype: str = "generalist"
    model: str = "claude-sonnet-4-6"
    temperature: float = Field(default=0.7, ge=0, le=1)
    max_tokens: int = Field(default=4096, gt=0)


class MemoryEntry(BaseModel):
    """Key/value memory item injected into the first user turn."""

    key: str
    value: Any = None


class AgentContext(BaseModel):
    """Full context assembled before calling the model."""

    agent: AgentModelConfig
    system_prompt: str
    tools: list[ToolDefinition] = Field(default_factory=list)
    memory: list[MemoryEntry] = Field(default_factory=list)
    conversation_history: list[dict[str, Any]] = Field(default_factory=list)
    trigger_payload: Any = None
    approval_overrides: dict[str, ApprovalAction] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """Result of a complete agent execution session."""

    session_id: str
    status: SessionStatus
    actions: list[ActionRecord] = Field(default_factory=list)
    final_response: str | None = None
    action_count: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    duration_ms: int = 0
    abort_reason: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def summary(self) -> dict[str, Any]:
        """Terminal summary suitable for persistence by the caller."""
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "action_count": self.action_count,
            "actions": len(self.actions),
            "total_tokens": self.total_tokens,
            "total_cost_usd": self.total_cost_usd,
            "duration_ms": self.duration_ms,
            "abort_reason": self.abort_reason,
            "final_response": self.final_response,
        }


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class ActionLogEntry(BaseModel):
    """Append-only audit entry for one model call or tool call."""

    project_id: str
    agent_id: str
    session_id: str
    action_type: str = Field(..., description="'llm_response' or 'tool_call'")
    tool_name: str | None = None
    input: Any = None
    output: Any = None
    status: str = Field(..., description="'completed' or 'failed'")
    error: str | None = None
    tokens_used: int | None = None
    cost_usd: float | None = None
    duration_ms: int = 0
    created_at: str = Field(default_factory=utc_now_iso)


class AgentProfile(BaseModel):
    """Stored configuration of an agent, as loaded by agent nodes and session jobs."""

    id: str
    project_id: str
    name: str
    archetype: str = "generalist"
    system_prompt: str | None = None
    model: str = "claude-sonnet-4-6"
    temperature: float = 0.7
    max_tokens: int = 4096
    budget: float | None = Field(
        default=1.0,
        description="Token budget in units of 100k tokens",
    )
    tools: list[str] | None = Field(
        default=None,
        description="Tool names available to the agent (None = every registered tool)",
    )
    max_actions_per_session: int = 20
    approval_overrides: dict[str, ApprovalAction] = Field(default_factory=dict)
    is_active: bool = True

    def token_budget(self) -> int:
        """Maximum tokens per session derived from the budget."""
        return int(self.budget * 100_000) if self.budget else 100_000

    def model_config_for_session(self) -> AgentModelConfig:
        return AgentModelConfig(
            id=self.id,
            name=self.name,
            archetype=self.archetype,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def default_system_prompt(self) -> str:
        return self.system_prompt or (
            f"You are {self.name}, a {self.archetype} agent. "
            "Complete the assigned task using the available tools."
        )
