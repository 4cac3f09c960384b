"""Agent session runtime."""
from office_engine.runtime.contracts import (
    DEFAULT_SAFETY_LIMITS,
    ActionLogEntry,
    ActionRecord,
    ActionType,
    AgentContext,
    AgentModelConfig,
    AgentProfile,
    AgentSession,
    AgentStatus,
    ApprovalAction,
    ExecutionResult,
    MemoryEntry,
    SafetyLimits,
    SessionStatus,
)
from office_engine.runtime.executor import AgentExecutor, run_with_timeout, ToolTimeoutError
from office_engine.runtime.llm import (
    AnthropicLLMClient,
    LLMCallContext,
    LLMCallResult,
    LLMClient,
    LLMError,
    LLMRequest,
    LLMRequestError,
    LLMUnavailableError,
)
from office_engine.runtime.tools import (
    default_tool_registry,
    ToolDefinition,
    ToolExecutionContext,
    ToolRegistry,
)

__all__ = [
    "ActionLogEntry",
    "ActionRecord",
    "ActionType",
    "AgentContext",
    "AgentExecutor",
    "AgentModelConfig",
    "AgentProfile",
    "AgentSession",
    "AnthropicLLMClient",
    "AgentStatus",
    "ApprovalAction",
    "DEFAULT_SAFETY_LIMITS",
    "default_tool_registry",
    "ExecutionResult",
    "LLMCallContext",
    "LLMCallResult",
    "LLMClient",
    "LLMError",
    "LLMRequest",
    "LLMRequestError",
    "LLMUnavailableError",
    "MemoryEntry",
    "run_with_timeout",
    "SafetyLimits",
    "SessionStatus",
    "ToolDefinition",
    "ToolExecutionContext",
    "ToolRegistry",
    "ToolTimeoutError",
]
