"""
Agent Session Executor - bounded LLM/tool loop.

All sessions run in sync Celery workers: the loop is synchronous, tool calls
run one at a time and each one is bounded by a hard timeout.
"""
import json
import threading
import time
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel, ValidationError

from office_engine.observability import get_logger, with_trace_context
from office_engine.runtime.contracts import (
    DEFAULT_SAFETY_LIMITS,
    ActionLogEntry,
    ActionRecord,
    ActionType,
    AgentContext,
    AgentSession,
    ApprovalAction,
    ExecutionResult,
    SafetyLimits,
    SessionStatus,
)
from office_engine.runtime.llm import LLMCallContext, LLMClient, LLMRequest
from office_engine.runtime.tools import ToolExecutionContext

if TYPE_CHECKING:
    from office_engine.storage.base import ExecutionStore

logger = get_logger(__name__)

DEFAULT_TRIGGER = "Start your work."
MAX_TRIGGER_CHARS = 10_000
TRUNCATION_NOTICE = "\n[Response truncated: max_tokens reached]"
TRUNCATED_RESULT_SUFFIX = "... [truncated]"
APPROVAL_REQUIRED_MESSAGE = "This action requires human approval. Session paused for review."


class ToolTimeoutError(Exception):
    """Raised when a tool call exceeds its hard timeout."""

    pass


def run_with_timeout(func: Callable, timeout_seconds: float, *args, **kwargs) -> Any:
    """
    Run a function in a worker thread with a hard timeout.

    Python threads can't be killed: on timeout the worker is abandoned and
    keeps running in the background.

    Raises:
        ToolTimeoutError: If the function does not finish in time
    """
    result_holder: list[Any] = [None]
    exception_holder: list[BaseException | None] = [None]

    def target():
        try:
            result_holder[0] = func(*args, **kwargs)
        except Exception as e:
            exception_holder[0] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join(timeout=timeout_seconds)

    if thread.is_alive():
        raise ToolTimeoutError("Tool execution timeout")

    if exception_holder[0] is not None:
        raise exception_holder[0]

    return result_holder[0]


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def safe_stringify(value: Any) -> str:
    """JSON-encode a value, falling back to ``str()``."""
    try:
        return json.dumps(_to_jsonable(value))
    except (TypeError, ValueError):
        return str(value)


def build_user_turn(context: AgentContext) -> str:
    """First user turn: trigger text, prefixed by the agent memory when present."""
    payload = context.trigger_payload
    if payload is None or payload == "":
        trigger = DEFAULT_TRIGGER
    else:
        trigger = payload if isinstance(payload, str) else safe_stringify(payload)
        trigger = trigger[:MAX_TRIGGER_CHARS]

    if not context.memory:
        return trigger

    memory_text = "\n".join(
        f"[{entry.key}]: {safe_stringify(entry.value)}" for entry in context.memory
    )
    return f"[System: Agent Memory]\n{memory_text}\n\n[User Trigger] {trigger}"


def build_messages(context: AgentContext) -> list[dict[str, Any]]:
    """Conversation history plus the user turn, never two user turns in a row."""
    messages = [dict(message) for message in context.conversation_history]
    user_turn = build_user_turn(context)

    if messages and messages[-1].get("role") == "user":
        existing = messages[-1].get("content")
        if not isinstance(existing, str):
            existing = safe_stringify(existing)
        messages[-1] = {"role": "user", "content": f"{existing}\n\n{user_turn}"}
    else:
        messages.append({"role": "user", "content": user_turn})

    return messages


class AgentExecutor:
    """
    Runs one agent session: alternates LLM calls with tool execution until the
    model answers in text only or a safety limit aborts the session.

    HARD LIMITS (checked before every LLM call, in order):
    - max actions (LLM calls and successful tool calls both count)
    - token budget
    - wall-clock duration
    - consecutive errors
    """

    def __init__(
        self,
        llm_client: LLMClient,
        audit_store: "ExecutionStore | None" = None,
        tool_timeout_s: float = 60.0,
        max_tool_result_chars: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize executor.

        Args:
            llm_client: Client used for every model call
            audit_store: Optional store receiving one action log per tool call
            tool_timeout_s: Hard timeout for a single tool call
            max_tool_result_chars: Tool results are truncated to this length
            clock: Monotonic clock in seconds
            sleep: Sleep function used to space tool calls
        """
        self.llm_client = llm_client
        self.audit_store = audit_store
        self.tool_timeout_s = tool_timeout_s
        self.max_tool_result_chars = max_tool_result_chars
        self._clock = clock
        self._sleep = sleep

    def execute(
        self,
        context: AgentContext,
        session: AgentSession,
        limits: SafetyLimits | None = None,
    ) -> ExecutionResult:
        """
        Execute an agent session.

        Args:
            context: Agent, prompt, tools, memory and trigger
            session: Session state, mutated in place
            limits: Safety limits (defaults when omitted)

        Returns:
            ExecutionResult with every recorded action
        """
        limits = limits or DEFAULT_SAFETY_LIMITS
        start = self._clock()
        actions: list[ActionRecord] = []
        consecutive_errors = 0
        last_tool_call_at: float | None = None
        final_response: str | None = None

        extra = with_trace_context(
            logger,
            session_id=session.session_id,
            agent_id=session.agent_id,
            project_id=session.project_id,
        )

        messages = build_messages(context)
        tools_by_name = {tool.name: tool for tool in context.tools}
        llm_tools = [tool.to_llm_tool() for tool in context.tools]
        call_context = LLMCallContext(
            project_id=session.project_id,
            agent_id=session.agent_id,
            session_id=session.session_id,
            agent_name=context.agent.name,
        )

        logger.info("Agent session started", extra={**extra, "tools": len(llm_tools)})
        session.status = SessionStatus.RUNNING

        while session.status == SessionStatus.RUNNING:
            abort_reason = self._check_limits(session, limits, consecutive_errors, start)
            if abort_reason:
                session.status = SessionStatus.ABORTED
                session.abort_reason = abort_reason
                break

            request = LLMRequest(
                model=context.agent.model,
                max_tokens=context.agent.max_tokens,
                temperature=context.agent.temperature,
                system=context.system_prompt,
                messages=messages,
                tools=llm_tools or None,
            )

            llm_start = self._clock()
            try:
                llm_result = self.llm_client.call(request, call_context)
            except Exception as e:
                consecutive_errors += 1
                session.action_count += 1
                actions.append(
                    ActionRecord(
                        type=ActionType.LLM_CALL,
                        duration_ms=self._elapsed_ms(llm_start),
                        error=str(e),
                    )
                )
                logger.warning(
                    "LLM call failed",
                    extra={**extra, "error": str(e), "consecutive_errors": consecutive_errors},
                )
                continue

            consecutive_errors = 0
            session.action_count += 1
            session.total_tokens += llm_result.metadata.total_tokens
            session.total_cost_usd += llm_result.metadata.cost_usd
            actions.append(
                ActionRecord(
                    type=ActionType.LLM_CALL,
                    tokens_used=llm_result.metadata.total_tokens,
                    cost_usd=llm_result.metadata.cost_usd,
                    duration_ms=llm_result.metadata.duration_ms,
                )
            )

            response = llm_result.response

            if response.stop_reason == "max_tokens":
                final_response = "\n".join(response.text_blocks()) + TRUNCATION_NOTICE
                session.status = SessionStatus.ABORTED
                session.abort_reason = "Response truncated (max_tokens reached)"
                break

            tool_uses = response.tool_use_blocks()
            if not tool_uses:
                final_response = "\n".join(response.text_blocks())
                session.status = SessionStatus.COMPLETED
                break

            messages.append({"role": "assistant", "content": response.content_params()})

            tool_results: list[dict[str, Any]] = []

            for tool_use in tool_uses:
                if session.action_count >= limits.max_actions_per_session:
                    session.status = SessionStatus.ABORTED
                    session.abort_reason = f"Max actions reached ({limits.max_actions_per_session})"
                    break

                tool = tools_by_name.get(tool_use.name)

                if tool is None:
                    tool_results.append(
                        _tool_result(tool_use.id, f'Error: Unknown tool "{tool_use.name}"', True)
                    )
                    continue

                override = context.approval_overrides.get(tool.name)

                if override == ApprovalAction.ALWAYS_BLOCK:
                    tool_results.append(
                        _tool_result(
                            tool_use.id,
                            f'Error: Tool "{tool.name}" is blocked by policy',
                            True,
                        )
                    )
                    consecutive_errors += 1
                    continue

                requires_approval = (
                    override == ApprovalAction.REQUIRE_APPROVAL
                    or (tool.requires_approval and override != ApprovalAction.ALWAYS_ALLOW)
                )
                if requires_approval:
                    tool_results.append(
                        _tool_result(tool_use.id, APPROVAL_REQUIRED_MESSAGE, False)
                    )
                    session.status = SessionStatus.ABORTED
                    session.abort_reason = f'Awaiting approval for tool "{tool.name}"'
                    logger.info(
                        "Session paused for approval",
                        extra={**extra, "tool_name": tool.name},
                    )
                    break

                try:
                    parsed_input = tool.input_model.model_validate(tool_use.input)
                except ValidationError as e:
                    tool_results.append(
                        _tool_result(tool_use.id, f"Input validation error: {e}", True)
                    )
                    consecutive_errors += 1
                    continue

                if last_tool_call_at is not None:
                    since_last_ms = (self._clock() - last_tool_call_at) * 1000
                    if since_last_ms < limits.tool_call_min_interval_ms:
                        self._sleep((limits.tool_call_min_interval_ms - since_last_ms) / 1000)

                tool_start = self._clock()
                tool_context = ToolExecutionContext(
                    agent_id=session.agent_id,
                    project_id=session.project_id,
                    session_id=session.session_id,
                )

                try:
                    result = run_with_timeout(
                        tool.execute, self.tool_timeout_s, parsed_input, tool_context
                    )
                except Exception as e:
                    duration_ms = self._elapsed_ms(tool_start)
                    tool_results.append(_tool_result(tool_use.id, f"Error: {e}", True))
                    actions.append(
                        ActionRecord(
                            type=ActionType.TOOL_CALL,
                            tool_name=tool.name,
                            input=tool_use.input,
                            error=str(e),
                            duration_ms=duration_ms,
                        )
                    )
                    consecutive_errors += 1
                    logger.warning(
                        "Tool call failed",
                        extra={**extra, "tool_name": tool.name, "error": str(e)},
                    )
                    self._audit(
                        ActionLogEntry(
                            project_id=session.project_id,
                            agent_id=session.agent_id,
                            session_id=session.session_id,
                            action_type="tool_call",
                            tool_name=tool.name,
                            input=tool_use.input,
                            status="failed",
                            error=str(e),
                            duration_ms=duration_ms,
                        )
                    )
                    continue

                duration_ms = self._elapsed_ms(tool_start)
                last_tool_call_at = self._clock()

                result_text = safe_stringify(result)
                if len(result_text) > self.max_tool_result_chars:
                    result_text = result_text[: self.max_tool_result_chars] + TRUNCATED_RESULT_SUFFIX

                tool_results.append(_tool_result(tool_use.id, result_text))
                session.action_count += 1
                output = _to_jsonable(result)
                actions.append(
                    ActionRecord(
                        type=ActionType.TOOL_CALL,
                        tool_name=tool.name,
                        input=tool_use.input,
                        output=output,
                        duration_ms=duration_ms,
                    )
                )
                self._audit(
                    ActionLogEntry(
                        project_id=session.project_id,
                        agent_id=session.agent_id,
                        session_id=session.session_id,
                        action_type="tool_call",
                        tool_name=tool.name,
                        input=tool_use.input,
                        output=output,
                        status="completed",
                        duration_ms=duration_ms,
                    )
                )
                consecutive_errors = 0

            # Approval pauses and the action cap end the session mid-turn
            if session.status != SessionStatus.RUNNING:
                break

            messages.append({"role": "user", "content": tool_results})

        if session.status == SessionStatus.RUNNING:
            session.status = SessionStatus.COMPLETED

        duration_ms = self._elapsed_ms(start)
        logger.info(
            "Agent session finished",
            extra={
                **extra,
                "status": session.status.value,
                "action_count": session.action_count,
                "total_tokens": session.total_tokens,
                "abort_reason": session.abort_reason,
                "duration_ms": duration_ms,
            },
        )

        return ExecutionResult(
            session_id=session.session_id,
            status=session.status,
            actions=actions,
            final_response=final_response,
            action_count=session.action_count,
            total_tokens=session.total_tokens,
            total_cost_usd=session.total_cost_usd,
            duration_ms=duration_ms,
            abort_reason=session.abort_reason,
        )

    def _check_limits(
        self,
        session: AgentSession,
        limits: SafetyLimits,
        consecutive_errors: int,
        start: float,
    ) -> str | None:
        """Return the abort reason of the first limit that is hit."""
        if session.action_count >= limits.max_actions_per_session:
            return f"Max actions reached ({limits.max_actions_per_session})"
        if session.total_tokens >= limits.max_tokens_per_session:
            return f"Token budget exceeded ({limits.max_tokens_per_session})"
        if (self._clock() - start) * 1000 >= limits.max_duration_ms:
            return f"Max duration exceeded ({limits.max_duration_ms}ms)"
        if consecutive_errors >= limits.max_consecutive_errors:
            return f"Too many consecutive errors ({limits.max_consecutive_errors})"
        return None

    def _elapsed_ms(self, since: float) -> int:
        return int(round((self._clock() - since) * 1000))

    def _audit(self, entry: ActionLogEntry) -> None:
        if self.audit_store is None:
            return
        try:
            self.audit_store.append_action_log(entry)
        except Exception:
            logger.error(
                "Failed to write tool action log",
                extra={"session_id": entry.session_id, "tool_name": entry.tool_name},
                exc_info=True,
            )


def _tool_result(tool_use_id: str, content: str, is_error: bool | None = None) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": content,
    }
    if is_error is not None:
        block["is_error"] = is_error
    return block

