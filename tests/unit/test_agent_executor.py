"""Unit tests for the agent session executor."""
import json
import time

import pytest
from conftest import EmptyInput, FakeLLMClient, llm_result, make_tool, tool_use

from office_engine.runtime.contracts import (
    ActionType,
    AgentContext,
    AgentModelConfig,
    AgentSession,
    ApprovalAction,
    MemoryEntry,
    SafetyLimits,
    SessionStatus,
)
from office_engine.runtime.executor import (
    AgentExecutor,
    build_messages,
    build_user_turn,
    DEFAULT_TRIGGER,
    run_with_timeout,
    ToolTimeoutError,
)
from office_engine.runtime.tools import CURRENT_TIME_TOOL, ToolRegistry


NO_INTERVAL = SafetyLimits(tool_call_min_interval_ms=0)


def make_context(tools=None, **kwargs):
    return AgentContext(
        agent=AgentModelConfig(id="agent-1", name="Ana", archetype="analyst"),
        system_prompt="You are Ana.",
        tools=tools or [],
        **kwargs,
    )


def make_session():
    return AgentSession(session_id="session-1", agent_id="agent-1", project_id="project-1")


def make_executor(llm, clock, **kwargs):
    return AgentExecutor(llm, clock=clock, sleep=clock.sleep, **kwargs)


class FailingStore:
    """Audit store whose writes always fail."""

    def append_action_log(self, entry):
        raise ConnectionError("store is down")


class TestUserTurn:
    """Test construction of the first user turn."""

    @pytest.mark.parametrize("payload", [None, ""])
    def test_empty_trigger_uses_default(self, payload):
        assert build_user_turn(make_context(trigger_payload=payload)) == DEFAULT_TRIGGER

    def test_object_trigger_is_json(self):
        turn = build_user_turn(make_context(trigger_payload={"task": "report"}))

        assert json.loads(turn) == {"task": "report"}

    def test_long_trigger_is_capped(self):
        turn = build_user_turn(make_context(trigger_payload="x" * 20_000))

        assert len(turn) == 10_000

    def test_memory_prefix(self):
        context = make_context(
            trigger_payload="Write the weekly report",
            memory=[MemoryEntry(key="tone", value="formal"), MemoryEntry(key="count", value=3)],
        )

        turn = build_user_turn(context)

        assert turn == (
            '[System: Agent Memory]\n[tone]: "formal"\n[count]: 3\n\n'
            "[User Trigger] Write the weekly report"
        )

    def test_trailing_user_turn_is_merged(self):
        context = make_context(
            trigger_payload="Now continue",
            conversation_history=[
                {"role": "assistant", "content": "Hello"},
                {"role": "user", "content": "Earlier question"},
            ],
        )

        messages = build_messages(context)

        assert len(messages) == 2
        assert messages[-1] == {"role": "user", "content": "Earlier question\n\nNow continue"}

    def test_history_is_not_mutated(self):
        history = [{"role": "user", "content": "Earlier"}]
        context = make_context(trigger_payload="Next", conversation_history=history)

        build_messages(context)

        assert context.conversation_history == [{"role": "user", "content": "Earlier"}]


class TestAgentLoop:
    """Test the main LLM/tool loop."""

    def test_no_tools_completes_with_text(self, fake_llm, fake_clock):
        fake_llm.queue(llm_result("All done."))
        session = make_session()

        result = make_executor(fake_llm, fake_clock).execute(make_context(), session, NO_INTERVAL)

        assert result.status == SessionStatus.COMPLETED
        assert len(result.actions) == 1
        assert result.actions[0].type == ActionType.LLM_CALL
        assert result.final_response == "All done."
        assert result.action_count == 1
        assert result.total_tokens == 15
        assert session.status == SessionStatus.COMPLETED
        assert fake_llm.requests[0].tools is None
        assert fake_llm.requests[0].system == "You are Ana."

    def test_one_tool_round_trip(self, fake_llm, fake_clock):
        fake_llm.queue(
            llm_result([{"type": "text", "text": "Checking"}, tool_use("get_current_time")], stop_reason="tool_use"),
            llm_result("It is late."),
        )

        result = make_executor(fake_llm, fake_clock).execute(
            make_context(tools=[CURRENT_TIME_TOOL]), make_session(), NO_INTERVAL
        )

        assert [action.type for action in result.actions] == [
            ActionType.LLM_CALL,
            ActionType.TOOL_CALL,
            ActionType.LLM_CALL,
        ]
        assert result.actions[1].tool_name == "get_current_time"
        assert "timestamp" in result.actions[1].output
        assert result.status == SessionStatus.COMPLETED
        assert result.action_count == 3
        assert result.final_response == "It is late."

        # Second call sees the assistant turn and the tool results as one user turn
        second = fake_llm.requests[1].messages
        assert second[-2]["role"] == "assistant"
        assert second[-2]["content"][1]["type"] == "tool_use"
        assert second[-1]["role"] == "user"
        [block] = second[-1]["content"]
        assert block["type"] == "tool_result"
        assert block["tool_use_id"] == "toolu_1"
        assert "is_error" not in block

    def test_tokens_and_cost_accumulate(self, fake_llm, fake_clock):
        echo = make_tool("echo")
        fake_llm.queue(
            llm_result([tool_use("echo", {"text": "hi"})], stop_reason="tool_use", cost_usd=0.01),
            llm_result("done", cost_usd=0.02),
        )

        result = make_executor(fake_llm, fake_clock).execute(
            make_context(tools=[echo]), make_session(), NO_INTERVAL
        )

        assert result.total_tokens == 30
        assert result.total_cost_usd == pytest.approx(0.03)

    def test_max_tokens_stop_aborts_with_partial_text(self, fake_llm, fake_clock):
        fake_llm.queue(llm_result("Partial answer", stop_reason="max_tokens"))

        result = make_executor(fake_llm, fake_clock).execute(make_context(), make_session(), NO_INTERVAL)

        assert result.status == SessionStatus.ABORTED
        assert result.abort_reason == "Response truncated (max_tokens reached)"
        assert result.final_response == "Partial answer\n[Response truncated: max_tokens reached]"

    def test_unknown_tool_returns_error_result(self, fake_llm, fake_clock):
        fake_llm.queue(
            llm_result([tool_use("missing_tool")], stop_reason="tool_use"),
            llm_result("ok"),
        )

        result = make_executor(fake_llm, fake_clock).execute(make_context(), make_session(), NO_INTERVAL)

        assert result.status == SessionStatus.COMPLETED
        [block] = fake_llm.requests[1].messages[-1]["content"]
        assert block["content"] == 'Error: Unknown tool "missing_tool"'
        assert block["is_error"] is True

    def test_validation_error_is_fed_back(self, fake_llm, fake_clock):
        calls = []
        echo = make_tool("echo", execute=lambda data, ctx: calls.append(data))
        fake_llm.queue(
            llm_result([tool_use("echo", {"wrong": 1})], stop_reason="tool_use"),
            llm_result("ok"),
        )

        result = make_executor(fake_llm, fake_clock).execute(
            make_context(tools=[echo]), make_session(), NO_INTERVAL
        )

        assert calls == []
        assert result.status == SessionStatus.COMPLETED
        [block] = fake_llm.requests[1].messages[-1]["content"]
        assert block["content"].startswith("Input validation error:")
        assert block["is_error"] is True

    def test_tool_exception_is_recorded(self, fake_llm, fake_clock, store):
        def explode(data, ctx):
            raise RuntimeError("boom")

        fake_llm.queue(
            llm_result([tool_use("explode", {})], stop_reason="tool_use"),
            llm_result("recovered"),
        )
        tool = make_tool("explode", execute=explode, input_model=EmptyInput)

        result = make_executor(fake_llm, fake_clock, audit_store=store).execute(
            make_context(tools=[tool]), make_session(), NO_INTERVAL
        )

        assert result.status == SessionStatus.COMPLETED
        failed = result.actions[1]
        assert failed.type == ActionType.TOOL_CALL
        assert failed.error == "boom"
        # Failed tool calls do not count as actions
        assert result.action_count == 2
        [block] = fake_llm.requests[1].messages[-1]["content"]
        assert block == {
            "type": "tool_result",
            "tool_use_id": "toolu_1",
            "content": "Error: boom",
            "is_error": True,
        }
        [log] = store.list_action_logs("session-1")
        assert log.status == "failed"
        assert log.error == "boom"

    def test_tool_context_identifies_session(self, fake_llm, fake_clock):
        seen = []
        tool = make_tool("probe", execute=lambda data, ctx: seen.append(ctx) or "ok", input_model=EmptyInput)
        fake_llm.queue(llm_result([tool_use("probe")], stop_reason="tool_use"), llm_result("ok"))

        make_executor(fake_llm, fake_clock).execute(make_context(tools=[tool]), make_session(), NO_INTERVAL)

        [ctx] = seen
        assert (ctx.agent_id, ctx.project_id, ctx.session_id) == ("agent-1", "project-1", "session-1")

    def test_llm_calls_are_attributed(self, fake_llm, fake_clock):
        fake_llm.queue(llm_result("hi"))

        make_executor(fake_llm, fake_clock).execute(make_context(), make_session(), NO_INTERVAL)

        [context] = fake_llm.contexts
        assert context.session_id == "session-1"
        assert context.agent_name == "Ana"


class TestSafetyLimits:
    """Test the four safety gates."""

    @pytest.mark.parametrize("max_actions", [1, 2, 3, 5])
    def test_action_budget_is_never_exceeded(self, fake_clock, max_actions):
        echo = make_tool("echo")
        # The model never stops asking for tools
        llm = FakeLLMClient(
            *[
                llm_result(
                    [tool_use("echo", {"text": "a"}, "t1"), tool_use("echo", {"text": "b"}, "t2")],
                    stop_reason="tool_use",
                )
                for _ in range(max_actions + 1)
            ]
        )
        limits = SafetyLimits(max_actions_per_session=max_actions, tool_call_min_interval_ms=0)

        result = make_executor(llm, fake_clock).execute(make_context(tools=[echo]), make_session(), limits)

        assert result.status == SessionStatus.ABORTED
        assert result.abort_reason == f"Max actions reached ({max_actions})"
        assert result.action_count <= max_actions

    def test_token_budget(self, fake_llm, fake_clock):
        echo = make_tool("echo")
        fake_llm.queue(
            llm_result([tool_use("echo", {"text": "a"})], stop_reason="tool_use", input_tokens=600, output_tokens=500)
        )
        limits = SafetyLimits(max_tokens_per_session=1_000, tool_call_min_interval_ms=0)

        result = make_executor(fake_llm, fake_clock).execute(make_context(tools=[echo]), make_session(), limits)

        assert result.status == SessionStatus.ABORTED
        assert result.abort_reason == "Token budget exceeded (1000)"
        assert len(fake_llm.requests) == 1

    def test_duration_limit(self, fake_clock):
        slow_clock = fake_clock

        class SlowLLM(FakeLLMClient):
            def call(self, request, context):
                slow_clock.advance(2)
                return super().call(request, context)

        echo = make_tool("echo")
        llm = SlowLLM(llm_result([tool_use("echo", {"text": "a"})], stop_reason="tool_use"))
        limits = SafetyLimits(max_duration_ms=1_000, tool_call_min_interval_ms=0)

        result = make_executor(llm, fake_clock).execute(make_context(tools=[echo]), make_session(), limits)

        assert result.status == SessionStatus.ABORTED
        assert result.abort_reason == "Max duration exceeded (1000ms)"

    def test_llm_failures_count_as_actions_and_errors(self, fake_llm, fake_clock):
        fake_llm.queue(RuntimeError("down"), RuntimeError("down"), RuntimeError("down"))

        result = make_executor(fake_llm, fake_clock).execute(make_context(), make_session(), NO_INTERVAL)

        assert result.status == SessionStatus.ABORTED
        assert result.abort_reason == "Too many consecutive errors (3)"
        assert result.action_count == 3
        assert [action.error for action in result.actions] == ["down"] * 3
        assert result.final_response is None

    def test_success_resets_consecutive_errors(self, fake_llm, fake_clock):
        echo = make_tool("echo")
        fake_llm.queue(
            RuntimeError("down"),
            RuntimeError("down"),
            llm_result([tool_use("echo", {"text": "a"})], stop_reason="tool_use"),
            RuntimeError("down"),
            RuntimeError("down"),
            llm_result("finally"),
        )

        result = make_executor(fake_llm, fake_clock).execute(
            make_context(tools=[echo]), make_session(), NO_INTERVAL
        )

        assert result.status == SessionStatus.COMPLETED
        assert result.final_response == "finally"

    def test_gates_are_checked_in_order(self, fake_llm, fake_clock):
        session = make_session()
        session.action_count = 5
        session.total_tokens = 10_000
        limits = SafetyLimits(max_actions_per_session=5, max_tokens_per_session=100)

        result = make_executor(fake_llm, fake_clock).execute(make_context(), session, limits)

        assert result.abort_reason == "Max actions reached (5)"
        assert fake_llm.requests == []

    def test_tool_calls_are_spaced(self, fake_llm, fake_clock):
        echo = make_tool("echo")
        fake_llm.queue(
            llm_result(
                [tool_use("echo", {"text": "a"}, "t1"), tool_use("echo", {"text": "b"}, "t2")],
                stop_reason="tool_use",
            ),
            llm_result("done"),
        )
        limits = SafetyLimits(tool_call_min_interval_ms=2_000)

        make_executor(fake_llm, fake_clock).execute(make_context(tools=[echo]), make_session(), limits)

        assert fake_clock.sleeps == [pytest.approx(2.0)]


class TestApproval:
    """Test tools that need human approval."""

    def test_approval_short_circuit(self, fake_llm, fake_clock):
        calls = []
        tool = make_tool("send_email", execute=lambda data, ctx: calls.append(data), requires_approval=True)
        fake_llm.queue(llm_result([tool_use("send_email", {"text": "hi"})], stop_reason="tool_use"))

        result = make_executor(fake_llm, fake_clock).execute(make_context(tools=[tool]), make_session(), NO_INTERVAL)

        assert calls == []
        assert result.status == SessionStatus.ABORTED
        assert "send_email" in result.abort_reason
        assert result.abort_reason == 'Awaiting approval for tool "send_email"'
        assert len(fake_llm.requests) == 1

    def test_later_tools_in_the_turn_are_not_run(self, fake_llm, fake_clock):
        calls = []
        needs_ok = make_tool("send_email", requires_approval=True)
        echo = make_tool("echo", execute=lambda data, ctx: calls.append(data.text))
        fake_llm.queue(
            llm_result(
                [
                    tool_use("echo", {"text": "first"}, "t1"),
                    tool_use("send_email", {"text": "x"}, "t2"),
                    tool_use("echo", {"text": "third"}, "t3"),
                ],
                stop_reason="tool_use",
            )
        )

        result = make_executor(fake_llm, fake_clock).execute(
            make_context(tools=[echo, needs_ok]), make_session(), NO_INTERVAL
        )

        assert calls == ["first"]
        assert result.status == SessionStatus.ABORTED

    def test_always_allow_override(self, fake_llm, fake_clock):
        tool = make_tool("send_email", requires_approval=True)
        fake_llm.queue(llm_result([tool_use("send_email", {"text": "hi"})], stop_reason="tool_use"), llm_result("sent"))
        context = make_context(tools=[tool], approval_overrides={"send_email": ApprovalAction.ALWAYS_ALLOW})

        result = make_executor(fake_llm, fake_clock).execute(context, make_session(), NO_INTERVAL)

        assert result.status == SessionStatus.COMPLETED
        assert result.actions[1].output == {"echo": "hi"}

    def test_require_approval_override(self, fake_llm, fake_clock):
        tool = make_tool("echo")
        fake_llm.queue(llm_result([tool_use("echo", {"text": "hi"})], stop_reason="tool_use"))
        context = make_context(tools=[tool], approval_overrides={"echo": ApprovalAction.REQUIRE_APPROVAL})

        result = make_executor(fake_llm, fake_clock).execute(context, make_session(), NO_INTERVAL)

        assert result.abort_reason == 'Awaiting approval for tool "echo"'

    def test_always_block_override(self, fake_llm, fake_clock):
        calls = []
        tool = make_tool("echo", execute=lambda data, ctx: calls.append(data))
        fake_llm.queue(llm_result([tool_use("echo", {"text": "hi"})], stop_reason="tool_use"), llm_result("ok"))
        context = make_context(tools=[tool], approval_overrides={"echo": ApprovalAction.ALWAYS_BLOCK})

        result = make_executor(fake_llm, fake_clock).execute(context, make_session(), NO_INTERVAL)

        assert calls == []
        assert result.status == SessionStatus.COMPLETED
        [block] = fake_llm.requests[1].messages[-1]["content"]
        assert block["content"] == 'Error: Tool "echo" is blocked by policy'


class TestToolResults:
    """Test how tool results reach the model."""

    def test_long_results_are_truncated(self, fake_llm, fake_clock):
        tool = make_tool("big", execute=lambda data, ctx: "y" * 20_000, input_model=EmptyInput)
        fake_llm.queue(llm_result([tool_use("big")], stop_reason="tool_use"), llm_result("ok"))

        make_executor(fake_llm, fake_clock).execute(make_context(tools=[tool]), make_session(), NO_INTERVAL)

        [block] = fake_llm.requests[1].messages[-1]["content"]
        assert block["content"] == json.dumps("y" * 20_000)[:10_000] + "... [truncated]"
        assert len(block["content"]) == 10_000 + len("... [truncated]")

    def test_short_results_are_untouched(self, fake_llm, fake_clock):
        fake_llm.queue(llm_result([tool_use("echo", {"text": "hi"})], stop_reason="tool_use"), llm_result("ok"))

        make_executor(fake_llm, fake_clock).execute(make_context(tools=[make_tool("echo")]), make_session(), NO_INTERVAL)

        [block] = fake_llm.requests[1].messages[-1]["content"]
        assert block["content"] == '{"echo": "hi"}'

    def test_audit_failures_do_not_change_result(self, fake_llm, fake_clock):
        fake_llm.queue(llm_result([tool_use("echo", {"text": "hi"})], stop_reason="tool_use"), llm_result("ok"))

        result = make_executor(fake_llm, fake_clock, audit_store=FailingStore()).execute(
            make_context(tools=[make_tool("echo")]), make_session(), NO_INTERVAL
        )

        assert result.status == SessionStatus.COMPLETED
        assert result.action_count == 3

    def test_successful_calls_are_audited(self, fake_llm, fake_clock, store):
        fake_llm.queue(llm_result([tool_use("echo", {"text": "hi"})], stop_reason="tool_use"), llm_result("ok"))

        make_executor(fake_llm, fake_clock, audit_store=store).execute(
            make_context(tools=[make_tool("echo")]), make_session(), NO_INTERVAL
        )

        [log] = store.list_action_logs("session-1")
        assert log.action_type == "tool_call"
        assert log.tool_name == "echo"
        assert log.status == "completed"
        assert log.output == {"echo": "hi"}

    def test_tool_timeout(self, fake_llm, fake_clock):
        tool = make_tool("slow", execute=lambda data, ctx: time.sleep(1), input_model=EmptyInput)
        fake_llm.queue(llm_result([tool_use("slow")], stop_reason="tool_use"), llm_result("ok"))

        result = make_executor(fake_llm, fake_clock, tool_timeout_s=0.05).execute(
            make_context(tools=[tool]), make_session(), NO_INTERVAL
        )

        assert result.actions[1].error == "Tool execution timeout"
        [block] = fake_llm.requests[1].messages[-1]["content"]
        assert block["content"] == "Error: Tool execution timeout"


class TestRunWithTimeout:
    """Test the thread-based timeout helper."""

    def test_returns_result(self):
        assert run_with_timeout(lambda a, b: a + b, 1.0, 2, 3) == 5

    def test_reraises_exception(self):
        def fail():
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            run_with_timeout(fail, 1.0)

    def test_times_out(self):
        with pytest.raises(ToolTimeoutError):
            run_with_timeout(time.sleep, 0.05, 1)


def test_registry_tools_feed_the_context(tool_registry):
    context = make_context(tools=tool_registry.get_by_names(["echo"]))

    assert [tool.name for tool in context.tools] == ["echo"]
    assert isinstance(tool_registry, ToolRegistry)
