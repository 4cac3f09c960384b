"""Integration tests: workflow runs driven through the run service and an in-memory queue."""
import json

import pytest
from conftest import llm_result

from office_engine.config.settings import Settings
from office_engine.integrations.queue import InMemoryJobQueue
from office_engine.integrations.wiring import build_runtime
from office_engine.runtime.contracts import AgentProfile
from office_engine.runtime.tools import ToolRegistry
from office_engine.workflow_runtime import (
    MissingVariableError,
    NodeStatus,
    RunNotFoundError,
    RunStateError,
    RunStatus,
    WorkflowDefinition,
    WorkflowNotFoundError,
)


def node(node_id, node_type, **data):
    return {"id": node_id, "type": node_type, "data": data}


def link(source, target):
    return {"id": f"{source}->{target}", "source": source, "target": target}


DELAY_WORKFLOW = WorkflowDefinition.model_validate(
    {
        "nodes": [
            node("t", "trigger"),
            node("d", "delay", duration=5, unit="minutes"),
            node("o", "output", outputType="log", templateContent="Done for {{customer}}"),
        ],
        "edges": [link("t", "d"), link("d", "o")],
        "variables": [{"key": "customer", "required": True}],
    }
)

APPROVAL_WORKFLOW = WorkflowDefinition.model_validate(
    {
        "nodes": [
            node("t", "trigger"),
            node("ap", "approval", approverRole="admin", timeoutMinutes=30, autoAction="reject"),
            node("o", "output", outputType="log"),
        ],
        "edges": [link("t", "ap"), link("ap", "o")],
    }
)


@pytest.fixture
def queues():
    return InMemoryJobQueue(), InMemoryJobQueue()


@pytest.fixture
def runtime(store, fake_llm, queues):
    workflow_queue, expiry_queue = queues
    store.save_workflow("delay-wf", DELAY_WORKFLOW)
    store.save_workflow("approval-wf", APPROVAL_WORKFLOW)
    return build_runtime(
        store=store,
        llm_client=fake_llm,
        workflow_queue=workflow_queue,
        expiry_queue=expiry_queue,
        tool_registry=ToolRegistry(),
        settings=Settings(tool_call_min_interval_ms=0),
    )


def process_next(runtime, queue):
    job = queue.pop()
    # Payloads travel through Celery as JSON
    payload = json.loads(json.dumps(job.payload))
    return runtime.workflow_service.process_execution(payload)


class TestDelayedRun:
    def test_delay_pause_is_re_enqueued_and_completes(self, runtime, queues, store):
        workflow_queue, _ = queues
        service = runtime.workflow_service

        run = service.start_run("delay-wf", "p1", {"customer": "ACME"}, run_id="run-1")

        assert run.status == RunStatus.RUNNING
        first = workflow_queue.jobs[0]
        assert first.job_key == "workflow-execution-run-1"
        assert first.delay_ms is None

        paused = process_next(runtime, workflow_queue)

        assert paused.status == RunStatus.RUNNING
        assert paused.paused_at_node_id == "d"
        resume_job = workflow_queue.jobs[0]
        assert resume_job.job_key == "workflow-resume-run-1"
        assert resume_job.delay_ms == 300_000
        assert resume_job.payload["resumeFromNodeId"] == "d"
        assert list(resume_job.payload["completedOutputs"]) == ["t"]

        finished = process_next(runtime, workflow_queue)

        assert finished.status == RunStatus.COMPLETED
        assert finished.outputs["o"].status == NodeStatus.COMPLETED
        assert finished.outputs["o"].data["content"] == "Done for ACME"
        assert finished.outputs["d"].data == {"delayMs": 300_000}
        assert finished.completed_at is not None
        assert len(workflow_queue) == 0
        assert store.get_run("run-1").status == RunStatus.COMPLETED
        assert [record.node_id for record in store.list_node_runs("run-1")] == ["t", "d", "o"]

    def test_missing_variable_rejects_the_run(self, runtime, queues):
        workflow_queue, _ = queues

        with pytest.raises(MissingVariableError):
            runtime.workflow_service.start_run("delay-wf", "p1", {})

        assert len(workflow_queue) == 0

    def test_unknown_workflow(self, runtime):
        with pytest.raises(WorkflowNotFoundError):
            runtime.workflow_service.start_run("ghost", "p1")


class TestApprovalRun:
    def pause(self, runtime, queues):
        workflow_queue, _ = queues
        runtime.workflow_service.start_run("approval-wf", "p1", run_id="run-2")
        return process_next(runtime, workflow_queue)

    def test_pause_waits_for_approval(self, runtime, queues):
        run = self.pause(runtime, queues)

        assert run.status == RunStatus.WAITING_APPROVAL
        assert run.paused_at_node_id == "ap"
        assert list(run.outputs) == ["t"]
        workflow_queue, expiry_queue = queues
        assert len(workflow_queue) == 0
        [timeout_job] = expiry_queue.jobs
        assert timeout_job.job_key == "workflow-approval-timeout-run-2"
        assert timeout_job.delay_ms == 30 * 60_000
        assert timeout_job.payload == {"workflowRunId": "run-2", "nodeId": "ap"}

    def test_rejected_approval_cancels_the_run(self, runtime, queues, store):
        self.pause(runtime, queues)
        workflow_queue, _ = queues

        run = runtime.workflow_service.resume("run-2", approved=False)

        assert run.status == RunStatus.CANCELLED
        assert run.completed_at is not None
        assert len(workflow_queue) == 0
        assert [record.node_id for record in store.list_node_runs("run-2")] == ["t"]
        with pytest.raises(RunStateError):
            runtime.workflow_service.resume("run-2", approved=True)

    def test_approved_run_resumes_at_the_approval_node(self, runtime, queues):
        self.pause(runtime, queues)
        workflow_queue, _ = queues

        run = runtime.workflow_service.resume("run-2", approved=True)

        assert run.status == RunStatus.RUNNING
        job = workflow_queue.jobs[0]
        assert job.job_key == "workflow-resume-run-2"
        assert job.payload["resumeFromNodeId"] == "ap"

        finished = process_next(runtime, workflow_queue)

        assert finished.status == RunStatus.COMPLETED
        assert finished.outputs["ap"].data == {"approved": True, "approverRole": "admin"}
        assert finished.outputs["o"].status == NodeStatus.COMPLETED

    def test_approval_timeout_applies_auto_action(self, runtime, queues):
        self.pause(runtime, queues)
        _, expiry_queue = queues
        job = expiry_queue.pop()

        run = runtime.workflow_service.expire_approval(job.payload["workflowRunId"], job.payload["nodeId"])

        assert run.status == RunStatus.CANCELLED

    def test_timeout_after_decision_is_ignored(self, runtime, queues):
        self.pause(runtime, queues)
        runtime.workflow_service.resume("run-2", approved=True)

        run = runtime.workflow_service.expire_approval("run-2", "ap")

        assert run.status == RunStatus.RUNNING

    def test_stale_job_for_cancelled_run_is_ignored(self, runtime, queues):
        self.pause(runtime, queues)
        runtime.workflow_service.resume("run-2", approved=False)
        workflow_queue, _ = queues
        runtime.workflow_service.start_run("approval-wf", "p1", run_id="run-2b")
        stale = workflow_queue.pop().payload
        stale["workflowRunId"] = "run-2"

        run = runtime.workflow_service.process_execution(stale)

        assert run.status == RunStatus.CANCELLED

    def test_resume_requires_waiting_run(self, runtime):
        runtime.workflow_service.start_run("approval-wf", "p1", run_id="run-3")

        with pytest.raises(RunStateError):
            runtime.workflow_service.resume("run-3", approved=True)
        with pytest.raises(RunNotFoundError):
            runtime.workflow_service.resume("ghost", approved=True)


class TestAgentRuns:
    def test_agent_node_output_feeds_the_output_node(self, runtime, queues, store, fake_llm):
        workflow_queue, _ = queues
        store.save_agent(AgentProfile(id="writer", project_id="p1", name="Wren"))
        store.save_workflow(
            "agent-wf",
            WorkflowDefinition.model_validate(
                {
                    "nodes": [
                        node("t", "trigger"),
                        node("a", "agent", agentId="writer", promptTemplate="Summarise"),
                        node("o", "output", outputType="log"),
                    ],
                    "edges": [link("t", "a"), link("a", "o")],
                }
            ),
        )
        fake_llm.queue(llm_result("Quarterly summary."))

        runtime.workflow_service.start_run("agent-wf", "p1", run_id="run-4")
        run = process_next(runtime, workflow_queue)

        assert run.status == RunStatus.COMPLETED
        assert run.outputs["a"].response == "Quarterly summary."
        content = json.loads(run.outputs["o"].data["content"])
        assert content["a"]["response"] == "Quarterly summary."

    def test_node_exception_fails_the_run(self, runtime, queues, store, fake_llm):
        workflow_queue, _ = queues
        store.save_workflow(
            "llm-cond-wf",
            WorkflowDefinition.model_validate(
                {
                    "nodes": [
                        node("t", "trigger"),
                        node("c", "condition", conditionType="llm_eval", condition="Is it urgent?"),
                        node("o", "output"),
                    ],
                    "edges": [link("t", "c"), link("c", "o")],
                }
            ),
        )
        fake_llm.queue(RuntimeError("llm down"))

        runtime.workflow_service.start_run("llm-cond-wf", "p1", run_id="run-5")
        run = process_next(runtime, workflow_queue)

        assert run.status == RunStatus.FAILED
        assert run.error == "llm down"
        assert run.outputs["c"].status == NodeStatus.FAILED
        assert "o" not in run.outputs

    def test_empty_workflow_fails(self, runtime, queues, store):
        workflow_queue, _ = queues
        store.save_workflow("empty-wf", WorkflowDefinition())

        runtime.workflow_service.start_run("empty-wf", "p1", run_id="run-6")
        run = process_next(runtime, workflow_queue)

        assert run.status == RunStatus.FAILED
        assert run.error == "Workflow has no nodes"
