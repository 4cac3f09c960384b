"""
Workflow run service - the caller side of the workflow executor.

Owns run status transitions: starts runs, processes execution jobs, turns
pauses into ``waiting_approval`` or a delayed re-enqueue, and applies
approval decisions.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from office_engine.observability import get_logger, with_trace_context

from .executor import ExecutionStatus, PauseKind, WorkflowExecutor
from .models import (
    ApprovalNodeConfig,
    NodeOutput,
    RunStatus,
    WorkflowRun,
    WorkflowRunContext,
)

if TYPE_CHECKING:
    from office_engine.integrations.queue import JobQueue
    from office_engine.storage.base import ExecutionStore


logger = get_logger(__name__)


class WorkflowNotFoundError(LookupError):
    """Raised when a workflow definition does not exist."""
    pass


class RunNotFoundError(LookupError):
    """Raised when a workflow run does not exist."""
    pass


class RunStateError(RuntimeError):
    """Raised when a run is not in the state an operation requires."""
    pass


class WorkflowExecutionJob(BaseModel):
    """Payload of a workflow execution job."""
    model_config = ConfigDict(populate_by_name=True)

    workflow_id: str = Field(..., alias="workflowId")
    workflow_run_id: str = Field(..., alias="workflowRunId")
    project_id: str = Field(..., alias="projectId")
    variables: Dict[str, str] = Field(default_factory=dict)
    resume_from_node_id: Optional[str] = Field(None, alias="resumeFromNodeId")
    completed_outputs: Optional[Dict[str, NodeOutput]] = Field(None, alias="completedOutputs")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ApprovalTimeoutJob(BaseModel):
    """Payload of an approval-expiry job."""
    model_config = ConfigDict(populate_by_name=True)

    workflow_run_id: str = Field(..., alias="workflowRunId")
    node_id: str = Field(..., alias="nodeId")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def execution_job_key(run_id: str) -> str:
    return f"workflow-execution-{run_id}"


def resume_job_key(run_id: str) -> str:
    return f"workflow-resume-{run_id}"


def approval_timeout_job_key(run_id: str) -> str:
    return f"workflow-approval-timeout-{run_id}"


class WorkflowRunService:
    """
    Drives workflow runs through their status transitions.

    running -> completed | failed | waiting_approval
    waiting_approval -> running (approved) | cancelled (rejected)

    Delay pauses keep the run ``running`` and re-enqueue the same job with a
    delay. Approval timeouts are scheduled only when an ``expiry_queue`` is
    configured.
    """

    def __init__(
        self,
        executor: WorkflowExecutor,
        store: "ExecutionStore",
        queue: "JobQueue",
        expiry_queue: Optional["JobQueue"] = None,
    ):
        self.executor = executor
        self.store = store
        self.queue = queue
        self.expiry_queue = expiry_queue

    def start_run(
        self,
        workflow_id: str,
        project_id: str,
        variables: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> WorkflowRun:
        """
        Create a run and enqueue its first execution.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            MissingVariableError: If a required variable is missing
        """
        definition = self.store.get_workflow(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")

        resolved = definition.resolve_variables(variables)
        run = WorkflowRun(
            run_id=run_id or str(uuid.uuid4()),
            workflow_id=workflow_id,
            project_id=project_id,
            variables=resolved,
            status=RunStatus.RUNNING,
        )
        self.store.save_run(run)

        job = WorkflowExecutionJob(
            workflow_id=workflow_id,
            workflow_run_id=run.run_id,
            project_id=project_id,
            variables=resolved,
        )
        self.queue.enqueue(execution_job_key(run.run_id), job.to_payload())

        logger.info(
            "Workflow run started",
            extra=with_trace_context(
                logger,
                project_id=project_id,
                workflow_id=workflow_id,
                workflow_run_id=run.run_id,
            ),
        )
        return run

    def process_execution(self, payload: Union[WorkflowExecutionJob, Dict[str, Any]]) -> WorkflowRun:
        """
        Process one execution job and record the outcome on the run.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            RunNotFoundError: If the run does not exist
        """
        job = payload if isinstance(payload, WorkflowExecutionJob) else WorkflowExecutionJob.model_validate(payload)
        extra = with_trace_context(
            logger,
            project_id=job.project_id,
            workflow_id=job.workflow_id,
            workflow_run_id=job.workflow_run_id,
        )

        definition = self.store.get_workflow(job.workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow not found: {job.workflow_id}")

        run = self.store.get_run(job.workflow_run_id)
        if run is None:
            raise RunNotFoundError(f"Workflow run not found: {job.workflow_run_id}")

        if run.status != RunStatus.RUNNING:
            logger.info(f"Ignoring execution job for {run.status.value} run", extra=extra)
            return run

        if not definition.nodes:
            return self._mark_terminal(run, RunStatus.FAILED, error="Workflow has no nodes")

        variables = job.variables or run.variables
        run_context = WorkflowRunContext(
            workflow_id=job.workflow_id,
            workflow_run_id=job.workflow_run_id,
            project_id=job.project_id,
            variables=variables,
        )

        try:
            result = self.executor.execute(
                definition,
                run_context,
                resume_from_node_id=job.resume_from_node_id,
                existing_outputs=job.completed_outputs,
            )
        except Exception as e:
            logger.error(f"Workflow run failed: {e}", extra=extra, exc_info=True)
            self._mark_terminal(run, RunStatus.FAILED, error=str(e))
            raise

        run.outputs = result.outputs
        logger.info(f"Workflow run result: status={result.status.value}", extra=extra)

        if result.status == ExecutionStatus.COMPLETED:
            run.paused_at_node_id = None
            return self._mark_terminal(run, RunStatus.COMPLETED)

        if result.status == ExecutionStatus.FAILED:
            return self._mark_terminal(run, RunStatus.FAILED, error=result.error or "Unknown error")

        run.paused_at_node_id = result.paused_at_node_id

        if result.pause_kind == PauseKind.DELAY:
            run.status = RunStatus.RUNNING
            run.touch()
            self.store.save_run(run)

            resume_job = job.model_copy(
                update={
                    "variables": variables,
                    "resume_from_node_id": result.paused_at_node_id,
                    "completed_outputs": result.outputs,
                }
            )
            self.queue.enqueue(
                resume_job_key(run.run_id),
                resume_job.to_payload(),
                delay_ms=result.resume_delay_ms,
            )
            logger.info(
                f"Run delayed for {result.resume_delay_ms}ms at node {result.paused_at_node_id}",
                extra=extra,
            )
            return run

        run.status = RunStatus.WAITING_APPROVAL
        run.touch()
        self.store.save_run(run)
        self._schedule_approval_timeout(run, definition.get_node(result.paused_at_node_id))
        return run

    def resume(self, run_id: str, approved: bool) -> WorkflowRun:
        """
        Apply an approval decision to a run waiting for approval.

        Rejection cancels the run for good; approval enqueues a job that
        resumes at the approval node with the outputs recorded so far.

        Raises:
            RunNotFoundError: If the run does not exist
            RunStateError: If the run is not waiting for approval
        """
        run = self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Workflow run not found: {run_id}")
        if run.status != RunStatus.WAITING_APPROVAL:
            raise RunStateError(f"Run {run_id} is {run.status.value}, not waiting_approval")

        extra = with_trace_context(
            logger,
            project_id=run.project_id,
            workflow_id=run.workflow_id,
            workflow_run_id=run_id,
            node_id=run.paused_at_node_id,
        )

        if not approved:
            logger.info("Workflow run rejected", extra=extra)
            return self._mark_terminal(run, RunStatus.CANCELLED)

        run.status = RunStatus.RUNNING
        run.touch()
        self.store.save_run(run)

        job = WorkflowExecutionJob(
            workflow_id=run.workflow_id,
            workflow_run_id=run_id,
            project_id=run.project_id,
            variables=run.variables,
            resume_from_node_id=run.paused_at_node_id,
            completed_outputs=run.outputs,
        )
        self.queue.enqueue(resume_job_key(run_id), job.to_payload())
        logger.info("Workflow run approved", extra=extra)
        return run

    def expire_approval(self, run_id: str, node_id: str) -> WorkflowRun:
        """
        Apply the approval node's ``autoAction`` if the run is still waiting there.

        Raises:
            RunNotFoundError: If the run does not exist
        """
        run = self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Workflow run not found: {run_id}")

        if run.status != RunStatus.WAITING_APPROVAL or run.paused_at_node_id != node_id:
            logger.info(
                "Approval already decided, ignoring timeout",
                extra={"workflow_run_id": run_id, "node_id": node_id},
            )
            return run

        definition = self.store.get_workflow(run.workflow_id)
        node = definition.get_node(node_id) if definition is not None else None
        if node is None or not isinstance(node.data, ApprovalNodeConfig) or node.data.auto_action is None:
            return run

        logger.info(
            f"Approval timed out, applying {node.data.auto_action}",
            extra={"workflow_run_id": run_id, "node_id": node_id},
        )
        return self.resume(run_id, approved=node.data.auto_action == "approve")

    def _schedule_approval_timeout(self, run: WorkflowRun, node: Any) -> None:
        if node is None or not isinstance(node.data, ApprovalNodeConfig):
            return
        config = node.data
        if not config.timeout_minutes or config.auto_action is None:
            return
        if self.expiry_queue is None:
            logger.debug(
                "No expiry queue configured, approval timeout not scheduled",
                extra={"workflow_run_id": run.run_id, "node_id": node.id},
            )
            return

        self.expiry_queue.enqueue(
            approval_timeout_job_key(run.run_id),
            ApprovalTimeoutJob(workflow_run_id=run.run_id, node_id=node.id).to_payload(),
            delay_ms=config.timeout_minutes * 60_000,
        )

    def _mark_terminal(self, run: WorkflowRun, status: RunStatus, error: Optional[str] = None) -> WorkflowRun:
        run.status = status
        if error is not None:
            run.error = error
        run.touch()
        self.store.save_run(run)
        return run


__all__ = [
    "ApprovalTimeoutJob",
    "RunNotFoundError",
    "RunStateError",
    "WorkflowExecutionJob",
    "WorkflowNotFoundError",
    "WorkflowRunService",
]
