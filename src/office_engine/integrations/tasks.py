"""Celery tasks for agent sessions and workflow runs."""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from office_engine.integrations.celery_app import (
    celery_app,
    EXPIRE_WORKFLOW_APPROVAL_TASK,
    RUN_AGENT_SESSION_TASK,
    RUN_WORKFLOW_TASK,
)
from office_engine.integrations.wiring import get_runtime
from office_engine.observability import get_logger, setup_logging, with_trace_context
from office_engine.runtime.contracts import AgentStatus, SessionStatus
from office_engine.runtime.session import prepare_session
from office_engine.workflow_runtime.service import ApprovalTimeoutJob, WorkflowExecutionJob

# Setup logging
setup_logging()
logger = get_logger(__name__)


class AgentSessionJob(BaseModel):
    """Payload of an agent session job."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(..., alias="agentId")
    project_id: str = Field(..., alias="projectId")
    session_id: str | None = Field(None, alias="sessionId")
    trigger_payload: Any = Field(None, alias="triggerPayload")
    conversation_history: list[dict[str, Any]] = Field(default_factory=list, alias="conversationHistory")


@celery_app.task(name=RUN_AGENT_SESSION_TASK, bind=True)
def run_agent_session(self, payload: dict) -> dict:
    """
    Run one agent session and persist its summary.

    Inactive agents are skipped, and an agent already working in another
    session is skipped instead of running twice.

    Args:
        payload: AgentSessionJob as a dict

    Returns:
        Session summary
    """
    job = AgentSessionJob.model_validate(payload)
    runtime = get_runtime()
    store = runtime.store

    profile = store.get_agent(job.agent_id)
    if profile is None:
        logger.error(f"Agent not found: {job.agent_id}", extra={"agent_id": job.agent_id})
        return {"error": f"Agent not found: {job.agent_id}"}

    if not profile.is_active:
        logger.info(f"Agent {profile.id} is inactive, skipping", extra={"agent_id": profile.id})
        return {"agent_id": profile.id, "status": "skipped", "reason": "inactive"}

    if not store.claim_agent(profile.id, runtime.settings.celery_task_time_limit):
        logger.info(f"Agent {profile.id} is already working, skipping", extra={"agent_id": profile.id})
        return {"agent_id": profile.id, "status": "skipped", "reason": "busy"}

    try:
        prepared = prepare_session(
            profile,
            job.project_id,
            runtime.tool_registry,
            store.load_memory(profile.id, job.project_id),
            runtime.settings,
            trigger_payload=job.trigger_payload,
            conversation_history=job.conversation_history,
            session_id=job.session_id,
        )
        extra = with_trace_context(
            logger,
            session_id=prepared.session.session_id,
            agent_id=profile.id,
            project_id=job.project_id,
        )
        logger.info("Starting agent session", extra=extra)
        result = runtime.agent_executor.execute(prepared.context, prepared.session, prepared.limits)
    except Exception as e:
        logger.error(
            "Agent session failed",
            extra={"agent_id": profile.id, "project_id": job.project_id, "error": str(e)},
            exc_info=True,
        )
        _release_agent(store, profile.id, AgentStatus.ERROR)
        raise

    summary = {
        **result.summary(),
        "agent_id": profile.id,
        "project_id": job.project_id,
    }
    _release_agent(
        store,
        profile.id,
        AgentStatus.IDLE if result.status == SessionStatus.COMPLETED else AgentStatus.ERROR,
    )
    try:
        store.save_session_summary(result.session_id, summary)
    except Exception:
        logger.error("Failed to save session summary", extra=extra, exc_info=True)

    logger.info(
        "Agent session finished",
        extra={**extra, "status": summary["status"], "abort_reason": summary["abort_reason"]},
    )
    return summary


def _release_agent(store, agent_id: str, status: AgentStatus) -> None:
    try:
        store.release_agent(agent_id, status)
    except Exception:
        logger.error(
            "Failed to release agent",
            extra={"agent_id": agent_id, "status": status.value},
            exc_info=True,
        )


@celery_app.task(name=RUN_WORKFLOW_TASK, bind=True)
def run_workflow(self, payload: dict) -> dict:
    """
    Execute (or resume) a workflow run.

    Args:
        payload: WorkflowExecutionJob as a dict

    Returns:
        Run status summary
    """
    job = WorkflowExecutionJob.model_validate(payload)
    logger.info(
        "Processing workflow job",
        extra=with_trace_context(
            logger,
            project_id=job.project_id,
            workflow_id=job.workflow_id,
            workflow_run_id=job.workflow_run_id,
            resume_from_node_id=job.resume_from_node_id,
        ),
    )

    run = get_runtime().workflow_service.process_execution(job)
    return {
        "workflow_run_id": run.run_id,
        "status": run.status.value,
        "paused_at_node_id": run.paused_at_node_id,
        "error": run.error,
    }


@celery_app.task(name=EXPIRE_WORKFLOW_APPROVAL_TASK, bind=True)
def expire_workflow_approval(self, payload: dict) -> dict:
    """
    Apply the auto action of an approval node whose timeout elapsed.

    Args:
        payload: ApprovalTimeoutJob as a dict

    Returns:
        Run status summary
    """
    job = ApprovalTimeoutJob.model_validate(payload)
    run = get_runtime().workflow_service.expire_approval(job.workflow_run_id, job.node_id)
    return {"workflow_run_id": run.run_id, "status": run.status.value}
