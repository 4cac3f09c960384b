"""Process-wide wiring of stores, clients and executors for the workers."""
from dataclasses import dataclass

from office_engine.config import get_settings
from office_engine.config.settings import Settings
from office_engine.integrations.queue import CeleryJobQueue, JobQueue
from office_engine.runtime.executor import AgentExecutor
from office_engine.runtime.llm import AnthropicLLMClient, LLMClient
from office_engine.runtime.tools import default_tool_registry, ToolRegistry
from office_engine.storage import ExecutionStore, get_execution_store
from office_engine.workflow_runtime import build_default_registry, WorkflowExecutor, WorkflowRunService


@dataclass
class Runtime:
    """Collaborators shared by the Celery tasks of one worker process."""

    settings: Settings
    store: ExecutionStore
    llm_client: LLMClient
    tool_registry: ToolRegistry
    agent_executor: AgentExecutor
    workflow_executor: WorkflowExecutor
    workflow_service: WorkflowRunService


def build_runtime(
    store: ExecutionStore,
    llm_client: LLMClient,
    workflow_queue: JobQueue,
    expiry_queue: JobQueue | None = None,
    tool_registry: ToolRegistry | None = None,
    settings: Settings | None = None,
) -> Runtime:
    """Wire executors and the run service around the given store, client and queues."""
    settings = settings or get_settings()
    tool_registry = tool_registry or default_tool_registry()

    agent_executor = AgentExecutor(
        llm_client,
        audit_store=store,
        tool_timeout_s=settings.tool_call_timeout_s,
        max_tool_result_chars=settings.max_tool_result_chars,
    )
    handlers = build_default_registry(
        agent_executor,
        tool_registry,
        store,
        llm_client=llm_client,
        settings=settings,
    )
    workflow_executor = WorkflowExecutor(handlers, store=store)
    workflow_service = WorkflowRunService(
        workflow_executor,
        store,
        workflow_queue,
        expiry_queue=expiry_queue,
    )

    return Runtime(
        settings=settings,
        store=store,
        llm_client=llm_client,
        tool_registry=tool_registry,
        agent_executor=agent_executor,
        workflow_executor=workflow_executor,
        workflow_service=workflow_service,
    )


# Global runtime instance
_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """Get or create the worker runtime (Redis store, Anthropic client, Celery queues)."""
    global _runtime
    if _runtime is None:
        from office_engine.integrations.celery_app import (
            celery_app,
            EXPIRE_WORKFLOW_APPROVAL_TASK,
            RUN_WORKFLOW_TASK,
        )

        settings = get_settings()
        store = get_execution_store()
        _runtime = build_runtime(
            store=store,
            llm_client=AnthropicLLMClient(settings=settings, store=store),
            workflow_queue=CeleryJobQueue(celery_app, RUN_WORKFLOW_TASK),
            expiry_queue=CeleryJobQueue(celery_app, EXPIRE_WORKFLOW_APPROVAL_TASK),
            settings=settings,
        )
    return _runtime


def set_runtime(runtime: Runtime | None) -> None:
    """Replace the worker runtime (useful for testing)."""
    global _runtime
    _runtime = runtime
