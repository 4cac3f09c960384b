"""Execution store interface (durability backend)."""
from abc import ABC, abstractmethod
from typing import Any

from office_engine.runtime.contracts import ActionLogEntry, AgentProfile, AgentStatus, MemoryEntry
from office_engine.workflow_runtime.models import NodeRunRecord, WorkflowDefinition, WorkflowRun


class ExecutionStore(ABC):
    """
    Durable store shared by the engines and their callers.

    Audit entries and node runs are append-only; runs, sessions, workflows
    and agents are upserted by id. Every write is scoped to a single
    session or run id.
    """

    # Audit log
    @abstractmethod
    def append_action_log(self, entry: ActionLogEntry) -> None: ...

    @abstractmethod
    def list_action_logs(self, session_id: str) -> list[ActionLogEntry]: ...

    # Node runs
    @abstractmethod
    def append_node_run(self, record: NodeRunRecord) -> None: ...

    @abstractmethod
    def list_node_runs(self, workflow_run_id: str) -> list[NodeRunRecord]: ...

    # Session summaries
    @abstractmethod
    def save_session_summary(self, session_id: str, summary: dict[str, Any]) -> None: ...

    @abstractmethod
    def get_session_summary(self, session_id: str) -> dict[str, Any] | None: ...

    # Workflow runs
    @abstractmethod
    def save_run(self, run: WorkflowRun) -> None: ...

    @abstractmethod
    def get_run(self, run_id: str) -> WorkflowRun | None: ...

    # Workflow definitions
    @abstractmethod
    def save_workflow(self, workflow_id: str, definition: WorkflowDefinition) -> None: ...

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None: ...

    # Agents and memory
    @abstractmethod
    def save_agent(self, profile: AgentProfile) -> None: ...

    @abstractmethod
    def get_agent(self, agent_id: str) -> AgentProfile | None: ...

    @abstractmethod
    def save_memory(self, agent_id: str, project_id: str, entries: list[MemoryEntry]) -> None: ...

    @abstractmethod
    def load_memory(self, agent_id: str, project_id: str) -> list[MemoryEntry]: ...

    # Agent availability
    @abstractmethod
    def claim_agent(self, agent_id: str, ttl_seconds: int) -> bool:
        """
        Atomically mark an agent as working.

        Returns False when another session already holds the agent. The claim
        lapses after ``ttl_seconds`` so a crashed worker cannot hold it forever.
        """

    @abstractmethod
    def release_agent(self, agent_id: str, status: AgentStatus) -> None:
        """Drop the claim and record the agent's status after its session."""

    @abstractmethod
    def get_agent_status(self, agent_id: str) -> AgentStatus: ...
