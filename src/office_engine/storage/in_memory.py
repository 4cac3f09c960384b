"""In-memory execution store (testing/dev)."""
import threading
import time
from typing import Any

from office_engine.runtime.contracts import ActionLogEntry, AgentProfile, AgentStatus, MemoryEntry
from office_engine.storage.base import ExecutionStore
from office_engine.workflow_runtime.models import NodeRunRecord, WorkflowDefinition, WorkflowRun


class InMemoryExecutionStore(ExecutionStore):
    """Dict-backed store. Values are copied on write so callers cannot mutate stored state."""

    def __init__(self):
        self._action_logs: dict[str, list[ActionLogEntry]] = {}
        self._node_runs: dict[str, list[NodeRunRecord]] = {}
        self._sessions: dict[str, dict[str, Any]] = {}
        self._runs: dict[str, WorkflowRun] = {}
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._agents: dict[str, AgentProfile] = {}
        self._memory: dict[tuple[str, str], list[MemoryEntry]] = {}
        self._agent_status: dict[str, AgentStatus] = {}
        self._claims: dict[str, float] = {}
        self._claim_lock = threading.Lock()

    def append_action_log(self, entry: ActionLogEntry) -> None:
        self._action_logs.setdefault(entry.session_id, []).append(entry.model_copy())

    def list_action_logs(self, session_id: str) -> list[ActionLogEntry]:
        return list(self._action_logs.get(session_id, []))

    def append_node_run(self, record: NodeRunRecord) -> None:
        self._node_runs.setdefault(record.workflow_run_id, []).append(record.model_copy())

    def list_node_runs(self, workflow_run_id: str) -> list[NodeRunRecord]:
        return list(self._node_runs.get(workflow_run_id, []))

    def save_session_summary(self, session_id: str, summary: dict[str, Any]) -> None:
        self._sessions[session_id] = dict(summary)

    def get_session_summary(self, session_id: str) -> dict[str, Any] | None:
        summary = self._sessions.get(session_id)
        return dict(summary) if summary is not None else None

    def save_run(self, run: WorkflowRun) -> None:
        self._runs[run.run_id] = run.model_copy(deep=True)

    def get_run(self, run_id: str) -> WorkflowRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run is not None else None

    def save_workflow(self, workflow_id: str, definition: WorkflowDefinition) -> None:
        self._workflows[workflow_id] = definition.model_copy(deep=True)

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        definition = self._workflows.get(workflow_id)
        return definition.model_copy(deep=True) if definition is not None else None

    def save_agent(self, profile: AgentProfile) -> None:
        self._agents[profile.id] = profile.model_copy(deep=True)

    def get_agent(self, agent_id: str) -> AgentProfile | None:
        profile = self._agents.get(agent_id)
        return profile.model_copy(deep=True) if profile is not None else None

    def save_memory(self, agent_id: str, project_id: str, entries: list[MemoryEntry]) -> None:
        self._memory[(project_id, agent_id)] = [entry.model_copy() for entry in entries]

    def load_memory(self, agent_id: str, project_id: str) -> list[MemoryEntry]:
        return list(self._memory.get((project_id, agent_id), []))

    def claim_agent(self, agent_id: str, ttl_seconds: int) -> bool:
        with self._claim_lock:
            deadline = self._claims.get(agent_id)
            if deadline is not None and deadline > time.monotonic():
                return False
            self._claims[agent_id] = time.monotonic() + ttl_seconds
            return True

    def release_agent(self, agent_id: str, status: AgentStatus) -> None:
        with self._claim_lock:
            self._claims.pop(agent_id, None)
            self._agent_status[agent_id] = status

    def get_agent_status(self, agent_id: str) -> AgentStatus:
        with self._claim_lock:
            deadline = self._claims.get(agent_id)
            if deadline is not None and deadline > time.monotonic():
                return AgentStatus.WORKING
            return self._agent_status.get(agent_id, AgentStatus.IDLE)
