"""Redis-backed execution store."""
import json
from typing import Any

import redis

from office_engine.config import get_settings
from office_engine.observability import get_logger
from office_engine.runtime.contracts import ActionLogEntry, AgentProfile, AgentStatus, MemoryEntry
from office_engine.storage.base import ExecutionStore
from office_engine.workflow_runtime.models import NodeRunRecord, WorkflowDefinition, WorkflowRun

logger = get_logger(__name__)


class RedisExecutionStore(ExecutionStore):
    """
    Redis-backed store for sessions, runs and audit records.

    Upserted entities are stored as JSON strings; append-only records are
    pushed onto per-session / per-run lists.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        prefix: str = "office:",
    ):
        """
        Initialize execution store.

        Args:
            redis_client: Optional Redis client (will create one if not provided)
            prefix: Key prefix for every key written by this store
        """
        if redis_client is None:
            settings = get_settings()
            self.redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
            )
        else:
            self.redis_client = redis_client

        self._prefix = prefix

    def _key(self, *parts: str) -> str:
        """Build a namespaced Redis key."""
        return self._prefix + ":".join(parts)

    # Audit log

    def append_action_log(self, entry: ActionLogEntry) -> None:
        self.redis_client.rpush(
            self._key("action_logs", entry.session_id),
            entry.model_dump_json(),
        )

    def list_action_logs(self, session_id: str) -> list[ActionLogEntry]:
        raw = self.redis_client.lrange(self._key("action_logs", session_id), 0, -1)
        return [ActionLogEntry.model_validate_json(item) for item in raw]

    # Node runs

    def append_node_run(self, record: NodeRunRecord) -> None:
        self.redis_client.rpush(
            self._key("node_runs", record.workflow_run_id),
            record.model_dump_json(),
        )

    def list_node_runs(self, workflow_run_id: str) -> list[NodeRunRecord]:
        raw = self.redis_client.lrange(self._key("node_runs", workflow_run_id), 0, -1)
        return [NodeRunRecord.model_validate_json(item) for item in raw]

    # Session summaries

    def save_session_summary(self, session_id: str, summary: dict[str, Any]) -> None:
        self.redis_client.set(
            self._key("session", session_id),
            json.dumps(summary, default=str),
        )
        logger.info(
            "Session summary saved",
            extra={"session_id": session_id, "status": summary.get("status")},
        )

    def get_session_summary(self, session_id: str) -> dict[str, Any] | None:
        data = self.redis_client.get(self._key("session", session_id))
        if data is None:
            return None
        return json.loads(data)

    # Workflow runs

    def save_run(self, run: WorkflowRun) -> None:
        self.redis_client.set(
            self._key("run", run.run_id),
            run.model_dump_json(by_alias=True),
        )
        logger.info(
            "Workflow run saved",
            extra={"workflow_run_id": run.run_id, "status": run.status.value},
        )

    def get_run(self, run_id: str) -> WorkflowRun | None:
        data = self.redis_client.get(self._key("run", run_id))
        if data is None:
            return None
        return WorkflowRun.model_validate_json(data)

    # Workflow definitions

    def save_workflow(self, workflow_id: str, definition: WorkflowDefinition) -> None:
        self.redis_client.set(
            self._key("workflow", workflow_id),
            definition.model_dump_json(by_alias=True),
        )

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        data = self.redis_client.get(self._key("workflow", workflow_id))
        if data is None:
            return None
        return WorkflowDefinition.model_validate_json(data)

    # Agents and memory

    def save_agent(self, profile: AgentProfile) -> None:
        self.redis_client.set(self._key("agent", profile.id), profile.model_dump_json())

    def get_agent(self, agent_id: str) -> AgentProfile | None:
        data = self.redis_client.get(self._key("agent", agent_id))
        if data is None:
            return None
        return AgentProfile.model_validate_json(data)

    def save_memory(self, agent_id: str, project_id: str, entries: list[MemoryEntry]) -> None:
        self.redis_client.set(
            self._key("memory", project_id, agent_id),
            json.dumps([entry.model_dump(mode="json") for entry in entries]),
        )

    def load_memory(self, agent_id: str, project_id: str) -> list[MemoryEntry]:
        data = self.redis_client.get(self._key("memory", project_id, agent_id))
        if data is None:
            return []
        return [MemoryEntry.model_validate(item) for item in json.loads(data)]

    # Agent availability

    def claim_agent(self, agent_id: str, ttl_seconds: int) -> bool:
        # SET NX is the compare-and-swap: only one worker can create the lock key
        claimed = self.redis_client.set(
            self._key("agent_lock", agent_id),
            AgentStatus.WORKING.value,
            nx=True,
            ex=ttl_seconds,
        )
        if claimed:
            self.redis_client.set(self._key("agent_status", agent_id), AgentStatus.WORKING.value)
        return bool(claimed)

    def release_agent(self, agent_id: str, status: AgentStatus) -> None:
        self.redis_client.set(self._key("agent_status", agent_id), status.value)
        self.redis_client.delete(self._key("agent_lock", agent_id))
        logger.info(
            "Agent released",
            extra={"agent_id": agent_id, "status": status.value},
        )

    def get_agent_status(self, agent_id: str) -> AgentStatus:
        if self.redis_client.get(self._key("agent_lock", agent_id)) is not None:
            return AgentStatus.WORKING
        data = self.redis_client.get(self._key("agent_status", agent_id))
        # An expired claim leaves "working" behind with no lock
        if data is None or data == AgentStatus.WORKING.value:
            return AgentStatus.IDLE
        return AgentStatus(data)


def get_execution_store() -> ExecutionStore:
    """Get or create execution store instance."""
    return RedisExecutionStore()
