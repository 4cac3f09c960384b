"""Job queue adapters used to dispatch workflow runs and agent sessions."""
from typing import Any, Protocol

from celery import Celery

from office_engine.observability import get_logger

logger = get_logger(__name__)


class JobQueue(Protocol):
    """Enqueue a job, optionally delayed."""

    def enqueue(self, job_key: str, payload: dict[str, Any], delay_ms: int | None = None) -> None: ...


class CeleryJobQueue:
    """Sends jobs to one Celery task by name. Delays map to ``countdown``."""

    def __init__(self, celery_app: Celery, task_name: str):
        self.celery_app = celery_app
        self.task_name = task_name

    def enqueue(self, job_key: str, payload: dict[str, Any], delay_ms: int | None = None) -> None:
        countdown = delay_ms / 1000 if delay_ms else None
        self.celery_app.send_task(
            self.task_name,
            args=[payload],
            countdown=countdown,
        )
        logger.info(
            "Job enqueued",
            extra={"job_key": job_key, "task_name": self.task_name, "delay_ms": delay_ms},
        )


class EnqueuedJob:
    """A job recorded by InMemoryJobQueue."""

    def __init__(self, job_key: str, payload: dict[str, Any], delay_ms: int | None):
        self.job_key = job_key
        self.payload = payload
        self.delay_ms = delay_ms

    def __repr__(self) -> str:
        return f"EnqueuedJob(job_key={self.job_key!r}, delay_ms={self.delay_ms!r})"


class InMemoryJobQueue:
    """Queue that only records jobs (testing/dev)."""

    def __init__(self):
        self.jobs: list[EnqueuedJob] = []

    def enqueue(self, job_key: str, payload: dict[str, Any], delay_ms: int | None = None) -> None:
        self.jobs.append(EnqueuedJob(job_key, payload, delay_ms))

    def pop(self) -> EnqueuedJob:
        """Remove and return the oldest job."""
        return self.jobs.pop(0)

    def __len__(self) -> int:
        return len(self.jobs)
