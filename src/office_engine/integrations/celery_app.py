"""Celery application configuration."""
from celery import Celery

from office_engine.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "office_engine",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["office_engine.integrations.tasks"],
)

# Configure Celery with production-safe defaults
celery_app.conf.update(
    # Task execution
    task_time_limit=settings.celery_task_time_limit,  # Hard time limit
    task_soft_time_limit=settings.celery_task_soft_time_limit,  # Soft time limit
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,  # One run or session at a time per worker process
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Results
    result_expires=3600,
    # Timezone
    timezone="UTC",
    enable_utc=True,
)

RUN_AGENT_SESSION_TASK = "run_agent_session"
RUN_WORKFLOW_TASK = "run_workflow"
EXPIRE_WORKFLOW_APPROVAL_TASK = "expire_workflow_approval"
