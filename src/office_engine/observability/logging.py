"""Structured JSON logging with trace context."""
import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from office_engine.config import get_settings

TRACE_FIELDS = (
    "session_id",
    "agent_id",
    "project_id",
    "workflow_id",
    "workflow_run_id",
    "node_id",
    "job_key",
)


class TraceContextFilter(logging.Filter):
    """Add trace context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default trace context fields if not present."""
        for name in TRACE_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Unset trace fields are dropped rather than emitted as null
        for name in TRACE_FIELDS:
            if log_record.get(name) is None:
                log_record.pop(name, None)


def setup_logging() -> None:
    """Configure structured JSON logging for the application."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)

    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    handler.addFilter(TraceContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


class TraceLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call ``extra`` over the adapter defaults."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str) -> logging.LoggerAdapter:
    """
    Get a logger with trace context support.

    Args:
        name: Logger name (typically __name__)

    Returns:
        LoggerAdapter that can accept trace context in extra dict
    """
    logger = logging.getLogger(name)
    return TraceLoggerAdapter(logger, extra={})


def with_trace_context(
    logger: logging.LoggerAdapter,
    session_id: str | None = None,
    agent_id: str | None = None,
    project_id: str | None = None,
    workflow_id: str | None = None,
    workflow_run_id: str | None = None,
    node_id: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Create an extra dict with trace context for logging.

    Args:
        logger: Logger adapter
        session_id: Agent session ID
        agent_id: Agent ID
        project_id: Project ID
        workflow_id: Workflow ID
        workflow_run_id: Workflow run ID
        node_id: Workflow node ID
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if session_id:
        extra["session_id"] = session_id
    if agent_id:
        extra["agent_id"] = agent_id
    if project_id:
        extra["project_id"] = project_id
    if workflow_id:
        extra["workflow_id"] = workflow_id
    if workflow_run_id:
        extra["workflow_run_id"] = workflow_run_id
    if node_id:
        extra["node_id"] = node_id
    return extra
