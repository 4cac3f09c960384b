"""Storage package."""
from office_engine.storage.base import ExecutionStore
from office_engine.storage.in_memory import InMemoryExecutionStore
from office_engine.storage.redis_store import get_execution_store, RedisExecutionStore

__all__ = [
    "ExecutionStore",
    "get_execution_store",
    "InMemoryExecutionStore",
    "RedisExecutionStore",
]
