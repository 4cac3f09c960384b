"""
Workflow Runtime - sync DAG execution of typed workflow nodes.

SYNC-CELERY SAFE: All execution is synchronous.
"""

from .executor import ExecutionStatus, PauseKind, WorkflowExecutionResult, WorkflowExecutor
from .graph import (
    collect_skipped_nodes,
    get_downstream_nodes,
    get_upstream_outputs,
    SequentialStrategy,
    topological_sort,
)
from .handlers import build_default_registry, NodeHandlerRegistry, Paused, UnknownNodeTypeError
from .models import (
    MissingVariableError,
    NodeInput,
    NodeOutput,
    NodeRunRecord,
    NodeStatus,
    NodeType,
    RunStatus,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowGraphError,
    WorkflowNode,
    WorkflowRun,
    WorkflowRunContext,
    WorkflowVariable,
)
from .service import RunNotFoundError, RunStateError, WorkflowNotFoundError, WorkflowRunService


__all__ = [
    "build_default_registry",
    "collect_skipped_nodes",
    "ExecutionStatus",
    "get_downstream_nodes",
    "get_upstream_outputs",
    "MissingVariableError",
    "NodeHandlerRegistry",
    "NodeInput",
    "NodeOutput",
    "NodeRunRecord",
    "NodeStatus",
    "NodeType",
    "Paused",
    "PauseKind",
    "RunNotFoundError",
    "RunStateError",
    "RunStatus",
    "SequentialStrategy",
    "topological_sort",
    "UnknownNodeTypeError",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowExecutionResult",
    "WorkflowExecutor",
    "WorkflowGraphError",
    "WorkflowNode",
    "WorkflowNotFoundError",
    "WorkflowRun",
    "WorkflowRunContext",
    "WorkflowRunService",
    "WorkflowVariable",
]
