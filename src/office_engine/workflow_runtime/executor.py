"""
Workflow Executor - Sync DAG execution engine.

Walks the nodes of a workflow in dependency order, persists one node-run
record per executed or skipped node, prunes the untaken branch of condition
nodes and suspends (returns) at approval and delay nodes. A suspended run is
continued by calling ``execute`` again with ``resume_from_node_id`` and the
outputs accumulated so far.

SYNC-CELERY SAFE: All execution is synchronous.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from office_engine.observability import get_logger, with_trace_context

from .graph import collect_skipped_nodes, get_upstream_outputs, SequentialStrategy
from .handlers.base import outputs_as_json, Paused, resolve_template
from .handlers.registry import NodeHandlerRegistry
from .models import (
    NodeInput,
    NodeOutput,
    NodeRunRecord,
    NodeStatus,
    NodeType,
    WorkflowDefinition,
    WorkflowNode,
    WorkflowRunContext,
)

if TYPE_CHECKING:
    from office_engine.storage.base import ExecutionStore


logger = get_logger(__name__)


class ExecutionStatus(str, Enum):
    """Outcome of one executor pass."""
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class PauseKind(str, Enum):
    """Why a paused run is waiting."""
    APPROVAL = "approval"
    DELAY = "delay"


@dataclass
class WorkflowExecutionResult:
    """
    Result of one executor pass.
    """
    status: ExecutionStatus
    outputs: Dict[str, NodeOutput] = field(default_factory=dict)
    paused_at_node_id: Optional[str] = None
    error: Optional[str] = None
    pause_kind: Optional[PauseKind] = None
    resume_delay_ms: Optional[int] = None
    duration_ms: float = 0

    @property
    def is_paused(self) -> bool:
        return self.status == ExecutionStatus.PAUSED


class ExecutionStrategy(Protocol):
    """Decides the order in which nodes are visited."""

    def schedule(self, definition: WorkflowDefinition) -> List[str]:
        ...


def resolve_config_variables(config: Any, variables: Dict[str, str]) -> Any:
    """Resolve ``{{key}}`` placeholders in the top-level string fields of a node config."""
    values = dict(config)
    updates = {
        name: resolve_template(value, variables)
        for name, value in values.items()
        if name != "node_type" and isinstance(value, str) and "{{" in value
    }
    if not updates:
        return config
    return config.model_copy(update=updates)


class WorkflowExecutor:
    """
    Sync workflow executor.

    Executes a workflow DAG synchronously, respecting:
    - Node dependencies (order from the execution strategy)
    - Condition branches (untaken branch is skipped)
    - Suspension at approval/delay nodes
    - Resumption without re-running nodes that already have an output

    Handler failures reported as failed outputs are recorded and the walk
    continues; a handler exception fails the run and stops the walk.

    SYNC-CELERY SAFE: All execution is synchronous.

    Usage:
        executor = WorkflowExecutor(build_default_registry(...), store=store)
        result = executor.execute(definition, run_context)
    """

    def __init__(
        self,
        handler_registry: NodeHandlerRegistry,
        store: Optional["ExecutionStore"] = None,
        strategy: Optional[ExecutionStrategy] = None,
    ):
        """
        Initialize executor.

        Args:
            handler_registry: Handlers for the six node types
            store: Optional store receiving node-run records
            strategy: Node ordering (sequential topological walk by default)
        """
        self._handlers = handler_registry
        self._store = store
        self._strategy = strategy or SequentialStrategy()

    def execute(
        self,
        definition: WorkflowDefinition,
        run_context: WorkflowRunContext,
        resume_from_node_id: Optional[str] = None,
        existing_outputs: Optional[Dict[str, NodeOutput]] = None,
    ) -> WorkflowExecutionResult:
        """
        Execute (or resume) a workflow.

        Args:
            definition: Workflow definition
            run_context: Run ids and resolved variables
            resume_from_node_id: Node to resume at; earlier nodes are not run
            existing_outputs: Outputs recorded by previous passes

        Returns:
            WorkflowExecutionResult with execution outcome
        """
        start_time = time.perf_counter()
        outputs: Dict[str, NodeOutput] = dict(existing_outputs or {})
        extra = with_trace_context(
            logger,
            project_id=run_context.project_id,
            workflow_id=run_context.workflow_id,
            workflow_run_id=run_context.workflow_run_id,
        )

        try:
            order = self._strategy.schedule(definition)
        except ValueError as e:
            logger.error(f"Workflow could not be scheduled: {e}", extra=extra)
            return self._finish(
                WorkflowExecutionResult(status=ExecutionStatus.FAILED, outputs=outputs, error=str(e)),
                start_time,
            )

        if resume_from_node_id is not None and resume_from_node_id not in order:
            error = f"Resume node not found: {resume_from_node_id}"
            logger.error(error, extra=extra)
            return self._finish(
                WorkflowExecutionResult(status=ExecutionStatus.FAILED, outputs=outputs, error=error),
                start_time,
            )

        logger.info(
            "Workflow execution started",
            extra={**extra, "resume_from_node_id": resume_from_node_id, "nodes": len(order)},
        )

        # Conditions decided in an earlier pass still prune their untaken branch
        for node_id in order:
            prior = outputs.get(node_id)
            node = definition.get_node(node_id)
            if (
                prior is not None
                and node is not None
                and node.node_type == NodeType.CONDITION.value
                and prior.status == NodeStatus.COMPLETED
            ):
                self._skip_untaken_branch(definition, order, node_id, prior, outputs, run_context)

        resume_reached = resume_from_node_id is None

        for node_id in order:
            if not resume_reached:
                if node_id != resume_from_node_id:
                    continue
                resume_reached = True

            # Never re-run a node that already has an output
            if node_id in outputs:
                continue

            node = definition.get_node(node_id)
            if node is None:
                continue

            node_type = node.node_type
            node_extra = {**extra, "node_id": node_id, "node_type": node_type}
            upstream = get_upstream_outputs(node_id, definition.edges, outputs)
            node_input = NodeInput(
                upstream_outputs=upstream,
                variables=dict(run_context.variables),
                resumed=node_id == resume_from_node_id,
            )

            try:
                config = resolve_config_variables(node.data, run_context.variables)
                result = self._handlers.execute(node_type, config, node_input, run_context)
            except Exception as e:
                logger.error(f"Node {node_id} failed: {e}", extra=node_extra, exc_info=True)
                failed = NodeOutput(
                    node_id=node_id,
                    node_type=node_type,
                    status=NodeStatus.FAILED,
                    data={"error": str(e)},
                )
                outputs[node_id] = failed
                self._persist(run_context, failed, node_input)
                return self._finish(
                    WorkflowExecutionResult(status=ExecutionStatus.FAILED, outputs=outputs, error=str(e)),
                    start_time,
                )

            if isinstance(result, Paused):
                pause_kind = PauseKind.DELAY if node_type == NodeType.DELAY.value else PauseKind.APPROVAL
                logger.info(
                    f"Workflow paused at node {node_id}: {result.reason}",
                    extra={**node_extra, "pause_kind": pause_kind.value},
                )
                return self._finish(
                    WorkflowExecutionResult(
                        status=ExecutionStatus.PAUSED,
                        outputs=outputs,
                        paused_at_node_id=node_id,
                        pause_kind=pause_kind,
                        resume_delay_ms=result.delay_ms if pause_kind == PauseKind.DELAY else None,
                    ),
                    start_time,
                )

            output = result.model_copy(update={"node_id": node_id})
            outputs[node_id] = output
            self._persist(run_context, output, node_input)
            logger.debug(f"Node {node_id} finished: {output.status.value}", extra=node_extra)

            if node_type == NodeType.CONDITION.value and output.status == NodeStatus.COMPLETED:
                self._skip_untaken_branch(definition, order, node_id, output, outputs, run_context)

        logger.info("Workflow execution completed", extra={**extra, "nodes_done": len(outputs)})
        return self._finish(
            WorkflowExecutionResult(status=ExecutionStatus.COMPLETED, outputs=outputs),
            start_time,
        )

    def _skip_untaken_branch(
        self,
        definition: WorkflowDefinition,
        order: List[str],
        condition_id: str,
        output: NodeOutput,
        outputs: Dict[str, NodeOutput],
        run_context: WorkflowRunContext,
    ) -> None:
        taken = "yes" if output.data is True else "no"
        untaken = "no" if taken == "yes" else "yes"

        skipped_ids = collect_skipped_nodes(condition_id, untaken, order, definition.edges, outputs)
        for skip_id in skipped_ids:
            skipped_node: Optional[WorkflowNode] = definition.get_node(skip_id)
            skipped = NodeOutput(
                node_id=skip_id,
                node_type=skipped_node.node_type if skipped_node else "unknown",
                status=NodeStatus.SKIPPED,
                data={"reason": f"Condition {condition_id} evaluated to {taken}"},
            )
            outputs[skip_id] = skipped
            self._persist(run_context, skipped, None)

        if skipped_ids:
            logger.info(
                f"Condition {condition_id} evaluated to {taken}, skipped {len(skipped_ids)} node(s)",
                extra={"workflow_run_id": run_context.workflow_run_id, "node_id": condition_id},
            )

    def _persist(
        self,
        run_context: WorkflowRunContext,
        output: NodeOutput,
        node_input: Optional[NodeInput],
    ) -> None:
        """Write a node-run record. Store failures never change the run outcome."""
        if self._store is None:
            return

        record_input = None
        if node_input is not None:
            record_input = {
                "upstreamOutputs": outputs_as_json(node_input.upstream_outputs),
                "variables": node_input.variables,
            }
        try:
            self._store.append_node_run(
                NodeRunRecord(
                    workflow_run_id=run_context.workflow_run_id,
                    project_id=run_context.project_id,
                    node_id=output.node_id,
                    node_type=output.node_type,
                    status=output.status,
                    input=record_input,
                    output=output.model_dump(mode="json", by_alias=True),
                )
            )
        except Exception:
            logger.error(
                f"Failed to persist node run for {output.node_id}",
                extra={"workflow_run_id": run_context.workflow_run_id, "node_id": output.node_id},
                exc_info=True,
            )

    @staticmethod
    def _finish(result: WorkflowExecutionResult, start_time: float) -> WorkflowExecutionResult:
        result.duration_ms = (time.perf_counter() - start_time) * 1000
        return result


__all__ = [
    "ExecutionStatus",
    "ExecutionStrategy",
    "PauseKind",
    "resolve_config_variables",
    "WorkflowExecutionResult",
    "WorkflowExecutor",
]
