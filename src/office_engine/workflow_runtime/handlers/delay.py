"""Delay node - suspends the run for a fixed duration."""

from __future__ import annotations

from ..models import DelayNodeConfig, NodeInput, NodeType, WorkflowRunContext
from .base import HandlerResult, NodeHandler, Paused


UNIT_TO_MS = {
    "minutes": 60_000,
    "hours": 3_600_000,
    "days": 86_400_000,
}


def delay_to_ms(config: DelayNodeConfig) -> int:
    """Delay in milliseconds. Unknown units count as minutes."""
    return int(config.duration * UNIT_TO_MS.get(config.unit, UNIT_TO_MS["minutes"]))


class DelayHandler(NodeHandler):
    node_type = NodeType.DELAY

    def execute(
        self,
        config: DelayNodeConfig,
        node_input: NodeInput,
        ctx: WorkflowRunContext,
    ) -> HandlerResult:
        delay_ms = delay_to_ms(config)
        if node_input.resumed:
            return self.completed(data={"delayMs": delay_ms})
        return Paused(reason=f"delay:{delay_ms}", delay_ms=delay_ms)
