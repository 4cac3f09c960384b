"""
Workflow Models - JSON structures for workflow definitions and runs.

Definitions use the camelCase field names of the workflow editor
(``nodeType``, ``sourceHandle``, ``agentId``...); every model also accepts
the snake_case field names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkflowGraphError(ValueError):
    """Raised when a workflow definition is not a valid DAG."""
    pass


class MissingVariableError(ValueError):
    """Raised when a required workflow variable has no value."""

    def __init__(self, keys: List[str]):
        self.keys = keys
        super().__init__(f"Missing required variables: {', '.join(keys)}")


class NodeType(str, Enum):
    """The closed set of workflow node types."""
    TRIGGER = "trigger"
    AGENT = "agent"
    CONDITION = "condition"
    APPROVAL = "approval"
    DELAY = "delay"
    OUTPUT = "output"


class _NodeConfigBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class TriggerNodeConfig(_NodeConfigBase):
    node_type: Literal["trigger"] = Field("trigger", alias="nodeType")
    trigger_type: str = Field("manual", alias="triggerType", description="manual | scheduled | event | webhook")
    cron_expression: Optional[str] = Field(None, alias="cronExpression")
    event_name: Optional[str] = Field(None, alias="eventName")


class AgentNodeConfig(_NodeConfigBase):
    node_type: Literal["agent"] = Field("agent", alias="nodeType")
    agent_id: str = Field(..., alias="agentId")
    agent_name: str = Field("", alias="agentName")
    prompt_template: Optional[str] = Field(None, alias="promptTemplate", description="Supports {{variable}} refs")


class ConditionNodeConfig(_NodeConfigBase):
    node_type: Literal["condition"] = Field("condition", alias="nodeType")
    condition_type: Literal["llm_eval", "contains", "json_path"] = Field(..., alias="conditionType")
    condition: str = ""
    json_path: Optional[str] = Field(None, alias="jsonPath")
    expected_value: Optional[str] = Field(None, alias="expectedValue")


class ApprovalNodeConfig(_NodeConfigBase):
    node_type: Literal["approval"] = Field("approval", alias="nodeType")
    approver_role: str = Field("owner", alias="approverRole")
    timeout_minutes: Optional[int] = Field(None, alias="timeoutMinutes", gt=0)
    auto_action: Optional[Literal["approve", "reject"]] = Field(None, alias="autoAction")


class DelayNodeConfig(_NodeConfigBase):
    node_type: Literal["delay"] = Field("delay", alias="nodeType")
    duration: float = Field(..., ge=0)
    unit: str = Field("minutes", description="minutes | hours | days")


class OutputNodeConfig(_NodeConfigBase):
    node_type: Literal["output"] = Field("output", alias="nodeType")
    output_type: str = Field("log", alias="outputType", description="email | webhook | log")
    destination: Optional[str] = None
    template_content: Optional[str] = Field(None, alias="templateContent", description="Supports {{variable}} refs")


NodeConfig = Annotated[
    Union[
        TriggerNodeConfig,
        AgentNodeConfig,
        ConditionNodeConfig,
        ApprovalNodeConfig,
        DelayNodeConfig,
        OutputNodeConfig,
    ],
    Field(discriminator="node_type"),
]


class NodePosition(BaseModel):
    """Node position in the canvas."""
    x: float = 0
    y: float = 0


class WorkflowNode(BaseModel):
    """
    A node in a workflow.

    ``data`` is the typed config of the node. Its ``nodeType`` defaults to the
    node's ``type`` when the editor omitted it.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Node ID (unique within workflow)")
    type: str = Field(..., description="Declared node type")
    position: NodePosition = Field(default_factory=NodePosition)
    data: NodeConfig

    @model_validator(mode="before")
    @classmethod
    def _default_node_type(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        data = values.get("data")
        if isinstance(data, dict):
            data = dict(data)
            if "nodeType" not in data:
                data["nodeType"] = data.pop("node_type", values.get("type"))
            values = {**values, "data": data}
        return values

    @property
    def node_type(self) -> str:
        return self.data.node_type


class WorkflowEdge(BaseModel):
    """Directed edge. ``sourceHandle`` is ``yes``/``no`` on condition branches."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    target_handle: Optional[str] = Field(None, alias="targetHandle")


class WorkflowVariable(BaseModel):
    """Run-time variable declared by a workflow."""
    model_config = ConfigDict(populate_by_name=True)

    key: str
    label: str = ""
    type: Literal["text", "number", "select"] = "text"
    default_value: Optional[str] = Field(None, alias="defaultValue")
    required: bool = False
    options: Optional[List[str]] = None


class WorkflowDefinition(BaseModel):
    """
    Complete workflow definition.

    Node ids are unique and every edge references existing nodes; both are
    checked at parse time. Cycles are detected when the graph is sorted.
    """
    model_config = ConfigDict(populate_by_name=True)

    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    variables: List[WorkflowVariable] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> "WorkflowDefinition":
        seen: set = set()
        duplicates = []
        for node in self.nodes:
            if node.id in seen:
                duplicates.append(node.id)
            seen.add(node.id)
        if duplicates:
            raise ValueError(f"Duplicate node ids: {', '.join(duplicates)}")

        for edge in self.edges:
            for end in (edge.source, edge.target):
                if end not in seen:
                    raise ValueError(f"Edge {edge.id} references unknown node: {end}")
        return self

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def resolve_variables(self, provided: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        """
        Merge provided values with declared defaults.

        Raises:
            MissingVariableError: If a required variable ends up empty
        """
        resolved = {key: str(value) for key, value in (provided or {}).items() if value is not None}
        missing = []
        for variable in self.variables:
            if not resolved.get(variable.key) and variable.default_value is not None:
                resolved[variable.key] = variable.default_value
            if variable.required and not resolved.get(variable.key):
                missing.append(variable.key)
        if missing:
            raise MissingVariableError(missing)
        return resolved


class NodeStatus(str, Enum):
    """Status of an executed node."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class NodeOutput(BaseModel):
    """Result of executing (or skipping) one node."""
    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field("", alias="nodeId")
    node_type: str = Field(..., alias="nodeType")
    status: NodeStatus
    data: Any = None
    response: Optional[str] = None
    completed_at: str = Field(default_factory=utc_now_iso, alias="completedAt")

    @property
    def is_completed(self) -> bool:
        return self.status == NodeStatus.COMPLETED


class NodeInput(BaseModel):
    """What a handler receives besides its config and the run context."""
    upstream_outputs: Dict[str, NodeOutput] = Field(default_factory=dict)
    variables: Dict[str, str] = Field(default_factory=dict)
    resumed: bool = Field(False, description="True when this node is the resume point of the run")


class WorkflowRunContext(BaseModel):
    """Runtime context for the entire workflow run."""
    workflow_id: str
    workflow_run_id: str
    project_id: str
    variables: Dict[str, str] = Field(default_factory=dict)


class RunStatus(str, Enum):
    """Status of a workflow run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    WAITING_APPROVAL = "waiting_approval"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class WorkflowRun(BaseModel):
    """Persisted state of one workflow run."""
    model_config = ConfigDict(populate_by_name=True)

    run_id: str
    workflow_id: str
    project_id: str
    variables: Dict[str, str] = Field(default_factory=dict)
    outputs: Dict[str, NodeOutput] = Field(default_factory=dict)
    status: RunStatus = RunStatus.RUNNING
    paused_at_node_id: Optional[str] = None
    error: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None

    def touch(self) -> None:
        self.updated_at = utc_now_iso()
        if self.status.is_terminal and self.completed_at is None:
            self.completed_at = self.updated_at


class NodeRunRecord(BaseModel):
    """Append-only record of one node execution."""
    workflow_run_id: str
    project_id: str
    node_id: str
    node_type: str
    status: NodeStatus
    input: Any = None
    output: Any = None
    completed_at: str = Field(default_factory=utc_now_iso)


__all__ = [
    "AgentNodeConfig",
    "ApprovalNodeConfig",
    "ConditionNodeConfig",
    "DelayNodeConfig",
    "MissingVariableError",
    "NodeConfig",
    "NodeInput",
    "NodeOutput",
    "NodePosition",
    "NodeRunRecord",
    "NodeStatus",
    "NodeType",
    "OutputNodeConfig",
    "RunStatus",
    "TriggerNodeConfig",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowGraphError",
    "WorkflowNode",
    "WorkflowRun",
    "WorkflowRunContext",
    "WorkflowVariable",
]
