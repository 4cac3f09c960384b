"""Tool definitions and the tool registry consumed by the agent executor."""
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from office_engine.observability import get_logger

logger = get_logger(__name__)


class ToolExecutionContext(BaseModel):
    """Context passed to tool execute functions."""

    agent_id: str
    project_id: str
    session_id: str


class ToolDefinition(BaseModel):
    """
    Registered tool that an agent can invoke.

    ``input_model`` is the pydantic model used both as the JSON schema shown to
    the model and to validate the raw input before ``execute`` is called.
    ``execute`` receives the validated model instance and the execution context.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique tool name")
    description: str = Field(..., description="Description shown to the model")
    input_model: type[BaseModel] = Field(..., description="Input schema")
    requires_approval: bool = Field(
        default=False,
        description="Whether a human must approve the call before it runs",
    )
    execute: Callable[..., Any] = Field(..., description="execute(input, context) -> result")

    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the tool input."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_llm_tool(self) -> dict[str, Any]:
        """Provider tool specification."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema(),
        }


class ToolRegistry:
    """Registry for tool definitions."""

    def __init__(self):
        """Initialize tool registry."""
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        """
        Register a tool. A later registration under the same name replaces the earlier one.

        Args:
            tool: Tool definition to register
        """
        self._tools[tool.name] = tool
        logger.debug(f"Tool registered: {tool.name}")

    def get(self, name: str) -> ToolDefinition | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def get_all(self) -> list[ToolDefinition]:
        """Get all registered tools."""
        return list(self._tools.values())

    def get_by_names(self, names: list[str]) -> list[ToolDefinition]:
        """
        Get tools by name, preserving order.

        Unknown names are dropped.
        """
        return [self._tools[name] for name in names if name in self._tools]

    def to_llm_tools(self, names: list[str] | None = None) -> list[dict[str, Any]]:
        """Convert registered tools to provider tool format."""
        tools = self.get_by_names(names) if names is not None else self.get_all()
        return [tool.to_llm_tool() for tool in tools]

    def list_tools(self) -> list[str]:
        """List registered tool names."""
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


class CurrentTimeInput(BaseModel):
    """get_current_time takes no input."""


def _get_current_time(input_data: CurrentTimeInput, context: ToolExecutionContext) -> dict[str, str]:
    now = datetime.now().astimezone()
    return {
        "timestamp": now.isoformat(),
        "timezone": now.tzname() or "UTC",
    }


CURRENT_TIME_TOOL = ToolDefinition(
    name="get_current_time",
    description="Returns the current date and time in ISO 8601 format.",
    input_model=CurrentTimeInput,
    requires_approval=False,
    execute=_get_current_time,
)


def default_tool_registry() -> ToolRegistry:
    """Create a registry holding the built-in tools."""
    registry = ToolRegistry()
    registry.register(CURRENT_TIME_TOOL)
    return registry
