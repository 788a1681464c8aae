"""
Tools package for the Browserbase continuity server.

Every tool is a ``Tool`` value declaring ``name``, ``description``,
``input_schema`` (a pydantic model) and an async ``handler``. The handler,
given the execution context and validated arguments, returns a
``ToolAction``: the action closure to run plus whether a snapshot should be
captured after it succeeds.

Tool shape is checked once, when the tool is constructed and registered;
nothing is probed per call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import SessionUnavailableError, ToolDefinitionError, ToolValidationError
from ..models.schemas import ToolActionOutput, ToolContent
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..context import Context

logger = get_logger(__name__)


SESSION_CREATE_TOOL = "browserbase_session_create"
SESSION_CLOSE_TOOL = "browserbase_session_close"
SNAPSHOT_TOOL = "browserbase_snapshot"
NAVIGATE_TOOL = "browserbase_navigate"


# ============================================================================
# Tool values
# ============================================================================

class ToolInput(BaseModel):
    """Base input schema: every tool may target a specific session."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: Optional[str] = Field(
        None,
        alias="sessionId",
        description="Session to run against; defaults to the current session",
    )


ActionFunc = Callable[[], Awaitable[Optional[ToolActionOutput]]]


@dataclass(frozen=True)
class ToolAction:
    """What a handler returns: the action to run and the snapshot flag."""
    action: ActionFunc
    capture_snapshot: bool = False


HandlerFunc = Callable[["Context", Any], Awaitable[ToolAction]]


@dataclass(frozen=True)
class Tool:
    """A single tool definition."""
    name: str
    description: str
    input_schema: Type[BaseModel]
    handler: HandlerFunc

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ToolDefinitionError("Tool name must be a non-empty string")
        if not isinstance(self.description, str):
            raise ToolDefinitionError(f"Tool {self.name!r}: description must be a string")
        if not (isinstance(self.input_schema, type) and issubclass(self.input_schema, BaseModel)):
            raise ToolDefinitionError(f"Tool {self.name!r}: input_schema must be a pydantic model class")
        if not callable(self.handler):
            raise ToolDefinitionError(f"Tool {self.name!r}: handler must be callable")

    def validate(self, raw_args: Any) -> BaseModel:
        """
        Validate raw arguments against the input schema.

        Raises:
            ToolValidationError: carrying every individual validation message
        """
        if raw_args is None:
            raw_args = {}
        if not isinstance(raw_args, dict):
            raise ToolValidationError(
                f"Arguments must be an object, got {type(raw_args).__name__}"
            )
        try:
            return self.input_schema.model_validate(raw_args)
        except ValidationError as e:
            messages = [
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ToolValidationError(", ".join(messages), messages) from e

    def json_schema(self) -> Dict[str, Any]:
        return self.input_schema.model_json_schema(by_alias=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.json_schema(),
        }


# ============================================================================
# Shared result helpers (importable from any tool module)
# ============================================================================

def text_output(*lines: str) -> ToolActionOutput:
    """Action output made of one text item per line given."""
    return ToolActionOutput(content=[ToolContent(type="text", text=line) for line in lines])


async def require_page(context: "Context"):
    """Live page of the active session, or SessionUnavailableError."""
    page = await context.get_active_page()
    if page is None:
        raise SessionUnavailableError(
            context.current_session_id,
            f"No active page for session {context.current_session_id}",
        )
    return page


# ============================================================================
# Tool Registry
# ============================================================================

class ToolRegistry:
    """
    Central registry mapping tool names → Tool values.

    Contract guarantees:
      - register() rejects anything that is not a Tool and duplicate names
      - get() returns None for unknown names, never raises
    """

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool definition."""
        if not isinstance(tool, Tool):
            raise ToolDefinitionError(
                f"Expected a Tool definition, got {type(tool).__name__}"
            )
        if tool.name in self._tools:
            raise ToolDefinitionError(f"Tool {tool.name!r} is already registered")
        self._tools[tool.name] = tool
        logger.debug(f"[ToolRegistry] Registered tool: {tool.name!r}")

    def register_many(self, tools: List[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Optional[Tool]:
        """Look up a tool by name, returning None if not found."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def available(self) -> list:
        """List all registered tool names."""
        return sorted(self._tools.keys())

    def list_tools(self) -> List[Dict[str, Any]]:
        """Name, description and JSON schema of every registered tool."""
        return [self._tools[name].to_dict() for name in self.available()]


def default_tools() -> List[Tool]:
    """The built-in Browserbase tool set."""
    from .common import make_common_tools
    from .navigate import make_navigate_tools
    from .session import make_session_tools
    from .snapshot import make_snapshot_tools

    return [
        *make_session_tools(),
        *make_navigate_tools(),
        *make_snapshot_tools(),
        *make_common_tools(),
    ]


def build_registry() -> ToolRegistry:
    """A ToolRegistry populated with default_tools()."""
    registry = ToolRegistry()
    registry.register_many(default_tools())
    logger.info(f"[ToolRegistry] Tools registered: {registry.available()}")
    return registry
