"""Continuity-layer exception hierarchy

Each class maps to one failure category of the tool-call pipeline:
- ToolValidationError: bad tool arguments (reported, no state change)
- SessionUnavailableError: target session unreachable (reported, pointer rolled back)
- SnapshotReferenceError: stale or unresolvable element reference
- ResourceNotFoundError / ResourceUriError: resource registry lookups
- CacheError: shared-cache failures (never escapes the store)
- ToolDefinitionError: malformed tool value rejected at registration time
- UnknownToolError: a call names a tool that is not registered
"""

from typing import Iterable, List, Optional


class ContinuityError(RuntimeError):
    """Base class for every error raised by the continuity layer."""


class ToolValidationError(ContinuityError, ValueError):
    """Raised when tool arguments (or an element reference) fail validation.

    Carries the individual messages so callers can report all of them at once.
    """

    def __init__(self, message: str, messages: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.messages: List[str] = list(messages) if messages else [message]


class SnapshotReferenceError(ToolValidationError):
    """Raised when a reference cannot be resolved against the current snapshot.

    THROW when:
    - The snapshot is disconnected (deserialized, not yet reconnected)
    - The snapshot has no frame handles
    - The frame index encoded in the reference is out of range
    - No snapshot exists for the active session
    """


class SessionUnavailableError(ContinuityError):
    """Raised when the browser session for a session id cannot be reached."""

    def __init__(self, session_id: str, message: str):
        super().__init__(message)
        self.session_id = session_id


class ResourceNotFoundError(ContinuityError, KeyError):
    """Raised when a resource name is not registered in the context."""

    def __str__(self):
        return str(self.args[0]) if self.args else "Resource not found"


class ResourceUriError(ContinuityError, ValueError):
    """Raised when a resource URI does not use a recognised scheme/kind."""


class CacheError(ContinuityError):
    """Raised internally when the shared cache cannot be reached or written."""


class ToolDefinitionError(ContinuityError, TypeError):
    """Raised at registration time for a tool that does not declare a valid shape."""


class UnknownToolError(ContinuityError, KeyError):
    """Raised when a tool call names a tool that is not registered."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name

    def __str__(self):
        return f"Unknown tool: {self.tool_name}"
