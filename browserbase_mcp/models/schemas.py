"""
Data models and schemas for tool results, resources and the cached projection.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Tool results
# ============================================================================

class ToolContent(BaseModel):
    """Single content item in a tool response."""
    type: Literal["text", "image"] = "text"
    text: Optional[str] = None
    data: Optional[str] = Field(None, description="Base64 payload for images")
    mime_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire content format."""
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}


class ToolResult(BaseModel):
    """Result of one tool invocation."""
    content: List[ToolContent] = Field(default_factory=list)
    is_error: bool = False

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[ToolContent(type="text", text=f"Error: {message}")], is_error=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": [item.to_dict() for item in self.content],
            "isError": self.is_error,
        }


class ToolActionOutput(BaseModel):
    """What a tool's action closure hands back to the context."""
    content: List[ToolContent] = Field(default_factory=list)


# ============================================================================
# Resources
# ============================================================================

class ResourceEntry(BaseModel):
    """A named byte resource held by a context (bytes are base64 text)."""
    format: str
    bytes: str
    uri: str


class ResourceDescriptor(BaseModel):
    """Listing entry for a resource."""
    uri: str
    mime_type: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"uri": self.uri, "mimeType": self.mime_type, "name": self.name}


class ResourceBlob(BaseModel):
    """Contents of a resource returned by read_resource()."""
    uri: str
    mime_type: str
    blob: str

    def to_dict(self) -> Dict[str, Any]:
        return {"uri": self.uri, "mimeType": self.mime_type, "blob": self.blob}


# ============================================================================
# Per-call configuration
# ============================================================================

class RequestConfig(BaseModel):
    """
    Configuration derived for one tool call from the caller's credentials
    and browser flags.
    """
    api_key: Optional[str] = None
    project_id: Optional[str] = None
    proxies: bool = False
    advanced_stealth: bool = False
    context_id: Optional[str] = None
    persist: bool = True
    viewport_width: int = 1024
    viewport_height: int = 768

    @property
    def has_remote_credentials(self) -> bool:
        return bool(self.api_key and self.project_id)


# ============================================================================
# Continuity projection (cached per tenant)
# ============================================================================

class CachedSession(BaseModel):
    """`session` field of the cached projection."""
    model_config = ConfigDict(populate_by_name=True)

    current_session_id: str = Field(..., alias="currentSessionId", min_length=1)


class CachedResource(ResourceEntry):
    """One entry of the `resources` field."""


class CachedSnapshot(BaseModel):
    """One entry of the `snapshots` field."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)
    serialized_data: str = Field(..., alias="serializedData")
    captured_at: int = Field(0, alias="capturedAt", description="Epoch milliseconds")


class CachedMeta(BaseModel):
    """`meta` field of the cached projection."""
    model_config = ConfigDict(populate_by_name=True)

    updated_at: int = Field(..., alias="updatedAt", description="Epoch milliseconds")


class ContextProjection(BaseModel):
    """
    Serializable subset of an execution context.

    Every field is optional: a save carries only what the caller wants merged,
    and a load carries only the fields that survived validation.
    """
    session: Optional[CachedSession] = None
    resources: Optional[Dict[str, CachedResource]] = None
    snapshots: Optional[List[CachedSnapshot]] = None
    meta: Optional[CachedMeta] = None

    def is_empty(self) -> bool:
        return (
            self.session is None
            and not self.resources
            and not self.snapshots
            and self.meta is None
        )
