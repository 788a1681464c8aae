"""Models package."""
from .schemas import (
    ToolContent,
    ToolResult,
    ToolActionOutput,
    ResourceEntry,
    ResourceDescriptor,
    ResourceBlob,
    RequestConfig,
    CachedSession,
    CachedResource,
    CachedSnapshot,
    CachedMeta,
    ContextProjection,
)

__all__ = [
    "ToolContent",
    "ToolResult",
    "ToolActionOutput",
    "ResourceEntry",
    "ResourceDescriptor",
    "ResourceBlob",
    "RequestConfig",
    "CachedSession",
    "CachedResource",
    "CachedSnapshot",
    "CachedMeta",
    "ContextProjection",
]
