"""
Browserbase MCP: session and snapshot continuity layer
"""

__version__ = "1.0.0"

from .context import Context
from .continuity import ContinuityStore
from .orchestrator import ToolCallOrchestrator
from .page_snapshot import PageSnapshot
from .session_factory import BrowserSession, PlaywrightSessionFactory
from .session_manager import DEFAULT_SESSION_ID, SessionRegistry
from .tools import Tool, ToolAction, ToolRegistry, build_registry
from .utils.logger import get_logger

__all__ = [
    "Context",
    "ContinuityStore",
    "ToolCallOrchestrator",
    "PageSnapshot",
    "BrowserSession",
    "PlaywrightSessionFactory",
    "DEFAULT_SESSION_ID",
    "SessionRegistry",
    "Tool",
    "ToolAction",
    "ToolRegistry",
    "build_registry",
    "get_logger",
]
