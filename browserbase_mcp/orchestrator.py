"""
Tool-call orchestration for local and remote deployments.

Remote deployment (a continuity store is configured): every call gets a fresh
execution context that is rehydrated from the tenant's cached projection,
runs the tool, and merges its state back::

    session_create? → delete projection
    load projection → apply to new Context
    reconnect / capture the target session's snapshot (element tools)
    Context.run(tool, args)
    session_close?  → delete projection, else save (merge)

Local deployment: one long-lived context serves every call and the cache is
never touched.
"""

import asyncio
from typing import Any, Dict, Optional

from .config import settings
from .context import Context
from .continuity import ContinuityStore
from .exceptions import UnknownToolError
from .models.schemas import RequestConfig, ToolResult
from .page_snapshot import PageSnapshot
from .session_manager import SessionRegistry
from .tools import (
    NAVIGATE_TOOL,
    SESSION_CLOSE_TOOL,
    SESSION_CREATE_TOOL,
    SNAPSHOT_TOOL,
    ToolRegistry,
)
from .utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Constants
# ============================================================================

REMOTE_MODE = "remote"
LOCAL_MODE = "local"
DEFAULT_TENANT = "default"

# Tools that never act on a previous snapshot's element refs
SNAPSHOT_INDEPENDENT_TOOLS = {
    SESSION_CREATE_TOOL,
    SESSION_CLOSE_TOOL,
    SNAPSHOT_TOOL,
    NAVIGATE_TOOL,
}


class ToolCallOrchestrator:
    """
    Routes tool calls through the right context lifecycle.

    Usage::

        orchestrator = ToolCallOrchestrator(build_registry(), registry, store)
        result = await orchestrator.call_tool(
            "browserbase_navigate", {"url": "https://example.com"},
            request_config, tenant_key="proj_123",
        )
    """

    def __init__(
        self,
        tools: ToolRegistry,
        registry: SessionRegistry,
        store: Optional[ContinuityStore] = None,
        mode: Optional[str] = None,
        recapture_on_rehydrate: bool = settings.RECAPTURE_ON_REHYDRATE,
        settle_delay_ms: int = settings.SNAPSHOT_SETTLE_DELAY_MS,
        capture_delay_ms: int = settings.SNAPSHOT_CAPTURE_DELAY_MS,
    ):
        self.tools = tools
        self.registry = registry
        self.store = store
        self.mode = (mode or (REMOTE_MODE if store is not None else LOCAL_MODE)).lower()
        if self.mode == REMOTE_MODE and store is None:
            raise ValueError("Remote deployment requires a ContinuityStore")
        self.recapture_on_rehydrate = recapture_on_rehydrate
        self.settle_delay_ms = settle_delay_ms
        self.capture_delay_ms = capture_delay_ms

        self._local_context: Optional[Context] = None
        self._local_lock = asyncio.Lock()
        self._stats: Dict[str, int] = {
            "calls": 0,
            "rehydrated": 0,
            "saved": 0,
            "save_failures": 0,
            "resources_added": 0,
        }

        logger.info(f"[Orchestrator] Initialized in {self.mode} mode")

    @property
    def is_remote(self) -> bool:
        return self.mode == REMOTE_MODE

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def new_context(self, config: Optional[RequestConfig] = None) -> Context:
        context = Context(
            self.registry,
            config,
            settle_delay_ms=self.settle_delay_ms,
            capture_delay_ms=self.capture_delay_ms,
        )
        context.add_resource_listener(self._on_resource_added)
        return context

    def _on_resource_added(self, name: str) -> None:
        # Stands in for a resources/list_changed notification
        self._stats["resources_added"] += 1
        logger.info(f"[Orchestrator] Resource list changed | added={name}")

    # ========================================================================
    # Entry point
    # ========================================================================

    async def call_tool(
        self,
        tool_name: str,
        args: Any,
        request_config: Optional[RequestConfig] = None,
        tenant_key: Optional[str] = None,
    ) -> ToolResult:
        """
        Run one tool call.

        Args:
            tool_name: Registered tool name
            args: Raw (unvalidated) tool arguments
            request_config: Per-call credentials and browser flags
            tenant_key: Cache key of the tenant; defaults to the project id

        Raises:
            UnknownToolError: if no tool is registered under *tool_name*
        """
        tool = self.tools.get(tool_name)
        if tool is None:
            raise UnknownToolError(tool_name)

        self._stats["calls"] += 1
        config = request_config or RequestConfig()

        if not self.is_remote:
            return await self._call_local(tool, args, config)

        tenant = tenant_key or config.project_id or DEFAULT_TENANT
        return await self._call_remote(tool, args, config, tenant)

    async def get_context(self, tenant_key: Optional[str] = None,
                          request_config: Optional[RequestConfig] = None) -> Context:
        """
        Context for resource listing and reading.

        Local mode returns the long-lived context; remote mode returns a
        context rehydrated from the tenant's projection (not reconnected).
        """
        config = request_config or RequestConfig()
        if not self.is_remote:
            return self._ensure_local_context(config)

        context = self.new_context(config)
        tenant = tenant_key or config.project_id or DEFAULT_TENANT
        projection = await self.store.load(tenant)
        if projection is not None:
            context.apply_projection(projection)
        return context

    async def shutdown(self) -> None:
        """Release every browser session and the cache connection."""
        await self.registry.close_all()
        if self.store is not None:
            await self.store.close()
        logger.info("[Orchestrator] Shutdown complete")

    # ========================================================================
    # Local mode
    # ========================================================================

    def _ensure_local_context(self, config: RequestConfig) -> Context:
        if self._local_context is None:
            self._local_context = self.new_context(config)
        return self._local_context

    async def _call_local(self, tool, args: Any, config: RequestConfig) -> ToolResult:
        async with self._local_lock:
            context = self._ensure_local_context(config)
            context.config = config
            return await context.run(tool, args)

    # ========================================================================
    # Remote mode
    # ========================================================================

    async def _call_remote(self, tool, args: Any, config: RequestConfig, tenant: str) -> ToolResult:
        log_prefix = f"[Orchestrator] {tool.name} tenant={tenant}:"

        # 1. A new session invalidates whatever was cached
        if tool.name == SESSION_CREATE_TOOL:
            await self.store.delete(tenant)

        # 2. Rehydrate
        context = self.new_context(config)
        projection = await self.store.load(tenant)
        if projection is not None:
            context.apply_projection(projection)
            self._stats["rehydrated"] += 1
            logger.debug(
                f"{log_prefix} rehydrated session={context.current_session_id} "
                f"snapshots={len(context.snapshots)} resources={len(context.resources)}"
            )

        # 3. Element tools need a connected snapshot
        if tool.name not in SNAPSHOT_INDEPENDENT_TOOLS:
            target_session_id = context.current_session_id
            if isinstance(args, dict) and isinstance(args.get("sessionId"), str) and args["sessionId"]:
                target_session_id = args["sessionId"]
            await self._prepare_snapshot(context, target_session_id)

        # 4. Run
        result = await context.run(tool, args)

        # 5. Persist
        if tool.name == SESSION_CLOSE_TOOL:
            await self.store.delete(tenant)
        else:
            saved = await self.store.save(tenant, context.to_projection())
            self._stats["saved" if saved else "save_failures"] += 1
            if not saved:
                logger.warning(f"{log_prefix} projection not saved, next call starts from an older state")

        return result

    async def _prepare_snapshot(self, context: Context, session_id: str) -> None:
        snapshot = context.latest_snapshot(session_id)
        if snapshot is not None and not snapshot.needs_reconnection():
            return

        page = await self.registry.resolve_page(session_id, context.config)
        if page is None:
            logger.info(f"[Orchestrator] No live page for session {session_id}; snapshot left as is")
            return

        if snapshot is not None and not self.recapture_on_rehydrate:
            snapshot.reconnect(page)
            logger.debug(f"[Orchestrator] Reconnected cached snapshot for session {session_id}")
            return

        try:
            context.set_snapshot(session_id, await PageSnapshot.capture(page))
            logger.debug(f"[Orchestrator] Captured fresh snapshot for session {session_id}")
        except Exception as e:
            logger.warning(f"[Orchestrator] Snapshot capture failed for session {session_id}: {e}")
