"""
Execution context for tool calls against one logical Browserbase session.

The Context is the single source of truth, for the lifetime of one request
(remote deployment) or one process (local deployment), for:
  - which session the next tool call targets  (current_session_id)
  - what each session's page last looked like (one PageSnapshot per session)
  - which byte resources were produced        (screenshots, by name)

It is also the orchestrator for running one tool:

  validate → switch session → resolve session → handler → action
           → settle + snapshot → assemble result

Tool-level failures never escape ``run()``; they become error results.
The durable store is the continuity cache, not the Context.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from .config import settings
from .exceptions import (
    ResourceNotFoundError,
    ResourceUriError,
    SnapshotReferenceError,
    ToolValidationError,
)
from .models.schemas import (
    CachedMeta,
    CachedResource,
    CachedSession,
    CachedSnapshot,
    ContextProjection,
    RequestConfig,
    ResourceBlob,
    ResourceDescriptor,
    ResourceEntry,
    ToolActionOutput,
    ToolContent,
    ToolResult,
)
from .page_snapshot import PageSnapshot
from .session_manager import DEFAULT_SESSION_ID, SessionRegistry
from .tools import SESSION_CREATE_TOOL, Tool, ToolAction
from .utils.logger import get_logger

logger = get_logger(__name__)

__all__ = ["Context", "RESOURCE_URI_PREFIX"]

RESOURCE_SCHEME = "mcp"
RESOURCE_KIND = "screenshots"
RESOURCE_URI_PREFIX = f"{RESOURCE_SCHEME}://{RESOURCE_KIND}/"

NO_PAGE_MARKER = "- [Page unavailable after action]"
PAGE_STATE_ERROR_MARKER = "- [Error retrieving page state after action]"
NO_SNAPSHOT_MARKER = "- [No relevant snapshot available after action]"


class Context:
    """
    Per-session working state and tool-run orchestration.

    Attributes:
        registry: Process-wide SessionRegistry used for session resolution
        config: Per-call configuration (credentials, viewport, proxy flags)
        current_session_id: Session the next tool call targets
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config: Optional[RequestConfig] = None,
        settle_delay_ms: int = settings.SNAPSHOT_SETTLE_DELAY_MS,
        capture_delay_ms: int = settings.SNAPSHOT_CAPTURE_DELAY_MS,
    ):
        self.registry = registry
        self.config = config or RequestConfig()
        self.current_session_id: str = DEFAULT_SESSION_ID
        self.settle_delay_ms = settle_delay_ms
        self.capture_delay_ms = capture_delay_ms
        self._latest_snapshots: Dict[str, PageSnapshot] = {}
        self._resources: Dict[str, ResourceEntry] = {}
        self._resource_listeners: List[Callable[[str], None]] = []

    # ------------------------------------------------------------------
    # Snapshot state
    # ------------------------------------------------------------------

    def latest_snapshot(self, session_id: Optional[str] = None) -> Optional[PageSnapshot]:
        return self._latest_snapshots.get(session_id or self.current_session_id)

    def set_snapshot(self, session_id: str, snapshot: PageSnapshot) -> None:
        self._latest_snapshots[session_id] = snapshot

    @property
    def snapshots(self) -> Dict[str, PageSnapshot]:
        return dict(self._latest_snapshots)

    def snapshot_or_die(self) -> PageSnapshot:
        """
        Latest snapshot of the current session.

        Raises:
            SnapshotReferenceError: if the session has no snapshot yet
        """
        snapshot = self._latest_snapshots.get(self.current_session_id)
        if snapshot is None:
            raise SnapshotReferenceError(
                f"No snapshot available for the current session "
                f"({self.current_session_id}). Capture a snapshot first."
            )
        return snapshot

    def clear_latest_snapshot(self) -> None:
        """Forget the current session's snapshot."""
        self._latest_snapshots.pop(self.current_session_id, None)

    async def capture_snapshot(self) -> Optional[PageSnapshot]:
        """
        Capture and store a fresh snapshot of the current session's page.

        Never raises: on any failure the stale snapshot is cleared and None
        is returned, meaning "no snapshot available".
        """
        log_prefix = f"[Context.capture_snapshot] Session {self.current_session_id}:"
        page = await self.get_active_page()
        if page is None:
            logger.debug(f"{log_prefix} no active page")
            self.clear_latest_snapshot()
            return None

        try:
            await self.wait_for_timeout(self.capture_delay_ms)
            snapshot = await PageSnapshot.capture(page)
        except Exception as e:
            logger.warning(f"{log_prefix} Failed to capture snapshot: {e}")
            self.clear_latest_snapshot()
            return None

        self._latest_snapshots[self.current_session_id] = snapshot
        return snapshot

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    @property
    def resources(self) -> Dict[str, ResourceEntry]:
        return dict(self._resources)

    def add_resource_listener(self, listener: Callable[[str], None]) -> None:
        """Call *listener(name)* whenever a resource is added."""
        self._resource_listeners.append(listener)

    def add_resource(self, name: str, format: str, data: str) -> ResourceEntry:
        """
        Register a named byte resource.

        Args:
            name: Resource name (the last URI segment)
            format: Image format, e.g. "png"
            data: Base64-encoded bytes

        Returns:
            The stored entry, carrying its synthetic URI
        """
        if not name or "/" in name:
            raise ResourceUriError(f"Invalid resource name: {name!r}")
        entry = ResourceEntry(format=format, bytes=data, uri=f"{RESOURCE_URI_PREFIX}{name}")
        self._resources[name] = entry
        for listener in list(self._resource_listeners):
            try:
                listener(name)
            except Exception as e:
                logger.warning(f"[Context] resource listener failed for {name!r}: {e}")
        return entry

    def list_resources(self) -> List[ResourceDescriptor]:
        return [
            ResourceDescriptor(
                uri=entry.uri,
                mime_type=f"image/{entry.format}",
                name=f"Screenshot: {name}",
            )
            for name, entry in self._resources.items()
        ]

    def read_resource(self, uri: str) -> ResourceBlob:
        """
        Contents of the resource addressed by *uri*.

        Raises:
            ResourceUriError: URI is not of the form mcp://screenshots/<name>
            ResourceNotFoundError: no resource with that name
        """
        if not isinstance(uri, str) or not uri.startswith(RESOURCE_URI_PREFIX):
            raise ResourceUriError(f"Resource URI format not recognized: {uri}")
        name = uri[len(RESOURCE_URI_PREFIX):]
        if not name or "/" in name:
            raise ResourceUriError(f"Resource URI format not recognized: {uri}")
        entry = self._resources.get(name)
        if entry is None:
            raise ResourceNotFoundError(f"Screenshot resource not found: {name}")
        return ResourceBlob(uri=uri, mime_type=f"image/{entry.format}", blob=entry.bytes)

    # ------------------------------------------------------------------
    # Session access
    # ------------------------------------------------------------------

    async def get_active_page(self):
        """Live page of the current session (resolving it if needed), or None."""
        try:
            return await self.registry.resolve_page(self.current_session_id, self.config)
        except Exception as e:
            logger.warning(f"[Context] Could not resolve page for {self.current_session_id}: {e}")
            return None

    def _pin_default_session(self, remote_id: str) -> None:
        # Other processes only know the default alias by its Browserbase id.
        logger.info(f"[Context] Default session is Browserbase session {remote_id}")
        snapshot = self._latest_snapshots.pop(DEFAULT_SESSION_ID, None)
        if snapshot is not None:
            self._latest_snapshots.setdefault(remote_id, snapshot)
        self.current_session_id = remote_id

    def _peek_active_page(self):
        # Tracked sessions only: reporting page state must not create a browser.
        session = self.registry.get(self.current_session_id)
        if session is None or not session.is_alive():
            return None
        return session.page

    async def wait_for_timeout(self, timeout_ms: int) -> None:
        if timeout_ms > 0:
            await asyncio.sleep(timeout_ms / 1000)

    # ------------------------------------------------------------------
    # Continuity projection
    # ------------------------------------------------------------------

    def to_projection(self) -> ContextProjection:
        """Serializable subset of this context, ready to merge into the cache."""
        snapshots: List[CachedSnapshot] = []
        for session_id, snapshot in self._latest_snapshots.items():
            try:
                snapshots.append(
                    CachedSnapshot(
                        session_id=session_id,
                        serialized_data=snapshot.serialize(),
                        captured_at=snapshot.captured_at,
                    )
                )
            except Exception as e:
                logger.warning(f"[Context] Failed to serialize snapshot for session {session_id}: {e}")

        return ContextProjection(
            session=CachedSession(current_session_id=self.current_session_id),
            resources={
                name: CachedResource(**entry.model_dump())
                for name, entry in self._resources.items()
            },
            snapshots=snapshots,
            meta=CachedMeta(updated_at=int(time.time() * 1000)),
        )

    def apply_projection(self, projection: ContextProjection) -> None:
        """
        Rehydrate this context from a cached projection.

        Snapshots are deserialized one by one; an entry that cannot be
        deserialized is skipped. Every restored snapshot is disconnected.
        """
        if projection.session is not None:
            self.current_session_id = projection.session.current_session_id

        if projection.resources:
            self._resources = {
                name: ResourceEntry(**entry.model_dump())
                for name, entry in projection.resources.items()
            }

        for entry in projection.snapshots or []:
            snapshot = PageSnapshot.deserialize(entry.serialized_data, captured_at=entry.captured_at)
            if snapshot is None:
                logger.warning(f"[Context] Skipping undeserializable snapshot for session {entry.session_id}")
                continue
            self._latest_snapshots[entry.session_id] = snapshot

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def run(self, tool: Tool, raw_args: Any) -> ToolResult:
        """
        Run *tool* with *raw_args* against the current session.

        Returns an error result for every tool-level failure (bad arguments,
        unreachable session, failed action). Only a failure of this method's
        own bookkeeping propagates.
        """
        tool_name = tool.name
        log_prefix = f"[Context.run {tool_name}]"

        try:
            # 1. Validate (no side effects on failure)
            try:
                args = tool.validate(raw_args)
            except ToolValidationError as e:
                logger.info(f"{log_prefix} Input validation failed: {e}")
                return ToolResult.error(f"Input validation failed: {e}")

            # 2. Switch session; snapshots stay keyed by their own session id
            previous_session_id = self.current_session_id
            requested_session_id = getattr(args, "session_id", None)
            if requested_session_id and requested_session_id != self.current_session_id:
                logger.info(
                    f"{log_prefix} Switching session {previous_session_id} -> {requested_session_id}"
                )
                self.current_session_id = requested_session_id

            # 3. Resolve the session (session creation makes its own)
            if tool_name != SESSION_CREATE_TOOL:
                session = await self.registry.resolve(self.current_session_id, self.config)
                if session is None or not session.is_alive():
                    failed_session_id = self.current_session_id
                    self.current_session_id = previous_session_id
                    logger.warning(f"{log_prefix} Session {failed_session_id} unavailable, pointer rolled back")
                    return ToolResult.error(
                        f"Error retrieving or validating session {failed_session_id}: "
                        f"Session {failed_session_id} is invalid or browser/page is not available."
                    )
                if self.current_session_id == DEFAULT_SESSION_ID and session.remote_id:
                    self._pin_default_session(session.remote_id)
                    if previous_session_id == DEFAULT_SESSION_ID:
                        previous_session_id = session.remote_id

            # 4 + 5. Handler, then action
            try:
                tool_action = await tool.handler(self, args)
                if not isinstance(tool_action, ToolAction):
                    raise RuntimeError(f"Tool {tool_name} handled without action.")
                action_output = await tool_action.action()
            except Exception as e:
                logger.error(f"{log_prefix} Error executing tool {tool_name}: {e}", exc_info=True)
                if tool_name != SESSION_CREATE_TOOL and self.current_session_id != previous_session_id:
                    self.current_session_id = previous_session_id
                if isinstance(e, ToolValidationError):
                    return ToolResult.error(f"Validation failed: {e}")
                return ToolResult.error(f"Execution failed: {e}")

            # 6. Settle, then snapshot (best effort)
            post_action_snapshot: Optional[PageSnapshot] = None
            if tool_action.capture_snapshot:
                await self.wait_for_timeout(self.settle_delay_ms)
                post_action_snapshot = await self.capture_snapshot()
                if post_action_snapshot is None:
                    logger.warning(f"{log_prefix} Snapshot was expected after action but failed to capture")

            # 7. Assemble
            return await self._assemble_result(tool_name, action_output, post_action_snapshot)

        except Exception as e:
            logger.error(f"{log_prefix} Error running tool {tool_name}: {e}", exc_info=True)
            raise

    async def _assemble_result(
        self,
        tool_name: str,
        output: Optional[ToolActionOutput],
        snapshot: Optional[PageSnapshot],
    ) -> ToolResult:
        content: List[ToolContent] = []
        if output is not None and output.content:
            content.extend(output.content)
        else:
            content.append(ToolContent(type="text", text=f"{tool_name} action completed successfully."))

        info: List[str] = []
        page = self._peek_active_page()
        if page is None:
            info.append(NO_PAGE_MARKER)
        else:
            try:
                url = page.url
                try:
                    title = await page.title()
                except Exception:
                    title = "[Error retrieving title]"
                info.append(f"- Page URL: {url}")
                info.append(f"- Page Title: {title}")
            except Exception:
                info.append(PAGE_STATE_ERROR_MARKER)

        info.append(snapshot.text if snapshot is not None else NO_SNAPSHOT_MARKER)
        content.append(ToolContent(type="text", text="\n".join(info)))
        return ToolResult(content=content, is_error=False)
