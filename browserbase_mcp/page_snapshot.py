"""
Accessibility-tree snapshots with frame-scoped element references.

A PageSnapshot is one capture of a page's aria tree, rendered as YAML text in
which every element carries a ``[ref=...]`` annotation. References inside
nested iframes are prefixed with ``f<N>`` where ``N`` indexes the snapshot's
frame-handle list (index 0 is always the root page, and root references carry
no prefix).

The driver's text is kept line for line: refs are rewritten in place and each
child frame's lines are spliced in under its ``iframe`` node. The tree is never
parsed and re-dumped, so scalars such as ``3:45`` or ``1_000`` stay as written.

Lifecycle
---------
  capture(page)      → connected snapshot, frame handles for every frame seen
  serialize()        → ``{"text": ...}`` only, frame handles are dropped
  deserialize(data)  → disconnected snapshot (text only)
  reconnect(page)    → root frame handle restored, nested frames are NOT

After a reconnect only root references are guaranteed resolvable; a nested
``f<N>`` reference fails with SnapshotReferenceError until a fresh capture.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any, List, Optional

from .exceptions import SnapshotReferenceError
from .utils.logger import get_logger

logger = get_logger(__name__)

__all__ = ["PageSnapshot", "parse_reference"]


FRAME_REF_PATTERN = re.compile(r"^f(\d+)(.*)$")
REF_ATTR_PATTERN = re.compile(r"\[ref=([^\]]+)\]")
IFRAME_LINE_PATTERN = re.compile(r"""^\s*-\s+["']?iframe\b""")
SNAPSHOT_HEADER = "- Page Snapshot"

# Only the "ai" aria snapshot annotates nodes with [ref=...] and registers
# them for aria-ref= locators.
ARIA_SNAPSHOT_MODE = "ai"


def parse_reference(ref: str) -> tuple[int, str]:
    """
    Split a reference string into ``(frame_index, local_ref)``.

    ``"e3"`` → ``(0, "e3")``, ``"f2e7"`` → ``(2, "e7")``.
    """
    match = FRAME_REF_PATTERN.match(ref)
    if match:
        return int(match.group(1)), match.group(2)
    return 0, ref


def _now_ms() -> int:
    return int(time.time() * 1000)


class PageSnapshot:
    """
    Serializable aria-tree capture of a page.

    A snapshot is either *connected* (frame handles populated, references
    resolvable) or *disconnected* (restored from storage, text only).
    """

    def __init__(
        self,
        text: str = "",
        frame_handles: Optional[List[Any]] = None,
        disconnected: bool = False,
        captured_at: Optional[int] = None,
    ) -> None:
        self._text = text
        self._frame_handles: List[Any] = list(frame_handles or [])
        self._disconnected = disconnected
        self._reconnected = False
        self.captured_at = captured_at if captured_at is not None else _now_ms()

    # ── construction ──────────────────────────────────────────────────────

    @classmethod
    async def capture(cls, page: Any) -> "PageSnapshot":
        """
        Build a connected snapshot of *page*, descending into iframes.

        Raises whatever the driver raises if the root page itself cannot be
        queried; a broken iframe only yields a placeholder node.
        """
        snapshot = cls()
        lines = await snapshot._snapshot_frame(page)
        snapshot._text = snapshot._render(lines)
        snapshot.captured_at = _now_ms()
        logger.debug(
            f"[PageSnapshot] Captured {len(snapshot._frame_handles)} frame(s), "
            f"{len(snapshot._text)} chars"
        )
        return snapshot

    def serialize(self) -> str:
        """Storage form of the snapshot (text only)."""
        return json.dumps({"text": self._text})

    @classmethod
    def deserialize(
        cls, data: str, captured_at: Optional[int] = None
    ) -> Optional["PageSnapshot"]:
        """Restore a disconnected snapshot; returns None on malformed input."""
        try:
            payload = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"[PageSnapshot] Failed to deserialize snapshot: {e}")
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
            logger.warning("[PageSnapshot] Serialized snapshot has no text field")
            return None
        return cls(text=payload["text"], disconnected=True, captured_at=captured_at)

    # ── reconnection ──────────────────────────────────────────────────────

    def reconnect(self, page: Any) -> None:
        """
        Attach *page* as frame 0 and mark the snapshot connected.

        Must be called before resolving references on a deserialized snapshot.
        Nested frame handles from the first capture are not restored.
        """
        self._frame_handles = [page]
        self._disconnected = False
        self._reconnected = True

    def needs_reconnection(self) -> bool:
        return self._disconnected or not self._frame_handles

    # ── accessors ─────────────────────────────────────────────────────────

    @property
    def text(self) -> str:
        return self._text

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    @property
    def frame_handles(self) -> List[Any]:
        return list(self._frame_handles)

    @property
    def frame_count(self) -> int:
        return len(self._frame_handles)

    # ── reference resolution ──────────────────────────────────────────────

    def resolve_reference(self, ref: str) -> Any:
        """
        Return a driver locator for *ref*.

        Raises:
            SnapshotReferenceError: disconnected snapshot, no frame handles,
                empty reference, or a frame index outside the handle list.
        """
        if not ref:
            raise SnapshotReferenceError("Element reference must not be empty.")

        frame_index, target_ref = parse_reference(ref)

        if self._disconnected:
            raise SnapshotReferenceError(
                "Snapshot is disconnected. Call reconnect() with a live page "
                "before resolving references."
            )
        if not self._frame_handles:
            raise SnapshotReferenceError(
                f"Frame handles not initialized. Cannot find frame for ref '{ref}'."
            )
        if frame_index >= len(self._frame_handles):
            message = (
                f"Validation Error: Frame index {frame_index} derived from ref "
                f"'{ref}' is out of bounds (found {len(self._frame_handles)} frames)."
            )
            if self._reconnected and frame_index > 0:
                message += (
                    " Nested frames are not restored after the snapshot was "
                    "reloaded; take a fresh snapshot and use its references."
                )
            raise SnapshotReferenceError(message)
        if not target_ref:
            raise SnapshotReferenceError(f"Reference '{ref}' names a frame but no element.")

        frame = self._frame_handles[frame_index]
        return frame.locator(f"aria-ref={target_ref}")

    # ── capture internals ─────────────────────────────────────────────────

    async def _snapshot_frame(self, frame: Any) -> List[str]:
        frame_index = len(self._frame_handles)
        self._frame_handles.append(frame)

        raw = await frame.locator("body").aria_snapshot(mode=ARIA_SNAPSHOT_MODE)
        source = (raw or "").splitlines()

        lines: List[str] = []
        i = 0
        while i < len(source):
            line = source[i]
            i += 1
            iframe_ref = self._iframe_ref(line)
            if iframe_ref is None:
                lines.append(self._prefix_refs(line, frame_index))
                continue

            # Children the driver inlined are replaced by our own capture
            indent = _indent_of(line)
            while i < len(source) and (not source[i].strip() or _indent_of(source[i]) > indent):
                i += 1
            head = self._prefix_refs(line.rstrip(), frame_index)
            lines.extend(await self._snapshot_child(frame, iframe_ref, head, indent))
        return lines

    async def _snapshot_child(self, frame: Any, ref: str, head: str, indent: int) -> List[str]:
        if head.endswith(":"):
            head = head[:-1]
        try:
            child = frame.frame_locator(f"aria-ref={ref}")
            child_lines = await self._snapshot_frame(child)
        except Exception as e:
            logger.warning(f"[PageSnapshot] Could not snapshot iframe ref={ref}: {e}")
            return [f"{head}: <could not take iframe snapshot: {e}>"]

        child_lines = [line for line in child_lines if line.strip()]
        if not child_lines:
            return [head]
        pad = " " * (indent + 2)
        return [f"{head}:"] + [pad + line for line in child_lines]

    @staticmethod
    def _prefix_refs(value: str, frame_index: int) -> str:
        if frame_index == 0:
            return value
        return value.replace("[ref=", f"[ref=f{frame_index}")

    @staticmethod
    def _iframe_ref(line: str) -> Optional[str]:
        if not IFRAME_LINE_PATTERN.match(line):
            return None
        match = REF_ATTR_PATTERN.search(line)
        return match.group(1) if match else None

    @staticmethod
    def _render(lines: List[str]) -> str:
        body = "\n".join(line.rstrip() for line in lines).strip("\n")
        return "\n".join([SNAPSHOT_HEADER, "```yaml", body, "```"])


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))
