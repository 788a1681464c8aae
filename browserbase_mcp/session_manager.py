"""
SessionRegistry: live browser sessions of the current process
=============================================================

The registry is the only place that maps session ids to live browser
handles. One registry is constructed per process and passed explicitly to
every execution context; it is never reached through a module global.

Architecture
------------
  session_manager.py      ← this file (lifecycle + id → session map)
      └── session_factory.py  (Playwright / Browserbase lifecycle)

Guarantees
----------
  1. create()     → tracks every session it hands out
  2. close()      → idempotent, releases the underlying browser
  3. close_all()  → releases every tracked session concurrently (shutdown)
  4. resolve()    → live session or None, never raises

The registry has no cross-process durability: a session created by another
process is only reachable through the factory's ``attach()``.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Protocol

from .models.schemas import RequestConfig
from .session_factory import BrowserSession
from .utils.logger import get_logger

logger = get_logger(__name__)

__all__ = ["DEFAULT_SESSION_ID", "SessionFactory", "SessionRegistry"]

DEFAULT_SESSION_ID = "browserbase_session_main"


class SessionFactory(Protocol):
    """What the registry needs from the automation driver."""

    async def create(self, session_id: Optional[str], config: RequestConfig) -> BrowserSession: ...

    async def attach(self, session_id: str, config: RequestConfig) -> Optional[BrowserSession]: ...

    async def release(self, session: BrowserSession) -> None: ...


# ============================================================================
# SessionRegistry
# ============================================================================

class SessionRegistry:
    """
    Tracks live automation sessions created during this process's lifetime.

    Usage::

        registry = SessionRegistry(PlaywrightSessionFactory())
        session = await registry.create(config)
        page = await registry.resolve_page(session.id)
        await registry.close_all()
    """

    def __init__(self, factory: SessionFactory, default_config: Optional[RequestConfig] = None) -> None:
        self._factory = factory
        self._default_config = default_config or RequestConfig()
        self._sessions: List[BrowserSession] = []
        self._lock = asyncio.Lock()
        self._stats: dict = {
            "created": 0,
            "attached": 0,
            "closed": 0,
        }

    # ── lifecycle ─────────────────────────────────────────────────────────

    async def create(self, config: Optional[RequestConfig] = None, session_id: Optional[str] = None) -> BrowserSession:
        """
        Create a session through the factory and start tracking it.

        A live session already tracked under the same id is closed first.
        """
        async with self._lock:
            return await self._create_unlocked(config or self._default_config, session_id)

    async def close(self, session: BrowserSession) -> None:
        """Stop tracking *session* and release it. No-op if it is not tracked."""
        async with self._lock:
            if session not in self._sessions:
                logger.debug(f"[SessionRegistry] close({session.id}) not tracked, ignoring")
                return
            self._sessions.remove(session)
        await self._factory.release(session)
        self._stats["closed"] += 1
        logger.info(f"[SessionRegistry] Session closed | id={session.id}")

    async def close_session(self, session_id: str) -> bool:
        """Close the tracked session with *session_id*; True if one was closed."""
        session = self.get(session_id)
        if session is None:
            return False
        await self.close(session)
        return True

    async def close_all(self) -> None:
        """Release every tracked session concurrently (process shutdown)."""
        async with self._lock:
            sessions = list(self._sessions)
            self._sessions.clear()
        if not sessions:
            return
        logger.info(f"[SessionRegistry] Closing {len(sessions)} session(s)")
        results = await asyncio.gather(
            *(self._factory.release(s) for s in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.warning(f"[SessionRegistry] Release failed for {session.id}: {result}")
        self._stats["closed"] += len(sessions)

    # ── lookup ────────────────────────────────────────────────────────────

    def get(self, session_id: str) -> Optional[BrowserSession]:
        """Tracked session whose id or Browserbase id is *session_id* (alive or not), or None."""
        for session in self._sessions:
            if session.id == session_id:
                return session
        for session in self._sessions:
            if session.remote_id == session_id:
                return session
        return None

    async def resolve(self, session_id: str, config: Optional[RequestConfig] = None) -> Optional[BrowserSession]:
        """
        Return a live session for *session_id*, or None.

        Resolution order:
          1. A tracked, live session
          2. The default session is created lazily on first use
          3. Any other id is re-attached through the factory (a session that
             another process created)
        Dead tracked sessions are dropped along the way.
        """
        config = config or self._default_config
        async with self._lock:
            session = self.get(session_id)
            if session is not None:
                if session.is_alive():
                    return session
                logger.warning(f"[SessionRegistry] Session {session_id} is dead, dropping")
                self._sessions.remove(session)
                await self._release_quietly(session)

            try:
                if session_id == DEFAULT_SESSION_ID:
                    return await self._create_unlocked(config, session_id)

                attached = await self._factory.attach(session_id, config)
            except Exception as e:
                logger.warning(f"[SessionRegistry] Could not resolve session {session_id}: {e}")
                return None

            if attached is None:
                return None
            self._sessions.append(attached)
            self._stats["attached"] += 1
            logger.info(f"[SessionRegistry] Re-attached session {session_id}")
            return attached

    async def resolve_page(self, session_id: str, config: Optional[RequestConfig] = None):
        """Active page of the session, or None if the session is unreachable."""
        session = await self.resolve(session_id, config)
        if session is None or session.page.is_closed():
            return None
        return session.page

    # ── health ────────────────────────────────────────────────────────────

    @property
    def sessions(self) -> List[BrowserSession]:
        return list(self._sessions)

    @property
    def stats(self) -> Dict[str, int]:
        """Registry statistics (read-only snapshot)."""
        return dict(self._stats, live=len(self._sessions))

    # ── private helpers ───────────────────────────────────────────────────

    async def _create_unlocked(self, config: RequestConfig, session_id: Optional[str]) -> BrowserSession:
        if session_id is not None:
            existing = self.get(session_id)
            if existing is not None:
                self._sessions.remove(existing)
                await self._release_quietly(existing)

        session = await self._factory.create(session_id, config)
        self._sessions.append(session)
        self._stats["created"] += 1
        logger.info(f"[SessionRegistry] Session created | id={session.id} (live={len(self._sessions)})")
        return session

    async def _release_quietly(self, session: BrowserSession) -> None:
        try:
            await self._factory.release(session)
        except Exception as e:
            logger.debug(f"[SessionRegistry] release error (ignored): {e}")
