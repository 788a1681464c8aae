"""
Playwright-backed browser sessions for the continuity layer.

Design contract
---------------
* ``PlaywrightSessionFactory.create()`` returns a live ``BrowserSession``:
  a Browserbase cloud browser when the call carries Browserbase credentials,
  otherwise a locally launched Chromium.
* ``attach()`` re-connects to a Browserbase session that another process
  created, so a fresh request handler can reach it by id alone.
* ``release()`` is best-effort and never raises.
* The Playwright driver itself is started lazily, once per factory, under an
  ``asyncio.Lock`` so concurrent tool calls are safe.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
)

from .config import settings
from .models.schemas import RequestConfig
from .utils.logger import get_logger

logger = get_logger(__name__)

__all__ = ["BrowserSession", "PlaywrightSessionFactory", "BrowserbaseAPIError"]


class BrowserbaseAPIError(RuntimeError):
    """Raised when the Browserbase REST API rejects a request."""


@dataclass(eq=False)
class BrowserSession:
    """One live automation session: browser, context and active page."""
    id: str
    browser: Browser
    context: BrowserContext
    page: Page
    remote_id: Optional[str] = None
    config: RequestConfig = field(default_factory=RequestConfig)

    def is_alive(self) -> bool:
        """True when the browser is connected and the page is open."""
        try:
            return self.browser.is_connected() and not self.page.is_closed()
        except Exception:
            return False

    async def close(self) -> None:
        """Close page, context and browser; errors are logged and ignored."""
        for obj, name in [(self.page, "page"), (self.context, "context"), (self.browser, "browser")]:
            if obj is not None:
                try:
                    await obj.close()
                except Exception as exc:
                    logger.debug(f"[BrowserSession] {self.id} {name} close error (ignored): {exc}")


# ============================================================================
# Browserbase REST client
# ============================================================================

class BrowserbaseClient:
    """Thin httpx wrapper over the Browserbase sessions API."""

    def __init__(self, api_key: str, base_url: str = settings.BROWSERBASE_API_URL, timeout: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def _headers(self) -> Dict[str, str]:
        return {"X-BB-API-Key": self.api_key, "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, json=json, headers=self._headers)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            raise BrowserbaseAPIError(
                f"Browserbase {method} {path} failed: HTTP {exc.response.status_code} "
                f"{exc.response.text[:300]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise BrowserbaseAPIError(f"Browserbase {method} {path} failed: {exc}") from exc

    async def create_session(self, config: RequestConfig) -> Dict[str, Any]:
        browser_settings: Dict[str, Any] = {
            "viewport": {"width": config.viewport_width, "height": config.viewport_height},
        }
        if config.context_id:
            browser_settings["context"] = {"id": config.context_id, "persist": config.persist}
        if config.advanced_stealth:
            browser_settings["advancedStealth"] = True

        payload = {
            "projectId": config.project_id,
            "proxies": config.proxies,
            "browserSettings": browser_settings,
        }
        return await self._request("POST", "/sessions", json=payload)

    async def get_session(self, remote_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/sessions/{remote_id}")

    async def get_debug_urls(self, remote_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/sessions/{remote_id}/debug")

    async def request_release(self, remote_id: str, project_id: Optional[str]) -> None:
        await self._request(
            "POST",
            f"/sessions/{remote_id}",
            json={"projectId": project_id, "status": "REQUEST_RELEASE"},
        )


# ============================================================================
# Session factory
# ============================================================================

class PlaywrightSessionFactory:
    """
    Creates, attaches and releases Playwright browser sessions.

    Usage::

        factory = PlaywrightSessionFactory()
        session = await factory.create(None, RequestConfig())
        await session.page.goto("https://example.com")
        await factory.release(session)
    """

    def __init__(
        self,
        headless: bool = settings.BROWSER_HEADLESS,
        timeout_ms: int = settings.BROWSER_TIMEOUT_MS,
        api_url: str = settings.BROWSERBASE_API_URL,
    ) -> None:
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.api_url = api_url
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()

    # ── public API ────────────────────────────────────────────────────────

    async def create(self, session_id: Optional[str], config: RequestConfig) -> BrowserSession:
        """
        Start a new browser session.

        Args:
            session_id: Registry key to use; generated when omitted
            config: Per-call configuration (credentials, viewport, proxies)
        """
        playwright = await self._ensure_playwright()

        if config.has_remote_credentials:
            client = BrowserbaseClient(config.api_key, self.api_url)
            created = await client.create_session(config)
            remote_id = created["id"]
            logger.info(f"[SessionFactory] Browserbase session created | id={remote_id}")
            browser = await playwright.chromium.connect_over_cdp(created["connectUrl"])
            return await self._wrap(session_id or remote_id, browser, config, remote_id=remote_id)

        logger.info(f"[SessionFactory] Launching local Chromium (headless={self.headless})")
        browser = await playwright.chromium.launch(headless=self.headless)
        return await self._wrap(session_id or f"local-{uuid.uuid4().hex[:12]}", browser, config)

    async def attach(self, session_id: str, config: RequestConfig) -> Optional[BrowserSession]:
        """
        Re-connect to a running Browserbase session by id.

        Returns None when there are no credentials or the session is not running.
        """
        if not config.has_remote_credentials:
            return None

        client = BrowserbaseClient(config.api_key, self.api_url)
        info = await client.get_session(session_id)
        if info.get("status") != "RUNNING":
            logger.info(f"[SessionFactory] Session {session_id} is {info.get('status')}, not attaching")
            return None

        connect_url = info.get("connectUrl")
        if not connect_url:
            debug = await client.get_debug_urls(session_id)
            connect_url = debug.get("wsUrl") or debug.get("debuggerUrl")
        if not connect_url:
            return None

        playwright = await self._ensure_playwright()
        browser = await playwright.chromium.connect_over_cdp(connect_url)
        logger.info(f"[SessionFactory] Attached to Browserbase session {session_id}")
        return await self._wrap(session_id, browser, config, remote_id=session_id)

    async def release(self, session: BrowserSession) -> None:
        """Best-effort teardown of *session*; never raises."""
        await session.close()

        if session.remote_id and session.config.has_remote_credentials:
            try:
                client = BrowserbaseClient(session.config.api_key, self.api_url)
                await client.request_release(session.remote_id, session.config.project_id)
            except BrowserbaseAPIError as exc:
                logger.warning(f"[SessionFactory] Release request failed for {session.remote_id}: {exc}")

    async def stop(self) -> None:
        """Stop the Playwright driver at server shutdown."""
        async with self._lock:
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as exc:
                    logger.debug(f"[SessionFactory] playwright stop error (ignored): {exc}")
                self._playwright = None

    # ── private helpers ───────────────────────────────────────────────────

    async def _ensure_playwright(self) -> Playwright:
        async with self._lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            return self._playwright

    async def _wrap(
        self,
        session_id: str,
        browser: Browser,
        config: RequestConfig,
        remote_id: Optional[str] = None,
    ) -> BrowserSession:
        if browser.contexts:
            context = browser.contexts[0]
        else:
            context = await browser.new_context(
                viewport={"width": config.viewport_width, "height": config.viewport_height},
            )
        page = context.pages[0] if context.pages else await context.new_page()
        page.set_default_timeout(self.timeout_ms)
        return BrowserSession(
            id=session_id,
            browser=browser,
            context=context,
            page=page,
            remote_id=remote_id,
            config=config,
        )
