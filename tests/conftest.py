import os

# Settings are read at import time: keep tests off disk, off Redis and
# away from real Browserbase credentials.
os.environ["LOG_DIR"] = ""
os.environ["REDIS_URL"] = ""
os.environ["DEPLOYMENT_MODE"] = ""
os.environ["BROWSERBASE_API_KEY"] = ""
os.environ["BROWSERBASE_PROJECT_ID"] = ""
os.environ["SNAPSHOT_SETTLE_DELAY_MS"] = "0"
os.environ["SNAPSHOT_CAPTURE_DELAY_MS"] = "0"

import asyncio
import fnmatch
import itertools

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from browserbase_mcp.context import Context
from browserbase_mcp.models.schemas import RequestConfig
from browserbase_mcp.session_factory import BrowserSession
from browserbase_mcp.session_manager import SessionRegistry
from browserbase_mcp.tools import build_registry


# ============================================================================
# Fake Playwright objects
# ============================================================================

class FakeLocator:
    def __init__(self, frame, selector):
        self.frame = frame
        self.selector = selector

    async def aria_snapshot(self, mode=None):
        # The default mode emits no [ref=...] annotations on a real driver
        assert mode == "ai", f"aria_snapshot called with mode={mode!r}"
        self.frame.snapshot_modes.append(mode)
        if self.frame.error is not None:
            raise self.frame.error
        return self.frame.aria_text

    async def click(self):
        self.frame.actions.append(("click", self.selector))

    async def hover(self):
        self.frame.actions.append(("hover", self.selector))

    async def fill(self, text):
        self.frame.actions.append(("fill", self.selector, text))

    async def press_sequentially(self, text):
        self.frame.actions.append(("press_sequentially", self.selector, text))

    async def press(self, key):
        self.frame.actions.append(("press", self.selector, key))

    async def select_option(self, values):
        self.frame.actions.append(("select_option", self.selector, list(values)))


class FakeFrame:
    """A frame whose aria tree is fixed text; children are keyed by iframe ref."""

    def __init__(self, aria_text='- button "OK" [ref=e1]', children=None, error=None):
        self.aria_text = aria_text
        self.children = children or {}
        self.error = error
        self.actions = []
        self.snapshot_modes = []

    def locator(self, selector):
        return FakeLocator(self, selector)

    def frame_locator(self, selector):
        ref = selector.split("=", 1)[1]
        child = self.children.get(ref)
        if child is None:
            return FakeFrame(error=RuntimeError(f"frame {ref} detached"))
        return child


class FakeKeyboard:
    def __init__(self):
        self.pressed = []

    async def press(self, key):
        self.pressed.append(key)


class FakePage(FakeFrame):
    def __init__(self, aria_text='- button "OK" [ref=e1]', children=None, error=None,
                 url="about:blank", title="Blank", body_text="Hello world"):
        super().__init__(aria_text, children, error)
        self.url = url
        self._title = title
        self.body_text = body_text
        self.closed = False
        self.keyboard = FakeKeyboard()
        self.history = [url]

    async def goto(self, url, wait_until=None):
        self.url = url
        self._title = f"Title of {url}"
        self.history.append(url)

    async def go_back(self):
        self.actions.append(("go_back",))

    async def go_forward(self):
        self.actions.append(("go_forward",))

    async def title(self):
        return self._title

    async def inner_text(self, selector):
        return self.body_text

    async def screenshot(self, full_page=False, type="png"):
        return b"PNGDATA"

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True

    def set_default_timeout(self, timeout):
        pass


class FakeBrowser:
    def __init__(self):
        self.connected = True

    def is_connected(self):
        return self.connected

    async def close(self):
        self.connected = False


class FakeBrowserContext:
    async def close(self):
        pass


def make_session(session_id, page=None, remote_id=None):
    return BrowserSession(
        id=session_id,
        browser=FakeBrowser(),
        context=FakeBrowserContext(),
        page=page or FakePage(),
        remote_id=remote_id,
    )


class FakeSessionFactory:
    """
    Stands in for PlaywrightSessionFactory; records every call.

    With ``remote=True`` every created session also gets a Browserbase id
    (``bb-N``), like a cloud session would.
    """

    def __init__(self, page_factory=None, remote=False):
        self.page_factory = page_factory or FakePage
        self.remote = remote
        self.created = []
        self.released = []
        self.attachable = {}
        self.fail_create = False
        self._ids = itertools.count(1)

    async def create(self, session_id, config):
        if self.fail_create:
            raise RuntimeError("browser launch failed")
        generated = f"bb-{next(self._ids)}" if self.remote or session_id is None else None
        session = make_session(
            session_id or generated,
            self.page_factory(),
            remote_id=generated if self.remote else None,
        )
        self.created.append(session)
        return session

    async def attach(self, session_id, config):
        return self.attachable.get(session_id)

    async def release(self, session):
        self.released.append(session)
        await session.close()


# ============================================================================
# Fake Redis (hashes, WATCH/MULTI/EXEC, SCAN)
# ============================================================================

class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.watched = {}
        self.queued = []
        self.buffering = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.watched = {}
        self.queued = []
        return False

    async def watch(self, *keys):
        for key in keys:
            self.watched[key] = self.redis.versions.get(key, 0)

    async def hgetall(self, key):
        result = await self.redis.hgetall(key)
        await asyncio.sleep(0)
        return result

    def multi(self):
        self.buffering = True

    def hset(self, key, mapping):
        self.queued.append(("hset", key, mapping))
        return self

    def expire(self, key, ttl):
        self.queued.append(("expire", key, ttl))
        return self

    async def execute(self):
        self.redis.attempts += 1
        if self.redis.before_execute is not None:
            await self.redis.before_execute(self.redis)
        for key, version in self.watched.items():
            if self.redis.versions.get(key, 0) != version:
                raise WatchError("Watched variable changed.")
        results = []
        for op, key, arg in self.queued:
            if op == "hset":
                results.append(await self.redis.hset(key, mapping=arg))
            else:
                self.redis.ttls[key] = arg
                results.append(True)
        return results


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.versions = {}
        self.ttls = {}
        self.attempts = 0
        self.before_execute = None
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    def pipeline(self, transaction=True):
        self._check()
        return FakePipeline(self)

    async def hgetall(self, key):
        self._check()
        return dict(self.data.get(key, {}))

    async def hset(self, key, mapping):
        self._check()
        self.data.setdefault(key, {}).update(mapping)
        self.versions[key] = self.versions.get(key, 0) + 1
        return len(mapping)

    async def delete(self, *keys):
        self._check()
        count = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                count += 1
                self.versions[key] = self.versions.get(key, 0) + 1
                self.ttls.pop(key, None)
        return count

    async def exists(self, key):
        self._check()
        return int(key in self.data)

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatch(key, match):
                yield key

    async def aclose(self):
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def factory():
    return FakeSessionFactory()


@pytest.fixture
def registry(factory):
    return SessionRegistry(factory)


@pytest.fixture
def tools():
    return build_registry()


@pytest.fixture
def context(registry):
    return Context(registry, RequestConfig(), settle_delay_ms=0, capture_delay_ms=0)


@pytest.fixture
def fake_redis():
    return FakeRedis()
