from browserbase_mcp.session_manager import DEFAULT_SESSION_ID, SessionRegistry

from conftest import FakeSessionFactory, make_session


async def test_create_tracks_session(registry, factory):
    session = await registry.create()

    assert registry.get(session.id) is session
    assert registry.sessions == [session]
    assert registry.stats["created"] == 1
    assert registry.stats["live"] == 1


async def test_create_with_existing_id_replaces_old_session(registry, factory):
    first = await registry.create(session_id="s1")
    second = await registry.create(session_id="s1")

    assert registry.get("s1") is second
    assert first in factory.released
    assert len(registry.sessions) == 1


async def test_close_is_idempotent(registry, factory):
    session = await registry.create()
    await registry.close(session)
    await registry.close(session)

    assert factory.released == [session]
    assert registry.get(session.id) is None
    assert registry.stats["closed"] == 1


async def test_close_session_by_id(registry):
    session = await registry.create()
    assert await registry.close_session(session.id) is True
    assert await registry.close_session(session.id) is False


async def test_close_all_releases_everything(factory):
    class FlakyFactory(FakeSessionFactory):
        async def release(self, session):
            await super().release(session)
            if session.id == "bad":
                raise RuntimeError("release failed")

    flaky = FlakyFactory()
    registry = SessionRegistry(flaky)
    await registry.create(session_id="good")
    await registry.create(session_id="bad")

    await registry.close_all()

    assert {s.id for s in flaky.released} == {"good", "bad"}
    assert registry.sessions == []


async def test_default_session_is_created_lazily(registry, factory):
    session = await registry.resolve(DEFAULT_SESSION_ID)

    assert session.id == DEFAULT_SESSION_ID
    assert await registry.resolve(DEFAULT_SESSION_ID) is session
    assert len(factory.created) == 1


async def test_unknown_session_resolves_to_none(registry, factory):
    assert await registry.resolve("nobody") is None
    assert factory.created == []


async def test_foreign_session_is_attached(registry, factory):
    foreign = make_session("remote-1")
    factory.attachable["remote-1"] = foreign

    assert await registry.resolve("remote-1") is foreign
    assert registry.get("remote-1") is foreign
    assert registry.stats["attached"] == 1


async def test_dead_session_is_dropped(registry, factory):
    session = await registry.resolve(DEFAULT_SESSION_ID)
    session.browser.connected = False

    replacement = await registry.resolve(DEFAULT_SESSION_ID)

    assert replacement is not session
    assert replacement.is_alive()
    assert session in factory.released


async def test_factory_errors_resolve_to_none(registry, factory):
    factory.fail_create = True
    assert await registry.resolve(DEFAULT_SESSION_ID) is None
    assert await registry.resolve_page(DEFAULT_SESSION_ID) is None


async def test_resolve_page(registry):
    page = await registry.resolve_page(DEFAULT_SESSION_ID)

    session = registry.get(DEFAULT_SESSION_ID)
    assert page is session.page


async def test_default_session_is_reachable_by_browserbase_id():
    factory = FakeSessionFactory(remote=True)
    registry = SessionRegistry(factory)

    session = await registry.resolve(DEFAULT_SESSION_ID)

    assert session.id == DEFAULT_SESSION_ID
    assert session.remote_id == "bb-1"
    assert registry.get("bb-1") is session
    assert await registry.resolve("bb-1") is session
    assert len(factory.created) == 1
