import pytest

from browserbase_mcp.clear_cache import build_parser, clear, main
from browserbase_mcp.continuity import ContinuityStore
from browserbase_mcp.models.schemas import CachedMeta, ContextProjection


async def seeded_store(fake_redis):
    store = ContinuityStore(client=fake_redis, retry_backoff_ms=0)
    for tenant in ("p1", "p2"):
        await store.save(tenant, ContextProjection(meta=CachedMeta(updated_at=1)))
    return store


async def test_clear_one_project(fake_redis, capsys):
    store = await seeded_store(fake_redis)

    assert await clear(store, "p1", verbose=True) == 1
    assert set(fake_redis.data) == {"mcp:ctx:p2"}
    assert "deleted mcp:ctx:p1" in capsys.readouterr().out


async def test_clear_all_projects(fake_redis):
    store = await seeded_store(fake_redis)
    assert await clear(store, None) == 2
    assert fake_redis.data == {}


def test_parser_requires_a_target():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--all", "--project", "p1"])
    args = build_parser().parse_args(["--project", "p1", "-v"])
    assert args.project == "p1" and args.verbose


def test_missing_redis_url_exits_with_error(capsys):
    assert main(["--all"]) == 1
    assert "no Redis URL" in capsys.readouterr().err
