"""
Cache maintenance CLI
=====================
Delete cached context projections from Redis.

Usage:
    browserbase-mcp-clear-cache --project proj_123
    browserbase-mcp-clear-cache --all --url redis://localhost:6379/0 -v

Exit codes: 0 on success, 1 when Redis is unreachable or no URL is set.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from redis.exceptions import RedisError

from .config import settings
from .continuity import ContinuityStore
from .exceptions import CacheError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="browserbase-mcp-clear-cache",
        description="Clear cached Browserbase context projections from Redis.",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--all", action="store_true", help="clear every cached projection")
    target.add_argument("--project", metavar="PROJECT_ID", help="clear one tenant's projection")
    parser.add_argument("--url", default=None, help="Redis URL (defaults to REDIS_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="print each deleted key")
    return parser


async def clear(store: ContinuityStore, project: Optional[str], verbose: bool = False) -> int:
    """Delete one tenant's projection, or all of them when *project* is None."""
    if project is not None:
        deleted: List[str] = [store.key(project)] if await store.delete(project) else []
    else:
        deleted = await store.clear_all()

    if verbose:
        for key in deleted:
            print(f"  deleted {key}")
    print(f"Cleared {len(deleted)} cached projection(s).")
    return len(deleted)


async def _run(args: argparse.Namespace) -> int:
    url = args.url or settings.REDIS_URL
    if not url:
        print("ERROR: no Redis URL given (use --url or set REDIS_URL)", file=sys.stderr)
        return 1

    store = ContinuityStore(url=url)
    try:
        await clear(store, None if args.all else args.project, args.verbose)
    except (RedisError, CacheError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        await store.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
