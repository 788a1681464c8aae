"""
Continuity store: per-tenant context projections in Redis.

A fresh execution context starts empty. The store bridges it to whatever an
earlier, unrelated process left behind for the same tenant.

Layout (one Redis hash per tenant, key ``CACHE_KEY_PREFIX + tenant``)::

    session    → {"currentSessionId": ...}
    resources  → {"<name>": {"format", "bytes", "uri"}, ...}
    snapshots  → [{"sessionId", "serializedData", "capturedAt"}, ...]
    meta       → {"updatedAt": <epoch ms>}

Every field is a JSON string and every successful save refreshes the TTL.

Guarantees
----------
  1. load()   → each field validated on its own; a bad field is dropped
  2. save()   → WATCH / merge / MULTI with retries; False after exhausting
                them, never raises
  3. delete() → removes the whole projection (best effort)
  4. cache outages degrade to "nothing cached", never to an exception
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, TypeAdapter, ValidationError
from redis import asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from .config import settings
from .exceptions import CacheError
from .models.schemas import (
    CachedMeta,
    CachedResource,
    CachedSession,
    CachedSnapshot,
    ContextProjection,
)
from .utils.logger import get_logger

logger = get_logger(__name__)

__all__ = ["ContinuityStore", "merge_projection"]


_RESOURCES_ADAPTER = TypeAdapter(Dict[str, CachedResource])
_SNAPSHOTS_ADAPTER = TypeAdapter(List[CachedSnapshot])


# ============================================================================
# Merge rules
# ============================================================================

def merge_projection(current: ContextProjection, partial: ContextProjection) -> ContextProjection:
    """
    Merge *partial* (the caller's fields) into *current* (what is stored).

    - session, meta: the caller's value overwrites
    - resources: merged key by key, the caller's entry wins per name
    - snapshots: merged by session id; the entry with the larger
      ``capturedAt`` wins, ties go to the caller
    """
    session = partial.session if partial.session is not None else current.session
    meta = partial.meta if partial.meta is not None else current.meta

    resources = current.resources
    if partial.resources is not None:
        resources = {**(current.resources or {}), **partial.resources}

    snapshots = current.snapshots
    if partial.snapshots is not None:
        by_session: Dict[str, CachedSnapshot] = {s.session_id: s for s in current.snapshots or []}
        for entry in partial.snapshots:
            existing = by_session.get(entry.session_id)
            if existing is not None and existing.captured_at > entry.captured_at:
                continue
            by_session[entry.session_id] = entry
        snapshots = list(by_session.values())

    return ContextProjection(session=session, resources=resources, snapshots=snapshots, meta=meta)


# ============================================================================
# ContinuityStore
# ============================================================================

class ContinuityStore:
    """
    Redis-backed store for context projections.

    Usage::

        store = ContinuityStore(url="redis://localhost:6379/0")
        projection = await store.load("proj_123")
        ok = await store.save("proj_123", context.to_projection())
        await store.close()
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        url: Optional[str] = None,
        prefix: str = settings.CACHE_KEY_PREFIX,
        ttl_seconds: int = settings.CACHE_TTL_SECONDS,
        max_retries: int = settings.CACHE_SAVE_MAX_RETRIES,
        retry_backoff_ms: int = settings.CACHE_RETRY_BACKOFF_MS,
    ):
        self._client = client
        self._url = url or settings.REDIS_URL
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self.max_retries = max_retries
        self.retry_backoff_ms = retry_backoff_ms

    # ── connection ────────────────────────────────────────────────────────

    @property
    def client(self):
        if self._client is None:
            if not self._url:
                raise CacheError("No Redis URL configured for the continuity store")
            self._client = aioredis.from_url(self._url, decode_responses=True)
            logger.info("[ContinuityStore] Redis client created")
        return self._client

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except RedisError as e:
            logger.debug(f"[ContinuityStore] close error (ignored): {e}")
        self._client = None

    def key(self, tenant_key: str) -> str:
        return f"{self.prefix}{tenant_key}"

    # ── read ──────────────────────────────────────────────────────────────

    async def load(self, tenant_key: str) -> Optional[ContextProjection]:
        """
        Read the tenant's projection.

        Returns None when nothing is cached, nothing survived validation, or
        the cache is unreachable.
        """
        key = self.key(tenant_key)
        try:
            raw = await self.client.hgetall(key)
        except (RedisError, CacheError) as e:
            logger.warning(f"[ContinuityStore] load failed for {key}: {e}")
            return None

        if not raw:
            return None

        projection = self._parse(raw, key)
        if projection.is_empty():
            return None
        logger.debug(f"[ContinuityStore] Loaded projection for {key}")
        return projection

    async def exists(self, tenant_key: str) -> bool:
        try:
            return bool(await self.client.exists(self.key(tenant_key)))
        except (RedisError, CacheError) as e:
            logger.warning(f"[ContinuityStore] exists failed for {tenant_key}: {e}")
            return False

    # ── write ─────────────────────────────────────────────────────────────

    async def save(
        self,
        tenant_key: str,
        partial: ContextProjection,
        max_retries: Optional[int] = None,
    ) -> bool:
        """
        Merge *partial* into the stored projection under optimistic locking.

        Args:
            tenant_key: Tenant whose projection is updated
            partial: Fields to merge (absent fields are left untouched)
            max_retries: Attempts after the first one; defaults to the store setting

        Returns:
            True once the merged projection is written, False when every
            attempt lost a race or the cache failed.
        """
        key = self.key(tenant_key)
        retries = self.max_retries if max_retries is None else max_retries

        for attempt in range(retries + 1):
            try:
                async with self.client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = self._parse(await pipe.hgetall(key), key)
                    mapping = self._dump(merge_projection(current, partial))
                    if not mapping:
                        return True

                    pipe.multi()
                    pipe.hset(key, mapping=mapping)
                    pipe.expire(key, self.ttl_seconds)
                    await pipe.execute()

                logger.debug(f"[ContinuityStore] Saved {key} (attempt {attempt + 1})")
                return True

            except WatchError:
                logger.info(
                    f"[ContinuityStore] Concurrent write on {key}, retry {attempt + 1}/{retries}"
                )
                if attempt < retries and self.retry_backoff_ms > 0:
                    await asyncio.sleep(self.retry_backoff_ms * (attempt + 1) / 1000)
            except (RedisError, CacheError) as e:
                logger.warning(f"[ContinuityStore] save failed for {key}: {e}")
                return False

        logger.warning(f"[ContinuityStore] Gave up saving {key} after {retries + 1} attempt(s)")
        return False

    async def delete(self, tenant_key: str) -> bool:
        """Remove the tenant's projection. True if a key was deleted."""
        key = self.key(tenant_key)
        try:
            deleted = await self.client.delete(key)
        except (RedisError, CacheError) as e:
            logger.warning(f"[ContinuityStore] delete failed for {key}: {e}")
            return False
        if deleted:
            logger.info(f"[ContinuityStore] Deleted projection {key}")
        return bool(deleted)

    async def clear_all(self) -> List[str]:
        """Delete every projection under the prefix; returns the deleted keys."""
        deleted: List[str] = []
        async for key in self.client.scan_iter(match=f"{self.prefix}*"):
            await self.client.delete(key)
            deleted.append(key)
        logger.info(f"[ContinuityStore] Cleared {len(deleted)} projection(s)")
        return deleted

    # ── private helpers ───────────────────────────────────────────────────

    @staticmethod
    def _field(raw: Dict[str, str], name: str, key: str, validate) -> Any:
        value = raw.get(name)
        if value is None:
            return None
        try:
            return validate(json.loads(value))
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"[ContinuityStore] Dropping invalid '{name}' field of {key}: {e}")
            return None

    def _parse(self, raw: Dict[str, str], key: str) -> ContextProjection:
        raw = raw or {}
        return ContextProjection(
            session=self._field(raw, "session", key, _model_validator(CachedSession)),
            resources=self._field(raw, "resources", key, _RESOURCES_ADAPTER.validate_python),
            snapshots=self._field(raw, "snapshots", key, _SNAPSHOTS_ADAPTER.validate_python),
            meta=self._field(raw, "meta", key, _model_validator(CachedMeta)),
        )

    @staticmethod
    def _dump(projection: ContextProjection) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        if projection.session is not None:
            mapping["session"] = projection.session.model_dump_json(by_alias=True)
        if projection.resources is not None:
            mapping["resources"] = json.dumps(
                {name: r.model_dump(by_alias=True) for name, r in projection.resources.items()}
            )
        if projection.snapshots is not None:
            mapping["snapshots"] = json.dumps(
                [s.model_dump(by_alias=True) for s in projection.snapshots]
            )
        if projection.meta is not None:
            mapping["meta"] = projection.meta.model_dump_json(by_alias=True)
        return mapping


def _model_validator(model: Type[BaseModel]):
    return model.model_validate
