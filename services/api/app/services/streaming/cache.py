from __future__ import annotations

import logging
import time
from typing import Callable, Final

from pydantic import ValidationError

from app.services.streaming.errors import CacheReadError
from app.services.streaming.options import LookupOptions
from app.services.streaming.store import KeyValueStore
from app.services.streaming.types import CacheEntry, LookupKey, LookupResult, TtlClass

logger = logging.getLogger(__name__)


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()


class StreamingCache:
    """TTL cache of lookup results on top of a key-value store.

    Behavior:
    - Non-empty results live for `ttl_secs`, empty ones for `empty_ttl_secs`.
    - Entries stay physically stored for `stale_retention_secs` so the
      fallback path can still surface them once they are logically expired.
    - Storage failures are logged and read as a miss; they never raise.
    """

    def __init__(
        self,
        store: KeyValueStore,
        options: LookupOptions,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._opts = options
        self._clock = clock

    @property
    def prefix(self) -> str:
        return self._opts.cache_prefix

    def key_for(self, key: LookupKey) -> str:
        return f"{self._opts.cache_prefix}_{key.subject_id}_{key.region}_{self._opts.cache_version}"

    def _ttl(self, ttl_class: TtlClass) -> int:
        if ttl_class is TtlClass.has_data:
            return self._opts.ttl_secs
        return self._opts.empty_ttl_secs

    def _retention(self, entry: CacheEntry) -> int:
        return max(self._opts.stale_retention_secs, self._ttl(entry.ttl_class))

    def expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at > self._ttl(entry.ttl_class)

    def retained(self, entry: CacheEntry) -> bool:
        """Still worth keeping as a stale fallback candidate."""
        return self._clock() - entry.created_at <= self._retention(entry)

    async def _read(self, skey: str) -> CacheEntry | None:
        try:
            raw = await self._store.get(skey)
        except Exception as exc:
            logger.warning("%s", CacheReadError(f"cache read failed for {skey}: {exc}"))
            return None
        if not raw:
            return None
        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("%s", CacheReadError(f"corrupt cache entry {skey}"))
            await self._delete(skey)
            return None
        if entry.version != self._opts.cache_version:
            await self._delete(skey)
            return None
        return entry

    async def _delete(self, skey: str) -> None:
        try:
            await self._store.delete(skey)
        except Exception as exc:
            logger.warning("cache delete failed for %s: %s", skey, exc)

    async def get_entry(self, key: LookupKey) -> CacheEntry | None:
        skey = self.key_for(key)
        entry = await self._read(skey)
        if entry is None:
            return None
        if self.expired(entry):
            logger.debug("cache expired for %s", skey)
            if not self.retained(entry):
                await self._delete(skey)
            return None
        return entry

    async def get(self, key: LookupKey) -> LookupResult | _Miss:
        entry = await self.get_entry(key)
        if entry is None:
            return MISS
        return entry.result

    async def get_stale(self, key: LookupKey) -> CacheEntry | None:
        """Return the stored entry for `key` even if logically expired."""
        skey = self.key_for(key)
        entry = await self._read(skey)
        if entry is not None and not self.retained(entry):
            await self._delete(skey)
            return None
        return entry

    async def set(self, key: LookupKey, result: LookupResult) -> CacheEntry:
        entry = CacheEntry(
            result=result,
            created_at=self._clock(),
            ttl_class=TtlClass.has_data if result.has_data else TtlClass.empty,
            version=self._opts.cache_version,
        )
        skey = self.key_for(key)
        try:
            await self._store.set(
                skey,
                entry.model_dump_json(),
                ttl_secs=self._retention(entry),
            )
        except Exception as exc:
            logger.warning("cache write failed for %s: %s", skey, exc)
        return entry

    async def prune(self) -> int:
        """Remove entries past stale retention, corrupt or from another version.

        Logically expired entries inside the retention window are kept so the
        fallback path can still serve them. Returns how many were removed.
        """
        try:
            keys = await self._store.scan(f"{self._opts.cache_prefix}_")
        except Exception as exc:
            logger.warning("cache prune skipped, scan failed: %s", exc)
            return 0

        removed = 0
        suffix = f"_{self._opts.cache_version}"
        for skey in keys:
            if not skey.endswith(suffix):
                await self._delete(skey)
                removed += 1
                continue
            entry = await self._read(skey)
            if entry is None:
                removed += 1
                continue
            if not self.retained(entry):
                await self._delete(skey)
                removed += 1
        return removed
