from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable

from app.core.config import settings
from app.services.streaming.cache import StreamingCache
from app.services.streaming.coalescer import RequestCoalescer
from app.services.streaming.factory import get_provider
from app.services.streaming.fallback import FallbackPolicy
from app.services.streaming.fetcher import BatchFetcher
from app.services.streaming.options import LookupOptions
from app.services.streaming.provider import LookupProvider
from app.services.streaming.store import KeyValueStore, get_store
from app.services.streaming.types import LookupKey, ResolvedLookup

logger = logging.getLogger(__name__)


class StreamingLookupService:
    """Cached, coalesced, batched streaming-availability lookups.

    Lifecycle: construct, `await init()` (prunes the cache), serve lookups,
    `await shutdown()` (drains pending batches, closes provider and store).
    `lookup` and `lookup_many` never raise for upstream or cache failures;
    the provenance on each result tells callers how fresh it is.
    """

    def __init__(
        self,
        provider: LookupProvider,
        store: KeyValueStore,
        options: LookupOptions | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.options = options or LookupOptions()
        self.provider = provider
        self.store = store
        self.cache = StreamingCache(store, self.options, clock=clock)
        self.fetcher = BatchFetcher(
            provider, self.cache, self.options, store=store, clock=clock, sleep=sleep
        )
        self.fallback = FallbackPolicy(self.fetcher, self.cache, clock=clock)
        self.coalescer = RequestCoalescer(
            self.cache, self.fallback.resolve, window_secs=self.options.batch_window_secs
        )

    async def init(self) -> None:
        removed = await self.prune()
        logger.info(
            "streaming lookup service ready (provider=%s, store=%s, pruned=%d)",
            getattr(self.provider, "name", "unknown"),
            getattr(self.store, "name", "unknown"),
            removed,
        )

    async def prune(self) -> int:
        return await self.cache.prune()

    async def shutdown(self) -> None:
        await self.coalescer.close()
        try:
            await self.provider.aclose()
        finally:
            await self.store.close()

    def key(self, subject_id: int, region: str | None = None) -> LookupKey:
        return LookupKey(subject_id=subject_id, region=region or self.options.default_region)

    async def lookup(self, subject_id: int, region: str | None = None) -> ResolvedLookup:
        key = self.key(subject_id, region)
        try:
            fut = await self.coalescer.request(key)
            # shield: a caller going away must not cancel the shared fetch
            return await asyncio.shield(fut)
        except Exception as exc:
            logger.warning("streaming lookup for %s/%s failed: %s", key.subject_id, key.region, exc)
            return await self.fallback.fallback(key)

    async def lookup_many(
        self, subject_ids: Iterable[int], region: str | None = None
    ) -> list[ResolvedLookup]:
        return list(
            await asyncio.gather(*(self.lookup(sid, region) for sid in subject_ids))
        )


def filter_by_services(
    results: Iterable[ResolvedLookup], services: Iterable[str]
) -> list[ResolvedLookup]:
    """Keep results offering at least one of `services` (loose name match)."""
    wanted = [s.strip().lower() for s in services if s.strip()]
    if not wanted:
        return list(results)

    def _matches(provider: str) -> bool:
        p = provider.lower()
        return any(w in p or p in w for w in wanted)

    return [r for r in results if any(_matches(p) for p in r.result.providers)]


async def build_lookup_service() -> StreamingLookupService:
    """Wire a service from application settings."""
    return StreamingLookupService(
        provider=get_provider(),
        store=await get_store(),
        options=LookupOptions.from_settings(settings),
    )
