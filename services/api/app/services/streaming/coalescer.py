from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from app.services.streaming.cache import StreamingCache
from app.services.streaming.errors import FetchError
from app.services.streaming.types import LookupKey, Provenance, ResolvedLookup

logger = logging.getLogger(__name__)

Dispatch = Callable[[list[LookupKey]], Awaitable[dict[LookupKey, ResolvedLookup]]]


class RequestCoalescer:
    """Merges near-simultaneous lookups into one dispatch per batch window.

    A key has at most one pending future; every caller asking for it while it
    is pending gets that same future. Fresh cache hits never join a window.
    """

    def __init__(self, cache: StreamingCache, dispatch: Dispatch, *, window_secs: float):
        self._cache = cache
        self._dispatch = dispatch
        self._window_secs = window_secs
        self._pending: dict[LookupKey, asyncio.Future[ResolvedLookup]] = {}
        self._window: dict[LookupKey, asyncio.Future[ResolvedLookup]] = {}
        self._timer: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request(self, key: LookupKey) -> asyncio.Future[ResolvedLookup]:
        existing = self._pending.get(key)
        if existing is not None:
            return existing

        entry = await self._cache.get_entry(key)

        # another caller may have registered the key while we read the cache
        existing = self._pending.get(key)
        if existing is not None:
            return existing

        fut: asyncio.Future[ResolvedLookup] = asyncio.get_running_loop().create_future()
        if entry is not None:
            fut.set_result(
                ResolvedLookup(
                    key=key,
                    result=entry.result,
                    provenance=Provenance.cache,
                    fetched_at=entry.created_at,
                )
            )
            return fut

        self._pending[key] = fut
        fut.add_done_callback(lambda f, k=key: self._forget(k, f))
        self._window[key] = fut
        if self._timer is None:
            self._timer = asyncio.create_task(self._flush_later())
        return fut

    def _forget(self, key: LookupKey, fut: asyncio.Future[ResolvedLookup]) -> None:
        if self._pending.get(key) is fut:
            del self._pending[key]
        # mark errors as retrieved when every caller has walked away
        if not fut.cancelled():
            fut.exception()

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._window_secs)
        self._flush()

    def _flush(self) -> None:
        self._timer = None
        batch, self._window = self._window, {}
        if not batch:
            return
        task = asyncio.create_task(self._run(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self, batch: dict[LookupKey, asyncio.Future[ResolvedLookup]]) -> None:
        keys = list(batch)
        logger.debug("dispatching streaming batch of %d key(s)", len(keys))
        try:
            resolved = await self._dispatch(keys)
        except Exception:
            logger.exception("streaming dispatch failed for %d key(s)", len(keys))
            resolved = {}

        for key, fut in batch.items():
            if fut.done():
                continue
            res = resolved.get(key)
            if res is not None:
                fut.set_result(res)
            else:
                fut.set_exception(FetchError(f"no result dispatched for {key.subject_id}/{key.region}"))

    async def close(self) -> None:
        """Dispatch any open window now and wait for in-flight batches."""
        if self._timer is not None:
            self._timer.cancel()
        self._flush()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
