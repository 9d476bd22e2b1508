from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable

from app.core.otel import get_tracer
from app.services.streaming.cache import StreamingCache
from app.services.streaming.errors import FetchError, PartialBatchError, ProviderDataError
from app.services.streaming.options import LookupOptions
from app.services.streaming.provider import LookupProvider
from app.services.streaming.store import KeyValueStore
from app.services.streaming.types import LookupKey, LookupResult, SubjectAvailability

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

FetchOutcome = LookupResult | FetchError


class BudgetExhaustedError(FetchError):
    """The daily upstream call budget is spent; retrying today is pointless."""


class BatchFetcher:
    """Resolves a batch of lookup keys against the provider.

    Behavior:
    - Keys are grouped by region and split into chunks of `max_batch_size`.
    - At most `max_concurrency` chunks talk to the provider at once; a failing
      chunk never affects its siblings.
    - Ids missing from a chunk response are retried together; when a call
      fails outright, each of its ids is retried alone so one bad id cannot
      sink its siblings.
    - Every id has its own budget of `retry_attempts` calls; rounds are
      separated by exponential backoff.
    - Every key ends up with either a LookupResult (also written to the cache)
      or a FetchError.
    """

    def __init__(
        self,
        provider: LookupProvider,
        cache: StreamingCache,
        options: LookupOptions,
        *,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._provider = provider
        self._cache = cache
        self._opts = options
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._sem = asyncio.Semaphore(max(1, options.max_concurrency))

    def _chunks(self, keys: list[LookupKey]) -> list[tuple[str, list[int]]]:
        by_region: dict[str, list[int]] = {}
        for key in dict.fromkeys(keys):
            by_region.setdefault(key.region, []).append(key.subject_id)

        size = max(1, self._opts.max_batch_size)
        return [
            (region, ids[i : i + size])
            for region, ids in by_region.items()
            for i in range(0, len(ids), size)
        ]

    async def fetch_batch(self, keys: list[LookupKey]) -> dict[LookupKey, FetchOutcome]:
        chunks = self._chunks(keys)
        results = await asyncio.gather(
            *(self._run_chunk(region, ids) for region, ids in chunks),
            return_exceptions=True,
        )

        out: dict[LookupKey, FetchOutcome] = {}
        for (region, ids), res in zip(chunks, results):
            if isinstance(res, BaseException):
                logger.warning(
                    "streaming chunk crashed (region=%s); its keys fall back",
                    region,
                    exc_info=res,
                )
                for sid in ids:
                    out[LookupKey(subject_id=sid, region=region)] = FetchError(str(res))
                continue
            out.update(res)
        return out

    async def _run_chunk(self, region: str, ids: list[int]) -> dict[LookupKey, FetchOutcome]:
        out: dict[LookupKey, FetchOutcome] = {}
        limit = self._opts.retry_attempts
        tries = dict.fromkeys(ids, 0)
        last_error: dict[int, Exception] = {}
        groups = [list(ids)]
        round_no = 0

        while groups:
            if round_no:
                await self._sleep(self._opts.backoff_for(round_no))
            round_no += 1

            outcomes = await asyncio.gather(*(self._attempt(region, g) for g in groups))
            next_groups: list[list[int]] = []
            for group, outcome in zip(groups, outcomes):
                for sid in group:
                    tries[sid] += 1

                if isinstance(outcome, FetchError):
                    for sid in group:
                        last_error[sid] = outcome
                    if isinstance(outcome, BudgetExhaustedError):
                        continue
                    # one bad id can sink a whole call; retry each id on its own
                    next_groups.extend([sid] for sid in group if tries[sid] < limit)
                    continue

                for sid, result in outcome.items():
                    key = LookupKey(subject_id=sid, region=region)
                    await self._cache.set(key, result)
                    out[key] = result

                missing = [sid for sid in group if sid not in outcome]
                if not missing:
                    continue
                partial = PartialBatchError(missing)
                logger.info(
                    "streaming chunk partial (region=%s, attempt=%d/%d): %s",
                    region,
                    round_no,
                    limit,
                    partial,
                )
                for sid in missing:
                    last_error[sid] = partial
                retry = [sid for sid in missing if tries[sid] < limit]
                if retry:
                    next_groups.append(retry)
            groups = next_groups

        for sid in ids:
            key = LookupKey(subject_id=sid, region=region)
            if key not in out:
                out[key] = FetchError(
                    f"lookup for {sid}/{region} gave up after {tries[sid]} attempt(s): "
                    f"{last_error.get(sid)}"
                )
        return out

    async def _attempt(
        self, region: str, ids: list[int]
    ) -> dict[int, LookupResult] | FetchError:
        try:
            async with self._sem:
                return await self._call(region, ids)
        except FetchError as exc:
            logger.warning(
                "streaming lookup call failed (region=%s, size=%d): %s", region, len(ids), exc
            )
            return exc

    async def _call(self, region: str, ids: list[int]) -> dict[int, LookupResult]:
        await self._charge_budget()
        try:
            with tracer.start_as_current_span(
                "streaming.lookup_batch",
                attributes={"streaming.region": region, "streaming.batch_size": len(ids)},
            ):
                items = await asyncio.wait_for(
                    self._provider.lookup_batch(subject_ids=list(ids), region=region),
                    timeout=self._opts.chunk_timeout_secs,
                )
        except asyncio.TimeoutError as exc:
            raise FetchError(
                f"provider timed out after {self._opts.chunk_timeout_secs}s"
            ) from exc
        except FetchError:
            raise
        except Exception as exc:
            raise FetchError(f"provider error: {exc!r}") from exc

        if not isinstance(items, list):
            raise ProviderDataError(f"expected a list from provider, got {type(items).__name__}")

        wanted = set(ids)
        got: dict[int, LookupResult] = {}
        for item in items:
            if not isinstance(item, SubjectAvailability):
                raise ProviderDataError(f"unexpected provider item {item!r}")
            if item.subject_id in wanted and item.subject_id not in got:
                got[item.subject_id] = LookupResult(options=item.options)
        return got

    async def _charge_budget(self) -> None:
        if self._store is None or self._opts.daily_call_budget <= 0:
            return
        day = datetime.fromtimestamp(self._clock(), timezone.utc).date().isoformat()
        key = f"{self._opts.cache_prefix}:calls:{day}"
        try:
            used = await self._store.incr(key, ttl_secs=24 * 60 * 60)
        except Exception as exc:
            logger.warning("upstream budget check failed; allowing call: %s", exc)
            return
        if used > self._opts.daily_call_budget:
            raise BudgetExhaustedError(
                f"daily upstream budget of {self._opts.daily_call_budget} calls exhausted"
            )
