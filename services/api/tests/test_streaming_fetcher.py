import asyncio
from dataclasses import replace

import pytest
from app.services.streaming.cache import MISS, StreamingCache
from app.services.streaming.errors import FetchError
from app.services.streaming.fetcher import BatchFetcher
from app.services.streaming.types import LookupKey, LookupResult

from conftest import ScriptedProvider, option


def _keys(*ids, region="us"):
    return [LookupKey(subject_id=i, region=region) for i in ids]


def _fetcher(provider, store, options, clock, fake_sleep, **overrides):
    opts = replace(options, **overrides)
    cache = StreamingCache(store, opts, clock=clock)
    return BatchFetcher(provider, cache, opts, store=store, clock=clock, sleep=fake_sleep), cache


@pytest.mark.asyncio
async def test_single_call_for_small_batch(provider, store, options, clock, fake_sleep):
    fetcher, cache = _fetcher(provider, store, options, clock, fake_sleep)

    out = await fetcher.fetch_batch(_keys(603, 1, 2))

    assert provider.calls == [("us", [603, 1, 2])]
    assert out[LookupKey(subject_id=603, region="us")].providers == ["Netflix"]
    assert out[LookupKey(subject_id=1, region="us")] == LookupResult()
    assert await cache.get(LookupKey(subject_id=1, region="us")) == LookupResult()


@pytest.mark.asyncio
async def test_large_batches_are_split(provider, store, options, clock, fake_sleep):
    fetcher, _ = _fetcher(provider, store, options, clock, fake_sleep, max_batch_size=2)

    out = await fetcher.fetch_batch(_keys(1, 2, 3, 4, 5))

    assert sorted(ids for _, ids in provider.calls) == [[1, 2], [3, 4], [5]]
    assert len(out) == 5


@pytest.mark.asyncio
async def test_keys_grouped_by_region(provider, store, options, clock, fake_sleep):
    fetcher, _ = _fetcher(provider, store, options, clock, fake_sleep)

    out = await fetcher.fetch_batch(_keys(603, region="us") + _keys(155, region="pl"))

    assert sorted(provider.calls) == [("pl", [155]), ("us", [603])]
    assert out[LookupKey(subject_id=155, region="pl")].providers == ["HBO Max", "Canal+"]


@pytest.mark.asyncio
async def test_partial_failure_only_retries_missing(provider, store, options, clock, fake_sleep):
    provider.data[("us", 1)] = [option("Netflix")]
    provider.data[("us", 3)] = [option("Hulu")]
    provider.missing = {2}
    fetcher, cache = _fetcher(provider, store, options, clock, fake_sleep)

    out = await fetcher.fetch_batch(_keys(1, 2, 3))

    assert out[LookupKey(subject_id=1, region="us")].providers == ["Netflix"]
    assert out[LookupKey(subject_id=3, region="us")].providers == ["Hulu"]
    assert isinstance(out[LookupKey(subject_id=2, region="us")], FetchError)

    assert provider.calls == [("us", [1, 2, 3]), ("us", [2]), ("us", [2])]
    assert provider.calls_for(1) == 1
    assert await cache.get(LookupKey(subject_id=2, region="us")) is MISS


@pytest.mark.asyncio
async def test_missing_key_recovers_on_retry(provider, store, options, clock, fake_sleep):
    fetcher, _ = _fetcher(provider, store, options, clock, fake_sleep)
    provider.fail_times = 1

    out = await fetcher.fetch_batch(_keys(603))

    assert out[LookupKey(subject_id=603, region="us")].providers == ["Netflix"]
    assert len(provider.calls) == 2
    assert fake_sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_retries_are_bounded_with_exponential_backoff(
    provider, store, options, clock, fake_sleep
):
    provider.fail_times = 100
    fetcher, _ = _fetcher(provider, store, options, clock, fake_sleep)

    out = await fetcher.fetch_batch(_keys(9999))

    assert isinstance(out[LookupKey(subject_id=9999, region="us")], FetchError)
    assert len(provider.calls) == options.retry_attempts == 3
    assert fake_sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_backoff_is_capped(options):
    opts = replace(options, retry_backoff_secs=1.0, retry_backoff_max_secs=3.0)
    assert [opts.backoff_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_failing_chunk_does_not_fail_siblings(provider, store, options, clock, fake_sleep):
    provider.data[("us", 1)] = [option("Netflix")]
    provider.raise_for = {3}
    fetcher, _ = _fetcher(provider, store, options, clock, fake_sleep, max_batch_size=2)

    out = await fetcher.fetch_batch(_keys(1, 2, 3, 4))

    assert out[LookupKey(subject_id=1, region="us")].providers == ["Netflix"]
    assert out[LookupKey(subject_id=2, region="us")] == LookupResult()
    assert isinstance(out[LookupKey(subject_id=3, region="us")], FetchError)
    assert out[LookupKey(subject_id=4, region="us")] == LookupResult()
    assert provider.calls_for(1) == 1
    assert provider.calls_for(3) == 3
    assert provider.calls_for(4) == 2


@pytest.mark.asyncio
async def test_bad_id_is_isolated_within_its_chunk(provider, store, options, clock, fake_sleep):
    provider.data[("us", 1)] = [option("Netflix")]
    provider.data[("us", 3)] = [option("Hulu")]
    provider.raise_for = {2}
    fetcher, cache = _fetcher(provider, store, options, clock, fake_sleep)

    out = await fetcher.fetch_batch(_keys(1, 2, 3))

    assert out[LookupKey(subject_id=1, region="us")].providers == ["Netflix"]
    assert out[LookupKey(subject_id=3, region="us")].providers == ["Hulu"]
    err = out[LookupKey(subject_id=2, region="us")]
    assert isinstance(err, FetchError)
    assert "gave up after 3 attempt(s)" in str(err)

    assert provider.calls[0] == ("us", [1, 2, 3])
    assert sorted(ids for _, ids in provider.calls[1:4]) == [[1], [2], [3]]
    assert provider.calls[4:] == [("us", [2])]
    assert provider.calls_for(2) == 3
    assert fake_sleep.delays == [0.5, 1.0]
    assert (await cache.get(LookupKey(subject_id=3, region="us"))).providers == ["Hulu"]


@pytest.mark.asyncio
async def test_crashed_chunk_is_logged_as_warning(store, options, clock, fake_sleep, caplog):
    class Exploding(BatchFetcher):
        async def _run_chunk(self, region, ids):
            raise RuntimeError("boom")

    cache = StreamingCache(store, options, clock=clock)
    fetcher = Exploding(ScriptedProvider(), cache, options, clock=clock, sleep=fake_sleep)

    with caplog.at_level("WARNING", logger="app.services.streaming.fetcher"):
        out = await fetcher.fetch_batch(_keys(1))

    assert isinstance(out[LookupKey(subject_id=1, region="us")], FetchError)
    crashed = [r for r in caplog.records if "chunk crashed" in r.getMessage()]
    assert len(crashed) == 1
    assert crashed[0].levelname == "WARNING"
    assert crashed[0].exc_info is not None


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(store, options, clock, fake_sleep):
    slow = ScriptedProvider()
    slow.delay = 0.2
    fetcher, _ = _fetcher(
        slow, store, options, clock, fake_sleep, chunk_timeout_secs=0.01, retry_attempts=2
    )

    out = await fetcher.fetch_batch(_keys(42))

    err = out[LookupKey(subject_id=42, region="us")]
    assert isinstance(err, FetchError)
    assert "timed out" in str(err)
    assert len(slow.calls) == 2


@pytest.mark.asyncio
async def test_unexpected_provider_items_are_data_errors(store, options, clock, fake_sleep):
    class Garbage(ScriptedProvider):
        async def lookup_batch(self, *, subject_ids, region):
            self.calls.append((region, list(subject_ids)))
            return [{"tmdbId": 1}]

    garbage = Garbage()
    fetcher, _ = _fetcher(garbage, store, options, clock, fake_sleep)

    out = await fetcher.fetch_batch(_keys(1))

    assert isinstance(out[LookupKey(subject_id=1, region="us")], FetchError)
    assert len(garbage.calls) == options.retry_attempts


@pytest.mark.asyncio
async def test_unrequested_ids_are_ignored(store, options, clock, fake_sleep):
    class Chatty(ScriptedProvider):
        async def lookup_batch(self, *, subject_ids, region):
            extra = await super().lookup_batch(subject_ids=subject_ids, region=region)
            return extra + await super().lookup_batch(subject_ids=[777], region=region)

    fetcher, cache = _fetcher(Chatty(), store, options, clock, fake_sleep)

    out = await fetcher.fetch_batch(_keys(1))

    assert list(out) == _keys(1)
    assert await cache.get(LookupKey(subject_id=777, region="us")) is MISS


@pytest.mark.asyncio
async def test_daily_budget_stops_upstream_calls(provider, store, options, clock, fake_sleep):
    fetcher, _ = _fetcher(provider, store, options, clock, fake_sleep, daily_call_budget=1)

    first = await fetcher.fetch_batch(_keys(603))
    second = await fetcher.fetch_batch(_keys(1))

    assert first[LookupKey(subject_id=603, region="us")].providers == ["Netflix"]
    assert isinstance(second[LookupKey(subject_id=1, region="us")], FetchError)
    assert len(provider.calls) == 1
    assert fake_sleep.delays == []


@pytest.mark.asyncio
async def test_concurrency_is_bounded(store, options, clock, fake_sleep):
    class Gauge(ScriptedProvider):
        def __init__(self):
            super().__init__()
            self.active = 0
            self.peak = 0

        async def lookup_batch(self, *, subject_ids, region):
            self.active += 1
            self.peak = max(self.peak, self.active)
            await asyncio.sleep(0.01)
            self.active -= 1
            return await super().lookup_batch(subject_ids=subject_ids, region=region)

    gauge = Gauge()
    fetcher, _ = _fetcher(
        gauge, store, options, clock, fake_sleep, max_batch_size=1, max_concurrency=2
    )

    await fetcher.fetch_batch(_keys(1, 2, 3, 4, 5))

    assert gauge.peak == 2
    assert len(gauge.calls) == 5
