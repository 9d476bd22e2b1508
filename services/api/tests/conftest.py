import asyncio
import os

# Keep tests off any real Redis before app settings are imported.
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("STREAMING_PROVIDER", "fixture")

import pytest
from app.services.streaming.errors import FetchError
from app.services.streaming.options import LookupOptions
from app.services.streaming.service import StreamingLookupService
from app.services.streaming.store import MemoryStore
from app.services.streaming.types import AccessType, AvailabilityOption, SubjectAvailability


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, secs: float) -> None:
        self.delays.append(secs)
        await asyncio.sleep(0)


def option(provider: str, access_type: AccessType = AccessType.subscription) -> AvailabilityOption:
    return AvailabilityOption(provider=provider, access_type=access_type, link=None)


class ScriptedProvider:
    """Lookup provider double with per-subject data and failure knobs."""

    name = "fake"

    def __init__(self, data=None):
        # (region, subject_id) -> list[AvailabilityOption]
        self.data: dict[tuple[str, int], list[AvailabilityOption]] = dict(data or {})
        self.calls: list[tuple[str, list[int]]] = []
        self.missing: set[int] = set()
        self.raise_for: set[int] = set()
        self.fail_times = 0
        self.delay = 0.0
        self.closed = False

    async def lookup_batch(self, *, subject_ids, region):
        self.calls.append((region, list(subject_ids)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise FetchError("upstream unavailable")
        if self.raise_for.intersection(subject_ids):
            raise FetchError("upstream blew up for this chunk")
        return [
            SubjectAvailability(subject_id=sid, options=self.data.get((region, sid), []))
            for sid in subject_ids
            if sid not in self.missing
        ]

    async def aclose(self):
        self.closed = True

    def calls_for(self, subject_id: int) -> int:
        return sum(1 for _, ids in self.calls if subject_id in ids)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def fake_sleep():
    return RecordingSleep()


@pytest.fixture()
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture()
def options():
    return LookupOptions(
        ttl_secs=3600,
        empty_ttl_secs=600,
        stale_retention_secs=7 * 24 * 3600,
        batch_window_secs=0.01,
        max_batch_size=50,
        max_concurrency=4,
        chunk_timeout_secs=1.0,
        retry_attempts=3,
        retry_backoff_secs=0.5,
        retry_backoff_max_secs=4.0,
        daily_call_budget=0,
    )


@pytest.fixture()
def provider():
    return ScriptedProvider(
        {
            ("us", 603): [option("Netflix")],
            ("pl", 155): [option("HBO Max"), option("Canal+")],
        }
    )


@pytest.fixture()
def service(provider, store, options, clock, fake_sleep):
    return StreamingLookupService(provider, store, options, clock=clock, sleep=fake_sleep)
