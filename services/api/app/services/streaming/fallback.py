from __future__ import annotations

import logging
import time
from typing import Callable

from app.services.streaming.cache import StreamingCache
from app.services.streaming.errors import FetchError
from app.services.streaming.fetcher import BatchFetcher
from app.services.streaming.types import (
    AccessType,
    AvailabilityOption,
    LookupKey,
    LookupResult,
    Provenance,
    ResolvedLookup,
)

logger = logging.getLogger(__name__)

FALLBACK_REGION = "us"

_HOMEPAGES: dict[str, str] = {
    "Netflix": "https://netflix.com",
    "Amazon Prime Video": "https://amazon.com/prime-video",
    "Disney+": "https://disneyplus.com",
    "Hulu": "https://hulu.com",
    "Apple TV+": "https://tv.apple.com",
    "Canal+": "https://canalplus.pl",
    "Player.pl": "https://player.pl",
}

_DEFAULT_CATALOG: dict[str, list[str]] = {
    "us": ["Netflix", "Amazon Prime Video", "Disney+", "Hulu", "Apple TV+"],
    "pl": ["Netflix", "Amazon Prime Video", "Disney+", "Canal+", "Player.pl"],
}

_SUPPORTED_SERVICES: dict[str, list[str]] = {
    "pl": [
        "Netflix",
        "Amazon Prime Video",
        "Disney+",
        "HBO Max",
        "Apple TV+",
        "Canal+",
        "Player.pl",
        "Polsat Box Go",
        "TVP VOD",
    ],
    "us": [
        "Netflix",
        "Amazon Prime Video",
        "Disney+",
        "HBO Max",
        "Apple TV+",
        "Hulu",
        "Paramount+",
        "Peacock",
        "Showtime",
        "Starz",
    ],
}


def supported_services(region: str) -> list[str]:
    return list(_SUPPORTED_SERVICES.get(region.lower(), _SUPPORTED_SERVICES[FALLBACK_REGION]))


def default_result(region: str) -> LookupResult:
    """Static catalog of common providers for a region."""
    names = _DEFAULT_CATALOG.get(region.lower(), _DEFAULT_CATALOG[FALLBACK_REGION])
    return LookupResult(
        options=[
            AvailabilityOption(
                provider=name,
                access_type=AccessType.subscription,
                link=_HOMEPAGES.get(name),
            )
            for name in names
        ]
    )


class FallbackPolicy:
    """Turns fetcher outcomes into results callers can always render.

    Never raises: a failed key is served from the cache (stale if need be),
    then from the static default catalog.
    """

    def __init__(
        self,
        fetcher: BatchFetcher,
        cache: StreamingCache,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._fetcher = fetcher
        self._cache = cache
        self._clock = clock

    async def resolve(self, keys: list[LookupKey]) -> dict[LookupKey, ResolvedLookup]:
        try:
            outcomes = await self._fetcher.fetch_batch(keys)
        except Exception:
            logger.exception("streaming batch fetch crashed; serving fallbacks")
            outcomes = {}

        now = self._clock()
        out: dict[LookupKey, ResolvedLookup] = {}
        for key in keys:
            outcome = outcomes.get(key)
            if isinstance(outcome, LookupResult):
                out[key] = ResolvedLookup(
                    key=key, result=outcome, provenance=Provenance.api, fetched_at=now
                )
                continue
            out[key] = await self.fallback(key, outcome)
        return out

    async def fallback(self, key: LookupKey, error: FetchError | None = None) -> ResolvedLookup:
        try:
            entry = await self._cache.get_stale(key)
        except Exception:
            logger.exception("stale cache lookup failed for %s/%s", key.subject_id, key.region)
            entry = None

        if entry is not None:
            is_stale = self._cache.expired(entry)
            logger.warning(
                "serving %s cache for %s/%s: %s",
                "stale" if is_stale else "fresh",
                key.subject_id,
                key.region,
                error,
            )
            return ResolvedLookup(
                key=key,
                result=entry.result,
                provenance=Provenance.stale if is_stale else Provenance.cache,
                stale=is_stale,
                fetched_at=entry.created_at,
            )

        logger.warning(
            "serving default catalog for %s/%s: %s", key.subject_id, key.region, error
        )
        return ResolvedLookup(
            key=key, result=default_result(key.region), provenance=Provenance.default
        )
