from __future__ import annotations

from collections.abc import Iterable


class StreamingLookupError(Exception):
    """Base class for streaming lookup failures."""


class CacheReadError(StreamingLookupError):
    """Cache storage was unavailable or held an unreadable entry."""


class FetchError(StreamingLookupError):
    """Upstream lookup failed for a chunk or a single key."""


class ProviderDataError(FetchError):
    """The lookup provider answered with a payload we could not understand."""


class PartialBatchError(StreamingLookupError):
    def __init__(self, missing: Iterable[int]):
        self.missing = sorted(set(missing))
        super().__init__(f"provider returned no result for {len(self.missing)} subject(s)")
