from __future__ import annotations

from dataclasses import dataclass

from app.core.config import Settings


@dataclass(frozen=True)
class LookupOptions:
    """Tunables for the streaming lookup cache, batcher and fetcher."""

    default_region: str = "us"

    cache_prefix: str = "streaming_opt"
    cache_version: str = "3.0"
    ttl_secs: int = 3 * 60 * 60
    empty_ttl_secs: int = 60 * 60
    stale_retention_secs: int = 7 * 24 * 60 * 60

    batch_window_secs: float = 0.05
    max_batch_size: int = 50
    max_concurrency: int = 4
    chunk_timeout_secs: float = 15.0
    retry_attempts: int = 3
    retry_backoff_secs: float = 0.5
    retry_backoff_max_secs: float = 8.0
    daily_call_budget: int = 500

    @classmethod
    def from_settings(cls, s: Settings) -> LookupOptions:
        return cls(
            default_region=s.streaming_default_region,
            cache_prefix=s.streaming_cache_prefix,
            cache_version=s.streaming_cache_version,
            ttl_secs=s.streaming_cache_ttl_secs,
            empty_ttl_secs=s.streaming_empty_cache_ttl_secs,
            stale_retention_secs=s.streaming_stale_retention_secs,
            batch_window_secs=s.streaming_batch_window_ms / 1000.0,
            max_batch_size=s.streaming_max_batch_size,
            max_concurrency=s.streaming_max_concurrency,
            chunk_timeout_secs=s.streaming_chunk_timeout_secs,
            retry_attempts=s.streaming_retry_attempts,
            retry_backoff_secs=s.streaming_retry_backoff_secs,
            retry_backoff_max_secs=s.streaming_retry_backoff_max_secs,
            daily_call_budget=s.streaming_daily_call_budget,
        )

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.retry_backoff_secs * (2 ** (attempt - 1)), self.retry_backoff_max_secs)
