from __future__ import annotations

from app.core.config import settings
from app.services.streaming.fixture_provider import FixtureProvider
from app.services.streaming.http_provider import HttpLookupProvider
from app.services.streaming.provider import LookupProvider


def get_provider() -> LookupProvider:
    if settings.streaming_provider == "fixture":
        return FixtureProvider(
            fixture_path=settings.streaming_fixture_path,
            inject_failure_once=settings.streaming_inject_failure_once,
        )
    if settings.streaming_provider == "http":
        if not settings.streaming_proxy_url:
            raise ValueError("STREAMING_PROXY_URL is required for the http provider")
        return HttpLookupProvider(
            base_url=settings.streaming_proxy_url,
            api_key=settings.streaming_proxy_api_key,
            timeout=settings.streaming_chunk_timeout_secs,
            user_agent=settings.user_agent,
        )
    raise ValueError(f"Unknown streaming provider: {settings.streaming_provider}")
