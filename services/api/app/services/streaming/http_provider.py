from __future__ import annotations

import logging

import httpx

from app.services.streaming.errors import FetchError, ProviderDataError
from app.services.streaming.normalize import parse_subject
from app.services.streaming.types import SubjectAvailability

logger = logging.getLogger(__name__)


class HttpLookupProvider:
    """Calls the streaming-availability proxy function over HTTP.

    Request:  POST {base_url} {"tmdbIds": [...], "country": "pl", "mode": "lazy"}
    Response: {"success": true, "data": [{"tmdbId": 1, "streamingOptions": [...]}, ...]}

    The proxy drops titles it could not resolve, so the returned list may be
    shorter than the request; the batch fetcher retries the gaps.
    """

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 15.0,
        user_agent: str = "ReelScout/0.1",
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url
        headers = {"User-Agent": user_agent, "Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def lookup_batch(
        self, *, subject_ids: list[int], region: str
    ) -> list[SubjectAvailability]:
        try:
            resp = await self._client.post(
                self.base_url,
                json={"tmdbIds": subject_ids, "country": region, "mode": "lazy"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(f"streaming proxy request failed: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderDataError("streaming proxy returned non-JSON body") from exc

        if not isinstance(payload, dict) or not payload.get("success"):
            raise ProviderDataError("streaming proxy reported failure")
        items = payload.get("data")
        if not isinstance(items, list):
            raise ProviderDataError("streaming proxy response has no data list")

        out: list[SubjectAvailability] = []
        for raw in items:
            parsed = parse_subject(raw)
            if parsed is None:
                logger.warning("skipping malformed streaming item: %r", raw)
                continue
            out.append(parsed)
        return out

    async def aclose(self) -> None:
        await self._client.aclose()
