from __future__ import annotations

from fastapi import HTTPException, Request, status

from app.services.streaming.service import StreamingLookupService


def get_lookup_service(request: Request) -> StreamingLookupService:
    service = getattr(request.app.state, "lookup_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Streaming lookup service not ready",
        )
    return service
