from __future__ import annotations

from app.api.deps import get_lookup_service
from app.api.rate_limit import rate_limiter
from app.core.config import settings
from app.schemas.streaming import (
    BatchLookupIn,
    BatchLookupOut,
    LookupOut,
    PruneOut,
    SupportedServicesOut,
)
from app.services.streaming.fallback import supported_services
from app.services.streaming.service import StreamingLookupService, filter_by_services
from fastapi import APIRouter, Depends, HTTPException, Path, Query

router = APIRouter(prefix="/v1/streaming", tags=["streaming"])

_lookup_limit = Depends(
    rate_limiter(
        "streaming_lookup",
        limit=settings.rate_limit_lookups_per_window,
        window_seconds=settings.rate_limit_window_seconds,
    )
)


@router.get("/services", response_model=SupportedServicesOut)
def get_supported_services(
    region: str | None = Query(None, pattern=r"^[A-Za-z]{2,8}$"),
):
    r = (region or settings.streaming_default_region).lower()
    return SupportedServicesOut(region=r, services=supported_services(r))


@router.post("/cache/prune", response_model=PruneOut)
async def prune_cache(service: StreamingLookupService = Depends(get_lookup_service)):
    return PruneOut(removed=await service.prune())


@router.post("/batch", response_model=BatchLookupOut, dependencies=[_lookup_limit])
async def lookup_batch(
    body: BatchLookupIn,
    service: StreamingLookupService = Depends(get_lookup_service),
):
    if len(body.subject_ids) > settings.streaming_max_request_ids:
        raise HTTPException(
            status_code=422,
            detail=f"At most {settings.streaming_max_request_ids} subject ids per request",
        )
    if any(sid <= 0 for sid in body.subject_ids):
        raise HTTPException(status_code=422, detail="Subject ids must be positive")

    region = (body.region or settings.streaming_default_region).lower()
    results = await service.lookup_many(body.subject_ids, region)
    results = filter_by_services(results, body.services)

    items = [LookupOut.from_resolved(r) for r in results]
    return BatchLookupOut(
        region=region,
        total_requested=len(body.subject_ids),
        total_with_streaming=sum(1 for i in items if i.has_streaming),
        items=items,
    )


@router.get("/{subject_id}", response_model=LookupOut, dependencies=[_lookup_limit])
async def lookup_one(
    subject_id: int = Path(..., gt=0),
    region: str | None = Query(None, pattern=r"^[A-Za-z]{2,8}$"),
    service: StreamingLookupService = Depends(get_lookup_service),
):
    resolved = await service.lookup(subject_id, region)
    return LookupOut.from_resolved(resolved)
