from __future__ import annotations

from pydantic import BaseModel, Field

from app.services.streaming.types import AvailabilityOption, Provenance, ResolvedLookup


class LookupOut(BaseModel):
    subject_id: int
    region: str
    provenance: Provenance
    stale: bool
    has_streaming: bool
    available_services: list[str]
    options: list[AvailabilityOption]
    fetched_at: float | None = None

    @classmethod
    def from_resolved(cls, r: ResolvedLookup) -> LookupOut:
        return cls(
            subject_id=r.key.subject_id,
            region=r.key.region,
            provenance=r.provenance,
            stale=r.stale,
            has_streaming=r.result.has_data,
            available_services=r.result.providers,
            options=r.result.options,
            fetched_at=r.fetched_at,
        )


class BatchLookupIn(BaseModel):
    subject_ids: list[int] = Field(min_length=1)
    region: str | None = Field(default=None, pattern=r"^[A-Za-z]{2,8}$")
    services: list[str] = Field(default_factory=list)


class BatchLookupOut(BaseModel):
    region: str
    total_requested: int
    total_with_streaming: int
    items: list[LookupOut]


class SupportedServicesOut(BaseModel):
    region: str
    services: list[str]


class PruneOut(BaseModel):
    removed: int
