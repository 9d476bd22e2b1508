from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccessType(str, Enum):
    subscription = "subscription"
    rental = "rental"
    purchase = "purchase"
    free = "free"


class TtlClass(str, Enum):
    has_data = "has_data"
    empty = "empty"


class Provenance(str, Enum):
    api = "api"
    cache = "cache"
    stale = "stale"
    default = "default"


class Price(BaseModel):
    amount: float
    currency: str | None = None
    formatted: str | None = None


class AvailabilityOption(BaseModel):
    provider: str
    access_type: AccessType
    link: str | None = None
    price: Price | None = None


class LookupKey(BaseModel):
    """One cacheable unit of work: a subject looked up in one region."""

    model_config = ConfigDict(frozen=True)

    subject_id: int
    region: str

    @field_validator("region", mode="before")
    @classmethod
    def normalize_region(cls, v: object) -> str:
        if not isinstance(v, str):
            raise TypeError("region must be a string")
        return v.strip().lower()


class LookupResult(BaseModel):
    options: list[AvailabilityOption] = Field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.options)

    @property
    def providers(self) -> list[str]:
        seen: list[str] = []
        for opt in self.options:
            if opt.provider not in seen:
                seen.append(opt.provider)
        return seen


class SubjectAvailability(BaseModel):
    """What a lookup provider returns for a single subject."""

    subject_id: int
    options: list[AvailabilityOption] = Field(default_factory=list)


class CacheEntry(BaseModel):
    result: LookupResult
    created_at: float
    ttl_class: TtlClass
    version: str


class ResolvedLookup(BaseModel):
    key: LookupKey
    result: LookupResult
    provenance: Provenance
    stale: bool = False
    fetched_at: float | None = None
