from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from app.services.streaming.types import (
    AccessType,
    AvailabilityOption,
    Price,
    SubjectAvailability,
)

# Upstream "type" values -> our access types
_ACCESS_TYPES: dict[str, AccessType] = {
    "subscription": AccessType.subscription,
    "addon": AccessType.subscription,
    "rent": AccessType.rental,
    "rental": AccessType.rental,
    "buy": AccessType.purchase,
    "purchase": AccessType.purchase,
    "free": AccessType.free,
}

_SERVICE_NAMES: dict[str, str] = {
    "netflix": "Netflix",
    "prime": "Amazon Prime Video",
    "disney": "Disney+",
    "hbo": "HBO Max",
    "hulu": "Hulu",
    "apple": "Apple TV+",
    "paramount": "Paramount+",
    "canal": "Canal+",
    "player": "Player.pl",
    "polsat": "Polsat Box Go",
    "tvp": "TVP VOD",
}


def service_display_name(service: str) -> str:
    s = service.strip()
    known = _SERVICE_NAMES.get(s.lower())
    if known:
        return known
    return s[:1].upper() + s[1:]


def access_type(raw: Any) -> AccessType:
    if isinstance(raw, str):
        found = _ACCESS_TYPES.get(raw.strip().lower())
        if found is not None:
            return found
    return AccessType.subscription


def _price(raw: Any) -> Price | None:
    if not isinstance(raw, dict) or raw.get("amount") in (None, ""):
        return None
    try:
        amount = float(raw["amount"])
    except (TypeError, ValueError):
        return None
    return Price(amount=amount, currency=raw.get("currency"), formatted=raw.get("formatted"))


def parse_option(raw: Any) -> AvailabilityOption | None:
    if not isinstance(raw, dict):
        return None
    service = raw.get("service")
    if isinstance(service, dict):
        service = service.get("name") or service.get("id")
    if not isinstance(service, str) or not service.strip():
        return None
    return AvailabilityOption(
        provider=service_display_name(service),
        access_type=access_type(raw.get("type")),
        link=raw.get("link") or None,
        price=_price(raw.get("price")),
    )


def parse_subject(raw: Any) -> SubjectAvailability | None:
    """Normalize one upstream MovieStreamingData item; None if unusable."""
    if not isinstance(raw, dict):
        return None
    try:
        subject_id = int(raw["tmdbId"])
    except (KeyError, TypeError, ValueError):
        return None

    options_raw = raw.get("streamingOptions") or []
    if not isinstance(options_raw, list):
        return None

    options = []
    for item in options_raw:
        try:
            opt = parse_option(item)
        except ValidationError:
            opt = None
        if opt is not None:
            options.append(opt)
    return SubjectAvailability(subject_id=subject_id, options=options)
