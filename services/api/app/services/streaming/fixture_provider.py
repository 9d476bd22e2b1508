from __future__ import annotations

import json
from pathlib import Path

from app.services.streaming.errors import FetchError
from app.services.streaming.normalize import parse_subject
from app.services.streaming.types import SubjectAvailability


class FixtureProvider:
    """Serves streaming availability from a JSON file, for demos and tests.

    The file maps region -> list of upstream-shaped items. Subjects not in the
    file come back as an explicit empty result, like the live proxy does.
    `inject_failure_once` makes the first lookup fail.
    """

    name = "fixture"

    def __init__(self, fixture_path: str, *, inject_failure_once: bool = False):
        self.fixture_path = fixture_path
        self._fail_next = inject_failure_once
        self._data = self._load()

    def _load(self) -> dict[str, dict[int, SubjectAvailability]]:
        p = Path(self.fixture_path)
        if not p.exists():
            raise FileNotFoundError(f"Fixture file not found: {p}")
        raw = json.loads(p.read_text(encoding="utf-8"))

        out: dict[str, dict[int, SubjectAvailability]] = {}
        for region, items in raw.get("regions", {}).items():
            by_id: dict[int, SubjectAvailability] = {}
            for it in items:
                parsed = parse_subject(it)
                if parsed is not None:
                    by_id[parsed.subject_id] = parsed
            out[region.lower()] = by_id
        return out

    async def lookup_batch(
        self, *, subject_ids: list[int], region: str
    ) -> list[SubjectAvailability]:
        if self._fail_next:
            self._fail_next = False
            raise FetchError("Injected provider failure (demo)")

        known = self._data.get(region.lower(), {})
        return [
            known.get(sid) or SubjectAvailability(subject_id=sid, options=[])
            for sid in subject_ids
        ]

    async def aclose(self) -> None:
        return None
