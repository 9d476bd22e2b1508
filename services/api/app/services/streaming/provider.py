from __future__ import annotations

from typing import Protocol

from app.services.streaming.types import SubjectAvailability


class LookupProvider(Protocol):
    name: str

    async def lookup_batch(
        self, *, subject_ids: list[int], region: str
    ) -> list[SubjectAvailability]: ...

    async def aclose(self) -> None: ...
