"""Latest-state sink.

One row per device, keyed by vehicle id, overwritten on every ingestion and
stamped with the time it was cached.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from pygps51.models.state import NormalizedState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CachedState(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: NormalizedState
    cached_at: datetime


class VehicleStateStore(Protocol):
    async def upsert(self, state: NormalizedState) -> None:
        ...

    async def get(self, vehicle_id: str) -> CachedState | None:
        ...


class InMemoryVehicleStateStore:
    """In-memory :class:`VehicleStateStore`.

    A snapshot older than the cached one for the same vehicle is ignored so
    that an out-of-order ping cannot roll the state back.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._rows: dict[str, CachedState] = {}

    async def upsert(self, state: NormalizedState) -> None:
        cached = self._rows.get(state.vehicle_id)
        if cached is not None and state.last_updated_at < cached.state.last_updated_at:
            return
        self._rows[state.vehicle_id] = CachedState(state=state, cached_at=self._clock())

    async def get(self, vehicle_id: str) -> CachedState | None:
        return self._rows.get(vehicle_id)

    def vehicle_ids(self) -> list[str]:
        return sorted(self._rows)
