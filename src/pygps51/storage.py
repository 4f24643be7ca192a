"""Storage seams.

The ingestion core never talks to a database directly. It depends on the
small async protocols below; production code plugs in a real datastore and
tests use the in-memory implementations.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from pygps51.models.trip import Trip, TripCandidate


class KeyValueStore(Protocol):
    """Shared key/value record store (e.g. an ``app_settings`` table)."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value


class TripStore(Protocol):
    """Append-only trip storage, queried by device and start-time range."""

    async def find_trips(self, device_id: str, start_from: datetime, start_to: datetime) -> list[Trip]:
        ...

    async def insert_trip(self, candidate: TripCandidate) -> Trip:
        ...

    async def list_trips(self, device_id: str) -> list[Trip]:
        ...


class InMemoryTripStore:
    def __init__(self) -> None:
        self._trips: list[Trip] = []

    async def find_trips(self, device_id: str, start_from: datetime, start_to: datetime) -> list[Trip]:
        return [t for t in self._trips if t.device_id == device_id and start_from <= t.start_time <= start_to]

    async def insert_trip(self, candidate: TripCandidate) -> Trip:
        trip = Trip(id=uuid.uuid4().hex, **candidate.model_dump())
        self._trips.append(trip)
        return trip

    async def list_trips(self, device_id: str) -> list[Trip]:
        return sorted((t for t in self._trips if t.device_id == device_id), key=lambda t: t.start_time)


class SyncStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class SyncCursor(BaseModel):
    """Per-device trip sync progress.

    ``last_position_processed`` is the time of the newest position already
    fed to segmentation; incremental runs start from there.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str
    last_position_processed: datetime | None = None
    status: SyncStatus = SyncStatus.COMPLETED
    trips_processed: int = 0
    error: str | None = None
    updated_at: datetime | None = None


class SyncCursorStore(Protocol):
    async def get_cursor(self, device_id: str) -> SyncCursor | None:
        ...

    async def set_cursor(self, cursor: SyncCursor) -> None:
        ...


class InMemorySyncCursorStore:
    def __init__(self) -> None:
        self._cursors: dict[str, SyncCursor] = {}

    async def get_cursor(self, device_id: str) -> SyncCursor | None:
        return self._cursors.get(device_id)

    async def set_cursor(self, cursor: SyncCursor) -> None:
        self._cursors[cursor.device_id] = cursor
