"""Duplicate-trip suppression and persistence.

Independent segmentation passes over overlapping windows, and vendor trips
versus reconstructed ones, never produce identical boundaries. A candidate is
therefore a duplicate when a stored trip of the same device starts within a
small window of it and covers a similar distance.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from pygps51.models.trip import Trip, TripCandidate, TripSource
from pygps51.storage import TripStore

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class DedupConfig:
    """Tolerances for duplicate matching.

    Parameters
    ----------
    start_window : timedelta
        Maximum start-time difference between duplicates.
    distance_tolerance : float
        Maximum relative distance difference (0.05 = 5 %).
    distance_slack_km : float
        Absolute slack added to the tolerance; distances are stored rounded
        to 10 m so very short trips would otherwise never match.
    """

    start_window: timedelta = timedelta(minutes=2)
    distance_tolerance: float = 0.05
    distance_slack_km: float = 0.01


def is_duplicate(candidate: TripCandidate, existing: TripCandidate, config: DedupConfig | None = None) -> bool:
    config = config or DedupConfig()
    if candidate.device_id != existing.device_id:
        return False
    if abs(existing.start_time - candidate.start_time) > config.start_window:
        return False
    allowed = candidate.distance_km * config.distance_tolerance + config.distance_slack_km
    return abs(existing.distance_km - candidate.distance_km) <= allowed


class TripFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate: TripCandidate
    error: str


class TripPersistResult(BaseModel):
    """Outcome of one :func:`persist_trips` call."""

    inserted: list[Trip] = Field(default_factory=list)
    skipped: list[TripCandidate] = Field(default_factory=list)
    failed: list[TripFailure] = Field(default_factory=list)
    skipped_cross_source: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed


async def persist_trips(
    store: TripStore,
    candidates: Iterable[TripCandidate],
    config: DedupConfig | None = None,
) -> TripPersistResult:
    """Insert every candidate that is not a duplicate of a stored trip.

    Candidates are processed in order, so duplicates within *candidates*
    are suppressed too. A failed duplicate lookup fails closed: the
    candidate is not inserted and is reported in ``failed``.
    """
    config = config or DedupConfig()
    result = TripPersistResult()

    for candidate in candidates:
        start_from = candidate.start_time - config.start_window
        start_to = candidate.start_time + config.start_window
        try:
            existing = await store.find_trips(candidate.device_id, start_from, start_to)
        except Exception as exc:
            _logger.error(
                "Duplicate check failed for %s trip at %s, not inserting: %s",
                candidate.device_id,
                candidate.start_time,
                exc,
            )
            result.failed.append(TripFailure(candidate=candidate, error=f"duplicate check failed: {exc}"))
            continue

        match = next((trip for trip in existing if is_duplicate(candidate, trip, config)), None)
        if match is not None:
            if match.source != candidate.source:
                result.skipped_cross_source += 1
            _logger.info(
                "Skipping duplicate %s trip for %s at %s (%.2fkm), matches stored %s trip %s",
                candidate.source,
                candidate.device_id,
                candidate.start_time,
                candidate.distance_km,
                match.source,
                match.id,
            )
            result.skipped.append(candidate)
            continue

        try:
            trip = await store.insert_trip(candidate)
        except Exception as exc:
            _logger.error("Failed to insert trip for %s at %s: %s", candidate.device_id, candidate.start_time, exc)
            result.failed.append(TripFailure(candidate=candidate, error=f"insert failed: {exc}"))
            continue
        result.inserted.append(trip)

    return result


class TripSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: TripSource
    trip_count: int = 0
    total_distance_km: float = 0.0
    total_duration_seconds: int = 0
    max_speed_kmh: float | None = None
    first_start: datetime | None = None
    last_end: datetime | None = None


def summarize_trips(trips: Iterable[TripCandidate], *, source: TripSource) -> TripSummary:
    """Aggregate trips of exactly one *source*.

    Vendor and reconstructed trips describe the same driving, so totals
    are never computed across sources.
    """
    selected = [t for t in trips if t.source == source]
    if not selected:
        return TripSummary(source=source)
    speeds = [t.max_speed_kmh for t in selected if t.max_speed_kmh is not None]
    return TripSummary(
        source=source,
        trip_count=len(selected),
        total_distance_km=round(sum(t.distance_km for t in selected), 2),
        total_duration_seconds=sum(t.duration_seconds for t in selected),
        max_speed_kmh=max(speeds) if speeds else None,
        first_start=min(t.start_time for t in selected),
        last_end=max(t.end_time for t in selected),
    )
