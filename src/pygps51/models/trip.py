"""Trip and track point models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from pygps51.models.state import NormalizedState


class TripSource(StrEnum):
    """Which detector produced a trip.

    Trips from different sources describe the same driving independently
    and must never be summed together.
    """

    VENDOR = "gps51"
    RECONSTRUCTED = "position_history"


class TrackPoint(BaseModel):
    """One validated position fed to the segmentation engine."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    speed_kmh: float = Field(default=0.0, ge=0.0)
    gps_time: datetime
    ignition_on: bool | None = None

    @classmethod
    def from_state(cls, state: NormalizedState) -> TrackPoint | None:
        """Build a point from a normalized state, ``None`` without a position.

        Ignition is only carried over when it was asserted by the vendor
        (status bit or status text); motion-inferred ignition would make
        every moving point look like an ignition observation.
        """
        if state.lat is None or state.lon is None:
            return None
        ignition: bool | None = None
        if state.ignition_method in ("status_bit", "string_parse"):
            ignition = state.ignition_on
        return cls(
            device_id=state.vehicle_id,
            latitude=state.lat,
            longitude=state.lon,
            speed_kmh=state.speed_kmh,
            gps_time=state.gps_fix_time or state.last_updated_at,
            ignition_on=ignition,
        )


class TripCandidate(BaseModel):
    """A closed segment that has not been persisted yet.

    Parameters
    ----------
    device_id : str
        Tracker identifier.
    start_time, end_time : datetime
        Aware UTC boundaries.
    start_latitude, start_longitude, end_latitude, end_longitude : float or None
        Boundary positions (vendor trips may omit them).
    distance_km : float
        Travelled distance, GPS jumps excluded.
    duration_seconds : int
        ``end_time - start_time``.
    max_speed_kmh, avg_speed_kmh : float or None
        Speed statistics.
    source : TripSource
        Detector that produced the trip.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str
    start_time: datetime
    end_time: datetime
    start_latitude: float | None = None
    start_longitude: float | None = None
    end_latitude: float | None = None
    end_longitude: float | None = None
    distance_km: float = Field(default=0.0, ge=0.0)
    duration_seconds: int = Field(default=0, ge=0)
    max_speed_kmh: float | None = None
    avg_speed_kmh: float | None = None
    source: TripSource = TripSource.RECONSTRUCTED


class Trip(TripCandidate):
    """A persisted trip, identified by an opaque storage id."""

    id: str
