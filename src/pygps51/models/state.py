"""Normalized vehicle state models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class DetectionMethod(StrEnum):
    """How an ignition verdict was reached, strongest first."""

    STATUS_BIT = "status_bit"
    STRING_PARSE = "string_parse"
    MULTI_SIGNAL = "multi_signal"
    SPEED_INFERENCE = "speed_inference"
    UNKNOWN = "unknown"


class TimestampSource(StrEnum):
    DEVICE = "device"
    SERVER = "server"


class DataQuality(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IgnitionDetection(BaseModel):
    """Ignition verdict with its confidence and the evidence behind it."""

    model_config = ConfigDict(frozen=True)

    ignition_on: bool
    confidence: float = Field(ge=0.0, le=1.0)
    method: DetectionMethod
    signals: dict[str, Any] = Field(default_factory=dict)


class NormalizedState(BaseModel):
    """Canonical snapshot of one vehicle at one observation.

    Never mutated; the next observation for the same vehicle supersedes it.

    Parameters
    ----------
    vehicle_id : str
        Tracker identifier (empty when the ping carried none).
    lat, lon : float or None
        Validated position; both ``None`` when the ping's position is invalid.
    speed_kmh : float
        Speed in km/h, ``0 <= speed_kmh <= 300``.
    ignition_on : bool
        Ignition verdict.
    ignition_confidence : float
        Confidence of the verdict in ``[0, 1]``.
    ignition_method : DetectionMethod
        Heuristic that produced the verdict.
    is_moving : bool
        Speed above the noise floor or vendor moving flag set.
    battery_level, signal_strength : float or None
        Percentages in ``[0, 100]``.
    is_online : bool
        ``last_updated_at`` is fresher than the offline threshold.
    last_updated_at : datetime
        Aware UTC datetime, always present.
    timestamp_source : TimestampSource
        Whether ``last_updated_at`` came from the device or the server.
    gps_fix_time : datetime or None
        Time of the GPS fix itself, when reported.
    data_quality : DataQuality
        Coarse grade of how many signals were available.
    """

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    lat: float | None = Field(default=None, ge=-90.0, le=90.0)
    lon: float | None = Field(default=None, ge=-180.0, le=180.0)
    speed_kmh: float = Field(default=0.0, ge=0.0, le=300.0)
    ignition_on: bool = False
    ignition_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    ignition_method: DetectionMethod = DetectionMethod.UNKNOWN
    is_moving: bool = False
    battery_level: float | None = Field(default=None, ge=0.0, le=100.0)
    signal_strength: float | None = Field(default=None, ge=0.0, le=100.0)
    heading: float | None = None
    altitude: float | None = None
    is_online: bool = False
    last_updated_at: datetime
    timestamp_source: TimestampSource = TimestampSource.SERVER
    gps_fix_time: datetime | None = None
    data_quality: DataQuality = DataQuality.LOW
    is_overspeeding: bool = False
    total_mileage_km: float | None = None

    @field_serializer("last_updated_at", "gps_fix_time")
    def _serialize_timestamps(self, value: datetime | None) -> str | None:
        return value.isoformat() if value is not None else None
