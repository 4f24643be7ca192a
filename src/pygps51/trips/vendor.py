"""Vendor trip report (``querytrips``) conversion."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pygps51 import _constants as c
from pygps51.ingestion.normalize import parse_vendor_timestamp, round_half_up, safe_float
from pygps51.ingestion.telemetry import validate_coordinates
from pygps51.models._base import Gps51BaseModel
from pygps51.models.trip import TripCandidate, TripSource

_logger = logging.getLogger(__name__)


class VendorTripRecord(Gps51BaseModel):
    """One record of a ``querytrips`` response.

    Distances are metres and speeds metres/hour, as the vendor sends them.
    """

    start_time: Any = Field(default=None, validation_alias=AliasChoices("starttime", "starttime_str"))
    end_time: Any = Field(default=None, validation_alias=AliasChoices("endtime", "endtime_str"))
    distance_m: float | None = Field(default=None, validation_alias=AliasChoices("distance", "totaldistance"))
    max_speed_mph: float | None = Field(default=None, validation_alias=AliasChoices("maxspeed"))
    avg_speed_mph: float | None = Field(default=None, validation_alias=AliasChoices("avgspeed"))
    start_latitude: float | None = Field(default=None, validation_alias=AliasChoices("startlat", "startlatitude"))
    start_longitude: float | None = Field(default=None, validation_alias=AliasChoices("startlon", "startlongitude"))
    end_latitude: float | None = Field(default=None, validation_alias=AliasChoices("endlat", "endlatitude"))
    end_longitude: float | None = Field(default=None, validation_alias=AliasChoices("endlon", "endlongitude"))

    @field_validator(
        "distance_m",
        "max_speed_mph",
        "avg_speed_mph",
        "start_latitude",
        "start_longitude",
        "end_latitude",
        "end_longitude",
        mode="before",
    )
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)


def _position(lat: float | None, lon: float | None) -> tuple[float | None, float | None]:
    return (lat, lon) if validate_coordinates(lat, lon) else (None, None)


def _speed_kmh(value: float | None) -> float | None:
    if value is None or value <= 0:
        return None
    return round_half_up(value / 1000, 1)


def trip_from_vendor_record(
    record: Mapping[str, Any] | VendorTripRecord,
    device_id: str,
    *,
    now: datetime | None = None,
    utc_offset_hours: int = c.VENDOR_UTC_OFFSET_HOURS,
) -> TripCandidate | None:
    """Convert a vendor trip record, ``None`` if it has no usable start time."""
    now = now or datetime.now(UTC)
    rec = record if isinstance(record, VendorTripRecord) else VendorTripRecord.model_validate(dict(record))

    start = parse_vendor_timestamp(rec.start_time, now=now, utc_offset_hours=utc_offset_hours)
    if start is None:
        _logger.debug("Skipping vendor trip for %s without a start time: %s", device_id, rec.raw)
        return None
    end = parse_vendor_timestamp(rec.end_time, now=now, utc_offset_hours=utc_offset_hours)
    if end is None or end < start:
        end = start

    start_lat, start_lon = _position(rec.start_latitude, rec.start_longitude)
    end_lat, end_lon = _position(rec.end_latitude, rec.end_longitude)
    distance_km = max(0.0, rec.distance_m or 0.0) / 1000

    return TripCandidate(
        device_id=device_id,
        start_time=start,
        end_time=end,
        start_latitude=start_lat,
        start_longitude=start_lon,
        end_latitude=end_lat,
        end_longitude=end_lon,
        distance_km=round_half_up(distance_km, 2),
        duration_seconds=int((end - start).total_seconds()),
        max_speed_kmh=_speed_kmh(rec.max_speed_mph),
        avg_speed_kmh=_speed_kmh(rec.avg_speed_mph),
        source=TripSource.VENDOR,
    )
