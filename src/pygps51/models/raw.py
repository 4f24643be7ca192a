"""Raw GPS51 position report model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pygps51.ingestion.normalize import safe_float, safe_int, safe_str
from pygps51.models._base import Gps51BaseModel


def _parse_status(value: Any) -> int | None:
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text, 0)
        except ValueError:
            return safe_int(text)
    return safe_int(value)


class RawPing(Gps51BaseModel):
    """One position report as received from GPS51.

    Every field is optional. Alternate vendor keys are resolved by the
    priority order of each field's ``AliasChoices``; the first key with a
    usable value wins. Unparseable values become ``None`` rather than
    failing validation.

    Parameters
    ----------
    device_id : str or None
        Tracker identifier (``deviceid``).
    latitude, longitude : float or None
        Position in degrees, corrected coordinates (``callat``/``callon``)
        preferred over the plain ones.
    speed : float or None
        Speed in an ambiguous unit (km/h or m/h).
    status : int or None
        JT808 status bitmask.
    status_text : str or None
        Human-readable status (``strstatus``, then ``strstatusen``).
    moving : int or None
        Vendor moving flag (0/1).
    voltage_percent, voltage, external_voltage : float or None
        Battery signals.
    rxlevel : float or None
        Signal level on a 0–31, 0–99 or 0–100 scale.
    devicetime, gpstime, updatetime, time : Any
        Timestamps, epoch numbers or strings. Parsed by the normalizer.
    """

    device_id: str | None = Field(default=None, validation_alias=AliasChoices("deviceid", "device_id", "deviceId"))
    latitude: float | None = Field(default=None, validation_alias=AliasChoices("callat", "lat", "latitude"))
    longitude: float | None = Field(
        default=None,
        validation_alias=AliasChoices("callon", "lon", "lng", "longitude"),
    )
    speed: float | None = None
    heading: float | None = Field(default=None, validation_alias=AliasChoices("direction", "heading", "course"))
    altitude: float | None = None
    status: int | None = None
    status_text: str | None = Field(default=None, validation_alias=AliasChoices("strstatus", "strstatusen"))
    moving: int | None = None
    voltage_percent: float | None = Field(default=None, validation_alias=AliasChoices("voltagepercent"))
    voltage: float | None = Field(default=None, validation_alias=AliasChoices("voltagev"))
    external_voltage: float | None = Field(default=None, validation_alias=AliasChoices("exvoltage"))
    rxlevel: float | None = None
    devicetime: Any = None
    gpstime: Any = None
    updatetime: Any = None
    time: Any = None
    overspeed_state: int | None = Field(default=None, validation_alias=AliasChoices("currentoverspeedstate"))
    total_distance_m: float | None = Field(default=None, validation_alias=AliasChoices("totaldistance"))

    @field_validator(
        "latitude",
        "longitude",
        "speed",
        "heading",
        "altitude",
        "voltage_percent",
        "voltage",
        "external_voltage",
        "rxlevel",
        "total_distance_m",
        mode="before",
    )
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("moving", "overspeed_state", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> int | None:
        if isinstance(value, bool):
            return int(value)
        return safe_int(value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> int | None:
        return _parse_status(value)

    @field_validator("device_id", "status_text", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> str | None:
        return safe_str(value)
