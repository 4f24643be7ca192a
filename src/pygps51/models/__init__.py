"""Pydantic models for GPS51 payloads and derived records."""

from pygps51.models.battery import (
    DEFAULT_12V_LEAD_ACID,
    DEFAULT_24V_LEAD_ACID,
    DEFAULT_48V_LITHIUM,
    DEFAULT_BATTERY_CONFIGS,
    BatteryChemistry,
    BatteryConfig,
)
from pygps51.models.raw import RawPing
from pygps51.models.state import (
    DataQuality,
    DetectionMethod,
    IgnitionDetection,
    NormalizedState,
    TimestampSource,
)
from pygps51.models.trip import TrackPoint, Trip, TripCandidate, TripSource

__all__ = [
    "DEFAULT_12V_LEAD_ACID",
    "DEFAULT_24V_LEAD_ACID",
    "DEFAULT_48V_LITHIUM",
    "DEFAULT_BATTERY_CONFIGS",
    "BatteryChemistry",
    "BatteryConfig",
    "DataQuality",
    "DetectionMethod",
    "IgnitionDetection",
    "NormalizedState",
    "RawPing",
    "TimestampSource",
    "TrackPoint",
    "Trip",
    "TripCandidate",
    "TripSource",
]
