"""Telemetry normalization.

Turns one raw GPS51 position report into a :class:`NormalizedState`. Every
function here is pure and total: malformed or missing input degrades to a
documented fallback (``None`` position, zero speed, ``unknown`` ignition,
"now" timestamp) instead of raising.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pygps51 import _constants as c
from pygps51.ingestion.ignition import detect_ignition
from pygps51.ingestion.normalize import clamp, parse_vendor_timestamp, round_half_up, safe_float
from pygps51.models.battery import DEFAULT_12V_LEAD_ACID, BatteryChemistry, BatteryConfig
from pygps51.models.raw import RawPing
from pygps51.models.state import DataQuality, DetectionMethod, NormalizedState, TimestampSource

_logger = logging.getLogger(__name__)

_BATTERY_CURVE_EXPONENT = 1.5


def normalize_speed(raw_speed: Any) -> float:
    """Convert a vendor speed to km/h.

    Values above 200 are metres/hour. Results under the 3 km/h drift floor
    become 0; results are clamped to 300 and rounded to one decimal.
    """
    speed = safe_float(raw_speed)
    if speed is None or speed <= 0:
        return 0.0

    speed_kmh = speed / 1000.0 if speed > c.SPEED_UNIT_CUTOFF else speed
    if speed_kmh < c.SPEED_NOISE_FLOOR_KMH:
        return 0.0

    result = round_half_up(min(speed_kmh, c.SPEED_MAX_KMH), 1)
    if result > c.SPEED_UNIT_CUTOFF:
        _logger.warning("High normalized speed: raw=%s normalized=%.1fkm/h", raw_speed, result)
    return result


def map_voltage_to_percentage(voltage: float | None, config: BatteryConfig = DEFAULT_12V_LEAD_ACID) -> float | None:
    """Map a battery voltage onto 0–100 for the given chemistry.

    Lead-acid and AGM discharge non-linearly and use ``ratio ** 1.5``;
    lithium is linear.
    """
    if voltage is None or not math.isfinite(voltage) or voltage <= 0:
        return None
    if voltage >= config.max_voltage:
        return 100.0
    if voltage <= config.min_voltage:
        return 0.0

    ratio = (voltage - config.min_voltage) / (config.max_voltage - config.min_voltage)
    if config.chemistry == BatteryChemistry.LITHIUM:
        percentage = ratio * 100.0
    else:
        percentage = ratio**_BATTERY_CURVE_EXPONENT * 100.0
    return clamp(round_half_up(percentage), 0.0, 100.0)


def normalize_battery_level(raw: RawPing, config: BatteryConfig | None = None) -> float | None:
    """Vendor percentage if positive, else mapped voltage, else external voltage."""
    if raw.voltage_percent is not None and raw.voltage_percent > 0:
        return round_half_up(min(raw.voltage_percent, 100.0))

    config = config or DEFAULT_12V_LEAD_ACID
    for voltage in (raw.voltage, raw.external_voltage):
        if voltage is not None and voltage > 0:
            return map_voltage_to_percentage(voltage, config)
    return None


def normalize_signal_strength(rxlevel: Any) -> float | None:
    level = safe_float(rxlevel)
    if level is None:
        return None
    level = max(0.0, level)
    if level <= 31:
        return round_half_up(level / 31 * 100)
    if level <= 99:
        return round_half_up(level / 99 * 100)
    return round_half_up(min(level, 100.0))


def validate_coordinates(lat: float | None, lon: float | None) -> bool:
    if lat is None or lon is None:
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return False
    # Null island is the tracker's "no fix" value, not a position.
    return not (lat == 0 and lon == 0)


def normalize_coordinates(raw: RawPing) -> tuple[float | None, float | None]:
    if not validate_coordinates(raw.latitude, raw.longitude):
        return None, None
    return raw.latitude, raw.longitude


def normalize_timestamp(
    raw: RawPing,
    *,
    now: datetime,
    utc_offset_hours: int = c.VENDOR_UTC_OFFSET_HOURS,
) -> tuple[datetime, TimestampSource]:
    """Pick the freshest trustworthy timestamp and say where it came from.

    Device-side fields (``gpstime``, ``devicetime``) win over server-side
    ones (``updatetime``, ``time``). Implausible values are skipped; when
    nothing is usable the result is *now* with provenance ``server``.
    """
    candidates = (
        (raw.gpstime, TimestampSource.DEVICE),
        (raw.devicetime, TimestampSource.DEVICE),
        (raw.updatetime, TimestampSource.SERVER),
        (raw.time, TimestampSource.SERVER),
    )
    for value, source in candidates:
        parsed = parse_vendor_timestamp(value, now=now, utc_offset_hours=utc_offset_hours)
        if parsed is not None:
            return parsed, source
    if any(value is not None for value, _ in candidates):
        _logger.debug("No plausible timestamp for %s, falling back to now", raw.device_id)
    return now, TimestampSource.SERVER


def calculate_data_quality(state: NormalizedState) -> DataQuality:
    score = 0
    if state.lat is not None and state.lon is not None:
        score += 2
    if state.speed_kmh > 0:
        score += 1
    if state.battery_level is not None:
        score += 1
    if state.ignition_method != DetectionMethod.UNKNOWN:
        score += 1
    if state.signal_strength is not None:
        score += 1

    if score >= 5:
        return DataQuality.HIGH
    if score >= 3:
        return DataQuality.MEDIUM
    return DataQuality.LOW


def normalize_telemetry(
    raw: RawPing | Mapping[str, Any],
    *,
    battery_config: BatteryConfig | None = None,
    offline_threshold_ms: int = c.DEFAULT_OFFLINE_THRESHOLD_MS,
    now: datetime | None = None,
    utc_offset_hours: int = c.VENDOR_UTC_OFFSET_HOURS,
) -> NormalizedState:
    """Normalize one raw position report.

    Parameters
    ----------
    raw : RawPing or mapping
        The vendor record; plain dicts are validated into :class:`RawPing`.
    battery_config : BatteryConfig or None
        Voltage window for voltage-only trackers. Defaults to 12 V lead-acid.
    offline_threshold_ms : int
        Freshness limit for ``is_online``.
    now : datetime or None
        Reference time. Naive values are taken as UTC. Defaults to the
        current time.
    utc_offset_hours : int
        Offset of the vendor's naive timestamp strings.

    Returns
    -------
    NormalizedState
        The canonical snapshot.
    """
    ping = raw if isinstance(raw, RawPing) else RawPing.model_validate(dict(raw))
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    lat, lon = normalize_coordinates(ping)
    speed_kmh = normalize_speed(ping.speed)
    ignition = detect_ignition(ping, speed_kmh)
    last_updated_at, source = normalize_timestamp(ping, now=now, utc_offset_hours=utc_offset_hours)
    gps_fix_time = parse_vendor_timestamp(ping.gpstime, now=now, utc_offset_hours=utc_offset_hours)
    age_ms = (now - last_updated_at).total_seconds() * 1000

    mileage_km: float | None = None
    if ping.total_distance_m is not None and ping.total_distance_m >= 0:
        mileage_km = round_half_up(ping.total_distance_m / 1000, 2)

    state = NormalizedState(
        vehicle_id=ping.device_id or "",
        lat=lat,
        lon=lon,
        speed_kmh=speed_kmh,
        ignition_on=ignition.ignition_on,
        ignition_confidence=ignition.confidence,
        ignition_method=ignition.method,
        is_moving=speed_kmh > c.SPEED_NOISE_FLOOR_KMH or ping.moving == 1,
        battery_level=normalize_battery_level(ping, battery_config),
        signal_strength=normalize_signal_strength(ping.rxlevel),
        heading=ping.heading,
        altitude=ping.altitude,
        is_online=age_ms < offline_threshold_ms,
        last_updated_at=last_updated_at,
        timestamp_source=source,
        gps_fix_time=gps_fix_time,
        is_overspeeding=ping.overspeed_state == 1,
        total_mileage_km=mileage_km,
    )
    return state.model_copy(update={"data_quality": calculate_data_quality(state)})
