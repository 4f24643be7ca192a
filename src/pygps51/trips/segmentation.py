"""Trip segmentation over one vehicle's position history.

Two detectors share one closing routine:

* ignition mode, used when the batch holds at least one ignition-ON
  observation: a trip spans a contiguous run of ignition-ON points;
* movement mode, the fallback: a trip spans movement, and ends once the
  vehicle has been still for longer than the stop duration.

Both also cut a trip at any time gap longer than ``max_gap``.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from itertools import pairwise
from typing import Any

from pygps51 import _constants as c
from pygps51.ingestion.ignition import ignition_reading
from pygps51.ingestion.normalize import round_half_up
from pygps51.ingestion.telemetry import normalize_telemetry
from pygps51.models.raw import RawPing
from pygps51.models.state import NormalizedState
from pygps51.models.trip import TrackPoint, TripCandidate, TripSource
from pygps51.trips.geo import haversine_km

_logger = logging.getLogger(__name__)

SegmentInput = TrackPoint | NormalizedState | RawPing | Mapping[str, Any]


@dataclasses.dataclass(frozen=True)
class SegmentationConfig:
    """Thresholds for trip detection.

    Parameters
    ----------
    moving_speed_kmh : float
        A point faster than this counts as moving (movement mode).
    moving_distance_km : float
        A step longer than this counts as moving even at zero reported speed.
    stop_duration : timedelta
        Stillness longer than this ends a trip (movement mode).
    max_gap : timedelta
        A silence longer than this between two points always ends a trip.
    min_distance_km : float
        Shorter trips are GPS noise and are dropped.
    min_points : int
        Trips with fewer points are dropped.
    max_step_km : float
        A single step longer than this is a GPS jump and is ignored.
    max_valid_speed_kmh : float
        Per-step speed estimates at or above this are ignored.
    """

    moving_speed_kmh: float = 2.0
    moving_distance_km: float = 0.05
    stop_duration: timedelta = timedelta(minutes=5)
    max_gap: timedelta = timedelta(minutes=30)
    min_distance_km: float = 0.1
    min_points: int = 2
    max_step_km: float = c.MAX_STEP_DISTANCE_KM
    max_valid_speed_kmh: float = c.MAX_VALID_SPEED_KMH


def track_points_from_raw(
    pings: Iterable[RawPing | Mapping[str, Any]],
    *,
    now: datetime | None = None,
    utc_offset_hours: int = c.VENDOR_UTC_OFFSET_HOURS,
) -> list[TrackPoint]:
    """Normalize raw pings into chronologically sorted track points.

    Pings without a valid position are dropped. Ignition is the vendor's
    own ACC reading, so a cleared status bit reads as OFF.
    """
    now = now or datetime.now(UTC)
    points: list[TrackPoint] = []
    for item in pings:
        ping = item if isinstance(item, RawPing) else RawPing.model_validate(dict(item))
        state = normalize_telemetry(ping, now=now, utc_offset_hours=utc_offset_hours)
        point = TrackPoint.from_state(state)
        if point is not None:
            points.append(point.model_copy(update={"ignition_on": ignition_reading(ping)}))
    points.sort(key=lambda p: p.gps_time)
    return points


def _as_points(pings: Iterable[SegmentInput], now: datetime | None) -> list[TrackPoint]:
    points: list[TrackPoint] = []
    raw: list[RawPing | Mapping[str, Any]] = []
    for ping in pings:
        if isinstance(ping, TrackPoint):
            points.append(ping)
        elif isinstance(ping, NormalizedState):
            point = TrackPoint.from_state(ping)
            if point is not None:
                points.append(point)
        elif isinstance(ping, (RawPing, Mapping)):
            raw.append(ping)
        else:
            raise TypeError(f"Cannot segment {type(ping).__name__}")
    if raw:
        points.extend(track_points_from_raw(raw, now=now))
    points.sort(key=lambda p: p.gps_time)
    devices = {p.device_id for p in points}
    if len(devices) > 1:
        raise ValueError(f"segment_trips expects one vehicle, got {sorted(devices)}")
    return points


def _step_speed(a: TrackPoint, b: TrackPoint, step_km: float) -> float:
    if b.speed_kmh > 0:
        return b.speed_kmh
    hours = (b.gps_time - a.gps_time).total_seconds() / 3600
    return step_km / hours if hours > 0 else 0.0


def build_trip(points: Sequence[TrackPoint], config: SegmentationConfig) -> TripCandidate | None:
    """Close a delimited segment, or return ``None`` if it is noise."""
    if len(points) < config.min_points:
        return None

    distance = 0.0
    samples: list[float] = []
    for a, b in pairwise(points):
        step = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
        if step > config.max_step_km:
            _logger.debug("Ignoring %.1fkm GPS jump for %s at %s", step, b.device_id, b.gps_time)
            continue
        distance += step
        speed = _step_speed(a, b, step)
        if 0 < speed < config.max_valid_speed_kmh:
            samples.append(speed)

    start, end = points[0], points[-1]
    if distance < config.min_distance_km:
        _logger.debug(
            "Dropping segment for %s at %s: %.3fkm below %.2fkm floor",
            start.device_id,
            start.gps_time,
            distance,
            config.min_distance_km,
        )
        return None

    duration = int((end.gps_time - start.gps_time).total_seconds())
    if duration > 0:
        avg_speed: float | None = distance / (duration / 3600)
    elif samples:
        avg_speed = sum(samples) / len(samples)
    else:
        avg_speed = None

    return TripCandidate(
        device_id=start.device_id,
        start_time=start.gps_time,
        end_time=end.gps_time,
        start_latitude=start.latitude,
        start_longitude=start.longitude,
        end_latitude=end.latitude,
        end_longitude=end.longitude,
        distance_km=round_half_up(distance, 2),
        duration_seconds=duration,
        max_speed_kmh=round_half_up(max(samples), 1) if samples else None,
        avg_speed_kmh=round_half_up(avg_speed, 1) if avg_speed is not None else None,
        source=TripSource.RECONSTRUCTED,
    )


def _segment_by_ignition(points: list[TrackPoint], config: SegmentationConfig) -> list[list[TrackPoint]]:
    segments: list[list[TrackPoint]] = []
    current: list[TrackPoint] | None = None
    ignition = False
    prev: TrackPoint | None = None

    for point in points:
        if current and prev is not None and point.gps_time - prev.gps_time > config.max_gap:
            segments.append(current)
            current = None
        # Points without an ignition reading keep the last known state.
        if point.ignition_on is not None:
            ignition = point.ignition_on

        if current is None:
            if ignition:
                current = [point]
        elif ignition:
            current.append(point)
        else:
            segments.append(current)
            current = None
        prev = point

    if current:
        segments.append(current)
    return segments


def _segment_by_movement(points: list[TrackPoint], config: SegmentationConfig) -> list[list[TrackPoint]]:
    segments: list[list[TrackPoint]] = []
    current: list[TrackPoint] | None = None
    last_moving = 0
    prev: TrackPoint | None = None

    for point in points:
        if prev is not None and point.gps_time - prev.gps_time > config.max_gap:
            if current:
                segments.append(current[: last_moving + 2])
            current = None
            prev = None

        step = 0.0
        if prev is not None:
            step = haversine_km(prev.latitude, prev.longitude, point.latitude, point.longitude)
        moving = point.speed_kmh > config.moving_speed_kmh or (
            config.moving_distance_km < step <= config.max_step_km
        )

        if current is None:
            if moving:
                current = [prev, point] if prev is not None else [point]
                last_moving = len(current) - 1
        elif moving:
            current.append(point)
            last_moving = len(current) - 1
        else:
            current.append(point)
            if point.gps_time - current[last_moving].gps_time > config.stop_duration:
                # Keep one arrival point after the last movement.
                segments.append(current[: last_moving + 2])
                current = None
        prev = point

    if current:
        segments.append(current[: last_moving + 2])
    return segments


def segment_trips(
    pings: Iterable[SegmentInput],
    config: SegmentationConfig | None = None,
    *,
    now: datetime | None = None,
) -> list[TripCandidate]:
    """Reconstruct trips from one vehicle's position history.

    Parameters
    ----------
    pings : iterable of TrackPoint, NormalizedState, RawPing or mapping
        Positions of a single vehicle. Raw pings are normalized the same
        way as :func:`track_points_from_raw`. Sorted by time before use;
        entries without a valid position are skipped.
    config : SegmentationConfig or None
        Detection thresholds.
    now : datetime or None
        Reference time for normalizing raw pings.

    Returns
    -------
    list of TripCandidate
        Surviving trips in chronological order, source ``position_history``.

    Raises
    ------
    ValueError
        If the positions belong to more than one vehicle.
    TypeError
        If an entry is none of the accepted types.
    """
    config = config or SegmentationConfig()
    points = _as_points(pings, now)
    if len(points) < 2:
        return []

    use_ignition = any(p.ignition_on is True for p in points)
    if use_ignition:
        segments = _segment_by_ignition(points, config)
    else:
        segments = _segment_by_movement(points, config)

    trips = [trip for trip in (build_trip(seg, config) for seg in segments) if trip is not None]
    _logger.debug(
        "Segmented %d points for %s (%s mode): %d segments, %d trips",
        len(points),
        points[0].device_id,
        "ignition" if use_ignition else "movement",
        len(segments),
        len(trips),
    )
    return trips
