from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pygps51.models.raw import RawPing
from pygps51.models.trip import TrackPoint, TripSource
from pygps51.trips.geo import haversine_km
from pygps51.trips.segmentation import SegmentationConfig, segment_trips, track_points_from_raw

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)
# About 0.56 km per step; one step per minute is ~33 km/h.
LAT_STEP = 0.005


def _point(
    minute: float,
    lat: float,
    *,
    lon: float = 114.0,
    speed: float = 0.0,
    ignition: bool | None = None,
    device_id: str = "D1",
) -> TrackPoint:
    return TrackPoint(
        device_id=device_id,
        latitude=lat,
        longitude=lon,
        speed_kmh=speed,
        gps_time=T0 + timedelta(minutes=minute),
        ignition_on=ignition,
    )


def _drive(
    start_minute: int,
    minutes: int,
    start_lat: float,
    *,
    ignition: bool | None = None,
    device_id: str = "D1",
) -> list[TrackPoint]:
    return [
        _point(start_minute + i, start_lat + i * LAT_STEP, speed=33.0, ignition=ignition, device_id=device_id)
        for i in range(minutes + 1)
    ]


def _park(
    start_minute: int,
    minutes: int,
    lat: float,
    *,
    ignition: bool | None = None,
    device_id: str = "D1",
) -> list[TrackPoint]:
    return [_point(start_minute + i, lat, ignition=ignition, device_id=device_id) for i in range(minutes)]


def _two_bursts(stop_minutes: int, device_id: str = "D1") -> list[TrackPoint]:
    first = _drive(0, 10, 22.0, device_id=device_id)
    stop_lat = first[-1].latitude
    stop = _park(11, stop_minutes, stop_lat, device_id=device_id)
    second = _drive(11 + stop_minutes, 10, stop_lat, device_id=device_id)
    return first + stop + second


def test_short_stop_keeps_one_trip() -> None:
    trips = segment_trips(_two_bursts(4))

    assert len(trips) == 1
    assert trips[0].start_time == T0
    assert trips[0].source == TripSource.RECONSTRUCTED


def test_long_stop_splits_trip() -> None:
    trips = segment_trips(_two_bursts(10))

    assert len(trips) == 2
    first, second = trips
    assert first.start_time == T0
    # One arrival point after the last movement.
    assert first.end_time == T0 + timedelta(minutes=11)
    assert first.distance_km == pytest.approx(10 * haversine_km(22.0, 114.0, 22.0 + LAT_STEP, 114.0), abs=0.02)
    assert second.start_time > first.end_time


def test_stop_duration_is_configurable() -> None:
    points = _two_bursts(4)

    assert len(segment_trips(points)) == 1
    assert len(segment_trips(points, SegmentationConfig(stop_duration=timedelta(minutes=2)))) == 2


def test_three_minute_stop_depends_on_stop_threshold() -> None:
    points = _two_bursts(3)

    merged = segment_trips(points, SegmentationConfig(stop_duration=timedelta(minutes=5)))
    split = segment_trips(points, SegmentationConfig(stop_duration=timedelta(minutes=2)))

    assert len(merged) == 1
    assert merged[0].start_time == T0
    assert len(split) == 2
    assert split[0].end_time < split[1].start_time


def test_vehicles_are_segmented_independently() -> None:
    fleet = {"D1": _two_bursts(3, "D1"), "D2": _two_bursts(10, "D2")}

    trips = {device_id: segment_trips(points) for device_id, points in fleet.items()}

    assert len(trips["D1"]) == 1
    assert len(trips["D2"]) == 2
    assert {t.device_id for t in trips["D1"]} == {"D1"}
    assert {t.device_id for t in trips["D2"]} == {"D2"}


def test_jitter_below_distance_floor_is_dropped() -> None:
    points = [_point(i, 22.0 + i * 0.0001, speed=20.0) for i in range(4)]

    assert segment_trips(points) == []


def test_single_point_yields_nothing() -> None:
    assert segment_trips([_point(0, 22.0, speed=40.0)]) == []
    assert segment_trips([]) == []


def test_gps_jump_is_excluded_from_distance() -> None:
    points = _drive(0, 5, 22.0)
    jump = _point(2.5, 23.0, speed=33.0)
    trips = segment_trips([*points, jump])

    assert len(trips) == 1
    step = haversine_km(22.0, 114.0, 22.0 + LAT_STEP, 114.0)
    # Steps into and out of the jump are both ignored.
    assert trips[0].distance_km == pytest.approx(4 * step, abs=0.02)
    assert trips[0].max_speed_kmh is not None
    assert trips[0].max_speed_kmh < 200


def test_long_gap_splits_trip() -> None:
    first = _drive(0, 5, 22.0)
    second = _drive(45, 5, first[-1].latitude)

    trips = segment_trips(first + second)

    assert len(trips) == 2
    assert trips[0].end_time == T0 + timedelta(minutes=5)
    assert trips[1].start_time == T0 + timedelta(minutes=45)


def test_ignition_mode_follows_acc_runs() -> None:
    first = _drive(0, 5, 22.0, ignition=True)
    parked = _park(6, 3, first[-1].latitude, ignition=False)
    second = _drive(9, 5, first[-1].latitude, ignition=True)

    trips = segment_trips(first + parked + second)

    assert len(trips) == 2
    assert trips[0].start_time == T0
    assert trips[0].end_time == T0 + timedelta(minutes=5)
    assert trips[1].start_time == T0 + timedelta(minutes=9)


def test_ignition_mode_points_without_reading_inherit_state() -> None:
    points = _drive(0, 6, 22.0, ignition=True)
    unknown = [p.model_copy(update={"ignition_on": None}) for p in points[2:5]]
    trips = segment_trips([*points[:2], *unknown, *points[5:]])

    assert len(trips) == 1
    assert trips[0].end_time == T0 + timedelta(minutes=6)


def test_ignition_mode_keeps_idling_inside_trip() -> None:
    first = _drive(0, 5, 22.0, ignition=True)
    idle = _park(6, 10, first[-1].latitude, ignition=True)
    second = _drive(16, 5, first[-1].latitude, ignition=True)

    assert len(segment_trips(first + idle + second)) == 1


def test_input_order_does_not_matter() -> None:
    points = _two_bursts(10)

    assert segment_trips(list(reversed(points))) == segment_trips(points)


def test_mixed_devices_rejected() -> None:
    points = [_point(0, 22.0, speed=30.0), _point(1, 22.01, speed=30.0, device_id="D2")]

    with pytest.raises(ValueError):
        segment_trips(points)


def test_track_points_from_raw_carries_vendor_acc_reading() -> None:
    now = T0 + timedelta(hours=1)
    pings = [
        {"deviceid": "D1", "callat": 22.0, "callon": 114.0, "status": 1, "gpstime": int(T0.timestamp() * 1000)},
        {
            "deviceid": "D1",
            "callat": 0,
            "callon": 0,
            "status": 1,
            "gpstime": int((T0 + timedelta(minutes=1)).timestamp() * 1000),
        },
        {
            "deviceid": "D1",
            "callat": 22.01,
            "callon": 114.0,
            "status": 0,
            "speed": 35,
            "moving": 1,
            "gpstime": int((T0 + timedelta(minutes=2)).timestamp() * 1000),
        },
    ]

    points = track_points_from_raw(pings, now=now)

    assert [p.gps_time for p in points] == [T0, T0 + timedelta(minutes=2)]
    assert [p.ignition_on for p in points] == [True, False]
    assert points[1].speed_kmh == 35.0


def _raw_record(minute: int, lat: float, *, speed: float, status: int) -> dict[str, object]:
    return {
        "deviceid": "D1",
        "callat": lat,
        "callon": 114.0,
        "speed": speed,
        "status": status,
        "gpstime": int((T0 + timedelta(minutes=minute)).timestamp() * 1000),
    }


def test_segment_trips_accepts_raw_pings() -> None:
    driving = [_raw_record(i, 22.0 + i * LAT_STEP, speed=33.0, status=1) for i in range(11)]
    parked = [_raw_record(11 + i, 22.0 + 10 * LAT_STEP, speed=0.0, status=0) for i in range(3)]
    pings = [RawPing.model_validate(driving[0]), *driving[1:], *parked]

    trips = segment_trips(pings, now=T0 + timedelta(hours=1))

    assert len(trips) == 1
    assert trips[0].device_id == "D1"
    assert trips[0].start_time == T0
    assert trips[0].distance_km == pytest.approx(10 * haversine_km(22.0, 114.0, 22.0 + LAT_STEP, 114.0), abs=0.02)
    assert trips == segment_trips(track_points_from_raw(pings, now=T0 + timedelta(hours=1)))


def test_segment_trips_rejects_unknown_items() -> None:
    with pytest.raises(TypeError):
        segment_trips([_point(0, 22.0, speed=30.0), ("D1", 22.0, 114.0)])
