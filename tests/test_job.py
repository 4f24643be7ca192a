from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pygps51._ratelimit import RateLimiter
from pygps51.client import Gps51Client
from pygps51.config import Gps51Config, RateLimitPolicy
from pygps51.credentials import Credentials, StaticCredentialSource, StoredCredentialSource
from pygps51.exceptions import Gps51RequestError, Gps51TokenMissingError
from pygps51.ingestion import job as job_module
from pygps51.ingestion.job import BatchParameters, ClientTrackSource, IngestionJob
from pygps51.models.raw import RawPing
from pygps51.models.state import NormalizedState
from pygps51.models.trip import TrackPoint, TripSource
from pygps51.state.store import InMemoryVehicleStateStore
from pygps51.storage import InMemoryKeyValueStore, InMemorySyncCursorStore, InMemoryTripStore, SyncStatus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
CREDS = Credentials(token="tok-123", serverid="1", username="fleet")


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass
class FakeGps51Backend:
    responses: dict[str, dict[str, Any] | Exception] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def post_action(
        self,
        action: str,
        query: Mapping[str, str],
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        self.calls.append((action, dict(payload)))
        answer = self.responses[action]
        if isinstance(answer, Exception):
            raise answer
        return answer


@dataclass
class FakeHistory:
    points: dict[str, list[TrackPoint]] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    windows: list[tuple[str, datetime, datetime]] = field(default_factory=list)

    async def fetch_points(self, device_id: str, since: datetime, until: datetime) -> list[TrackPoint]:
        self.windows.append((device_id, since, until))
        if device_id in self.failing:
            raise RuntimeError(f"history unavailable for {device_id}")
        return list(self.points.get(device_id, []))


async def _no_sleep(_seconds: float) -> None:
    return None


def _client(backend: FakeGps51Backend) -> Gps51Client:
    limiter = RateLimiter(RateLimitPolicy(), clock=lambda: _ms(NOW), sleep=_no_sleep)
    return Gps51Client(Gps51Config(), transport=backend, rate_limiter=limiter)


def _drive(device_id: str, start: datetime, minutes: int = 10) -> list[TrackPoint]:
    return [
        TrackPoint(
            device_id=device_id,
            latitude=22.0 + i * 0.005,
            longitude=114.0,
            speed_kmh=33.0,
            gps_time=start + timedelta(minutes=i),
        )
        for i in range(minutes + 1)
    ]


def _job(
    client: Gps51Client,
    *,
    history: FakeHistory | None = None,
    trip_store: InMemoryTripStore | None = None,
    cursor_store: InMemorySyncCursorStore | None = None,
    state_store: InMemoryVehicleStateStore | None = None,
) -> IngestionJob:
    return IngestionJob(
        client,
        StaticCredentialSource(CREDS),
        state_store=state_store or InMemoryVehicleStateStore(clock=lambda: NOW),
        trip_store=trip_store or InMemoryTripStore(),
        cursor_store=cursor_store or InMemorySyncCursorStore(),
        history_source=history or FakeHistory(),
        clock=lambda: NOW,
    )


def test_batch_parameters_clamp_lookback() -> None:
    assert BatchParameters().lookback_hours == 2
    assert BatchParameters(lookback_hours=0).lookback_hours == 1
    assert BatchParameters(lookback_hours=10_000).lookback_hours == 720
    assert BatchParameters(lookback_hours="6").lookback == timedelta(hours=6)


@pytest.mark.asyncio
async def test_sync_positions_normalizes_and_upserts() -> None:
    backend = FakeGps51Backend(
        responses={
            "lastposition": {
                "status": 0,
                "records": [
                    {"deviceid": "D1", "callat": 22.5, "callon": 114.0, "speed": 40, "gpstime": _ms(NOW)},
                    {"deviceid": "D2", "callat": 0, "callon": 0, "gpstime": _ms(NOW - timedelta(hours=1))},
                    {"callat": 22.0, "callon": 113.0},
                ],
            }
        }
    )
    states = InMemoryVehicleStateStore(clock=lambda: NOW)

    async with _client(backend) as client:
        report = await _job(client, state_store=states).sync_positions(BatchParameters(device_ids=["D1", "D2"]))

    assert report.ok
    assert report.positions == 2
    assert backend.calls[0][1]["deviceids"] == ["D1", "D2"]
    d1 = await states.get("D1")
    d2 = await states.get("D2")
    assert d1 is not None and d1.state.speed_kmh == 40.0 and d1.state.is_online
    assert d2 is not None and d2.state.lat is None and not d2.state.is_online
    assert report.finished_at == NOW


@pytest.mark.asyncio
async def test_sync_positions_survives_out_of_range_values() -> None:
    backend = FakeGps51Backend(
        responses={
            "lastposition": {
                "status": 0,
                "records": [
                    {"deviceid": "D1", "callat": 22.5, "callon": 114.0, "gpstime": _ms(NOW)},
                    {"deviceid": "D2", "callat": 22.6, "callon": 114.1, "rxlevel": 1e30, "totaldistance": 1e30},
                ],
            }
        }
    )
    states = InMemoryVehicleStateStore(clock=lambda: NOW)

    async with _client(backend) as client:
        report = await _job(client, state_store=states).sync_positions(BatchParameters(device_ids=["D1", "D2"]))

    assert report.ok
    d2 = await states.get("D2")
    assert d2 is not None and d2.state.signal_strength == 100.0
    assert await states.get("D1") is not None


@pytest.mark.asyncio
async def test_sync_positions_isolates_normalization_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    real_normalize = job_module.normalize_telemetry

    def _normalize(ping: RawPing, **kwargs: Any) -> NormalizedState:
        if ping.device_id == "D2":
            raise ArithmeticError("bad reading")
        return real_normalize(ping, **kwargs)

    monkeypatch.setattr(job_module, "normalize_telemetry", _normalize)
    backend = FakeGps51Backend(
        responses={
            "lastposition": {
                "status": 0,
                "records": [
                    {"deviceid": "D2", "callat": 22.6, "callon": 114.1},
                    {"deviceid": "D1", "callat": 22.5, "callon": 114.0, "gpstime": _ms(NOW)},
                ],
            }
        }
    )
    states = InMemoryVehicleStateStore(clock=lambda: NOW)

    async with _client(backend) as client:
        report = await _job(client, state_store=states).sync_positions(BatchParameters(device_ids=["D1", "D2"]))

    assert report.failed_devices == ["D2"]
    assert "bad reading" in (report.results[1].error or "")
    assert report.positions == 1
    assert await states.get("D1") is not None
    assert await states.get("D2") is None


@pytest.mark.asyncio
async def test_sync_positions_lists_devices_when_none_given() -> None:
    backend = FakeGps51Backend(
        responses={
            "querymonitorlist": {"status": 0, "groups": [{"devices": [{"deviceid": "D7"}]}]},
            "lastposition": {"status": 0, "records": []},
        }
    )

    async with _client(backend) as client:
        report = await _job(client).sync_positions()

    assert [action for action, _ in backend.calls] == ["querymonitorlist", "lastposition"]
    assert [r.device_id for r in report.results] == ["D7"]
    assert report.results[0].positions == 0


@pytest.mark.asyncio
async def test_sync_positions_records_failed_chunk() -> None:
    backend = FakeGps51Backend(responses={"lastposition": Gps51RequestError("device not found", code=1)})

    async with _client(backend) as client:
        report = await _job(client).sync_positions(BatchParameters(device_ids=["D1", "D2"]))

    assert report.failed_devices == ["D1", "D2"]
    assert "device not found" in (report.results[0].error or "")


@pytest.mark.asyncio
async def test_missing_credentials_abort_the_run() -> None:
    async with _client(FakeGps51Backend()) as client:
        job = IngestionJob(
            client,
            StoredCredentialSource(InMemoryKeyValueStore()),
            state_store=InMemoryVehicleStateStore(),
            trip_store=InMemoryTripStore(),
            cursor_store=InMemorySyncCursorStore(),
            history_source=FakeHistory(),
        )
        with pytest.raises(Gps51TokenMissingError):
            await job.sync_trips(BatchParameters(device_ids=["D1"]))


@pytest.mark.asyncio
async def test_sync_trips_isolates_device_failures() -> None:
    start = NOW - timedelta(hours=1)
    history = FakeHistory(points={"good": _drive("good", start)}, failing={"bad"})
    trips = InMemoryTripStore()
    cursors = InMemorySyncCursorStore()

    async with _client(FakeGps51Backend()) as client:
        report = await _job(client, history=history, trip_store=trips, cursor_store=cursors).sync_trips(
            BatchParameters(device_ids=["bad", "good"])
        )

    assert report.failed_devices == ["bad"]
    assert report.trips_created == 1
    stored = await trips.list_trips("good")
    assert [t.source for t in stored] == [TripSource.RECONSTRUCTED]

    good_cursor = await cursors.get_cursor("good")
    assert good_cursor is not None
    assert good_cursor.status == SyncStatus.COMPLETED
    assert good_cursor.last_position_processed == start + timedelta(minutes=10)
    assert good_cursor.trips_processed == 1

    bad_cursor = await cursors.get_cursor("bad")
    assert bad_cursor is not None
    assert bad_cursor.status == SyncStatus.ERROR
    assert "history unavailable" in (bad_cursor.error or "")


@pytest.mark.asyncio
async def test_incremental_sync_resumes_from_cursor_and_dedupes() -> None:
    start = NOW - timedelta(hours=1)
    history = FakeHistory(points={"D1": _drive("D1", start)})
    trips = InMemoryTripStore()
    cursors = InMemorySyncCursorStore()
    params = BatchParameters(device_ids=["D1"], lookback_hours=3)

    async with _client(FakeGps51Backend()) as client:
        job = _job(client, history=history, trip_store=trips, cursor_store=cursors)
        first = await job.sync_trips(params)
        second = await job.sync_trips(params)
        resync = await job.sync_trips(params.model_copy(update={"full_resync": True}))

    assert first.trips_created == 1
    assert second.trips_created == 0
    assert second.trips_skipped == 1
    assert resync.trips_skipped == 1
    assert [since for _, since, _ in history.windows] == [
        NOW - timedelta(hours=3),
        start + timedelta(minutes=10),
        NOW - timedelta(hours=3),
    ]
    assert len(await trips.list_trips("D1")) == 1


@pytest.mark.asyncio
async def test_sync_vendor_trips_shares_dedup_with_reconstructed() -> None:
    start = NOW - timedelta(hours=1)
    backend = FakeGps51Backend(
        responses={
            "querytrips": {
                "status": 0,
                "records": [
                    {
                        "starttime": _ms(start + timedelta(seconds=40)),
                        "endtime": _ms(start + timedelta(minutes=10)),
                        "distance": 5560,
                        "maxspeed": 35000,
                    },
                    {
                        "starttime": _ms(start - timedelta(hours=5)),
                        "endtime": _ms(start - timedelta(hours=4)),
                        "distance": 20000,
                    },
                    {"distance": 100},
                ],
            }
        }
    )
    history = FakeHistory(points={"D1": _drive("D1", start)})
    trips = InMemoryTripStore()
    params = BatchParameters(device_ids=["D1"], lookback_hours=12)

    async with _client(backend) as client:
        job = _job(client, history=history, trip_store=trips)
        await job.sync_trips(params)
        report = await job.sync_vendor_trips(params)

    assert report.ok
    assert report.trips_created == 1
    assert report.trips_skipped == 1
    stored = await trips.list_trips("D1")
    assert [t.source for t in stored] == [TripSource.VENDOR, TripSource.RECONSTRUCTED]
    _, payload = backend.calls[0]
    assert payload["deviceid"] == "D1"
    assert payload["timezone"] == 8


@pytest.mark.asyncio
async def test_client_track_source_reads_querytrack() -> None:
    start = NOW - timedelta(hours=1)
    backend = FakeGps51Backend(
        responses={
            "querytrack": {
                "status": 0,
                "records": [
                    {"callat": 22.01, "callon": 114.0, "status": 1, "gpstime": _ms(start + timedelta(minutes=1))},
                    {"callat": 22.0, "callon": 114.0, "status": 1, "gpstime": _ms(start)},
                    {"callat": 0, "callon": 0, "gpstime": _ms(start)},
                ],
            }
        }
    )

    async with _client(backend) as client:
        source = ClientTrackSource(client, StaticCredentialSource(CREDS))
        points = await source.fetch_points("D1", start, NOW)

    assert [p.gps_time for p in points] == [start, start + timedelta(minutes=1)]
    assert all(p.device_id == "D1" and p.ignition_on for p in points)
