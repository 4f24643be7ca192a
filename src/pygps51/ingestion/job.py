"""Periodic ingestion job.

One run fetches, normalizes and stores the latest position of every device,
or reconstructs and persists trips per device. Devices are processed
sequentially so the client's pacing keeps the run under the shared upstream
budget. A failure on one device is recorded in the :class:`BatchReport` and
never aborts the rest of the batch.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pygps51 import _constants as c
from pygps51.client import Gps51Client
from pygps51.credentials import CredentialSource, Credentials
from pygps51.ingestion.telemetry import normalize_telemetry
from pygps51.models.battery import BatteryConfig
from pygps51.models.trip import TrackPoint, TripCandidate
from pygps51.state.store import VehicleStateStore
from pygps51.storage import SyncCursor, SyncCursorStore, SyncStatus, TripStore
from pygps51.trips.dedupe import DedupConfig, TripPersistResult, persist_trips
from pygps51.trips.segmentation import SegmentationConfig, segment_trips, track_points_from_raw
from pygps51.trips.vendor import trip_from_vendor_record

_logger = logging.getLogger(__name__)

#: ``lastposition`` accepts a device list; keep requests reasonably small.
POSITION_CHUNK_SIZE = 50


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BatchParameters(BaseModel):
    """Inputs of one job run.

    Parameters
    ----------
    lookback_hours : int
        Window to process when there is no sync cursor, clamped to 1..720.
    device_ids : list of str or None
        Devices to process; ``None`` means every device on the account.
    full_resync : bool
        Ignore sync cursors and reprocess the whole lookback window.
    """

    model_config = ConfigDict(frozen=True)

    lookback_hours: int = 2
    device_ids: list[str] | None = None
    full_resync: bool = False

    @field_validator("lookback_hours", mode="before")
    @classmethod
    def _clamp_lookback(cls, value: object) -> int:
        try:
            hours = int(value)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return 2
        return max(1, min(c.MAX_LOOKBACK_HOURS, hours))

    @property
    def lookback(self) -> timedelta:
        return timedelta(hours=self.lookback_hours)


class DeviceResult(BaseModel):
    device_id: str
    ok: bool = True
    positions: int = 0
    trips_created: int = 0
    trips_skipped: int = 0
    trips_failed: int = 0
    error: str | None = None


class BatchReport(BaseModel):
    """Per-device outcome of one run."""

    started_at: datetime
    finished_at: datetime | None = None
    results: list[DeviceResult] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed_devices(self) -> list[str]:
        return [r.device_id for r in self.results if not r.ok]

    @property
    def trips_created(self) -> int:
        return sum(r.trips_created for r in self.results)

    @property
    def trips_skipped(self) -> int:
        return sum(r.trips_skipped for r in self.results)

    @property
    def positions(self) -> int:
        return sum(r.positions for r in self.results)

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class PositionHistorySource(Protocol):
    """Provides one device's positions for a time range, oldest first."""

    async def fetch_points(self, device_id: str, since: datetime, until: datetime) -> list[TrackPoint]:
        ...


class ClientTrackSource:
    """:class:`PositionHistorySource` backed by the ``querytrack`` action."""

    def __init__(self, client: Gps51Client, credentials: CredentialSource) -> None:
        self._client = client
        self._credentials = credentials

    async def fetch_points(self, device_id: str, since: datetime, until: datetime) -> list[TrackPoint]:
        creds = await self._credentials.get_valid_token()
        pings = await self._client.query_tracks(creds, device_id, since, until)
        return track_points_from_raw(pings, utc_offset_hours=self._client.config.vendor_utc_offset_hours)


def _chunks(items: Sequence[str], size: int) -> list[Sequence[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _persist_outcome(device_id: str, persisted: TripPersistResult) -> DeviceResult:
    error = None
    if persisted.failed:
        error = "; ".join(f.error for f in persisted.failed)
    return DeviceResult(
        device_id=device_id,
        ok=persisted.ok,
        trips_created=len(persisted.inserted),
        trips_skipped=len(persisted.skipped),
        trips_failed=len(persisted.failed),
        error=error,
    )


class IngestionJob:
    """Entry point for scheduled ingestion runs.

    Usage::

        async with Gps51Client(config) as client:
            job = IngestionJob(client, StoredCredentialSource(kv), state_store=..., trip_store=...)
            report = await job.sync_positions(BatchParameters())
    """

    def __init__(
        self,
        client: Gps51Client,
        credentials: CredentialSource,
        *,
        state_store: VehicleStateStore,
        trip_store: TripStore,
        cursor_store: SyncCursorStore,
        history_source: PositionHistorySource | None = None,
        segmentation: SegmentationConfig | None = None,
        dedup: DedupConfig | None = None,
        battery_config: BatteryConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._state_store = state_store
        self._trip_store = trip_store
        self._cursor_store = cursor_store
        self._history = history_source or ClientTrackSource(client, credentials)
        self._segmentation = segmentation or SegmentationConfig()
        self._dedup = dedup or DedupConfig()
        self._battery_config = battery_config
        self._clock = clock

    async def _device_ids(self, params: BatchParameters, creds: Credentials) -> list[str]:
        if params.device_ids:
            return list(dict.fromkeys(params.device_ids))
        return await self._client.list_devices(creds)

    async def _run_per_device(
        self,
        kind: str,
        device_ids: Sequence[str],
        handler: Callable[[str], Awaitable[DeviceResult]],
        report: BatchReport,
    ) -> BatchReport:
        for device_id in device_ids:
            try:
                result = await handler(device_id)
            except Exception as exc:
                _logger.error("%s sync failed for %s: %s", kind, device_id, exc)
                result = DeviceResult(device_id=device_id, ok=False, error=str(exc))
            report.results.append(result)
        report.finished_at = self._clock()
        _logger.info(
            "%s sync finished: %d devices, %d failed, %d trips created, %d skipped",
            kind,
            len(report.results),
            len(report.failed_devices),
            report.trips_created,
            report.trips_skipped,
        )
        return report

    # ------------------------------------------------------------------
    # Latest positions
    # ------------------------------------------------------------------

    async def sync_positions(self, params: BatchParameters | None = None) -> BatchReport:
        """Fetch, normalize and upsert the latest state of every device.

        Raises
        ------
        Gps51AuthenticationError
            No valid credentials; nothing can be fetched.
        """
        params = params or BatchParameters()
        report = BatchReport(started_at=self._clock())
        creds = await self._credentials.get_valid_token()
        device_ids = await self._device_ids(params, creds)

        for chunk in _chunks(device_ids, POSITION_CHUNK_SIZE):
            try:
                pings = await self._client.fetch_last_positions(creds, chunk)
            except Exception as exc:
                _logger.error("lastposition failed for %d devices: %s", len(chunk), exc)
                report.results.extend(DeviceResult(device_id=d, ok=False, error=str(exc)) for d in chunk)
                continue

            now = self._clock()
            counts: dict[str, int] = dict.fromkeys(chunk, 0)
            errors: dict[str, str] = {}
            for ping in pings:
                try:
                    state = normalize_telemetry(
                        ping,
                        battery_config=self._battery_config,
                        offline_threshold_ms=self._client.config.offline_threshold_ms,
                        now=now,
                        utc_offset_hours=self._client.config.vendor_utc_offset_hours,
                    )
                except Exception as exc:
                    _logger.error("Failed to normalize position for %s: %s", ping.device_id, exc)
                    if ping.device_id:
                        errors[ping.device_id] = f"normalization failed: {exc}"
                        counts.setdefault(ping.device_id, 0)
                    continue
                if not state.vehicle_id:
                    _logger.debug("Skipping position without device id: %s", ping.raw)
                    continue
                try:
                    await self._state_store.upsert(state)
                except Exception as exc:
                    _logger.error("Failed to store state for %s: %s", state.vehicle_id, exc)
                    errors[state.vehicle_id] = f"state upsert failed: {exc}"
                    continue
                counts[state.vehicle_id] = counts.get(state.vehicle_id, 0) + 1

            for device_id, count in counts.items():
                error = errors.get(device_id)
                report.results.append(
                    DeviceResult(device_id=device_id, ok=error is None, positions=count, error=error)
                )

        report.finished_at = self._clock()
        _logger.info(
            "Position sync finished: %d positions for %d devices, %d failed",
            report.positions,
            len(report.results),
            len(report.failed_devices),
        )
        return report

    # ------------------------------------------------------------------
    # Reconstructed trips
    # ------------------------------------------------------------------

    async def _sync_device_trips(self, device_id: str, params: BatchParameters, now: datetime) -> DeviceResult:
        cursor = None if params.full_resync else await self._cursor_store.get_cursor(device_id)
        since = now - params.lookback
        if cursor is not None and cursor.last_position_processed is not None:
            since = cursor.last_position_processed
        previous = cursor.last_position_processed if cursor is not None else None

        await self._cursor_store.set_cursor(
            SyncCursor(
                device_id=device_id,
                last_position_processed=previous,
                status=SyncStatus.PROCESSING,
                updated_at=now,
            )
        )
        try:
            points = await self._history.fetch_points(device_id, since, now)
            candidates = segment_trips(points, self._segmentation)
            persisted = await persist_trips(self._trip_store, candidates, self._dedup)
        except Exception as exc:
            await self._cursor_store.set_cursor(
                SyncCursor(
                    device_id=device_id,
                    last_position_processed=previous,
                    status=SyncStatus.ERROR,
                    error=str(exc),
                    updated_at=self._clock(),
                )
            )
            raise

        result = _persist_outcome(device_id, persisted)
        # Keep the cursor where it was when inserts failed so the next run retries them.
        last_processed = previous
        if points and persisted.ok:
            last_processed = points[-1].gps_time
        await self._cursor_store.set_cursor(
            SyncCursor(
                device_id=device_id,
                last_position_processed=last_processed,
                status=SyncStatus.COMPLETED if persisted.ok else SyncStatus.ERROR,
                trips_processed=len(persisted.inserted),
                error=result.error,
                updated_at=self._clock(),
            )
        )
        _logger.debug(
            "Trip sync for %s: %d points since %s, %d candidates, %d created",
            device_id,
            len(points),
            since,
            len(candidates),
            result.trips_created,
        )
        return result.model_copy(update={"positions": len(points)})

    async def sync_trips(self, params: BatchParameters | None = None) -> BatchReport:
        """Reconstruct trips from position history and persist new ones.

        Incremental runs start at each device's sync cursor; full resyncs
        and devices without a cursor start ``lookback_hours`` ago.
        """
        params = params or BatchParameters()
        now = self._clock()
        report = BatchReport(started_at=now)
        creds = await self._credentials.get_valid_token()
        device_ids = await self._device_ids(params, creds)

        async def handler(device_id: str) -> DeviceResult:
            return await self._sync_device_trips(device_id, params, now)

        return await self._run_per_device("Trip", device_ids, handler, report)

    # ------------------------------------------------------------------
    # Vendor trips
    # ------------------------------------------------------------------

    async def sync_vendor_trips(self, params: BatchParameters | None = None) -> BatchReport:
        """Import the vendor's own trip report under the same dedup rules."""
        params = params or BatchParameters()
        now = self._clock()
        report = BatchReport(started_at=now)
        creds = await self._credentials.get_valid_token()
        device_ids = await self._device_ids(params, creds)
        offset = self._client.config.vendor_utc_offset_hours

        async def handler(device_id: str) -> DeviceResult:
            records = await self._client.query_trips(creds, device_id, now - params.lookback, now)
            candidates: list[TripCandidate] = []
            for record in records:
                trip = trip_from_vendor_record(record, device_id, now=now, utc_offset_hours=offset)
                if trip is not None:
                    candidates.append(trip)
            persisted = await persist_trips(self._trip_store, candidates, self._dedup)
            return _persist_outcome(device_id, persisted)

        return await self._run_per_device("Vendor trip", device_ids, handler, report)
