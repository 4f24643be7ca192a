#!/usr/bin/env python3
"""Run one GPS51 ingestion batch from the command line.

Logs in with the account from the environment, then syncs the latest
positions and, on request, reconstructed and vendor trips. Stores are
in-memory, so this is a smoke test of the pipeline against the live API
rather than a production runner.

Usage
-----
Set environment variables and run::

    export GPS51_USERNAME="fleet-account"
    export GPS51_PASSWORD="your-password"
    python scripts/run_ingestion.py --trips

Options::

    --device ID          Only process this device (repeatable)
    --lookback-hours N   Trip window when there is no cursor (default: 2)
    --full-resync        Ignore sync cursors
    --trips              Also reconstruct trips from position history
    --vendor-trips       Also import the vendor's trip report
    --json               Output machine-readable JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pygps51 import BatchParameters, BatchReport, Gps51Client, Gps51Config, IngestionJob  # noqa: E402
from pygps51.credentials import StoredCredentialSource  # noqa: E402
from pygps51.state.store import InMemoryVehicleStateStore  # noqa: E402
from pygps51.storage import InMemoryKeyValueStore, InMemorySyncCursorStore, InMemoryTripStore  # noqa: E402


def _report_lines(title: str, report: BatchReport) -> list[str]:
    out = [f"== {title} ==", f"  devices   : {len(report.results)}", f"  failed    : {len(report.failed_devices)}"]
    if report.duration_seconds is not None:
        out.append(f"  duration  : {report.duration_seconds:.1f}s")
    for result in report.results:
        status = "ok" if result.ok else f"FAILED ({result.error})"
        out.append(
            f"  {result.device_id:<18} positions={result.positions:<4} "
            f"created={result.trips_created:<3} skipped={result.trips_skipped:<3} {status}"
        )
    return out


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run one GPS51 ingestion batch.")
    parser.add_argument("--device", action="append", dest="devices", help="Only process this device id")
    parser.add_argument("--lookback-hours", type=int, default=2, help="Trip window without a sync cursor")
    parser.add_argument("--full-resync", action="store_true", help="Ignore sync cursors")
    parser.add_argument("--trips", action="store_true", help="Reconstruct trips from position history")
    parser.add_argument("--vendor-trips", action="store_true", help="Import the vendor trip report")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = Gps51Config.from_env()
    params = BatchParameters(
        lookback_hours=args.lookback_hours,
        device_ids=args.devices,
        full_resync=args.full_resync,
    )
    settings = InMemoryKeyValueStore()
    credentials = StoredCredentialSource(settings)
    reports: dict[str, BatchReport] = {}

    async with Gps51Client(config, rate_limit_store=settings) as client:
        await credentials.save(await client.login())
        job = IngestionJob(
            client,
            credentials,
            state_store=InMemoryVehicleStateStore(),
            trip_store=InMemoryTripStore(),
            cursor_store=InMemorySyncCursorStore(),
        )
        reports["positions"] = await job.sync_positions(params)
        if args.trips:
            reports["trips"] = await job.sync_trips(params)
        if args.vendor_trips:
            reports["vendor_trips"] = await job.sync_vendor_trips(params)

    if args.json_mode:
        result: dict[str, Any] = {name: report.model_dump(mode="json") for name, report in reports.items()}
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        for name, report in reports.items():
            print("\n".join(_report_lines(name, report)))

    return 0 if all(report.ok for report in reports.values()) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
