from __future__ import annotations

import asyncio

import pytest

from imagesync.network.monitor import ConnectivityMonitor
from imagesync.sync.scheduler import SyncScheduler


class _FakeUploads:
    def __init__(self) -> None:
        self.scans = 0
        self.recovered = 0

    async def retry_failed_uploads(self) -> dict[str, int]:
        self.scans += 1
        return {"eligible": 0, "attempted": 0, "succeeded": 0, "failed": 0, "skipped": 0}

    def recover_interrupted(self) -> int:
        self.recovered += 1
        return 2


class _FakeDeletions:
    def __init__(self) -> None:
        self.scans = 0
        self.drained = asyncio.Event()
        self.online_scans = 0
        self.monitor: ConnectivityMonitor | None = None

    async def process_queued_deletions(self) -> dict[str, int]:
        self.scans += 1
        if self.monitor is not None and self.monitor.is_connected:
            self.online_scans += 1
            self.drained.set()
        return {"eligible": 1, "attempted": 0, "succeeded": 0, "failed": 0, "skipped": 0}

    def recover_interrupted(self) -> int:
        return 1


def _scheduler(monitor: ConnectivityMonitor, interval: float = 3600.0):  # type: ignore[no-untyped-def]
    uploads = _FakeUploads()
    deletions = _FakeDeletions()
    deletions.monitor = monitor
    scheduler = SyncScheduler(
        uploads=uploads,  # type: ignore[arg-type]
        deletions=deletions,  # type: ignore[arg-type]
        monitor=monitor,
        interval_seconds=interval,
    )
    return scheduler, uploads, deletions


@pytest.mark.asyncio
async def test_run_once_skips_uploads_while_offline() -> None:
    monitor = ConnectivityMonitor(initially_connected=False)
    scheduler, uploads, deletions = _scheduler(monitor)

    summary = await scheduler.run_once()

    assert summary["online"] is False
    assert summary["uploads"] == {"skipped_offline": True}
    assert summary["scan"] == 1
    assert uploads.scans == 0
    assert deletions.scans == 1

    monitor.report(True)
    online = await scheduler.run_once()
    assert online["online"] is True
    assert online["scan"] == 2
    assert uploads.scans == 1


def test_recover_interrupted_reports_both_queues() -> None:
    scheduler, _, _ = _scheduler(ConnectivityMonitor())
    assert scheduler.recover_interrupted() == {"uploads": 2, "deletions": 1}


@pytest.mark.asyncio
async def test_reconnect_triggers_a_scan() -> None:
    readings = {"online": False}

    async def probe() -> bool:
        return readings["online"]

    monitor = ConnectivityMonitor(probe=probe, interval_seconds=0.05)
    scheduler, uploads, deletions = _scheduler(monitor)

    await scheduler.start()
    try:
        # Startup scan runs offline.
        await asyncio.sleep(0.1)
        assert deletions.online_scans == 0

        readings["online"] = True
        await asyncio.wait_for(deletions.drained.wait(), timeout=2.0)
        assert uploads.scans >= 1
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent() -> None:
    monitor = ConnectivityMonitor(initially_connected=True)
    scheduler, uploads, deletions = _scheduler(monitor)

    await scheduler.start()
    await scheduler.start()
    await asyncio.sleep(0.05)

    assert scheduler.is_running is True
    assert uploads.recovered == 1

    await scheduler.stop()
    await scheduler.stop()

    assert scheduler.is_running is False
    assert monitor.is_monitoring is False
    assert deletions.scans == 1
