"""Background driver for upload retries and the deletion queue."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from loguru import logger

from imagesync.network.monitor import ConnectivityMonitor
from imagesync.sync.deletion import DeletionCoordinator
from imagesync.sync.upload import UploadCoordinator


class SyncScheduler:
    """Runs a scan at startup, every ``interval_seconds``, and whenever connectivity returns.

    Scans never overlap. Upload retries are skipped while offline so they do
    not burn attempts against an unreachable gateway.
    """

    def __init__(
        self,
        *,
        uploads: UploadCoordinator,
        deletions: DeletionCoordinator,
        monitor: ConnectivityMonitor,
        interval_seconds: float = 300.0,
    ) -> None:
        self.uploads = uploads
        self.deletions = deletions
        self.monitor = monitor
        self.interval_seconds = max(1.0, float(interval_seconds))
        self._running = False
        self._loop_task: asyncio.Task[None] | None = None
        self._scan_lock = asyncio.Lock()
        self._scans = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.recover_interrupted()
        # Settle the initial state before the callback exists so startup is not a transition.
        await self.monitor.check_now()
        self.monitor.start_monitoring(self._on_connectivity_change)
        self._loop_task = asyncio.create_task(self._scan_loop())
        logger.info(
            f"Sync scheduler started interval={self.interval_seconds}s "
            f"online={self.monitor.is_connected}"
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await self.monitor.stop_monitoring()
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Sync scheduler stopped")

    def recover_interrupted(self) -> dict[str, int]:
        return {
            "uploads": self.uploads.recover_interrupted(),
            "deletions": self.deletions.recover_interrupted(),
        }

    async def run_once(self) -> dict[str, Any]:
        async with self._scan_lock:
            self._scans += 1
            online = self.monitor.is_connected
            if online:
                uploads = await self.uploads.retry_failed_uploads()
            else:
                uploads = {"skipped_offline": True}
            deletions = await self.deletions.process_queued_deletions()
            return {"scan": self._scans, "online": online, "uploads": uploads, "deletions": deletions}

    async def _scan_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Sync scan failed: {e}")
            await asyncio.sleep(self.interval_seconds)

    async def _on_connectivity_change(self, connected: bool) -> None:
        if not connected:
            return
        logger.info("Connectivity restored, draining deletion queue and retrying uploads")
        await self.run_once()
