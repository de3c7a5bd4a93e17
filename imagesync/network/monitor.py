"""Online/offline detection with edge-triggered change callbacks."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from typing import Awaitable, Callable

from loguru import logger

ConnectivityProbe = Callable[[], Awaitable[bool]]
ConnectivityCallback = Callable[[bool], Awaitable[None] | None]


def tcp_probe(host: str, port: int, *, timeout_seconds: float = 3.0) -> ConnectivityProbe:
    """Build a probe that reports whether a TCP connection to host:port succeeds."""

    async def _probe() -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=max(0.1, float(timeout_seconds)),
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    return _probe


class ConnectivityMonitor:
    """Tracks reachability and fires ``on_change`` only when the state flips.

    Observations come from the polling probe or from ``report()``; repeated
    observations of the same state are ignored.
    """

    def __init__(
        self,
        *,
        probe: ConnectivityProbe | None = None,
        interval_seconds: float = 10.0,
        initially_connected: bool = False,
    ) -> None:
        self.probe = probe
        self.interval_seconds = max(0.05, float(interval_seconds))
        self._connected = bool(initially_connected)
        self._on_change: ConnectivityCallback | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._callback_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_monitoring(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def start_monitoring(self, on_change: ConnectivityCallback) -> None:
        """Register the change callback and start polling. Safe to call repeatedly."""
        self._on_change = on_change
        if self.probe is None or self.is_monitoring:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Connectivity monitoring started interval={self.interval_seconds}s")

    async def stop_monitoring(self) -> None:
        """Stop polling and drop the callback. Safe to call repeatedly."""
        self._on_change = None
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("Connectivity monitoring stopped")
        pending = list(self._callback_tasks)
        for item in pending:
            item.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._callback_tasks.clear()

    def report(self, connected: bool) -> bool:
        """Feed one observation. Returns True when it changed the state."""
        connected = bool(connected)
        if connected == self._connected:
            return False
        self._connected = connected
        logger.info(f"Connectivity changed: {'online' if connected else 'offline'}")
        callback = self._on_change
        if callback is not None:
            self._dispatch(callback, connected)
        return True

    async def check_now(self) -> bool:
        """Run the probe once and apply its result."""
        if self.probe is None:
            return self._connected
        try:
            connected = bool(await self.probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            connected = False
        self.report(connected)
        return connected

    async def _poll_loop(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self.interval_seconds)

    def _dispatch(self, callback: ConnectivityCallback, connected: bool) -> None:
        try:
            result = callback(connected)
        except Exception as e:
            logger.error(f"Connectivity callback failed: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task[None]) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Connectivity callback failed: {error}")
