"""Periodic background callbacks for the Wi-Fi components."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable


class PeriodicTask:
    """Invoke an async callback every ``interval`` seconds.

    Each tick runs as its own task so a slow tick never delays the timer.  A
    tick that would overlap one still running is skipped, while an explicit
    :meth:`trigger` landing during a running tick is folded into a single
    re-run once that tick finishes.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        interval: float,
        *,
        name: str = "periodic",
        logger: logging.Logger | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self._interval = float(interval)
        self._name = name
        self._logger = logger or logging.getLogger(__name__)
        self._task: asyncio.Task[None] | None = None
        self._tick: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._rerun = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def busy(self) -> bool:
        """Return ``True`` while a tick is executing."""

        return self._tick is not None and not self._tick.done()

    def start(self) -> None:
        """Start the timer; calling it again while running is a no-op."""

        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._task = loop.create_task(self._run(), name=f"{self._name}-timer")

    def trigger(self) -> None:
        """Run a tick now, or right after the current one if it is busy."""

        if self._task is None:
            return
        if self.busy:
            self._rerun = True
            return
        self._spawn_tick()

    def stop(self) -> None:
        """Cancel the timer and any tick in flight without waiting."""

        if self._stop_event is not None:
            self._stop_event.set()
        for task in (self._task, self._tick):
            if task is not None and not task.done():
                task.cancel()
        self._task = None
        self._tick = None
        self._stop_event = None
        self._rerun = False

    async def aclose(self) -> None:
        """Stop the timer and wait for its tasks to unwind."""

        pending = [task for task in (self._task, self._tick) if task is not None]
        self.stop()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self) -> None:
        stop_event = self._stop_event
        assert stop_event is not None
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                if self.busy:
                    self._logger.debug("Skipping %s tick; previous tick still running", self._name)
                    continue
                self._spawn_tick()

    def _spawn_tick(self) -> None:
        loop = asyncio.get_running_loop()
        self._tick = loop.create_task(self._guarded_tick(), name=f"{self._name}-tick")

    async def _guarded_tick(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("%s tick raised an unexpected exception", self._name)
        if self._rerun and self._task is not None:
            self._rerun = False
            self._tick = None
            self._spawn_tick()


__all__ = ["PeriodicTask"]
