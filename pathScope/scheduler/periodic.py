"""Cancellable fixed-rate periodic tasks that skip, rather than queue, overruns."""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from pathScope.logging_config import get_logger

logger = get_logger("scheduler")

TickFn = Callable[[], Awaitable[object]]


class PeriodicTask:
    """
    Run `tick` every `interval` seconds until stopped.

    The first tick fires immediately. Each tick runs as its own asyncio task
    so the schedule keeps time while it is in flight; if the previous tick is
    still running when the next one is due, that tick is skipped and counted.
    Exceptions raised by a tick are logged and never end the loop.
    """

    def __init__(self, name: str, interval: float, tick: TickFn) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self._tick = tick
        self._loop_task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self.ticks_started = 0
        self.ticks_completed = 0
        self.ticks_failed = 0
        self.ticks_skipped = 0
        self.last_duration_ms: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info(
            f"Periodic task {self.name} started",
            extra={"task": self.name, "interval": self.interval, "state": "started"},
        )

    async def stop(self) -> None:
        """Cancel the schedule and any in-flight tick, and wait for both."""
        tasks = [t for t in (self._loop_task, self._current) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning(
                    f"Periodic task {self.name} raised while stopping: {exc}",
                    extra={"task": self.name, "error_type": type(exc).__name__},
                )
        self._loop_task = None
        self._current = None
        logger.info(
            f"Periodic task {self.name} stopped",
            extra={
                "task": self.name,
                "state": "stopped",
                "extra_fields": {
                    "ticks_completed": self.ticks_completed,
                    "ticks_skipped": self.ticks_skipped,
                    "ticks_failed": self.ticks_failed,
                },
            },
        )

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_due = loop.time()
        while True:
            if self.busy:
                self.ticks_skipped += 1
                logger.debug(
                    f"Skipping {self.name} tick; previous tick still running",
                    extra={"task": self.name, "skipped": self.ticks_skipped},
                )
            else:
                self._current = asyncio.create_task(self._guarded_tick(), name=f"tick:{self.name}")
            next_due += self.interval
            delay = next_due - loop.time()
            if delay < 0:
                # Fell behind (e.g. a blocked loop); realign instead of bursting
                next_due = loop.time() + self.interval
                delay = self.interval
            await asyncio.sleep(delay)

    async def _guarded_tick(self) -> None:
        self.ticks_started += 1
        start = time.perf_counter()
        try:
            await self._tick()
            self.ticks_completed += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.ticks_failed += 1
            logger.error(
                f"Periodic task {self.name} tick failed: {exc}",
                exc_info=True,
                extra={"task": self.name, "outcome": "error", "error_type": type(exc).__name__},
            )
        finally:
            self.last_duration_ms = round((time.perf_counter() - start) * 1000, 2)

    def stats(self) -> dict:
        return {
            "name": self.name,
            "interval_seconds": self.interval,
            "running": self.running,
            "busy": self.busy,
            "ticks_started": self.ticks_started,
            "ticks_completed": self.ticks_completed,
            "ticks_failed": self.ticks_failed,
            "ticks_skipped": self.ticks_skipped,
            "last_duration_ms": self.last_duration_ms,
        }
