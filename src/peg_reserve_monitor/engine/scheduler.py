"""Periodic asyncio tasks and bounded concurrent venue reads."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from ..datalake.schemas import VenueId
from ..ingestion.base import VenuePriceReader
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS

_LOGGER = get_logger(__name__)

Callback = Callable[[], Awaitable[None]]


class PeriodicTask:
    """Runs ``callback`` every ``interval_seconds`` until stopped.

    The interval is measured from the end of one run to the start of the
    next, so runs of the same task never overlap. A failing run is logged
    and the schedule continues.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callback,
        *,
        run_immediately: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if not self.is_running():
            self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval_seconds)
        while True:
            started = time.perf_counter()
            try:
                await self._callback()
            except Exception:
                self.failures += 1
                METRICS.increment(f"task_failures_{self.name}")
                _LOGGER.exception("Periodic task %s failed", self.name)
            finally:
                self.runs += 1
                METRICS.observe(f"task_seconds_{self.name}", time.perf_counter() - started)
            await asyncio.sleep(self.interval_seconds)


class TaskScheduler:
    """Owns a set of periodic tasks and starts or cancels them together."""

    def __init__(self) -> None:
        self._tasks: Dict[str, PeriodicTask] = {}

    def add(self, task: PeriodicTask) -> PeriodicTask:
        if task.name in self._tasks:
            raise ValueError(f"Task {task.name} already scheduled")
        self._tasks[task.name] = task
        return task

    def get(self, name: str) -> Optional[PeriodicTask]:
        return self._tasks.get(name)

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        for task in self._tasks.values():
            await task.start()

    async def stop(self) -> None:
        await asyncio.gather(*(task.stop() for task in self._tasks.values()))


async def _read_one(reader: VenuePriceReader, timeout: float) -> Optional[float]:
    try:
        return await asyncio.wait_for(asyncio.to_thread(reader.read_price), timeout)
    except asyncio.TimeoutError:
        METRICS.increment(f"venue_read_timeouts_{reader.venue.value.lower()}")
        _LOGGER.warning("Price read for %s timed out after %.1fs", reader.label, timeout)
    except Exception:
        _LOGGER.exception("Price read for %s raised", reader.label)
    return None


async def read_all_venues(
    readers: Mapping[VenueId, VenuePriceReader], timeout: float
) -> Dict[VenueId, Optional[float]]:
    """Read every venue concurrently; a slow or failing venue yields ``None``."""

    venues = list(readers)
    results = await asyncio.gather(*(_read_one(readers[venue], timeout) for venue in venues))
    return dict(zip(venues, results))


__all__ = ["PeriodicTask", "TaskScheduler", "read_all_venues"]
