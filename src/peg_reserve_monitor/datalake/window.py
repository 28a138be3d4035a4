"""Time-bounded rolling buffer of multi-venue samples."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Mapping, Optional, Tuple

from ..utils.constants import utc_now
from .schemas import Sample, VenueId

DEFAULT_HORIZON = timedelta(hours=24)


class SampleWindow:
    """Keeps the samples younger than ``horizon``, oldest first.

    The window is bounded by wall-clock age, not by count. Every append
    stamps the sample with ``clock()`` and evicts expired entries; reads
    only ever see samples younger than the horizon, even when no append
    has happened since they expired.
    """

    def __init__(
        self,
        horizon: timedelta = DEFAULT_HORIZON,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if horizon <= timedelta(0):
            raise ValueError("horizon must be positive")
        self._horizon = horizon
        self._clock = clock
        self._samples: Deque[Sample] = deque()

    @property
    def horizon(self) -> timedelta:
        return self._horizon

    def append(self, prices: Mapping[VenueId, Optional[float]]) -> Sample:
        sample = Sample(timestamp=self._clock(), prices=prices)
        self._samples.append(sample)
        self.evict_older_than(self._horizon)
        return sample

    def evict_older_than(self, horizon: timedelta) -> int:
        """Drop samples whose age reached ``horizon``; return how many were dropped."""

        now = self._clock()
        removed = 0
        while self._samples and self._age(self._samples[0], now) >= horizon:
            self._samples.popleft()
            removed += 1
        return removed

    def query(self) -> Tuple[Sample, ...]:
        now = self._clock()
        return tuple(sample for sample in self._samples if self._age(sample, now) < self._horizon)

    def latest(self) -> Optional[Sample]:
        live = self.query()
        return live[-1] if live else None

    def oldest(self) -> Optional[Sample]:
        live = self.query()
        return live[0] if live else None

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self.query())

    @staticmethod
    def _age(sample: Sample, now: datetime) -> timedelta:
        # A clock stepping backwards yields a negative age; treat it as fresh.
        return max(now - sample.timestamp, timedelta(0))


__all__ = ["SampleWindow", "DEFAULT_HORIZON"]
