"""Contract shared by every venue price reader."""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple, Type

import requests

from ..datalake.schemas import VENUE_LABELS, VenueId
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS


class VenuePriceReader(ABC):
    """Reads the USD price of one unit of the monitored asset at a venue.

    ``read_price`` never raises for transport or decoding failures; it logs
    them and returns ``None`` so the tick records the venue as unavailable.
    Subclasses implement ``_fetch_price`` and may widen ``recoverable_errors``.
    """

    recoverable_errors: Tuple[Type[BaseException], ...] = (
        requests.RequestException,
        ValueError,
        KeyError,
        TypeError,
    )

    def __init__(self, venue: VenueId) -> None:
        self.venue = venue
        self._logger = get_logger(f"{__name__}.{venue.value.lower()}")

    @property
    def label(self) -> str:
        return VENUE_LABELS.get(self.venue, self.venue.value)

    def read_price(self) -> Optional[float]:
        started = time.perf_counter()
        try:
            price = self._fetch_price()
        except self.recoverable_errors as exc:
            self._logger.warning("Price read failed for %s: %s", self.label, exc)
            price = None
        finally:
            METRICS.observe(f"venue_read_seconds_{self.venue.value.lower()}", time.perf_counter() - started)
        if price is not None and not math.isfinite(price):
            self._logger.warning("Discarding non-finite price from %s", self.label)
            price = None
        if price is None:
            METRICS.increment(f"venue_read_failures_{self.venue.value.lower()}")
        return price

    @abstractmethod
    def _fetch_price(self) -> Optional[float]:
        """Return the raw price, or ``None`` when the venue has no quote."""


__all__ = ["VenuePriceReader"]
