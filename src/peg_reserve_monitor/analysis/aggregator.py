"""Per-venue and cross-venue depeg metrics derived from the sample window."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Optional, Sequence, Tuple

from ..datalake.schemas import (
    REFERENCE_VENUES,
    AggregateMetrics,
    HistoricalMetrics,
    Sample,
    VenueId,
    VenueMetrics,
)
from ..utils.constants import SECONDS_PER_HOUR
from .classifier import classify, is_depegged


class Aggregator:
    """Recomputes every metric from scratch for a window snapshot.

    Reference venues (off-chain aggregators) are reported per venue but left
    out of the cross-venue pool figures.
    """

    def __init__(
        self,
        venues: Iterable[VenueId] = tuple(VenueId),
        *,
        reference_venues: Iterable[VenueId] = REFERENCE_VENUES,
    ) -> None:
        self._venues: Tuple[VenueId, ...] = tuple(venues)
        reference = set(reference_venues)
        self._pool_venues: Tuple[VenueId, ...] = tuple(
            venue for venue in self._venues if venue not in reference
        )

    @property
    def venues(self) -> Tuple[VenueId, ...]:
        return self._venues

    @property
    def pool_venues(self) -> Tuple[VenueId, ...]:
        return self._pool_venues

    def historical_metrics(
        self, venue: VenueId, samples: Sequence[Sample], now: datetime
    ) -> HistoricalMetrics:
        depegged = 0
        total = 0
        for sample in samples:
            price = sample.price(venue)
            if price is None:
                continue
            total += 1
            if is_depegged(price):
                depegged += 1
        depeg_percent = (depegged / total) * 100 if total > 0 else 0.0
        return HistoricalMetrics(
            depegged_samples=depegged,
            total_samples=total,
            depeg_percent=depeg_percent,
            sample_period_hours=_sample_period_hours(samples, now),
        )

    def venue_metrics(
        self, venue: VenueId, samples: Sequence[Sample], now: datetime
    ) -> VenueMetrics:
        latest: Optional[float] = samples[-1].price(venue) if samples else None
        classification = classify(latest)
        return VenueMetrics(
            venue=venue,
            price=latest,
            status=classification.status,
            is_depegged=classification.is_depegged,
            depeg_bps=classification.depeg_bps,
            historical=self.historical_metrics(venue, samples, now),
        )

    def aggregate(self, samples: Sequence[Sample], now: datetime) -> AggregateMetrics:
        per_venue: Dict[VenueId, VenueMetrics] = {
            venue: self.venue_metrics(venue, samples, now) for venue in self._venues
        }
        pools = [per_venue[venue] for venue in self._pool_venues]
        positive_bps = [metrics.depeg_bps for metrics in pools if metrics.depeg_bps > 0]
        # Unweighted mean over every pool venue; a venue without samples counts as 0%.
        avg_depeg_percent = (
            sum(metrics.historical.depeg_percent for metrics in pools) / len(pools)
            if pools
            else 0.0
        )
        return AggregateMetrics(
            venues=per_venue,
            any_depegged=any(metrics.is_depegged for metrics in pools),
            max_depeg_bps=max(positive_bps) if positive_bps else 0.0,
            avg_depeg_percent=avg_depeg_percent,
            depegged_venues=tuple(
                venue for venue, metrics in per_venue.items() if metrics.is_depegged
            ),
            sample_count=len(samples),
            computed_at=now,
        )


def _sample_period_hours(samples: Sequence[Sample], now: datetime) -> float:
    if not samples:
        return 0.0
    elapsed = (now - samples[0].timestamp).total_seconds()
    return max(elapsed, 0.0) / SECONDS_PER_HOUR


__all__ = ["Aggregator"]
