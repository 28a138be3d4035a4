"""Depeg statistics over the long-horizon reference price series."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Sequence

from ..datalake.schemas import HistoricalDepegStats, HistoricalPricePoint
from ..utils.constants import HOURS_PER_DAY
from .classifier import depeg_bps, is_depegged


def to_price_points(raw: Iterable[Sequence[float]]) -> List[HistoricalPricePoint]:
    """Convert ``[timestamp_ms, price]`` pairs into classified points.

    Malformed rows are skipped.
    """

    points: List[HistoricalPricePoint] = []
    for row in raw:
        if not isinstance(row, (list, tuple)) or len(row) < 2:
            continue
        try:
            timestamp_ms = float(row[0])
            price = float(row[1])
        except (TypeError, ValueError):
            continue
        points.append(
            HistoricalPricePoint(
                timestamp=datetime.fromtimestamp(timestamp_ms / 1000.0, timezone.utc),
                price=price,
                is_depegged=is_depegged(price),
                depeg_bps=depeg_bps(price),
            )
        )
    return points


def depeg_stats(points: Sequence[HistoricalPricePoint]) -> HistoricalDepegStats:
    """Summarise an hourly series; each point stands for one hour."""

    if not points:
        return HistoricalDepegStats()
    depegged = [point for point in points if point.is_depegged]
    total_hours = len(points)
    depeg_percent = (len(depegged) / total_hours) * 100
    avg_bps = sum(point.depeg_bps for point in depegged) / len(depegged) if depegged else 0.0
    max_bps = max((point.depeg_bps for point in depegged), default=0.0)
    return HistoricalDepegStats(
        depeg_percent=depeg_percent,
        avg_depeg_bps=avg_bps,
        max_depeg_bps=max_bps,
        depegged_hours=len(depegged),
        total_hours=total_hours,
        at_peg_percent=100 - depeg_percent,
        active_hours_per_day=HOURS_PER_DAY * (depeg_percent / 100),
    )


__all__ = ["depeg_stats", "to_price_points"]
