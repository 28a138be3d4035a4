from __future__ import annotations

from datetime import datetime, timezone

import pytest

from peg_reserve_monitor.analysis.history import depeg_stats, to_price_points

HOUR_MS = 3_600_000
START_MS = 1_700_000_000_000


def test_price_points_skip_malformed_rows() -> None:
    raw = [
        [START_MS, 0.999],
        ["bad"],
        None,
        [START_MS + HOUR_MS, "not-a-number"],
        (START_MS + 2 * HOUR_MS, 1.0001),
    ]
    points = to_price_points(raw)

    assert len(points) == 2
    assert points[0].timestamp == datetime.fromtimestamp(START_MS / 1000, timezone.utc)
    assert points[0].is_depegged
    assert points[0].depeg_bps == 10.0
    assert not points[1].is_depegged


def test_depeg_stats_over_hourly_series() -> None:
    prices = [1.0, 0.999, 0.998, 1.001]
    points = to_price_points([[START_MS + i * HOUR_MS, price] for i, price in enumerate(prices)])
    stats = depeg_stats(points)

    assert stats.total_hours == 4
    assert stats.depegged_hours == 2
    assert stats.depeg_percent == 50.0
    assert stats.at_peg_percent == 50.0
    assert stats.avg_depeg_bps == pytest.approx(15.0)
    assert stats.max_depeg_bps == 20.0
    assert stats.active_hours_per_day == pytest.approx(12.0)


def test_empty_series() -> None:
    stats = depeg_stats([])
    assert stats.total_hours == 0
    assert stats.at_peg_percent == 100.0
