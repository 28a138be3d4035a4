from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

from peg_reserve_monitor.config.settings import AppConfig
from peg_reserve_monitor.datalake.schemas import HistoricalPricePoint, VenueId
from peg_reserve_monitor.engine.monitor import MonitorEngine
from peg_reserve_monitor.ingestion.base import VenuePriceReader
from peg_reserve_monitor.main import run_loop, run_once
from peg_reserve_monitor.monitoring.event_bus import EventBus
from peg_reserve_monitor.monitoring.metrics import MetricsRegistry


class StaticReader(VenuePriceReader):
    def __init__(self, venue: VenueId, price: Optional[float]) -> None:
        super().__init__(venue)
        self.price = price

    def _fetch_price(self) -> Optional[float]:
        return self.price


class CountingHistory:
    def __init__(self) -> None:
        self.calls: List[int] = []

    def market_chart(self, days: int = 30) -> List[HistoricalPricePoint]:
        self.calls.append(days)
        return [
            HistoricalPricePoint(
                timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
                price=0.999,
                is_depegged=True,
                depeg_bps=10.0,
            )
        ]


def _engine(history: CountingHistory, **sampling: float) -> MonitorEngine:
    values = {
        "live_poll_interval_seconds": 0.01,
        "history_poll_interval_seconds": 0.02,
        "read_timeout_seconds": 0.5,
    }
    values.update(sampling)
    return MonitorEngine(
        {VenueId.CURVE_GHO_CRVUSD: StaticReader(VenueId.CURVE_GHO_CRVUSD, 0.998)},
        history_source=history,
        config=AppConfig(sampling=values),
        event_bus=EventBus(),
        metrics=MetricsRegistry(),
    )


def test_loop_refreshes_history_on_its_own_cadence() -> None:
    history = CountingHistory()
    engine = _engine(history)

    cycles = asyncio.run(run_loop(engine, max_cycles=10))

    assert cycles == 10
    assert engine.last_applied_tick >= 10
    assert len(history.calls) >= 3
    assert engine.history_stats().depeg_percent == 100.0
    assert not engine.running


def test_loop_stops_engine_after_last_cycle() -> None:
    history = CountingHistory()
    engine = _engine(history, history_poll_interval_seconds=60.0)

    asyncio.run(run_loop(engine, max_cycles=2))

    assert not engine.running
    assert history.calls == [30]
    assert engine.get_aggregate_metrics().sample_count >= 2


def test_single_run_polls_once_with_fresh_history() -> None:
    history = CountingHistory()
    engine = _engine(history)

    snapshot = asyncio.run(run_once(engine))

    assert snapshot.sample_count == 1
    assert snapshot.max_depeg_bps == 20.0
    assert history.calls == [30]
    assert not engine.running
