"""Entrypoint for the peg reserve monitor."""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Optional

from .config.settings import get_app_config
from .dashboard.utils import to_serializable
from .datalake.schemas import AggregateMetrics
from .engine.monitor import MonitorEngine
from .ingestion.venues import build_history_source, build_venue_readers
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS

logger = get_logger(__name__)


@contextmanager
def performance_monitor(operation_name: str):
    start_time = time.perf_counter()
    try:
        yield
    finally:
        METRICS.observe(f"{operation_name}_duration_seconds", time.perf_counter() - start_time)
        METRICS.increment(f"{operation_name}_calls_total")


def build_engine(
    *, with_history: bool = True, poll_interval_seconds: Optional[float] = None
) -> MonitorEngine:
    config = get_app_config()
    bootstrap_observability(config)
    if poll_interval_seconds is not None:
        sampling = config.sampling.model_copy(
            update={"live_poll_interval_seconds": poll_interval_seconds}
        )
        config = config.model_copy(update={"sampling": sampling})
    return MonitorEngine(
        build_venue_readers(config),
        history_source=build_history_source(config) if with_history else None,
        config=config,
    )


def log_cycle(engine: MonitorEngine, snapshot: AggregateMetrics, cycle: int) -> None:
    report = engine.economics_report()
    logger.info(
        "Cycle %d: max spread %.1f bps, pools depegged %.1f%% of window, route %s",
        cycle,
        snapshot.max_depeg_bps,
        snapshot.avg_depeg_percent,
        "open" if snapshot.route_open else "closed",
        extra={
            "cycle": cycle,
            "prices": {venue.value: metrics.price for venue, metrics in snapshot.venues.items()},
            "depegged_pools": [venue.value for venue in snapshot.depegged_pools],
            "daily_capacity": report.capacity.daily_capacity,
            "max_daily_fees": report.max_daily_fees,
            "fees_per_cycle": report.fees_per_cycle,
        },
    )


async def run_once(engine: MonitorEngine) -> AggregateMetrics:
    await engine.refresh_history()
    with performance_monitor("poll_cycle"):
        snapshot = await engine.poll_once()
    log_cycle(engine, snapshot, 1)
    return snapshot


async def run_loop(engine: MonitorEngine, max_cycles: Optional[int] = None) -> int:
    """Run the engine's schedulers and log every applied tick.

    Live ticks and history refreshes run on the engine's own periodic tasks;
    this loop only reports snapshots. Returns the number of cycles logged.
    """

    snapshots = engine.subscribe()
    # Drop the pre-start snapshot queued by subscribe.
    snapshots.get_nowait()
    await engine.start()
    cycle = 0
    try:
        while max_cycles is None or cycle < max_cycles:
            snapshot = await snapshots.get()
            cycle += 1
            try:
                log_cycle(engine, snapshot, cycle)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Cycle %d report failed: %s", cycle, exc, extra={"cycle": cycle})
    finally:
        engine.unsubscribe(snapshots)
        await engine.stop()
    return cycle


def report_minimum_tvl(target_daily_volume: float, min_swap_size_needed: float) -> Optional[float]:
    config = get_app_config()
    bootstrap_observability(config)
    engine = MonitorEngine({}, config=config)
    tvl = engine.find_minimum_tvl(target_daily_volume, min_swap_size_needed)
    if tvl is None:
        logger.warning(
            "No TVL up to %.0f supports %.0f/day with %.0f single swaps",
            config.simulation.tvl_search_max,
            target_daily_volume,
            min_swap_size_needed,
        )
    else:
        capacity = engine.compute_capacity(replace(engine.reserve_config, tvl=tvl))
        logger.info(
            "Minimum TVL %.0f",
            tvl,
            extra={"capacity": to_serializable(capacity)},
        )
    return tvl


def main() -> None:
    parser = argparse.ArgumentParser(description="Monitor stablecoin peg venues and size the reserve")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Poll continuously with the supplied interval.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between polls when --loop is enabled (default: sampling.live_poll_interval_seconds)",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Optional limit to the number of loop iterations to execute.",
    )
    parser.add_argument(
        "--no-history",
        action="store_true",
        help="Skip the long-horizon reference price history.",
    )
    parser.add_argument(
        "--min-tvl",
        nargs=2,
        type=float,
        metavar=("TARGET_DAILY_VOLUME", "MIN_SWAP_SIZE"),
        help="Print the smallest TVL meeting both targets and exit.",
    )
    args = parser.parse_args()

    if args.min_tvl:
        tvl = report_minimum_tvl(*args.min_tvl)
        print(json.dumps({"tvl": tvl}))
        return

    engine = build_engine(with_history=not args.no_history, poll_interval_seconds=args.interval)
    if args.loop:
        asyncio.run(run_loop(engine, args.max_cycles))
    else:
        asyncio.run(run_once(engine))


if __name__ == "__main__":
    main()
