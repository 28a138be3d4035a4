"""Soak test harness: poll every venue repeatedly and summarise tick latency."""

from __future__ import annotations

import argparse
import asyncio
import statistics
import time
from datetime import timedelta
from typing import List

from peg_reserve_monitor.main import build_engine
from peg_reserve_monitor.monitoring.logger import get_logger
from peg_reserve_monitor.monitoring.metrics import METRICS
from peg_reserve_monitor.utils.constants import utc_now

logger = get_logger(__name__)


async def soak_test(minutes: int, *, pause_seconds: float = 2.0) -> None:
    """Run live ticks back to back for the requested duration."""

    engine = build_engine(with_history=False)
    deadline = utc_now() + timedelta(minutes=minutes)
    durations: List[float] = []
    iterations = 0
    while utc_now() < deadline:
        iterations += 1
        start = time.perf_counter()
        try:
            snapshot = await engine.poll_once()
            durations.append(time.perf_counter() - start)
            logger.info(
                "Soak tick %d: %d samples, max spread %.1f bps",
                iterations,
                snapshot.sample_count,
                snapshot.max_depeg_bps,
            )
        except Exception:  # noqa: BLE001 - soak tests should surface errors but continue
            logger.exception("Soak iteration %d failed", iterations)
        if utc_now() >= deadline:
            break
        await asyncio.sleep(pause_seconds)

    if durations:
        p95 = durations[0] if len(durations) == 1 else statistics.quantiles(durations, n=20)[18]
        logger.info(
            "Soak summary: %d ticks, mean duration %.2fs, p95 %.2fs",
            len(durations),
            statistics.mean(durations),
            p95,
        )
    else:
        logger.warning("Soak test finished without successful ticks")

    logger.info("Final metrics snapshot: %s", METRICS.snapshot())


def main() -> None:
    parser = argparse.ArgumentParser(description="Poll every venue repeatedly and report tick latency")
    parser.add_argument("--minutes", type=int, default=30, help="Duration of the soak test")
    parser.add_argument("--pause", type=float, default=2.0, help="Delay between ticks")
    args = parser.parse_args()

    asyncio.run(soak_test(args.minutes, pause_seconds=args.pause))


if __name__ == "__main__":
    main()
