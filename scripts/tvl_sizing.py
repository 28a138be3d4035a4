"""Print a TVL sizing table: capacity, swap coverage and projected fees per TVL level."""

from __future__ import annotations

import argparse
from dataclasses import replace
from typing import List

from peg_reserve_monitor.analytics.capacity import reserve_capacity, swap_coverage
from peg_reserve_monitor.analytics.economics import max_daily_fees
from peg_reserve_monitor.config.settings import get_app_config
from peg_reserve_monitor.datalake.schemas import ReserveConfig


def _base_config() -> ReserveConfig:
    reserve = get_app_config().reserve
    return ReserveConfig(
        tvl=reserve.tvl,
        usdc_weight_pct=reserve.usdc_weight_pct,
        cycles_per_day=reserve.cycles_per_day,
        efficiency_pct=reserve.efficiency_pct,
    )


def sizing_table(levels: List[float], spread_bps: float) -> List[str]:
    base = _base_config()
    lines = [f"{'TVL':>14} {'buffer':>14} {'daily cap':>16} {'vol cov %':>10} {'max fees/day':>14}"]
    for tvl in levels:
        capacity = reserve_capacity(replace(base, tvl=tvl))
        coverage = swap_coverage(capacity)
        fees = max_daily_fees(capacity, spread_bps)
        lines.append(
            f"{tvl:>14,.0f} {capacity.usdc_buffer:>14,.0f} {capacity.daily_capacity:>16,.0f} "
            f"{coverage.volume_coverage_pct:>10.1f} {fees:>14,.2f}"
        )
    return lines


def main() -> None:
    parser = argparse.ArgumentParser(description="Tabulate reserve capacity across TVL levels")
    parser.add_argument(
        "--levels",
        type=float,
        nargs="+",
        default=[100_000, 250_000, 500_000, 1_000_000, 2_500_000, 5_000_000],
        help="TVL levels to evaluate",
    )
    parser.add_argument("--spread-bps", type=float, default=10.0, help="Spread used for fee projection")
    args = parser.parse_args()
    for line in sizing_table(args.levels, args.spread_bps):
        print(line)


if __name__ == "__main__":
    main()
