"""Reserve capacity model.

All functions are pure. Inputs are taken as given: a negative TVL or a weight
above 100 is the caller's problem and is not clamped here.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Iterable, Optional

from ..datalake.schemas import (
    SWAP_DISTRIBUTION,
    CapacityResult,
    CoverageResult,
    ReserveConfig,
    RouteAvailability,
    SwapTier,
)
from ..utils.constants import HOURS_PER_DAY

DEFAULT_TVL_STEP = 1_000.0
DEFAULT_TVL_MAX = 100_000_000.0


def reserve_capacity(config: ReserveConfig) -> CapacityResult:
    usdc_buffer = config.tvl * (config.usdc_weight_pct / 100)
    daily_capacity = usdc_buffer * config.cycles_per_day * (config.efficiency_pct / 100)
    return CapacityResult(
        usdc_buffer=usdc_buffer,
        max_single_swap=usdc_buffer,
        daily_capacity=daily_capacity,
        hourly_capacity=daily_capacity / HOURS_PER_DAY,
    )


def find_minimum_tvl(
    target_daily_volume: float,
    min_swap_size_needed: float,
    *,
    base: ReserveConfig,
    step: float = DEFAULT_TVL_STEP,
    max_tvl: float = DEFAULT_TVL_MAX,
) -> Optional[float]:
    """Smallest grid-aligned TVL meeting both the volume and single-swap targets.

    The grid runs ``step, 2*step, ...`` up to ``max_tvl``. ``None`` means no
    grid point qualifies.
    """

    if step <= 0 or max_tvl < step:
        return None
    for index in range(1, int(math.floor(max_tvl / step)) + 1):
        tvl = index * step
        capacity = reserve_capacity(replace(base, tvl=tvl))
        if (
            capacity.daily_capacity >= target_daily_volume
            and capacity.max_single_swap >= min_swap_size_needed
        ):
            return tvl
    return None


def swap_coverage(
    capacity: CapacityResult, tiers: Iterable[SwapTier] = SWAP_DISTRIBUTION
) -> CoverageResult:
    supported = tuple(tier for tier in tiers if tier.avg_size <= capacity.max_single_swap)
    return CoverageResult(
        supported_tiers=supported,
        volume_coverage_pct=sum(tier.pct_volume for tier in supported),
        count_coverage_pct=sum(tier.pct_count for tier in supported),
    )


def route_availability(capacity: CapacityResult, depeg_time_percent: float) -> RouteAvailability:
    """Hours per day the route is open, given how often pools sit below the threshold."""

    return RouteAvailability(
        depeg_time_percent=depeg_time_percent,
        active_hours_per_day=HOURS_PER_DAY * (depeg_time_percent / 100),
        active_capacity_per_hour=capacity.hourly_capacity * (depeg_time_percent / 100),
    )


def capacity_utilisation(daily_volume: float, capacity: CapacityResult) -> float:
    if daily_volume <= 0 or capacity.daily_capacity <= 0:
        return 0.0
    return (daily_volume / capacity.daily_capacity) * 100


__all__ = [
    "DEFAULT_TVL_MAX",
    "DEFAULT_TVL_STEP",
    "capacity_utilisation",
    "find_minimum_tvl",
    "reserve_capacity",
    "route_availability",
    "swap_coverage",
]
