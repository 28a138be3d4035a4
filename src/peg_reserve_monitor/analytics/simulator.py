"""Intraday capacity trajectory under steady swap flow and periodic rebalancing.

The protocol-fee portion of the reserve buffer starts full, is drawn down by
an even spread of the daily volume, and is partially restocked at every
rebalance. Rebalance times are snapped to the nearest simulation step so a
cycle length that does not divide the step grid never skips or repeats a
reset; cycles that snap onto the same step collapse into one reset.
"""

from __future__ import annotations

import math
from typing import FrozenSet, Iterator, List

from ..datalake.schemas import CapacityPoint, ReserveConfig
from ..utils.constants import HOURS_PER_DAY, PROTOCOL_FEES_SHARE
from .capacity import reserve_capacity

DEFAULT_STEP_HOURS = 0.25


def rebalance_steps(cycles_per_day: float, step_hours: float, total_steps: int) -> FrozenSet[int]:
    """Step indices (excluding step 0) at which a rebalance lands."""

    if cycles_per_day <= 0 or step_hours <= 0:
        return frozenset()
    hours_per_cycle = HOURS_PER_DAY / cycles_per_day
    steps = set()
    cycle = 1
    while True:
        index = math.floor(cycle * hours_per_cycle / step_hours + 0.5)
        if index > total_steps:
            break
        if index > 0:
            steps.add(index)
        cycle += 1
    return frozenset(steps)


def iter_capacity_evolution(
    config: ReserveConfig,
    daily_volume: float,
    *,
    step_hours: float = DEFAULT_STEP_HOURS,
    horizon_hours: float = HOURS_PER_DAY,
) -> Iterator[CapacityPoint]:
    if step_hours <= 0:
        raise ValueError("step_hours must be positive")
    capacity = reserve_capacity(config)
    efficiency = config.efficiency_pct / 100
    max_protocol_capacity = capacity.usdc_buffer * PROTOCOL_FEES_SHARE
    restock_level = max_protocol_capacity * efficiency
    depletion_per_step = (daily_volume / HOURS_PER_DAY) * step_hours
    total_steps = int(round(horizon_hours / step_hours))
    boundaries = rebalance_steps(config.cycles_per_day, step_hours, total_steps)

    current = max_protocol_capacity
    cycle_number = 0
    for index in range(total_steps + 1):
        rebalanced = index in boundaries
        if rebalanced:
            current = restock_level
            cycle_number += 1
        else:
            current = max(0.0, current - depletion_per_step)
        capacity_pct = (current / capacity.usdc_buffer) * 100 if capacity.usdc_buffer else 0.0
        yield CapacityPoint(
            hour=index * step_hours,
            capacity=current,
            capacity_pct=capacity_pct,
            cycle_number=cycle_number,
            rebalanced=rebalanced,
        )


def simulate_capacity_evolution(
    config: ReserveConfig,
    daily_volume: float,
    *,
    step_hours: float = DEFAULT_STEP_HOURS,
    horizon_hours: float = HOURS_PER_DAY,
) -> List[CapacityPoint]:
    return list(
        iter_capacity_evolution(
            config, daily_volume, step_hours=step_hours, horizon_hours=horizon_hours
        )
    )


__all__ = [
    "DEFAULT_STEP_HOURS",
    "iter_capacity_evolution",
    "rebalance_steps",
    "simulate_capacity_evolution",
]
