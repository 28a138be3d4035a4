"""IOU fee economics: role shares, spread policy, and fee projections.

IOU splits are carried as exact fractions so the trader, solver, and
protocol parts always add back up to the minted total.
"""

from __future__ import annotations

from fractions import Fraction
from typing import Iterable, List, Sequence, Tuple, Union

from ..datalake.schemas import (
    SWAP_DISTRIBUTION,
    CapacityResult,
    Distribution,
    EconomicsConfig,
    EconomicsReport,
    FeeMatrixRow,
    IOUSplit,
    ReserveConfig,
    SwapTier,
    TierProfit,
)
from ..utils.constants import (
    BPS_PER_UNIT,
    DEPEG_THRESHOLD_BPS,
    PROTOCOL_FEES_SHARE,
    TRADER_SHARE,
)
from .capacity import capacity_utilisation, reserve_capacity, route_availability, swap_coverage

Number = Union[int, float, Fraction]

_TRADER_SHARE = Fraction(str(TRADER_SHARE))
_PROTOCOL_FEES_SHARE = Fraction(str(PROTOCOL_FEES_SHARE))

FEE_MATRIX_PRICES: Tuple[float, ...] = (
    0.9995,
    0.999,
    0.995,
    0.990,
    0.985,
    0.980,
    0.975,
    0.970,
    0.965,
    0.960,
    0.955,
    0.950,
)
FEE_MATRIX_SPREADS_BPS: Tuple[float, ...] = (5, 10, 50, 100, 150, 200, 250, 300, 350, 400, 450, 500)
FEE_MATRIX_VOLUME_LEVELS: Tuple[float, ...] = (0.0, 0.25, 0.50, 0.75, 1.0)


def distribution(config: EconomicsConfig) -> Distribution:
    solver_of_fees = Fraction(config.solver_share_of_protocol_fees_pct) / 100
    return Distribution(
        trader_share=_TRADER_SHARE,
        solver_share=_PROTOCOL_FEES_SHARE * solver_of_fees,
        protocol_share=_PROTOCOL_FEES_SHARE * (1 - solver_of_fees),
    )


def total_ious(amount: Number, spread_bps: Number) -> Fraction:
    return Fraction(amount) * Fraction(spread_bps) / BPS_PER_UNIT


def split_ious(amount: Number, spread_bps: Number, shares: Distribution) -> IOUSplit:
    total = total_ious(amount, spread_bps)
    return IOUSplit(
        total=total,
        trader=total * shares.trader_share,
        solver=total * shares.solver_share,
        protocol=total * shares.protocol_share,
    )


def effective_spread_bps(live_spread_bps: float) -> float:
    """Spread used for capacity-limited fee projections.

    The route is closed below the threshold, so projections floor there.
    """

    return max(live_spread_bps, DEPEG_THRESHOLD_BPS)


def max_daily_fees(capacity: CapacityResult, live_spread_bps: float) -> float:
    """Protocol-fee IOUs minted if the full daily capacity is swapped."""

    spread = effective_spread_bps(live_spread_bps)
    return capacity.daily_capacity * (spread / BPS_PER_UNIT) * PROTOCOL_FEES_SHARE


def fees_per_cycle(daily_volume: float, cycles_per_day: float, live_spread_bps: float) -> float:
    if cycles_per_day <= 0:
        return 0.0
    volume_per_cycle = daily_volume / cycles_per_day
    return volume_per_cycle * (effective_spread_bps(live_spread_bps) / BPS_PER_UNIT) * PROTOCOL_FEES_SHARE


def profit_by_tier(
    live_spread_bps: float,
    shares: Distribution,
    tiers: Iterable[SwapTier] = SWAP_DISTRIBUTION,
) -> Tuple[TierProfit, ...]:
    """Per-swap IOUs for each size bucket at the live (unfloored) spread."""

    return tuple(
        TierProfit(tier=tier, split=split_ious(tier.avg_size, live_spread_bps, shares))
        for tier in tiers
    )


def daily_split(daily_volume: float, live_spread_bps: float, shares: Distribution) -> IOUSplit:
    return split_ious(daily_volume, live_spread_bps, shares)


def fee_matrix(
    daily_capacity: float,
    *,
    prices: Sequence[float] = FEE_MATRIX_PRICES,
    spreads_bps: Sequence[float] = FEE_MATRIX_SPREADS_BPS,
    volume_levels: Sequence[float] = FEE_MATRIX_VOLUME_LEVELS,
) -> List[FeeMatrixRow]:
    """Protocol fees for each depeg price against fractions of daily capacity."""

    rows: List[FeeMatrixRow] = []
    for price, spread in zip(prices, spreads_bps):
        fees = tuple(
            daily_capacity * level * (spread / BPS_PER_UNIT) * PROTOCOL_FEES_SHARE
            for level in volume_levels
        )
        rows.append(FeeMatrixRow(price=price, spread_bps=float(spread), fees=fees))
    return rows


def build_report(
    reserve: ReserveConfig,
    economics: EconomicsConfig,
    *,
    live_spread_bps: float,
    depeg_time_percent: float,
    daily_volume: float = 0.0,
    tiers: Iterable[SwapTier] = SWAP_DISTRIBUTION,
) -> EconomicsReport:
    tiers = tuple(tiers)
    capacity = reserve_capacity(reserve)
    shares = distribution(economics)
    return EconomicsReport(
        capacity=capacity,
        distribution=shares,
        live_spread_bps=live_spread_bps,
        effective_spread_bps=effective_spread_bps(live_spread_bps),
        route_open=live_spread_bps >= DEPEG_THRESHOLD_BPS,
        max_daily_fees=max_daily_fees(capacity, live_spread_bps),
        profit_by_tier=profit_by_tier(live_spread_bps, shares, tiers),
        daily_volume=daily_volume,
        daily_split=daily_split(daily_volume, live_spread_bps, shares),
        fees_per_cycle=fees_per_cycle(daily_volume, reserve.cycles_per_day, live_spread_bps),
        coverage=swap_coverage(capacity, tiers),
        route=route_availability(capacity, depeg_time_percent),
        capacity_utilisation_pct=capacity_utilisation(daily_volume, capacity),
    )


__all__ = [
    "FEE_MATRIX_PRICES",
    "FEE_MATRIX_SPREADS_BPS",
    "FEE_MATRIX_VOLUME_LEVELS",
    "build_report",
    "daily_split",
    "distribution",
    "effective_spread_bps",
    "fee_matrix",
    "fees_per_cycle",
    "max_daily_fees",
    "profit_by_tier",
    "split_ious",
    "total_ious",
]
