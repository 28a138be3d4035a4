"""Data models shared by the sampling, aggregation, and economics layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from fractions import Fraction
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from ..utils.constants import DEPEG_THRESHOLD_BPS


class VenueId(str, Enum):
    """Price venues polled on every tick."""

    COINGECKO = "COINGECKO"
    CURVE_GHO_CRVUSD = "CURVE_GHO_CRVUSD"
    CURVE_GHO_USDE = "CURVE_GHO_USDE"
    FLUID = "FLUID"


class VenueKind(str, Enum):
    """Off-chain reference aggregators versus on-chain pools."""

    REFERENCE = "reference"
    POOL = "pool"


VENUE_KINDS: Mapping[VenueId, VenueKind] = MappingProxyType(
    {
        VenueId.COINGECKO: VenueKind.REFERENCE,
        VenueId.CURVE_GHO_CRVUSD: VenueKind.POOL,
        VenueId.CURVE_GHO_USDE: VenueKind.POOL,
        VenueId.FLUID: VenueKind.POOL,
    }
)

VENUE_LABELS: Mapping[VenueId, str] = MappingProxyType(
    {
        VenueId.COINGECKO: "CoinGecko",
        VenueId.CURVE_GHO_CRVUSD: "Curve GHO/crvUSD",
        VenueId.CURVE_GHO_USDE: "Curve GHO/USDe",
        VenueId.FLUID: "Fluid Protocol",
    }
)

REFERENCE_VENUES: Tuple[VenueId, ...] = tuple(
    venue for venue, kind in VENUE_KINDS.items() if kind == VenueKind.REFERENCE
)
POOL_VENUES: Tuple[VenueId, ...] = tuple(
    venue for venue, kind in VENUE_KINDS.items() if kind == VenueKind.POOL
)


class PegStatus(str, Enum):
    """Point-in-time classification of a venue price."""

    UNAVAILABLE = "unavailable"
    PEGGED = "pegged"
    DEPEGGED = "depegged"


@dataclass(slots=True, frozen=True)
class PriceObservation:
    """Single venue read; ``price`` is ``None`` when the venue was unavailable."""

    venue: VenueId
    price: Optional[float]
    timestamp: datetime


@dataclass(slots=True, frozen=True)
class Sample:
    """Prices from every venue captured in one polling tick."""

    timestamp: datetime
    prices: Mapping[VenueId, Optional[float]]

    def __post_init__(self) -> None:
        object.__setattr__(self, "prices", MappingProxyType(dict(self.prices)))

    def price(self, venue: VenueId) -> Optional[float]:
        return self.prices.get(venue)

    def observations(self) -> Tuple[PriceObservation, ...]:
        return tuple(
            PriceObservation(venue=venue, price=price, timestamp=self.timestamp)
            for venue, price in self.prices.items()
        )


@dataclass(slots=True, frozen=True)
class Classification:
    status: PegStatus
    depeg_bps: float

    @property
    def is_depegged(self) -> bool:
        return self.status == PegStatus.DEPEGGED


@dataclass(slots=True, frozen=True)
class HistoricalMetrics:
    """Depeg frequency of one venue across the sample window."""

    depegged_samples: int = 0
    total_samples: int = 0
    depeg_percent: float = 0.0
    sample_period_hours: float = 0.0


@dataclass(slots=True, frozen=True)
class VenueMetrics:
    """Live status plus window history for a single venue."""

    venue: VenueId
    price: Optional[float]
    status: PegStatus
    is_depegged: bool
    depeg_bps: float
    historical: HistoricalMetrics = field(default_factory=HistoricalMetrics)


@dataclass(slots=True, frozen=True)
class AggregateMetrics:
    """Cross-venue view recomputed from the whole window on every change."""

    venues: Mapping[VenueId, VenueMetrics]
    any_depegged: bool
    max_depeg_bps: float
    avg_depeg_percent: float
    depegged_venues: Tuple[VenueId, ...]
    sample_count: int
    computed_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "venues", MappingProxyType(dict(self.venues)))

    @property
    def depegged_pools(self) -> Tuple[VenueId, ...]:
        return tuple(venue for venue in self.depegged_venues if VENUE_KINDS[venue] == VenueKind.POOL)

    @property
    def route_open(self) -> bool:
        return self.max_depeg_bps >= DEPEG_THRESHOLD_BPS


@dataclass(slots=True, frozen=True)
class ReserveConfig:
    """Reserve sizing and rebalance cadence. Percentages are 0-100."""

    tvl: float
    usdc_weight_pct: float
    cycles_per_day: float
    efficiency_pct: float


@dataclass(slots=True, frozen=True)
class CapacityResult:
    usdc_buffer: float
    max_single_swap: float
    daily_capacity: float
    hourly_capacity: float


@dataclass(slots=True, frozen=True)
class EconomicsConfig:
    """Share of the protocol-fee portion paid to solvers, 0-100."""

    solver_share_of_protocol_fees_pct: float


@dataclass(slots=True, frozen=True)
class Distribution:
    """Exact fractions of minted IOUs per economic role; they sum to one."""

    trader_share: Fraction
    solver_share: Fraction
    protocol_share: Fraction

    def as_percentages(self) -> Dict[str, float]:
        return {
            "trader": float(self.trader_share * 100),
            "solver": float(self.solver_share * 100),
            "protocol": float(self.protocol_share * 100),
        }


@dataclass(slots=True, frozen=True)
class IOUSplit:
    """IOUs minted for an amount at a spread, split across the three roles."""

    total: Fraction
    trader: Fraction
    solver: Fraction
    protocol: Fraction

    def as_floats(self) -> Dict[str, float]:
        return {
            "total": float(self.total),
            "trader": float(self.trader),
            "solver": float(self.solver),
            "protocol": float(self.protocol),
        }


@dataclass(slots=True, frozen=True)
class SwapTier:
    """Swap-size bucket with its share of trade count and volume (percent)."""

    label: str
    pct_count: float
    pct_volume: float
    avg_size: float


SWAP_DISTRIBUTION: Tuple[SwapTier, ...] = (
    SwapTier(label="<$1k", pct_count=45, pct_volume=0.3, avg_size=500),
    SwapTier(label="$1k-$10k", pct_count=30, pct_volume=3.2, avg_size=5_000),
    SwapTier(label="$10k-$100k", pct_count=20, pct_volume=21.5, avg_size=50_000),
    SwapTier(label="$100k-$1M", pct_count=4, pct_volume=41.3, avg_size=500_000),
    SwapTier(label="$1M+", pct_count=1, pct_volume=33.6, avg_size=2_000_000),
)


@dataclass(slots=True, frozen=True)
class TierProfit:
    tier: SwapTier
    split: IOUSplit


@dataclass(slots=True, frozen=True)
class CoverageResult:
    """Swap tiers a single reserve buffer can fill in one transaction."""

    supported_tiers: Tuple[SwapTier, ...]
    volume_coverage_pct: float
    count_coverage_pct: float


@dataclass(slots=True, frozen=True)
class RouteAvailability:
    depeg_time_percent: float
    active_hours_per_day: float
    active_capacity_per_hour: float


@dataclass(slots=True, frozen=True)
class CapacityPoint:
    """One step of the intraday capacity trajectory."""

    hour: float
    capacity: float
    capacity_pct: float
    cycle_number: int
    rebalanced: bool = False


@dataclass(slots=True, frozen=True)
class HistoricalPricePoint:
    timestamp: datetime
    price: float
    is_depegged: bool
    depeg_bps: float


@dataclass(slots=True, frozen=True)
class HistoricalDepegStats:
    """Depeg statistics over the long-horizon reference price series."""

    depeg_percent: float = 0.0
    avg_depeg_bps: float = 0.0
    max_depeg_bps: float = 0.0
    depegged_hours: int = 0
    total_hours: int = 0
    at_peg_percent: float = 100.0
    active_hours_per_day: float = 0.0


@dataclass(slots=True, frozen=True)
class FeeMatrixRow:
    """Protocol fees at one depeg price across the capacity volume levels."""

    price: float
    spread_bps: float
    fees: Tuple[float, ...]


@dataclass(slots=True, frozen=True)
class EconomicsReport:
    """Everything the solver-facing view derives from one configuration."""

    capacity: CapacityResult
    distribution: Distribution
    live_spread_bps: float
    effective_spread_bps: float
    route_open: bool
    max_daily_fees: float
    profit_by_tier: Tuple[TierProfit, ...]
    daily_volume: float
    daily_split: IOUSplit
    fees_per_cycle: float
    coverage: CoverageResult
    route: RouteAvailability
    capacity_utilisation_pct: float


__all__ = [
    "AggregateMetrics",
    "CapacityPoint",
    "CapacityResult",
    "Classification",
    "CoverageResult",
    "Distribution",
    "EconomicsConfig",
    "EconomicsReport",
    "FeeMatrixRow",
    "HistoricalDepegStats",
    "HistoricalMetrics",
    "HistoricalPricePoint",
    "IOUSplit",
    "PegStatus",
    "POOL_VENUES",
    "PriceObservation",
    "REFERENCE_VENUES",
    "ReserveConfig",
    "RouteAvailability",
    "Sample",
    "SWAP_DISTRIBUTION",
    "SwapTier",
    "TierProfit",
    "VENUE_KINDS",
    "VENUE_LABELS",
    "VenueId",
    "VenueKind",
    "VenueMetrics",
]
