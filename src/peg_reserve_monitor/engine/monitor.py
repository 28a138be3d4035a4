"""Monitoring engine: polls venues, keeps the sample window and serves snapshots.

Every poll gets a monotonically increasing tick id. Completed ticks are
handed to a single consumer through an ``asyncio.Queue`` and applied in
arrival order; a tick older than the last applied one is discarded, so a
slow read can never overwrite fresher data. All state lives on the event
loop: ``ingest`` and the query methods are not thread-safe.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Set

from ..analysis.aggregator import Aggregator
from ..analysis.history import depeg_stats
from ..analytics import capacity as capacity_model
from ..analytics import economics as economics_model
from ..analytics import simulator
from ..config.settings import (
    AppConfig,
    EconomicsDefaultsConfig,
    ReserveDefaultsConfig,
    get_app_config,
)
from ..datalake.schemas import (
    VENUE_LABELS,
    AggregateMetrics,
    CapacityPoint,
    CapacityResult,
    EconomicsConfig,
    EconomicsReport,
    FeeMatrixRow,
    HistoricalDepegStats,
    HistoricalPricePoint,
    ReserveConfig,
    VenueId,
    VenueMetrics,
)
from ..datalake.window import SampleWindow
from ..ingestion.base import VenuePriceReader
from ..monitoring.event_bus import EVENT_BUS, EventBus, EventSeverity, EventType
from ..monitoring.logger import get_logger, tick_scope
from ..monitoring.metrics import METRICS, MetricsRegistry
from ..utils.constants import utc_now
from .scheduler import PeriodicTask, TaskScheduler, read_all_venues

LIVE_TASK = "live_poll"
HISTORY_TASK = "history_poll"


class HistorySource(Protocol):
    def market_chart(self, days: int = 30) -> List[HistoricalPricePoint]: ...


@dataclass(slots=True, frozen=True)
class TickResult:
    tick_id: int
    started_at: datetime
    prices: Mapping[VenueId, Optional[float]]


class MonitorEngine:
    def __init__(
        self,
        readers: Mapping[VenueId, VenuePriceReader],
        history_source: Optional[HistorySource] = None,
        config: Optional[AppConfig] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        event_bus: EventBus = EVENT_BUS,
        metrics: MetricsRegistry = METRICS,
        subscriber_queue_size: int = 16,
    ) -> None:
        app_config = config or get_app_config()
        self._readers: Dict[VenueId, VenuePriceReader] = dict(readers)
        self._history_source = history_source
        self._sampling = app_config.sampling
        self._simulation = app_config.simulation
        self._clock = clock
        self._events = event_bus
        self._metrics = metrics
        self._logger = get_logger(__name__)

        self._window = SampleWindow(
            timedelta(hours=self._sampling.window_horizon_hours), clock=clock
        )
        self._aggregator = Aggregator(tuple(self._readers) or tuple(VenueId))
        self._reserve_settings: ReserveDefaultsConfig = app_config.reserve
        self._economics_settings: EconomicsDefaultsConfig = app_config.economics

        self._tick_ids = itertools.count(1)
        self._last_applied_tick = 0
        self._results: "asyncio.Queue[TickResult]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._scheduler = TaskScheduler()
        self._subscribers: List["asyncio.Queue[AggregateMetrics]"] = []
        self._subscriber_queue_size = subscriber_queue_size

        self._depegged: Set[VenueId] = set()
        self._unavailable: Set[VenueId] = set()
        self._history_points: List[HistoricalPricePoint] = []
        self._history_stats = HistoricalDepegStats()
        self._snapshot: AggregateMetrics = self._aggregator.aggregate((), self._clock())

    # lifecycle -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        if self.running:
            return
        self._consumer = asyncio.create_task(self._consume(), name="tick-consumer")
        if self._scheduler.get(LIVE_TASK) is None:
            self._scheduler.add(
                PeriodicTask(LIVE_TASK, self._sampling.live_poll_interval_seconds, self._live_tick)
            )
            if self._history_source is not None:
                self._scheduler.add(
                    PeriodicTask(
                        HISTORY_TASK,
                        self._sampling.history_poll_interval_seconds,
                        self.refresh_history,
                    )
                )
        await self._scheduler.start()
        self._logger.info(
            "Monitor started",
            extra={
                "venues": [venue.value for venue in self._readers],
                "poll_interval_seconds": self._sampling.live_poll_interval_seconds,
            },
        )

    async def stop(self) -> None:
        await self._scheduler.stop()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        self._logger.info("Monitor stopped")

    async def _live_tick(self) -> None:
        await self._results.put(await self._collect())

    async def _consume(self) -> None:
        while True:
            result = await self._results.get()
            try:
                self.apply_tick(result)
            except Exception:
                self._metrics.increment("tick_apply_failures")
                self._logger.exception("Failed to apply tick %d", result.tick_id)
                self._events.publish(
                    EventType.TICK_FAILED,
                    {"tick_id": result.tick_id, "message": f"tick {result.tick_id} could not be applied"},
                    severity=EventSeverity.ERROR,
                )
            finally:
                self._results.task_done()

    async def _collect(self) -> TickResult:
        tick_id = next(self._tick_ids)
        started_at = self._clock()
        with tick_scope(tick_id):
            prices = await read_all_venues(self._readers, self._sampling.read_timeout_seconds)
        self._metrics.increment("ticks_collected")
        return TickResult(tick_id=tick_id, started_at=started_at, prices=prices)

    def apply_tick(self, result: TickResult) -> bool:
        with tick_scope(result.tick_id):
            if result.tick_id <= self._last_applied_tick:
                self._metrics.increment("ticks_discarded")
                self._logger.info(
                    "Discarding stale tick %d (last applied %d)",
                    result.tick_id,
                    self._last_applied_tick,
                )
                return False
            self._last_applied_tick = result.tick_id
            self.ingest(result.prices)
            return True

    async def poll_once(self) -> AggregateMetrics:
        """Run one tick end to end and return the resulting snapshot."""

        self.apply_tick(await self._collect())
        return self._snapshot

    async def refresh_history(self) -> HistoricalDepegStats:
        if self._history_source is None:
            return self._history_stats
        points = await asyncio.to_thread(
            self._history_source.market_chart, self._sampling.history_days
        )
        if points:
            self._history_points = list(points)
            self._history_stats = depeg_stats(self._history_points)
            self._metrics.gauge("history_depeg_percent", self._history_stats.depeg_percent)
            self._logger.info(
                "Reference history refreshed: %d points, %.1f%% depegged",
                len(points),
                self._history_stats.depeg_percent,
            )
        else:
            self._logger.warning("Reference history unavailable; keeping previous series")
        return self._history_stats

    # snapshot maintenance ------------------------------------------------

    def ingest(self, prices: Mapping[VenueId, Optional[float]]) -> AggregateMetrics:
        """Append one sample and fully recompute the cached snapshot."""

        self._window.append(prices)
        self._snapshot = self._aggregator.aggregate(self._window.query(), self._clock())
        self._track_transitions(prices)
        self._publish_gauges()
        self._notify(self._snapshot)
        return self._snapshot

    def _track_transitions(self, prices: Mapping[VenueId, Optional[float]]) -> None:
        for venue in self._aggregator.venues:
            price = prices.get(venue)
            label = VENUE_LABELS.get(venue, venue.value)
            if price is None:
                if venue not in self._unavailable:
                    self._unavailable.add(venue)
                    self._events.publish(
                        EventType.VENUE_UNAVAILABLE,
                        {"venue": venue.value, "message": f"{label} returned no price"},
                        severity=EventSeverity.WARNING,
                    )
                continue
            if venue in self._unavailable:
                self._unavailable.discard(venue)
                self._events.publish(EventType.VENUE_RECOVERED, {"venue": venue.value, "price": price})
            metrics = self._snapshot.venues[venue]
            if metrics.is_depegged and venue not in self._depegged:
                self._depegged.add(venue)
                self._events.publish(
                    EventType.DEPEG_STARTED,
                    {
                        "venue": venue.value,
                        "price": price,
                        "depeg_bps": metrics.depeg_bps,
                        "message": f"{label} at {price:.4f} ({metrics.depeg_bps:.1f} bps below peg)",
                    },
                    severity=EventSeverity.WARNING,
                )
            elif not metrics.is_depegged and venue in self._depegged:
                self._depegged.discard(venue)
                self._events.publish(
                    EventType.DEPEG_RECOVERED,
                    {"venue": venue.value, "price": price, "message": f"{label} back at peg"},
                )

    def _publish_gauges(self) -> None:
        snapshot = self._snapshot
        self._metrics.gauge("window_samples", snapshot.sample_count)
        self._metrics.gauge("max_depeg_bps", snapshot.max_depeg_bps)
        self._metrics.gauge("avg_depeg_percent", snapshot.avg_depeg_percent)
        self._metrics.gauge("any_depegged", 1.0 if snapshot.any_depegged else 0.0)
        self._metrics.set_mapping(
            "venue_depeg_bps",
            {venue.value: metrics.depeg_bps for venue, metrics in snapshot.venues.items()},
        )
        self._metrics.set_mapping(
            "venue_price",
            {
                venue.value: metrics.price
                for venue, metrics in snapshot.venues.items()
                if metrics.price is not None
            },
        )

    def _notify(self, snapshot: AggregateMetrics) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                # Slow subscriber: drop its oldest snapshot.
                queue.get_nowait()
            queue.put_nowait(snapshot)

    def subscribe(self) -> "asyncio.Queue[AggregateMetrics]":
        """Queue receiving every new snapshot, starting with the current one."""

        queue: "asyncio.Queue[AggregateMetrics]" = asyncio.Queue(maxsize=self._subscriber_queue_size)
        queue.put_nowait(self._snapshot)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[AggregateMetrics]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # queries ---------------------------------------------------------------

    @property
    def window(self) -> SampleWindow:
        return self._window

    @property
    def last_applied_tick(self) -> int:
        return self._last_applied_tick

    @property
    def reserve_config(self) -> ReserveConfig:
        settings = self._reserve_settings
        return ReserveConfig(
            tvl=settings.tvl,
            usdc_weight_pct=settings.usdc_weight_pct,
            cycles_per_day=settings.cycles_per_day,
            efficiency_pct=settings.efficiency_pct,
        )

    @property
    def economics_config(self) -> EconomicsConfig:
        return EconomicsConfig(
            solver_share_of_protocol_fees_pct=self._economics_settings.solver_share_of_protocol_fees_pct
        )

    @property
    def daily_volume(self) -> float:
        return self._reserve_settings.actual_daily_volume

    def get_aggregate_metrics(self) -> AggregateMetrics:
        return self._snapshot

    def get_venue_metrics(self, venue: VenueId) -> Optional[VenueMetrics]:
        return self._snapshot.venues.get(venue)

    def compute_capacity(self, config: Optional[ReserveConfig] = None) -> CapacityResult:
        return capacity_model.reserve_capacity(config or self.reserve_config)

    def compute_economics(
        self,
        config: Optional[EconomicsConfig] = None,
        spread_bps: Optional[float] = None,
        *,
        reserve: Optional[ReserveConfig] = None,
        daily_volume: Optional[float] = None,
    ) -> EconomicsReport:
        """Economics at ``spread_bps``, defaulting to the widest live pool spread."""

        snapshot = self._snapshot
        return economics_model.build_report(
            reserve or self.reserve_config,
            config or self.economics_config,
            live_spread_bps=snapshot.max_depeg_bps if spread_bps is None else spread_bps,
            depeg_time_percent=snapshot.avg_depeg_percent,
            daily_volume=self.daily_volume if daily_volume is None else daily_volume,
        )

    def economics_report(self) -> EconomicsReport:
        return self.compute_economics()

    def fee_matrix(self, config: Optional[ReserveConfig] = None) -> List[FeeMatrixRow]:
        return economics_model.fee_matrix(self.compute_capacity(config).daily_capacity)

    def simulate_capacity_evolution(
        self,
        config: Optional[ReserveConfig] = None,
        daily_volume: Optional[float] = None,
    ) -> List[CapacityPoint]:
        return simulator.simulate_capacity_evolution(
            config or self.reserve_config,
            self.daily_volume if daily_volume is None else daily_volume,
            step_hours=self._simulation.step_hours,
            horizon_hours=self._simulation.horizon_hours,
        )

    def find_minimum_tvl(self, target_daily_volume: float, min_swap_size_needed: float) -> Optional[float]:
        return capacity_model.find_minimum_tvl(
            target_daily_volume,
            min_swap_size_needed,
            base=self.reserve_config,
            step=self._simulation.tvl_search_step,
            max_tvl=self._simulation.tvl_search_max,
        )

    def history_stats(self) -> HistoricalDepegStats:
        return self._history_stats

    def history_points(self) -> List[HistoricalPricePoint]:
        return list(self._history_points)

    # configuration -------------------------------------------------------

    def update_reserve_config(self, **changes: Any) -> ReserveConfig:
        """Apply reserve overrides; raises ``pydantic.ValidationError`` on bad input."""

        _reject_unknown(ReserveDefaultsConfig, changes)
        merged = {**self._reserve_settings.model_dump(), **changes}
        self._reserve_settings = ReserveDefaultsConfig(**merged)
        self._events.publish(EventType.CONFIG_UPDATED, {"section": "reserve", "changes": changes})
        return self.reserve_config

    def update_economics_config(self, **changes: Any) -> EconomicsConfig:
        _reject_unknown(EconomicsDefaultsConfig, changes)
        merged = {**self._economics_settings.model_dump(), **changes}
        self._economics_settings = EconomicsDefaultsConfig(**merged)
        self._events.publish(EventType.CONFIG_UPDATED, {"section": "economics", "changes": changes})
        return self.economics_config


def _reject_unknown(model: type, changes: Mapping[str, Any]) -> None:
    unknown = sorted(set(changes) - set(model.model_fields))
    if unknown:
        raise ValueError(f"Unknown {model.__name__} fields: {', '.join(unknown)}")


__all__ = ["HISTORY_TASK", "LIVE_TASK", "HistorySource", "MonitorEngine", "TickResult"]
