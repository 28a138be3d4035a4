"""Shared dashboard state: a read-mostly facade over the monitor engine."""

from __future__ import annotations

import queue
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..config.settings import AppConfig
from ..datalake.schemas import VenueId
from ..engine.monitor import MonitorEngine
from ..monitoring.event_bus import EVENT_BUS, EventBus
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS, MetricsRegistry
from .utils import to_serializable


class DashboardState:
    """Serialises engine snapshots and analytics for the HTTP layer."""

    def __init__(
        self,
        *,
        config: AppConfig,
        engine: MonitorEngine,
        metrics: MetricsRegistry = METRICS,
        event_bus: EventBus = EVENT_BUS,
    ) -> None:
        self.config = config
        self.engine = engine
        self.metrics = metrics
        self.event_bus = event_bus
        self._logger = get_logger(__name__)

    def metrics_snapshot(self) -> Dict[str, object]:
        return {"metrics": self.metrics.snapshot(), "running": self.engine.running}

    def aggregate(self) -> Dict[str, Any]:
        return to_serializable(self.engine.get_aggregate_metrics())

    def venue(self, venue: VenueId) -> Optional[Dict[str, Any]]:
        metrics = self.engine.get_venue_metrics(venue)
        return to_serializable(metrics) if metrics is not None else None

    def capacity(self, **overrides: Optional[float]) -> Dict[str, Any]:
        config = self._reserve_with(overrides)
        return {
            "config": to_serializable(config),
            "capacity": to_serializable(self.engine.compute_capacity(config)),
        }

    def economics(
        self, spread_bps: Optional[float] = None, daily_volume: Optional[float] = None
    ) -> Dict[str, Any]:
        report = self.engine.compute_economics(spread_bps=spread_bps, daily_volume=daily_volume)
        payload = to_serializable(report)
        payload["fee_matrix"] = to_serializable(self.engine.fee_matrix())
        return payload

    def simulation(self, daily_volume: Optional[float] = None, **overrides: Optional[float]) -> List[Dict[str, Any]]:
        config = self._reserve_with(overrides)
        return to_serializable(self.engine.simulate_capacity_evolution(config, daily_volume))

    def min_tvl(self, target_daily_volume: float, min_swap_size_needed: float) -> Dict[str, Any]:
        tvl = self.engine.find_minimum_tvl(target_daily_volume, min_swap_size_needed)
        return {
            "target_daily_volume": target_daily_volume,
            "min_swap_size_needed": min_swap_size_needed,
            "found": tvl is not None,
            "tvl": tvl,
        }

    def history(self, include_points: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"stats": to_serializable(self.engine.history_stats())}
        if include_points:
            payload["points"] = to_serializable(self.engine.history_points())
        return payload

    def update_reserve(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        config = self.engine.update_reserve_config(**changes)
        return {"config": to_serializable(config), "daily_volume": self.engine.daily_volume}

    def update_economics(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        return {"config": to_serializable(self.engine.update_economics_config(**changes))}

    def event_history(self, limit: int = 200) -> List[Dict[str, object]]:
        return [event.to_dict() for event in self.event_bus.history(limit)]

    def subscribe_events(self) -> "queue.SimpleQueue":
        return self.event_bus.create_listener()

    def remove_listener(self, listener: "queue.SimpleQueue") -> None:
        self.event_bus.remove_listener(listener)

    def _reserve_with(self, overrides: Dict[str, Optional[float]]):
        provided = {key: value for key, value in overrides.items() if value is not None}
        return replace(self.engine.reserve_config, **provided)


__all__ = ["DashboardState"]
