"""Monitoring package exports and helpers."""

from __future__ import annotations

from typing import Optional

from ..config.settings import AppConfig, get_app_config
from .alerts import AlertManager
from .event_bus import EVENT_BUS
from .logger import configure_logging
from .metrics import METRICS


def bootstrap_observability(config: Optional[AppConfig] = None) -> AlertManager:
    """Configure logging, then route bus events into metrics and alerts."""

    app_config = config or get_app_config()
    configure_logging(app_config.monitoring)
    manager = AlertManager(app_config.monitoring)
    EVENT_BUS.set_history_size(app_config.monitoring.event_history_size)
    EVENT_BUS.attach_metrics(METRICS)
    EVENT_BUS.attach_alert_manager(manager if manager.has_targets else None)
    return manager


__all__ = ["bootstrap_observability", "EVENT_BUS", "METRICS"]
