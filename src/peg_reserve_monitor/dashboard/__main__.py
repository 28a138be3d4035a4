"""Entry point for launching the dashboard server."""

from __future__ import annotations

import argparse

import uvicorn

from ..config.settings import get_app_config
from ..engine.monitor import MonitorEngine
from ..ingestion.venues import build_history_source, build_venue_readers
from ..monitoring import bootstrap_observability
from ..monitoring.event_bus import EVENT_BUS
from ..monitoring.metrics import METRICS
from .app import create_dashboard_app
from .state import DashboardState


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the peg reserve monitor API")
    parser.add_argument("--host", help="Override dashboard host")
    parser.add_argument("--port", type=int, help="Override dashboard port")
    args = parser.parse_args()

    config = get_app_config()
    bootstrap_observability(config)
    engine = MonitorEngine(
        build_venue_readers(config),
        history_source=build_history_source(config),
        config=config,
    )
    state = DashboardState(config=config, engine=engine, metrics=METRICS, event_bus=EVENT_BUS)
    app = create_dashboard_app(state, manage_engine=True)
    host = args.host or config.dashboard.host
    port = args.port or config.dashboard.port
    uvicorn.run(app, host=host, port=port, log_level=config.monitoring.log_level.lower())


if __name__ == "__main__":
    main()
