from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, List

import pytest
import requests
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from peg_reserve_monitor.config.settings import AppConfig, MonitoringConfig
from peg_reserve_monitor.dashboard import DashboardState, create_dashboard_app
from peg_reserve_monitor.dashboard import app as dashboard_app
from peg_reserve_monitor.datalake.schemas import VenueId
from peg_reserve_monitor.engine.monitor import MonitorEngine
from peg_reserve_monitor.ingestion.base import VenuePriceReader
from peg_reserve_monitor.monitoring.alerts import AlertManager, AlertSeverity
from peg_reserve_monitor.monitoring.event_bus import EventBus, EventSeverity, EventType
from peg_reserve_monitor.monitoring.logger import (
    StructuredFormatter,
    correlation_scope,
    current_correlation_id,
    tick_scope,
)
from peg_reserve_monitor.monitoring.metrics import MetricsRegistry


class FixedReader(VenuePriceReader):
    def __init__(self, venue: VenueId, price: float) -> None:
        super().__init__(venue)
        self.price = price

    def _fetch_price(self) -> float:
        return self.price


class FakeResponse:
    def raise_for_status(self) -> None:
        return None


class RecordingSession:
    def __init__(self, fail: bool = False) -> None:
        self.posts: List[Dict[str, Any]] = []
        self.fail = fail

    def post(self, url: str, json: Dict[str, Any], timeout: float) -> FakeResponse:
        self.posts.append({"url": url, "json": json})
        if self.fail:
            raise requests.ConnectionError("hook down")
        return FakeResponse()


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _alerting_config(**overrides: Any) -> MonitoringConfig:
    values: Dict[str, Any] = {
        "webhook_urls": ["https://hooks.example.com/peg"],
        "slack_webhook_url": "https://hooks.slack.com/services/T000/B000/XXXX",
        "alert_throttle_seconds": 300,
    }
    values.update(overrides)
    return MonitoringConfig(**values)


def test_prometheus_export_prefixes_and_labels() -> None:
    registry = MetricsRegistry()
    registry.increment("events_depeg_started")
    registry.increment("ticks.collected", 2)
    registry.gauge("max_depeg_bps", 12.5)
    registry.set_mapping("venue_price", {"CURVE_GHO_CRVUSD": 0.999, "FLUID": 1.0})
    registry.observe("venue_read_seconds_fluid", 0.2)

    lines = registry.export_prometheus().splitlines()

    assert "# TYPE peg_monitor_events_depeg_started counter" in lines
    assert "peg_monitor_events_depeg_started 1.0" in lines
    assert "peg_monitor_ticks_collected 2.0" in lines
    assert "peg_monitor_max_depeg_bps 12.5" in lines
    assert 'peg_monitor_venue_price{key="CURVE_GHO_CRVUSD"} 0.999' in lines
    assert 'peg_monitor_venue_read_seconds_fluid{quantile="0.5"} 0.2' in lines
    assert "peg_monitor_venue_read_seconds_fluid_count 1.0" in lines

    registry.reset()
    assert registry.export_prometheus() == "\n"


def test_event_bus_fans_out_to_metrics_handlers_and_listeners() -> None:
    bus = EventBus(history_size=2)
    registry = MetricsRegistry()
    bus.attach_metrics(registry)
    received: List[EventType] = []
    bus.subscribe(EventType.DEPEG_STARTED, lambda event: received.append(event.type))
    listener = bus.create_listener()

    bus.publish("depeg_started", {"venue": "FLUID"}, severity=EventSeverity.WARNING)
    bus.publish(EventType.HEALTH, {"message": "heartbeat"})
    bus.publish(EventType.HEALTH, {"message": "heartbeat"})
    assert bus.flush()

    assert received == [EventType.DEPEG_STARTED]
    assert registry.get("events_depeg_started") == 1
    assert registry.get("events_health") == 2
    assert listener.get_nowait().payload == {"venue": "FLUID"}
    assert len(bus.history()) == 2
    with pytest.raises(ValueError):
        bus.publish("not-an-event")


def test_alerts_are_throttled_per_key() -> None:
    session = RecordingSession()
    clock = FakeMonotonic()
    manager = AlertManager(_alerting_config(), session=session, clock=clock)

    assert manager.send("FLUID depegged", severity=AlertSeverity.WARNING, key="depeg:FLUID")
    assert len(session.posts) == 2
    assert session.posts[0]["json"] == {"text": "[WARNING] FLUID depegged"}
    assert session.posts[1]["json"]["severity"] == "warning"

    clock.now = 100.0
    assert not manager.send("FLUID depegged", key="depeg:FLUID")
    assert manager.send("Curve down", key="unavailable:CURVE_GHO_USDE")

    clock.now = 400.0
    assert manager.send("FLUID depegged", key="depeg:FLUID")
    assert len(session.posts) == 6


def test_failed_webhook_is_logged_not_raised() -> None:
    session = RecordingSession(fail=True)
    manager = AlertManager(_alerting_config(slack_webhook_url=None), session=session)
    assert manager.send("venue unavailable")
    assert len(session.posts) == 1
    assert not AlertManager(MonitoringConfig(), session=session).has_targets


def test_event_bus_alerts_on_warning_only() -> None:
    session = RecordingSession()
    bus = EventBus()
    bus.attach_alert_manager(AlertManager(_alerting_config(slack_webhook_url=None), session=session))

    bus.publish(EventType.VENUE_RECOVERED, {"venue": "FLUID"})
    bus.publish(
        EventType.VENUE_UNAVAILABLE,
        {"venue": "FLUID", "message": "Fluid Protocol returned no price"},
        severity=EventSeverity.WARNING,
    )
    assert bus.flush()

    assert len(session.posts) == 1
    assert session.posts[0]["json"]["message"] == "VENUE_UNAVAILABLE: Fluid Protocol returned no price"


def test_structured_formatter_carries_correlation_id() -> None:
    formatter = StructuredFormatter()
    record = logging.LogRecord("peg", logging.INFO, __file__, 1, "tick %d applied", (7,), None)
    record.correlation_id = "tick-7"
    record.venue = "FLUID"

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "tick 7 applied"
    assert payload["service"] == "peg-reserve-monitor"
    assert payload["correlation_id"] == "tick-7"
    assert payload["extra"] == {"venue": "FLUID"}


def test_correlation_scopes_nest() -> None:
    assert current_correlation_id() == "-"
    with correlation_scope("outer"):
        with tick_scope(3):
            assert current_correlation_id() == "tick-3"
        assert current_correlation_id() == "outer"
    assert current_correlation_id() == "-"


def _dashboard() -> DashboardState:
    config = AppConfig(simulation={"tvl_search_step": 1_000.0, "tvl_search_max": 10_000_000.0})
    readers = {
        VenueId.CURVE_GHO_CRVUSD: FixedReader(VenueId.CURVE_GHO_CRVUSD, 0.998),
        VenueId.CURVE_GHO_USDE: FixedReader(VenueId.CURVE_GHO_USDE, 1.0),
    }
    bus = EventBus()
    registry = MetricsRegistry()
    engine = MonitorEngine(readers, config=config, event_bus=bus, metrics=registry)
    asyncio.run(engine.poll_once())
    return DashboardState(config=config, engine=engine, metrics=registry, event_bus=bus)


def test_dashboard_read_endpoints() -> None:
    app = create_dashboard_app(_dashboard())

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            health = (await client.get("/health")).json()
            assert health["status"] == "ok"
            assert health["samples"] == 1
            assert health["last_tick"] == 1

            aggregate = (await client.get("/api/aggregate")).json()
            assert aggregate["max_depeg_bps"] == 20.0
            assert aggregate["depegged_venues"] == ["CURVE_GHO_CRVUSD"]

            venue = await client.get("/api/venues/curve_gho_crvusd")
            assert venue.status_code == 200
            assert venue.json()["status"] == "depegged"
            assert (await client.get("/api/venues/fluid")).status_code == 404
            assert (await client.get("/api/venues/uniswap")).status_code == 404

            capacity = (await client.get("/api/capacity", params={"tvl": 500_000})).json()
            assert capacity["capacity"]["usdc_buffer"] == pytest.approx(400_000)
            assert (await client.get("/api/capacity", params={"usdc_weight_pct": 150})).status_code == 422

            economics = (await client.get("/api/economics")).json()
            assert economics["live_spread_bps"] == 20.0
            assert economics["route_open"] is True
            assert economics["distribution"]["trader_share"] == pytest.approx(0.2)
            assert len(economics["fee_matrix"]) == 12

            simulation = (await client.get("/api/simulation", params={"daily_volume": 1_000_000})).json()
            assert len(simulation) == 97

            min_tvl = (
                await client.get(
                    "/api/min-tvl",
                    params={"target_daily_volume": 2_155_000, "min_swap_size_needed": 0},
                )
            ).json()
            assert min_tvl == {
                "target_daily_volume": 2_155_000,
                "min_swap_size_needed": 0,
                "found": True,
                "tvl": 250_000,
            }

            history = (await client.get("/api/history")).json()
            assert history["stats"]["at_peg_percent"] == 100.0

            metrics_text = (await client.get("/metrics")).text
            assert "peg_monitor_window_samples 1.0" in metrics_text

    asyncio.run(_exercise())


def test_dashboard_config_updates() -> None:
    state = _dashboard()
    app = create_dashboard_app(state)

    async def _exercise() -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            ok = await client.post("/api/config/reserve", json={"tvl": 300_000, "actual_daily_volume": 500_000})
            assert ok.status_code == 200
            assert ok.json()["config"]["tvl"] == 300_000
            assert ok.json()["daily_volume"] == 500_000

            assert (await client.post("/api/config/reserve", json={"usdc_weight_pct": 200})).status_code == 422
            assert (await client.post("/api/config/reserve", json={"leverage": 2})).status_code == 422

            economics = await client.post(
                "/api/config/economics", json={"solver_share_of_protocol_fees_pct": 40}
            )
            assert economics.status_code == 200
            assert economics.json()["config"]["solver_share_of_protocol_fees_pct"] == 40

    asyncio.run(_exercise())

    assert state.engine.reserve_config.tvl == 300_000
    assert state.event_bus.flush()
    events = (ev["type"] for ev in state.event_history())
    assert list(events).count("config_updated") == 2


def _wait_until(condition, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


def test_event_stream_releases_listener_after_client_leaves(monkeypatch) -> None:
    monkeypatch.setattr(dashboard_app, "LISTENER_POLL_SECONDS", 0.05)
    state = _dashboard()
    app = create_dashboard_app(state)

    with TestClient(app) as client:
        with client.websocket_connect("/ws/events") as websocket:
            assert _wait_until(lambda: state.event_bus.listener_count == 1)
            state.event_bus.publish(EventType.HEALTH, {"message": "heartbeat"})
            assert websocket.receive_json()["payload"] == {"message": "heartbeat"}
        assert _wait_until(lambda: state.event_bus.listener_count == 0)


def test_snapshot_stream_unsubscribes_after_client_leaves(monkeypatch) -> None:
    monkeypatch.setattr(dashboard_app, "LISTENER_POLL_SECONDS", 0.05)
    state = _dashboard()
    app = create_dashboard_app(state)

    with TestClient(app) as client:
        with client.websocket_connect("/ws/snapshots") as websocket:
            first = websocket.receive_json()
            assert first["sample_count"] == 1
            assert first["depegged_venues"] == ["CURVE_GHO_CRVUSD"]
            assert state.engine.subscriber_count == 1
        assert _wait_until(lambda: state.engine.subscriber_count == 0)
