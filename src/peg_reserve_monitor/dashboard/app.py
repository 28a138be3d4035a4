"""FastAPI application exposing the monitor's snapshots and reserve analytics."""

from __future__ import annotations

import asyncio
import queue
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from ..datalake.schemas import VenueId
from .state import DashboardState
from .utils import to_serializable

LISTENER_POLL_SECONDS = 1.0


def create_dashboard_app(state: DashboardState, *, manage_engine: bool = False) -> FastAPI:
    """Build the API; with ``manage_engine`` the app lifespan starts and stops polling."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if manage_engine:
            await state.engine.start()
        try:
            yield
        finally:
            if manage_engine:
                await state.engine.stop()

    app = FastAPI(title="Peg Reserve Monitor", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=state.config.dashboard.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def healthcheck() -> Dict[str, Any]:
        snapshot = state.engine.get_aggregate_metrics()
        return {
            "status": "ok",
            "running": state.engine.running,
            "samples": snapshot.sample_count,
            "last_tick": state.engine.last_applied_tick,
        }

    @app.get("/metrics", response_class=PlainTextResponse)
    async def prometheus_metrics() -> str:
        return state.metrics.export_prometheus()

    @app.get("/api/metrics")
    async def api_metrics() -> JSONResponse:
        return JSONResponse(state.metrics_snapshot())

    @app.get("/api/aggregate")
    async def api_aggregate() -> JSONResponse:
        return JSONResponse(state.aggregate())

    @app.get("/api/venues/{venue}")
    async def api_venue(venue: str) -> JSONResponse:
        try:
            venue_id = VenueId(venue.upper())
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown venue {venue}") from exc
        payload = state.venue(venue_id)
        if payload is None:
            raise HTTPException(status_code=404, detail=f"Venue {venue_id.value} is not monitored")
        return JSONResponse(payload)

    @app.get("/api/capacity")
    async def api_capacity(
        tvl: Optional[float] = Query(None, ge=0),
        usdc_weight_pct: Optional[float] = Query(None, ge=0, le=100),
        cycles_per_day: Optional[float] = Query(None, ge=0, le=1000),
        efficiency_pct: Optional[float] = Query(None, ge=0, le=100),
    ) -> JSONResponse:
        return JSONResponse(
            state.capacity(
                tvl=tvl,
                usdc_weight_pct=usdc_weight_pct,
                cycles_per_day=cycles_per_day,
                efficiency_pct=efficiency_pct,
            )
        )

    @app.get("/api/economics")
    async def api_economics(
        spread_bps: Optional[float] = Query(None, ge=0),
        daily_volume: Optional[float] = Query(None, ge=0),
    ) -> JSONResponse:
        return JSONResponse(state.economics(spread_bps=spread_bps, daily_volume=daily_volume))

    @app.get("/api/simulation")
    async def api_simulation(
        daily_volume: Optional[float] = Query(None, ge=0),
        tvl: Optional[float] = Query(None, ge=0),
        cycles_per_day: Optional[float] = Query(None, ge=0, le=1000),
    ) -> JSONResponse:
        return JSONResponse(
            state.simulation(daily_volume=daily_volume, tvl=tvl, cycles_per_day=cycles_per_day)
        )

    @app.get("/api/min-tvl")
    async def api_min_tvl(
        target_daily_volume: float = Query(..., ge=0),
        min_swap_size_needed: float = Query(..., ge=0),
    ) -> JSONResponse:
        return JSONResponse(state.min_tvl(target_daily_volume, min_swap_size_needed))

    @app.get("/api/history")
    async def api_history(points: bool = Query(False)) -> JSONResponse:
        return JSONResponse(state.history(include_points=points))

    @app.get("/api/events")
    async def api_events(limit: int = Query(200, ge=1, le=1000)) -> List[Dict[str, object]]:
        return state.event_history(limit=limit)

    @app.post("/api/config/reserve")
    async def api_update_reserve(changes: Dict[str, Any] = Body(...)) -> JSONResponse:
        try:
            return JSONResponse(state.update_reserve(changes))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @app.post("/api/config/economics")
    async def api_update_economics(changes: Dict[str, Any] = Body(...)) -> JSONResponse:
        try:
            return JSONResponse(state.update_economics(changes))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @app.websocket("/ws/events")
    async def ws_events(websocket: WebSocket) -> None:
        await websocket.accept()
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        listener = state.subscribe_events()
        try:
            while not disconnected.done():
                try:
                    event = await asyncio.to_thread(listener.get, True, LISTENER_POLL_SECONDS)
                except queue.Empty:
                    continue
                await websocket.send_json(event.to_dict())
        except WebSocketDisconnect:
            pass
        finally:
            disconnected.cancel()
            state.remove_listener(listener)

    @app.websocket("/ws/snapshots")
    async def ws_snapshots(websocket: WebSocket) -> None:
        await websocket.accept()
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        snapshots = state.engine.subscribe()
        try:
            while not disconnected.done():
                try:
                    snapshot = await asyncio.wait_for(snapshots.get(), LISTENER_POLL_SECONDS)
                except asyncio.TimeoutError:
                    continue
                await websocket.send_json(to_serializable(snapshot))
        except WebSocketDisconnect:
            pass
        finally:
            disconnected.cancel()
            state.engine.unsubscribe(snapshots)

    return app


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Return once the client closes; inbound messages are ignored."""

    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


__all__ = ["create_dashboard_app"]
