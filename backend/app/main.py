from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.routers import market, portfolio, system
from app.services.activity_stream import set_ws_manager
from app.services.database import get_supabase
from app.services.market_engine import MarketEngine
from app.services.portfolio_repository import portfolio_repo
from app.ws_manager import CHANNELS, WSManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.getLogger("app").setLevel(settings.log_level.upper())
    ws_manager = WSManager()
    if get_supabase() is None:
        portfolio_repo.seed_watchlist(settings.default_watchlist)
    engine = MarketEngine(settings, ws_manager, repository=portfolio_repo)

    app.state.settings = settings
    app.state.ws_manager = ws_manager
    app.state.engine = engine
    set_ws_manager(ws_manager)

    if settings.market_engine_autostart:
        try:
            await engine.start()
        except Exception:
            logger.exception("Failed to start market engine")

    try:
        yield
    finally:
        try:
            await engine.shutdown()
        except Exception:
            logger.exception("Failed to stop market engine")
        set_ws_manager(None)


settings = get_settings()
app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(system.router)
app.include_router(market.router)
app.include_router(portfolio.router)


@app.websocket("/ws/stream")
async def websocket_stream(websocket: WebSocket):
    channels_param = websocket.query_params.get("channels", "market,alerts")
    requested_channels = {channel.strip() for channel in channels_param.split(",") if channel.strip()}
    channels = {channel for channel in requested_channels if channel in CHANNELS} or {"global"}

    manager: WSManager = websocket.app.state.ws_manager
    engine: MarketEngine = websocket.app.state.engine
    await manager.connect(websocket, channels=channels)

    # New subscribers get the current prices without waiting for the next tick.
    await websocket.send_json(
        {
            "channel": "market",
            "type": "market_snapshot",
            **engine.snapshot().model_dump(mode="json"),
        }
    )

    try:
        while True:
            raw = (await websocket.receive_text()).lower().strip()
            if raw in {"ping", "heartbeat"}:
                await websocket.send_json({"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()})
            elif raw in {"visible", "hidden"}:
                await engine.set_visibility(raw == "visible")
                await websocket.send_json({"type": "engine_status", **engine.status().model_dump(mode="json")})
    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception:
        logger.exception("Unhandled websocket stream error")
        await manager.disconnect(websocket)


@app.get("/")
async def root():
    return {"app": settings.app_name, "status": "running"}
