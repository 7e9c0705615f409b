from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from app.schemas import EngineStatus, PriceSnapshot, RefreshRequest, VisibilityRequest
from app.services.engine_logger import get_recent_activity
from app.services.market_engine import MarketEngine

router = APIRouter(prefix="/market", tags=["market"])


def _engine(request: Request) -> MarketEngine:
    return request.app.state.engine


@router.get("/snapshot", response_model=PriceSnapshot)
async def get_snapshot(request: Request):
    return _engine(request).snapshot()


@router.get("/snapshot/{symbol}")
async def get_symbol_price(symbol: str, request: Request):
    engine = _engine(request)
    point = engine.state.get(symbol)
    if point is None:
        raise HTTPException(status_code=404, detail=f"No price for {symbol.upper()} in the current snapshot")
    current = engine.snapshot()
    return {
        "symbol": symbol.strip().upper(),
        **point.model_dump(),
        "is_live": symbol.strip().upper() in current.live_symbols,
        "generated_at": current.generated_at.isoformat(),
    }


@router.get("/status", response_model=EngineStatus)
async def get_status(request: Request):
    return _engine(request).status()


@router.post("/refresh", response_model=PriceSnapshot)
async def refresh(request: Request, payload: RefreshRequest | None = None):
    engine = _engine(request)
    if not engine.running:
        raise HTTPException(status_code=409, detail="Market engine is stopped")
    snapshot = await engine.refresh(force_live=bool(payload and payload.force_live))
    if snapshot is None:
        if engine.tick_in_flight:
            raise HTTPException(status_code=409, detail="A market refresh is already in progress")
        raise HTTPException(status_code=502, detail=engine.last_error or "Market refresh failed")
    return snapshot


@router.post("/visibility", response_model=EngineStatus)
async def set_visibility(payload: VisibilityRequest, request: Request):
    engine = _engine(request)
    await engine.set_visibility(payload.visible)
    return engine.status()


@router.get("/activity")
async def activity(limit: int = 50, component: str | None = None):
    limit = max(1, min(limit, 300))
    return {"items": await get_recent_activity(limit=limit, component=component)}
