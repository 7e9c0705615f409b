from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Request

from app.schemas import AlertCreateRequest, HoldingCreateRequest, WatchlistItem
from app.services.portfolio_repository import PortfolioRepository

router = APIRouter(prefix="/portfolio", tags=["portfolio"])


def _repo(request: Request) -> PortfolioRepository:
    return request.app.state.engine.repository


@router.get("/holdings")
async def list_holdings(request: Request):
    holdings = await asyncio.to_thread(_repo(request).list_holdings)
    return {"items": [holding.model_dump() for holding in holdings]}


@router.post("/holdings", status_code=201)
async def create_holding(payload: HoldingCreateRequest, request: Request):
    try:
        holding = await asyncio.to_thread(
            lambda: _repo(request).create_holding(
                symbol=payload.symbol,
                quantity=payload.quantity,
                kind=payload.kind,
                name=payload.name,
            )
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return holding.model_dump()


@router.get("/watchlist")
async def list_watchlist(request: Request):
    items = await asyncio.to_thread(_repo(request).list_watchlist)
    return {"items": [item.model_dump() for item in items]}


@router.post("/watchlist", status_code=201)
async def add_watchlist_item(payload: WatchlistItem, request: Request):
    try:
        item = await asyncio.to_thread(_repo(request).add_watchlist_item, payload)
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return item.model_dump()


@router.delete("/watchlist/{symbol}")
async def remove_watchlist_item(symbol: str, request: Request):
    try:
        removed = await asyncio.to_thread(_repo(request).remove_watchlist_item, symbol)
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if not removed:
        raise HTTPException(status_code=404, detail=f"{symbol.upper()} is not on the watchlist")
    return {"ok": True, "symbol": symbol.strip().upper()}


@router.get("/alerts")
async def list_alerts(request: Request, status: str | None = None):
    if status is not None and status not in {"active", "triggered"}:
        raise HTTPException(status_code=422, detail="status must be 'active' or 'triggered'")
    alerts = await asyncio.to_thread(_repo(request).list_alerts, status)
    return {"items": [alert.model_dump() for alert in alerts]}


@router.post("/alerts", status_code=201)
async def create_alert(payload: AlertCreateRequest, request: Request):
    try:
        alert = await asyncio.to_thread(
            lambda: _repo(request).create_alert(symbol=payload.symbol, target_price=payload.target_price)
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return alert.model_dump()


@router.post("/alerts/{alert_id}/reset")
async def reset_alert(alert_id: str, request: Request):
    try:
        alert = await asyncio.to_thread(_repo(request).reset_alert, alert_id)
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if alert is None:
        raise HTTPException(status_code=404, detail="Price alert not found")
    return alert.model_dump()


@router.get("/notifications")
async def list_notifications(request: Request, limit: int = 50):
    limit = max(1, min(limit, 200))
    items = await asyncio.to_thread(_repo(request).list_notifications, limit)
    return {"items": [item.model_dump() for item in items]}
