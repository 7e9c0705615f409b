from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from app.services.database import get_supabase

router = APIRouter(tags=["system"])


def _probe_database() -> bool:
    client = get_supabase()
    if client is None:
        return False
    try:
        client.table("price_alerts").select("id").limit(1).execute()
        return True
    except Exception:
        return False


@router.get("/health")
async def health(request: Request):
    settings = request.app.state.settings
    engine = request.app.state.engine
    db_ok = await asyncio.to_thread(_probe_database)
    status = engine.status()
    return {
        "ok": True,
        "status": "ok",
        "app": settings.app_name,
        "environment": settings.environment,
        "dependencies": {"database": "ok" if db_ok else "degraded"},
        "engine": {
            "state": status.state,
            "generated_at": status.generated_at.isoformat() if status.generated_at else None,
            "is_live": status.is_live,
            "last_error": status.last_error,
            "snapshot_version": status.snapshot_version,
        },
        "websocket_clients": request.app.state.ws_manager.connection_count,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/integrations")
async def integrations(request: Request):
    settings = request.app.state.settings
    return {
        "supabase": bool(settings.supabase_url and (settings.supabase_service_key or settings.supabase_key)),
        "live_quotes": bool(settings.live_feed_enabled),
        "poke": bool(settings.poke_api_key),
    }
