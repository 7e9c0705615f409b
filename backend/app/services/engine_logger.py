from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from app.services.activity_stream import broadcast_activity, get_recent_activity_local
from app.services.database import get_supabase

logger = logging.getLogger(__name__)


async def log_engine_activity(
    component: str,
    action: str,
    details: dict[str, Any] | None = None,
    status: str = "success",
) -> None:
    payload = {
        "component": component,
        "action": action,
        "details": details or {},
        "status": status,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }

    client = get_supabase()
    if client is not None:
        try:
            await asyncio.to_thread(lambda: client.table("engine_activity").insert(payload).execute())
        except Exception as exc:
            logger.debug("Could not persist engine activity: %s", exc)
    await broadcast_activity(payload)


async def get_recent_activity(limit: int = 50, component: str | None = None) -> list[dict[str, Any]]:
    client = get_supabase()
    if client is None:
        return get_recent_activity_local(limit=limit, component=component)

    try:
        query = client.table("engine_activity").select("*").order("created_at", desc=True).limit(limit)
        if component:
            query = query.eq("component", component)
        data = query.execute().data
        return data if isinstance(data, list) else []
    except Exception:
        return get_recent_activity_local(limit=limit, component=component)
