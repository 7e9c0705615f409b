from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict

import httpx

from app.config import Settings
from app.schemas import PriceAlert
from app.services.portfolio_repository import PortfolioRepository
from app.ws_manager import WSManager

logger = logging.getLogger(__name__)

POKE_ENDPOINT = "https://poke.com/api/v1/inbound-sms/webhook"


def format_alert_message(alert: PriceAlert, price: float | None) -> str:
    message = f"Price alert: {alert.symbol} crossed {alert.target_price:.2f}"
    if price is not None:
        message += f" (now {price:.2f})"
    return message


async def send_poke_message(settings: Settings, message: str) -> bool:
    if not settings.poke_api_key:
        return False

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                POKE_ENDPOINT,
                headers={
                    "Authorization": f"Bearer {settings.poke_api_key}",
                    "Content-Type": "application/json",
                },
                json={"message": message},
            )
            return response.status_code < 300
    except Exception as exc:
        logger.warning("Poke push failed: %s", exc)
        return False


async def dispatch_alert_notification(
    settings: Settings,
    repository: PortfolioRepository,
    ws_manager: WSManager | None,
    alert: PriceAlert,
    price: float | None,
) -> Dict[str, Any]:
    """Record, broadcast and optionally push one triggered alert.

    Callers invoke this once per alert id that the store actually flipped to
    triggered, which keeps notifications one-per-crossing.
    """
    message = format_alert_message(alert, price)
    notification: Dict[str, Any] = {
        "alert_id": alert.id,
        "symbol": alert.symbol,
        "message": message,
        "stored": False,
        "pushed": False,
    }

    try:
        record = await asyncio.to_thread(
            repository.create_notification,
            alert_id=alert.id,
            symbol=alert.symbol,
            message=message,
        )
        notification["stored"] = True
        notification["notification_id"] = record.id
    except Exception as exc:
        logger.warning("Failed to record notification for alert %s: %s", alert.id, exc)

    if ws_manager is not None:
        await ws_manager.broadcast(
            {
                "channel": "alerts",
                "type": "price_alert_triggered",
                "alert": alert.model_dump(),
                "price": price,
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            channel="alerts",
        )

    notification["pushed"] = await send_poke_message(settings, message)
    return notification
