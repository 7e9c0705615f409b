from __future__ import annotations

import asyncio
from dataclasses import replace

from app.config import Settings
from app.schemas import PriceAlert
from app.services.notifications import dispatch_alert_notification, format_alert_message
from app.services.portfolio_repository import PortfolioRepository


class _RecordingWSManager:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def broadcast(self, event, channel="global"):
        self.events.append((channel, event))


def test_format_alert_message():
    alert = PriceAlert(id="a1", symbol="AAPL", target_price=100)
    assert format_alert_message(alert, 101.234) == "Price alert: AAPL crossed 100.00 (now 101.23)"
    assert format_alert_message(alert, None) == "Price alert: AAPL crossed 100.00"


def test_dispatch_records_and_broadcasts(monkeypatch):
    monkeypatch.setattr("app.services.portfolio_repository.get_supabase", lambda: None)
    repo = PortfolioRepository()
    ws = _RecordingWSManager()
    alert = PriceAlert(id="a1", symbol="AAPL", target_price=100, status="triggered")

    result = asyncio.run(dispatch_alert_notification(replace(Settings(), poke_api_key=""), repo, ws, alert, 105.0))

    assert result["stored"] is True
    assert result["pushed"] is False
    assert [item.alert_id for item in repo.list_notifications()] == ["a1"]
    assert ws.events[0][0] == "alerts"
    assert ws.events[0][1]["type"] == "price_alert_triggered"
    assert ws.events[0][1]["price"] == 105.0
