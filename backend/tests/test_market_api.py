from __future__ import annotations

import time
import unittest
from dataclasses import replace
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import Settings
from app.routers import market, portfolio, system
from app.services.market_engine import MarketEngine
from app.services.portfolio_repository import PortfolioRepository
from app.ws_manager import WSManager


def _build_app() -> FastAPI:
    settings = replace(Settings(), live_feed_enabled=False, fallback_tick_seconds=60.0)
    repo = PortfolioRepository()
    repo.seed_watchlist(["AAPL"])
    app = FastAPI()
    app.include_router(system.router)
    app.include_router(market.router)
    app.include_router(portfolio.router)
    app.state.settings = settings
    app.state.ws_manager = WSManager()
    app.state.engine = MarketEngine(settings, app.state.ws_manager, repository=repo, visible=False)
    return app


def _wait_for_tick(client: TestClient, count: int = 1) -> dict:
    status = client.get("/market/status").json()
    for _ in range(100):
        if status["tick_count"] >= count and not status["tick_in_flight"]:
            break
        time.sleep(0.02)
        status = client.get("/market/status").json()
    return status


class MarketApiTests(unittest.TestCase):
    def setUp(self) -> None:
        patchers = [
            patch("app.services.portfolio_repository.get_supabase", return_value=None),
            patch("app.services.engine_logger.get_supabase", return_value=None),
            patch("app.routers.system.get_supabase", return_value=None),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)
        self.app = _build_app()

    def test_snapshot_is_empty_before_first_tick(self) -> None:
        with TestClient(self.app) as client:
            response = client.get("/market/snapshot")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["prices"], {})
            self.assertEqual(client.get("/market/snapshot/AAPL").status_code, 404)
            self.assertEqual(client.get("/market/status").json()["state"], "stopped")

    def test_refresh_rejected_while_stopped(self) -> None:
        with TestClient(self.app) as client:
            response = client.post("/market/refresh")
        self.assertEqual(response.status_code, 409)

    def test_activity_feed_records_engine_start(self) -> None:
        with TestClient(self.app) as client:
            client.post("/market/visibility", json={"visible": True})
            _wait_for_tick(client)
            items = client.get("/market/activity", params={"component": "scheduler"}).json()["items"]
            client.post("/market/visibility", json={"visible": False})
        self.assertTrue(items)
        self.assertTrue(all(item["component"] == "scheduler" for item in items))
        self.assertIn("Market engine started", [item["action"] for item in items])

    def test_visibility_drives_engine_state(self) -> None:
        with TestClient(self.app) as client:
            response = client.post("/market/visibility", json={"visible": True})
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["state"], "running")

            status = _wait_for_tick(client)
            self.assertEqual(status["tick_count"], 1)
            self.assertFalse(status["is_live"])

            point = client.get("/market/snapshot/aapl").json()
            self.assertGreater(point["price"], 0)
            self.assertFalse(point["is_live"])

            refreshed = client.post("/market/refresh", json={"force_live": False})
            self.assertEqual(refreshed.status_code, 200)
            self.assertIn("AAPL", refreshed.json()["prices"])

            hidden = client.post("/market/visibility", json={"visible": False})
            self.assertEqual(hidden.json()["state"], "stopped")
            self.assertEqual(client.post("/market/refresh").status_code, 409)
            self.assertIn("AAPL", client.get("/market/snapshot").json()["prices"])

    def test_alert_crud_and_reset(self) -> None:
        with TestClient(self.app) as client:
            created = client.post("/portfolio/alerts", json={"symbol": "msft", "target_price": 300})
            self.assertEqual(created.status_code, 201)
            alert = created.json()
            self.assertEqual(alert["symbol"], "MSFT")
            self.assertEqual(alert["status"], "active")

            listed = client.get("/portfolio/alerts", params={"status": "active"}).json()["items"]
            self.assertEqual([item["id"] for item in listed], [alert["id"]])

            reset = client.post(f"/portfolio/alerts/{alert['id']}/reset")
            self.assertEqual(reset.status_code, 200)
            self.assertEqual(client.post("/portfolio/alerts/missing/reset").status_code, 404)
            self.assertEqual(client.get("/portfolio/alerts", params={"status": "bogus"}).status_code, 422)

    def test_invalid_alert_target_rejected(self) -> None:
        with TestClient(self.app) as client:
            response = client.post("/portfolio/alerts", json={"symbol": "MSFT", "target_price": 0})
        self.assertEqual(response.status_code, 422)

    def test_holdings_and_watchlist_routes(self) -> None:
        with TestClient(self.app) as client:
            holding = client.post("/portfolio/holdings", json={"symbol": "nvda", "quantity": 4})
            self.assertEqual(holding.status_code, 201)
            self.assertEqual(holding.json()["symbol"], "NVDA")
            self.assertEqual(len(client.get("/portfolio/holdings").json()["items"]), 1)

            added = client.post("/portfolio/watchlist", json={"symbol": "tsla", "name": "Tesla"})
            self.assertEqual(added.status_code, 201)
            symbols = {item["symbol"] for item in client.get("/portfolio/watchlist").json()["items"]}
            self.assertEqual(symbols, {"AAPL", "TSLA"})
            self.assertEqual(client.delete("/portfolio/watchlist/TSLA").status_code, 200)
            self.assertEqual(client.delete("/portfolio/watchlist/TSLA").status_code, 404)

    def test_health_reports_engine_state(self) -> None:
        with TestClient(self.app) as client:
            payload = client.get("/health").json()
        self.assertTrue(payload["ok"])
        self.assertEqual(payload["dependencies"]["database"], "degraded")
        self.assertEqual(payload["engine"]["state"], "stopped")
        self.assertEqual(payload["engine"]["snapshot_version"], 0)
        self.assertEqual(payload["websocket_clients"], 0)


if __name__ == "__main__":
    unittest.main()
