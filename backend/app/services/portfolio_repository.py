from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, List

from app.schemas import (
    AlertNotification,
    Holding,
    HoldingKind,
    PriceAlert,
    ValuationUpdate,
    WatchlistItem,
    normalize_symbol,
)
from app.services.database import get_supabase

logger = logging.getLogger(__name__)

HOLDING_TABLES: dict[HoldingKind, str] = {
    "investment": "holdings",
    "commodity": "commodity_holdings",
}


class PortfolioRepository:
    """Read and patch access to holdings, watch list and price alerts.

    Uses Supabase when a client is configured and keeps in-process tables
    otherwise, so the engine also runs headless and in tests.
    """

    def __init__(self) -> None:
        self._holdings: dict[str, Holding] = {}
        self._alerts: dict[str, PriceAlert] = {}
        self._watchlist: dict[str, WatchlistItem] = {}
        self._notifications: list[AlertNotification] = []

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    # Reads used once per tick. With ``strict=True`` a Supabase failure is
    # raised instead of answered from the in-process tables, which are empty
    # in Supabase mode.

    def list_holdings(self, *, strict: bool = False) -> List[Holding]:
        client = get_supabase()
        if client:
            rows: List[Holding] = []
            try:
                for kind, table in HOLDING_TABLES.items():
                    data = client.table(table).select("id,symbol,quantity,currentValue").execute().data
                    for row in data or []:
                        rows.append(Holding.model_validate({**row, "kind": kind}))
                return rows
            except Exception as exc:
                if strict:
                    raise
                logger.warning("Failed to read holdings from Supabase: %s", exc)
        return list(self._holdings.values())

    def list_alerts(self, status: str | None = None, *, strict: bool = False) -> List[PriceAlert]:
        client = get_supabase()
        if client:
            try:
                query = client.table("price_alerts").select("id,symbol,targetPrice,status,createdAt")
                if status:
                    query = query.eq("status", status)
                data = query.execute().data
                return [PriceAlert.model_validate(row) for row in data or []]
            except Exception as exc:
                if strict:
                    raise
                logger.warning("Failed to read price alerts from Supabase: %s", exc)
        alerts = list(self._alerts.values())
        if status:
            alerts = [alert for alert in alerts if alert.status == status]
        return alerts

    def list_active_alerts(self, *, strict: bool = False) -> List[PriceAlert]:
        return self.list_alerts(status="active", strict=strict)

    def list_watchlist(self, *, strict: bool = False) -> List[WatchlistItem]:
        client = get_supabase()
        if client:
            try:
                data = client.table("watchlist").select("symbol,name").execute().data
                return [WatchlistItem.model_validate(row) for row in data or []]
            except Exception as exc:
                if strict:
                    raise
                logger.warning("Failed to read watchlist from Supabase: %s", exc)
        return list(self._watchlist.values())

    def list_watchlist_symbols(self, *, strict: bool = False) -> List[str]:
        return sorted({item.symbol for item in self.list_watchlist(strict=strict) if item.symbol})

    # Patches issued by the engine.

    def batch_update_holding_values(self, kind: HoldingKind, updates: Iterable[ValuationUpdate]) -> int:
        """Write ``currentValue`` for each holding; returns how many rows were written."""
        updates = list(updates)
        if not updates:
            return 0
        table = HOLDING_TABLES[kind]
        client = get_supabase()
        if client:
            written = 0
            for update in updates:
                try:
                    client.table(table).update({"currentValue": update.current_value}).eq("id", update.id).execute()
                    written += 1
                except Exception as exc:
                    logger.warning("Failed to write value for %s %s: %s", table, update.id, exc)
            return written

        written = 0
        for update in updates:
            holding = self._holdings.get(update.id)
            if holding is None or holding.kind != kind:
                continue
            self._holdings[update.id] = holding.model_copy(update={"current_value": update.current_value})
            written += 1
        return written

    def mark_alerts_triggered(self, alert_ids: Iterable[str]) -> List[str]:
        """Flip active alerts to triggered and return the ids that actually changed.

        Alerts that are already triggered (or gone) are left out of the result.
        """
        ids = list(dict.fromkeys(alert_ids))
        if not ids:
            return []
        client = get_supabase()
        if client:
            try:
                data = (
                    client.table("price_alerts")
                    .update({"status": "triggered"})
                    .in_("id", ids)
                    .eq("status", "active")
                    .execute()
                    .data
                )
                return [str(row.get("id")) for row in data or [] if row.get("id") is not None]
            except Exception as exc:
                logger.warning("Failed to mark %d price alerts as triggered: %s", len(ids), exc)
                return []

        changed: List[str] = []
        for alert_id in ids:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status != "active":
                continue
            self._alerts[alert_id] = alert.model_copy(update={"status": "triggered"})
            changed.append(alert_id)
        return changed

    def create_notification(self, *, alert_id: str, symbol: str, message: str) -> AlertNotification:
        notification = AlertNotification(
            id=str(uuid.uuid4()),
            alert_id=alert_id,
            symbol=symbol,
            message=message,
            created_at=self._now(),
        )
        client = get_supabase()
        if client:
            try:
                client.table("notifications").insert(
                    {
                        "id": notification.id,
                        "type": "alert",
                        "alertId": alert_id,
                        "symbol": symbol,
                        "message": message,
                        "read": False,
                        "createdAt": notification.created_at,
                    }
                ).execute()
                return notification
            except Exception as exc:
                logger.warning("Failed to store notification for alert %s: %s", alert_id, exc)
        self._notifications.append(notification)
        return notification

    def list_notifications(self, limit: int = 50) -> List[AlertNotification]:
        client = get_supabase()
        if client:
            try:
                data = (
                    client.table("notifications")
                    .select("*")
                    .eq("type", "alert")
                    .order("createdAt", desc=True)
                    .limit(limit)
                    .execute()
                    .data
                )
                return [
                    AlertNotification(
                        id=str(row.get("id")),
                        alert_id=str(row.get("alertId") or ""),
                        symbol=normalize_symbol(row.get("symbol")),
                        message=str(row.get("message") or ""),
                        read=bool(row.get("read")),
                        created_at=str(row.get("createdAt") or ""),
                    )
                    for row in data or []
                ]
            except Exception as exc:
                logger.warning("Failed to read notifications from Supabase: %s", exc)
        return sorted(self._notifications, key=lambda item: item.created_at, reverse=True)[:limit]

    # CRUD surface used by the portfolio router.

    def create_holding(self, *, symbol: str, quantity: float, kind: HoldingKind = "investment", name: str | None = None) -> Holding:
        payload: dict[str, Any] = {"symbol": normalize_symbol(symbol), "quantity": quantity, "name": name, "currentValue": 0.0}
        client = get_supabase()
        if client:
            try:
                data = client.table(HOLDING_TABLES[kind]).insert(payload).execute().data
                if data:
                    return Holding.model_validate({**data[0], "kind": kind})
            except Exception as exc:
                raise RuntimeError(f"Failed to persist holding: {exc}") from exc

        holding = Holding.model_validate({"id": str(uuid.uuid4()), **payload, "kind": kind})
        self._holdings[holding.id] = holding
        return holding

    def create_alert(self, *, symbol: str, target_price: float) -> PriceAlert:
        payload = {
            "symbol": normalize_symbol(symbol),
            "targetPrice": target_price,
            "status": "active",
            "createdAt": self._now(),
        }
        client = get_supabase()
        if client:
            try:
                data = client.table("price_alerts").insert(payload).execute().data
                if data:
                    return PriceAlert.model_validate(data[0])
            except Exception as exc:
                raise RuntimeError(f"Failed to persist price alert: {exc}") from exc

        alert = PriceAlert.model_validate({"id": str(uuid.uuid4()), **payload})
        self._alerts[alert.id] = alert
        return alert

    def reset_alert(self, alert_id: str) -> PriceAlert | None:
        client = get_supabase()
        if client:
            try:
                data = client.table("price_alerts").update({"status": "active"}).eq("id", alert_id).execute().data
                return PriceAlert.model_validate(data[0]) if data else None
            except Exception as exc:
                raise RuntimeError(f"Failed to reset price alert: {exc}") from exc

        alert = self._alerts.get(alert_id)
        if alert is None:
            return None
        alert = alert.model_copy(update={"status": "active"})
        self._alerts[alert_id] = alert
        return alert

    def add_watchlist_item(self, item: WatchlistItem) -> WatchlistItem:
        client = get_supabase()
        if client:
            try:
                data = client.table("watchlist").insert(item.model_dump()).execute().data
                if data:
                    return WatchlistItem.model_validate(data[0])
            except Exception as exc:
                raise RuntimeError(f"Failed to persist watchlist item: {exc}") from exc
        self._watchlist[item.symbol] = item
        return item

    def remove_watchlist_item(self, symbol: str) -> bool:
        clean = normalize_symbol(symbol)
        client = get_supabase()
        if client:
            try:
                data = client.table("watchlist").delete().eq("symbol", clean).execute().data
                return bool(data)
            except Exception as exc:
                raise RuntimeError(f"Failed to delete watchlist item: {exc}") from exc
        return self._watchlist.pop(clean, None) is not None

    def seed_watchlist(self, symbols: Iterable[str]) -> None:
        for symbol in symbols:
            clean = normalize_symbol(symbol)
            if clean and clean not in self._watchlist:
                self._watchlist[clean] = WatchlistItem(symbol=clean)


portfolio_repo = PortfolioRepository()
