from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List

from app.schemas import PriceAlert


def crossed(old_price: float, new_price: float, target: float) -> bool:
    """True when the price moved onto or through ``target`` between two ticks.

    Both bounds are inclusive, so a price pinned exactly on the target counts.
    """
    if new_price >= target and old_price < target:
        return True
    if new_price <= target and old_price > target:
        return True
    return old_price == new_price == target


def group_alerts_by_symbol(alerts: Iterable[PriceAlert]) -> Dict[str, List[PriceAlert]]:
    grouped: Dict[str, List[PriceAlert]] = defaultdict(list)
    for alert in alerts:
        if alert.status != "active":
            continue
        grouped[alert.symbol].append(alert)
    return dict(grouped)


def evaluate_alerts(
    old_prices: Dict[str, float],
    new_prices: Dict[str, float],
    alerts: Iterable[PriceAlert],
) -> List[PriceAlert]:
    """Return the active alerts that crossed their target this tick.

    Every alert on a symbol is checked on its own. The result holds each alert
    id once, in first-seen order, with status already flipped to triggered.
    """
    triggered: Dict[str, PriceAlert] = {}
    for symbol, symbol_alerts in group_alerts_by_symbol(alerts).items():
        old_price = old_prices.get(symbol)
        new_price = new_prices.get(symbol)
        if old_price is None or new_price is None:
            continue
        for alert in symbol_alerts:
            if alert.id in triggered:
                continue
            if crossed(old_price, new_price, alert.target_price):
                triggered[alert.id] = alert.model_copy(update={"status": "triggered"})
    return list(triggered.values())
