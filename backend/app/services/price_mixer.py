"""Turn one tick's resolved prices into the next immutable snapshot.

Pure: no I/O and no randomness, so it can be exercised directly in tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable

from app.schemas import PricePoint, PriceSnapshot


def price_point(new_price: float, old_price: float | None) -> PricePoint:
    baseline = new_price if old_price is None else old_price
    change = new_price - baseline
    change_percent = (change / baseline) * 100 if baseline else 0.0
    return PricePoint(price=new_price, change=change, change_percent=change_percent)


def mix_prices(
    previous: PriceSnapshot | None,
    resolved: Dict[str, float],
    live_symbols: Iterable[str] = (),
    generated_at: datetime | None = None,
) -> PriceSnapshot:
    old_prices = previous.price_map() if previous is not None else {}
    live = sorted(set(live_symbols) & set(resolved))
    points = {symbol: price_point(price, old_prices.get(symbol)) for symbol, price in resolved.items()}
    return PriceSnapshot(
        prices=points,
        is_live=bool(live),
        live_symbols=live,
        generated_at=generated_at or datetime.now(timezone.utc),
    )
