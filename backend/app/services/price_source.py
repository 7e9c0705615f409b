from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List

import httpx
import numpy as np

from app.config import Settings
from app.schemas import normalize_symbol

logger = logging.getLogger(__name__)

_LIVE_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9.\-=^]{0,14}$")
_QUOTE_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_7_0) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/121.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json,text/plain,*/*",
    "Accept-Language": "en-US,en;q=0.9",
}

SEED_PRICE_FLOOR = 50
SEED_PRICE_SPAN = 450
PRICE_EPSILON = 0.01
# Walk centre above 0.5 gives each step a slightly negative mean.
WALK_CENTER = 0.505


def _safe_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        if value is None:
            return None
        if isinstance(value, str):
            clean = value.strip().replace(",", "")
            if not clean:
                return None
            value = clean
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def seed_price(symbol: str) -> float:
    """Deterministic starting price in [50, 500) for a symbol with no history."""
    value = 0
    for char in symbol:
        value = _to_int32(ord(char) + _to_int32(_to_int32(value << 5) - value))
    return float(value % SEED_PRICE_SPAN + SEED_PRICE_FLOOR)


def is_live_eligible(symbol: str) -> bool:
    return "_" not in symbol and bool(_LIVE_SYMBOL_PATTERN.fullmatch(symbol))


def chunked(items: List[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), max(1, size)):
        yield items[start : start + size]


def parse_quote_payload(payload: Any) -> Dict[str, float]:
    rows = payload.get("quoteResponse", {}).get("result", []) if isinstance(payload, dict) else []
    if not isinstance(rows, list):
        return {}
    out: Dict[str, float] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        symbol = normalize_symbol(row.get("symbol"))
        price = _safe_float(row.get("regularMarketPrice"))
        if not symbol or price is None or price <= 0:
            continue
        out[symbol] = price
    return out


@dataclass
class ResolvedPrices:
    prices: Dict[str, float] = field(default_factory=dict)
    live_symbols: frozenset[str] = frozenset()
    live_attempted: bool = False

    @property
    def any_live(self) -> bool:
        return bool(self.live_symbols)


class PriceSource:
    def __init__(
        self,
        settings: Settings,
        *,
        rng: np.random.Generator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._rng = rng if rng is not None else np.random.default_rng()
        self._transport = transport

    def fallback_price(self, symbol: str, previous: float | None = None) -> float:
        if previous is None or previous <= 0:
            return seed_price(symbol)
        step = (float(self._rng.random()) - WALK_CENTER) * self.settings.simulated_volatility
        return max(previous * (1 + step), PRICE_EPSILON)

    async def _fetch_batch(self, client: httpx.AsyncClient, batch: List[str]) -> Dict[str, float]:
        resp = await client.get(self.settings.quote_api_url, params={"symbols": ",".join(batch)})
        resp.raise_for_status()
        return parse_quote_payload(resp.json())

    async def fetch_live(self, symbols: Iterable[str]) -> Dict[str, float]:
        requested = sorted({symbol for symbol in symbols if is_live_eligible(symbol)})
        if not requested:
            return {}

        batches = list(chunked(requested, self.settings.quote_batch_size))
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.quote_timeout_seconds,
                headers=_QUOTE_HEADERS,
                transport=self._transport,
            ) as client:
                results = await asyncio.gather(
                    *(self._fetch_batch(client, batch) for batch in batches),
                    return_exceptions=True,
                )
        except Exception as exc:
            logger.warning("Live quote fetch failed for %d symbols: %s", len(requested), exc)
            return {}

        wanted = set(requested)
        live: Dict[str, float] = {}
        for batch, result in zip(batches, results):
            if isinstance(result, BaseException):
                logger.warning("Live quote batch of %d symbols failed: %s", len(batch), result)
                continue
            live.update({symbol: price for symbol, price in result.items() if symbol in wanted})
        return live

    async def resolve(
        self,
        symbols: Iterable[str],
        previous_prices: Dict[str, float],
        *,
        allow_live: bool,
    ) -> ResolvedPrices:
        """Price every symbol, preferring live quotes when the budget allows.

        Never raises: anything the live feed cannot price is simulated.
        """
        universe = sorted({normalize_symbol(symbol) for symbol in symbols if normalize_symbol(symbol)})
        live: Dict[str, float] = {}
        if allow_live and self.settings.live_feed_enabled:
            try:
                live = await self.fetch_live(universe)
            except Exception:
                logger.exception("Unexpected live pricing failure; using simulated prices")
                live = {}

        prices: Dict[str, float] = {}
        for symbol in universe:
            if symbol in live:
                prices[symbol] = live[symbol]
            else:
                prices[symbol] = self.fallback_price(symbol, previous_prices.get(symbol))
        return ResolvedPrices(
            prices=prices,
            live_symbols=frozenset(live),
            live_attempted=allow_live and self.settings.live_feed_enabled,
        )
