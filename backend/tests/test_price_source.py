from __future__ import annotations

import asyncio
from dataclasses import replace

import httpx
import numpy as np

from app.config import Settings
from app.services.price_mixer import mix_prices
from app.services.price_source import (
    PRICE_EPSILON,
    PriceSource,
    is_live_eligible,
    parse_quote_payload,
    seed_price,
)


def _settings(**overrides) -> Settings:
    return replace(Settings(), **overrides)


def _quote_response(request: httpx.Request, prices: dict[str, float]) -> httpx.Response:
    symbols = request.url.params["symbols"].split(",")
    rows = [{"symbol": symbol, "regularMarketPrice": prices[symbol]} for symbol in symbols if symbol in prices]
    return httpx.Response(200, json={"quoteResponse": {"result": rows, "error": None}})


def test_seed_price_is_deterministic_and_in_band():
    for symbol in ["AAPL", "MSFT", "GOLD_GRAM", "BTC-USD", "X"]:
        first = seed_price(symbol)
        assert first == seed_price(symbol)
        assert 50 <= first < 500


def test_fresh_symbols_get_the_seed_price_across_sources():
    one = PriceSource(_settings(), rng=np.random.default_rng(1))
    two = PriceSource(_settings(), rng=np.random.default_rng(99))
    assert one.fallback_price("NVDA") == two.fallback_price("NVDA") == seed_price("NVDA")


def test_random_walk_never_reaches_zero():
    class _WorstCaseRng:
        def random(self) -> float:
            return 0.0

    source = PriceSource(_settings(simulated_volatility=0.99), rng=_WorstCaseRng())
    price = 0.02
    for _ in range(50):
        price = source.fallback_price("PENNY", price)
        assert price >= PRICE_EPSILON > 0


def test_random_walk_step_is_bounded_by_volatility():
    source = PriceSource(_settings(simulated_volatility=0.03), rng=np.random.default_rng(5))
    for _ in range(200):
        moved = source.fallback_price("AAPL", 100.0)
        assert 100.0 * (1 - 0.03 * 0.505) - 1e-9 <= moved <= 100.0 * (1 + 0.03 * 0.495) + 1e-9


def test_parse_quote_payload_discards_bad_rows():
    payload = {
        "quoteResponse": {
            "result": [
                {"symbol": "aapl", "regularMarketPrice": 189.5},
                {"symbol": "MSFT", "regularMarketPrice": "n/a"},
                {"symbol": "NVDA", "regularMarketPrice": 0},
                {"symbol": "TSLA", "regularMarketPrice": -4},
                {"symbol": "AMZN"},
                "garbage",
            ]
        }
    }
    assert parse_quote_payload(payload) == {"AAPL": 189.5}
    assert parse_quote_payload({"unexpected": True}) == {}
    assert parse_quote_payload(None) == {}


def test_live_eligibility_excludes_internal_commodity_codes():
    assert is_live_eligible("AAPL")
    assert is_live_eligible("BTC-USD")
    assert is_live_eligible("GC=F")
    assert not is_live_eligible("GOLD_GRAM")
    assert not is_live_eligible("")


def test_fetch_live_batches_requests():
    seen_batches: list[list[str]] = []
    symbols = [f"S{idx:03d}" for idx in range(95)]
    prices = {symbol: 10.0 + idx for idx, symbol in enumerate(symbols)}

    def handler(request: httpx.Request) -> httpx.Response:
        seen_batches.append(request.url.params["symbols"].split(","))
        return _quote_response(request, prices)

    source = PriceSource(_settings(quote_batch_size=40), transport=httpx.MockTransport(handler))
    live = asyncio.run(source.fetch_live(symbols))

    assert live == prices
    assert sorted(len(batch) for batch in seen_batches) == [15, 40, 40]


def test_failed_batch_does_not_abort_the_others():
    symbols = [f"S{idx:03d}" for idx in range(6)]
    prices = {symbol: 42.0 for symbol in symbols}

    def handler(request: httpx.Request) -> httpx.Response:
        if "S000" in request.url.params["symbols"]:
            return httpx.Response(503, json={"error": "unavailable"})
        return _quote_response(request, prices)

    source = PriceSource(_settings(quote_batch_size=2), transport=httpx.MockTransport(handler))
    live = asyncio.run(source.fetch_live(symbols))

    assert set(live) == {"S002", "S003", "S004", "S005"}


def test_live_failure_falls_back_for_every_symbol():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network down", request=request)

    source = PriceSource(
        _settings(quote_batch_size=1),
        rng=np.random.default_rng(3),
        transport=httpx.MockTransport(handler),
    )
    resolved = asyncio.run(source.resolve(["aapl", "MSFT", "GOLD_GRAM"], {"MSFT": 300.0}, allow_live=True))

    assert resolved.live_attempted is True
    assert resolved.any_live is False
    assert set(resolved.prices) == {"AAPL", "MSFT", "GOLD_GRAM"}
    assert all(price > 0 for price in resolved.prices.values())
    assert resolved.prices["AAPL"] == seed_price("AAPL")

    snapshot = mix_prices(None, resolved.prices, resolved.live_symbols)
    assert snapshot.is_live is False
    assert all(point.price > 0 for point in snapshot.prices.values())


def test_live_prices_take_precedence_and_ignore_unrequested_symbols():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "quoteResponse": {
                    "result": [
                        {"symbol": "AAPL", "regularMarketPrice": 190.25},
                        {"symbol": "ZZZZ", "regularMarketPrice": 1.0},
                    ]
                }
            },
        )

    source = PriceSource(_settings(), rng=np.random.default_rng(3), transport=httpx.MockTransport(handler))
    resolved = asyncio.run(source.resolve(["AAPL", "MSFT"], {"AAPL": 180.0}, allow_live=True))

    assert resolved.prices["AAPL"] == 190.25
    assert resolved.live_symbols == frozenset({"AAPL"})
    assert "ZZZZ" not in resolved.prices
    assert resolved.prices["MSFT"] == seed_price("MSFT")


def test_resolve_without_live_budget_makes_no_requests():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    source = PriceSource(_settings(), transport=httpx.MockTransport(handler))
    resolved = asyncio.run(source.resolve(["AAPL"], {}, allow_live=False))

    assert calls == []
    assert resolved.live_attempted is False
    assert resolved.prices == {"AAPL": seed_price("AAPL")}
