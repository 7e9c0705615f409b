from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List

from app.config import Settings
from app.schemas import EngineStatus, Holding, HoldingKind, PriceAlert, PriceSnapshot, ValuationUpdate
from app.services.alert_evaluator import evaluate_alerts
from app.services.engine_logger import log_engine_activity
from app.services.engine_state import EngineState
from app.services.notifications import dispatch_alert_notification
from app.services.portfolio_repository import PortfolioRepository, portfolio_repo
from app.services.price_mixer import mix_prices
from app.services.price_source import PriceSource, is_live_eligible
from app.services.valuation import project_valuations
from app.ws_manager import WSManager

logger = logging.getLogger(__name__)

_MIN_TICK_SECONDS = 0.05


def build_universe(holdings: Iterable[Holding], alerts: Iterable[PriceAlert], watchlist: Iterable[str]) -> List[str]:
    symbols = {holding.symbol for holding in holdings}
    symbols.update(alert.symbol for alert in alerts if alert.status == "active")
    symbols.update(symbol.strip().upper() for symbol in watchlist)
    symbols.discard("")
    return sorted(symbols)


class MarketEngine:
    """Periodic price refresh, valuation and price-alert cycle.

    One tick runs at a time. The scheduler loop fires every
    ``fallback_tick_seconds`` while the host is visible; the live feed is only
    consulted once per ``live_refresh_seconds``.
    """

    def __init__(
        self,
        settings: Settings,
        ws_manager: WSManager | None = None,
        *,
        repository: PortfolioRepository | None = None,
        price_source: PriceSource | None = None,
        state: EngineState | None = None,
        clock: Callable[[], float] = time.monotonic,
        visible: bool = True,
    ) -> None:
        self.settings = settings
        self.ws_manager = ws_manager
        self.repository = repository or portfolio_repo
        self.price_source = price_source or PriceSource(settings)
        self.state = state or EngineState()
        self._clock = clock
        self._visible = visible
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._tick_in_flight = False
        self._last_live_fetch: float | None = None
        self.tick_count = 0
        self.skipped_ticks = 0
        self.last_error: str | None = None
        self.last_tick_at: datetime | None = None
        self.last_live_fetch_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def tick_in_flight(self) -> bool:
        return self._tick_in_flight

    def snapshot(self) -> PriceSnapshot:
        return self.state.current

    def status(self) -> EngineStatus:
        current = self.state.current
        return EngineStatus(
            state="running" if self._running else "stopped",
            visible=self._visible,
            tick_count=self.tick_count,
            skipped_ticks=self.skipped_ticks,
            tick_in_flight=self._tick_in_flight,
            last_tick_at=self.last_tick_at,
            last_live_fetch_at=self.last_live_fetch_at,
            last_error=self.last_error,
            generated_at=self.state.generated_at,
            snapshot_version=self.state.version,
            is_live=current.is_live,
            symbols=len(current.prices),
        )

    # Lifecycle.

    async def start(self) -> asyncio.Task | None:
        """Enter the running state: one immediate tick, then the repeating loop.

        Returns the task of the immediate tick, or None when nothing started.
        If a tick from before the last stop is still in flight, the immediate
        tick is skipped like any other overlapping tick; the loop is still
        armed and the in-flight tick's snapshot stands in for it.
        """
        if self._running:
            return None
        if not self._visible:
            logger.info("Market engine start deferred until the host is visible.")
            return None
        self._running = True
        tick_task = self._spawn_tick()
        self._loop_task = asyncio.create_task(self._run_loop(), name="market-engine-loop")
        logger.info(
            "Market engine running (tick every %.1fs, live every %.1fs)",
            self.settings.fallback_tick_seconds,
            self.settings.live_refresh_seconds,
        )
        await log_engine_activity(component="scheduler", action="Market engine started")
        return tick_task

    async def stop(self) -> None:
        """Cancel the repeating loop. A tick already in flight still completes."""
        if not self._running:
            return
        self._running = False
        task = self._loop_task
        self._loop_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Market engine stopped")
        await log_engine_activity(component="scheduler", action="Market engine stopped")

    async def set_visibility(self, visible: bool) -> asyncio.Task | None:
        self._visible = bool(visible)
        if self._visible and not self._running:
            return await self.start()
        if not self._visible and self._running:
            await self.stop()
        return None

    async def wait_idle(self) -> None:
        task = self._tick_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        await self.stop()
        await self.wait_idle()

    async def refresh(self, *, force_live: bool = False) -> PriceSnapshot | None:
        """Run one tick on demand, honouring the single-flight guard.

        Does nothing while stopped.
        """
        if not self._running:
            return None
        return await self.run_tick(force_live=force_live, delay=self.settings.refresh_delay_seconds)

    async def _run_loop(self) -> None:
        interval = max(_MIN_TICK_SECONDS, self.settings.fallback_tick_seconds)
        while self._running:
            await asyncio.sleep(interval)
            if not self._running:
                break
            self._spawn_tick()

    def _spawn_tick(self) -> asyncio.Task | None:
        if self._tick_in_flight:
            self.skipped_ticks += 1
            logger.debug("Previous market tick still running; skipping this one")
            return None
        self._tick_task = asyncio.create_task(self.run_tick(), name="market-engine-tick")
        return self._tick_task

    # One tick.

    def _live_due(self, universe: List[str], force_live: bool) -> bool:
        if not self.settings.live_feed_enabled:
            return False
        if not any(is_live_eligible(symbol) for symbol in universe):
            return False
        if force_live or self._last_live_fetch is None:
            return True
        return self._clock() - self._last_live_fetch >= self.settings.live_refresh_seconds

    def _read_inputs(self) -> tuple[List[Holding], List[PriceAlert], List[str]]:
        holdings = self.repository.list_holdings(strict=True)
        alerts = self.repository.list_active_alerts(strict=True)
        watchlist = self.repository.list_watchlist_symbols(strict=True)
        return holdings, alerts, watchlist

    async def run_tick(self, *, force_live: bool = False, delay: float = 0.0) -> PriceSnapshot | None:
        """Resolve, mix, evaluate and project once; returns the new snapshot.

        Returns None if another tick holds the single-flight token or the
        tick failed. Failures leave the current snapshot in place.
        """
        if self._tick_in_flight:
            self.skipped_ticks += 1
            return None
        self._tick_in_flight = True
        try:
            return await self._execute_tick(force_live=force_live, delay=delay)
        except Exception as exc:
            self.last_error = str(exc) or exc.__class__.__name__
            logger.exception("Market tick failed")
            if self.ws_manager is not None:
                await self.ws_manager.broadcast(
                    {
                        "channel": "market",
                        "type": "market_error",
                        "error": self.last_error,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    },
                    channel="market",
                )
            return None
        finally:
            self._tick_in_flight = False

    async def _execute_tick(self, *, force_live: bool, delay: float) -> PriceSnapshot:
        holdings, alerts, watchlist = await asyncio.to_thread(self._read_inputs)
        universe = build_universe(holdings, alerts, watchlist)

        previous = self.state.current
        old_prices = previous.price_map()

        allow_live = self._live_due(universe, force_live)
        if allow_live:
            self._last_live_fetch = self._clock()
            self.last_live_fetch_at = datetime.now(timezone.utc)
        resolved = await self.price_source.resolve(universe, old_prices, allow_live=allow_live)
        if resolved.live_attempted:
            if resolved.any_live:
                logger.info("Live quotes for %d of %d symbols", len(resolved.live_symbols), len(universe))
            else:
                logger.warning("Live feed priced none of %d symbols; serving simulated prices", len(universe))

        if delay > 0:
            await asyncio.sleep(delay)

        snapshot = mix_prices(previous, resolved.prices, resolved.live_symbols)
        triggered = evaluate_alerts(old_prices, snapshot.price_map(), alerts)
        valuations = project_valuations(snapshot, holdings)

        self.state.replace(snapshot)
        self.tick_count += 1
        self.last_tick_at = snapshot.generated_at
        self.last_error = None

        await self._apply_valuations(valuations)
        await self._apply_triggers(triggered, snapshot)
        await self._broadcast_snapshot(snapshot)
        return snapshot

    async def _apply_valuations(self, valuations: Dict[HoldingKind, List[ValuationUpdate]]) -> None:
        for kind, updates in valuations.items():
            if not updates:
                continue
            try:
                await asyncio.to_thread(self.repository.batch_update_holding_values, kind, updates)
            except Exception as exc:
                logger.warning("Valuation write for %d %s holdings failed: %s", len(updates), kind, exc)

    async def _apply_triggers(self, triggered: List[PriceAlert], snapshot: PriceSnapshot) -> None:
        if not triggered:
            return
        try:
            changed = set(await asyncio.to_thread(self.repository.mark_alerts_triggered, [alert.id for alert in triggered]))
        except Exception as exc:
            logger.warning("Could not mark %d alerts as triggered: %s", len(triggered), exc)
            return

        for alert in triggered:
            if alert.id not in changed:
                continue
            point = snapshot.prices.get(alert.symbol)
            price = point.price if point is not None else None
            logger.info("Price alert %s fired: %s target %.2f price %s", alert.id, alert.symbol, alert.target_price, price)
            try:
                await dispatch_alert_notification(self.settings, self.repository, self.ws_manager, alert, price)
            except Exception:
                logger.exception("Notification dispatch failed for alert %s", alert.id)
            await log_engine_activity(
                component="alerts",
                action=f"Price alert triggered for {alert.symbol}",
                details={"alert_id": alert.id, "target_price": alert.target_price, "price": price},
            )

    async def _broadcast_snapshot(self, snapshot: PriceSnapshot) -> None:
        if self.ws_manager is None:
            return
        await self.ws_manager.broadcast(
            {
                "channel": "market",
                "type": "market_snapshot",
                **snapshot.model_dump(mode="json"),
            },
            channel="market",
        )
