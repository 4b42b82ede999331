"""
Risk Watcher — Closes positions when price crosses their TP or SL.

Every interval (default 750ms, never below 100ms) one evaluation pass runs:
  1. Load open positions (short-TTL cache, refetched after any trigger)
  2. For each position, compare the latest price to its targets
       LONG:  price >= TP -> TP, else price <= SL -> SL
       SHORT: price <= TP -> TP, else price >= SL -> SL
  3. Hand crossings to the close callback, once per position per pass

INVARIANT: at most one pass runs at a time. A tick that lands while a pass is
still running is dropped, not queued.
"""

from __future__ import annotations
import asyncio
import inspect
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Union
from exchange.models import Position, Side, TriggerEvent, TriggerKind
from trading.numeric import to_decimal
import logging

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 750
DEFAULT_CACHE_TTL_MS = 1000
MIN_INTERVAL_MS = 100

FetchPositions = Callable[[], Union[Iterable[Position], Awaitable[Iterable[Position]]]]
ResolvePrice = Callable[[str], Any]
OnTrigger = Callable[[Position, TriggerKind, Decimal], Optional[Awaitable[None]]]
OnTriggerError = Callable[[TriggerEvent, BaseException], Optional[Awaitable[None]]]


async def _maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


def check_trigger(
    side: Side,
    price: Decimal,
    tp: Optional[Decimal],
    sl: Optional[Decimal],
) -> Optional[TriggerKind]:
    """Trigger rule. Boundaries are inclusive and TP wins over SL."""
    if side == Side.LONG:
        if tp is not None and price >= tp:
            return TriggerKind.TP
        if sl is not None and price <= sl:
            return TriggerKind.SL
    elif side == Side.SHORT:
        if tp is not None and price <= tp:
            return TriggerKind.TP
        if sl is not None and price >= sl:
            return TriggerKind.SL
    return None


class PositionCache:
    """
    Open-position snapshot owned by a single watcher.
    Only a fresh, non-empty snapshot is served; an empty list always refetches.
    """

    def __init__(self, ttl_ms: float = DEFAULT_CACHE_TTL_MS):
        self.ttl = max(0.0, ttl_ms) / 1000.0
        self._positions: List[Position] = []
        self._fetched_at: Optional[float] = None

    def get(self, now: float) -> Optional[List[Position]]:
        if self._fetched_at is None or not self._positions:
            return None
        if now - self._fetched_at >= self.ttl:
            return None
        return self._positions

    def store(self, positions: Iterable[Position], now: float):
        self._positions = list(positions)
        self._fetched_at = now

    def discard(self, position_id: str):
        # Rebuild so a pass iterating the old list is unaffected
        self._positions = [p for p in self._positions if p.id != position_id]

    def invalidate(self):
        self._fetched_at = None

    @property
    def positions(self) -> List[Position]:
        return list(self._positions)

    def __len__(self) -> int:
        return len(self._positions)


@dataclass
class WatcherStats:
    passes: int = 0
    skipped_ticks: int = 0
    fetches: int = 0
    triggers: int = 0
    trigger_failures: int = 0
    pass_failures: int = 0


class RiskWatcher:
    """
    Periodic TP/SL evaluator.
    Call start() from inside a running event loop; stop() is safe to call any
    number of times and does not wait for a pass that is already running.
    """

    def __init__(
        self,
        fetch_open_positions: FetchPositions,
        resolve_last_price: ResolvePrice,
        on_trigger: OnTrigger,
        interval_ms: float = DEFAULT_INTERVAL_MS,
        cache_ttl_ms: float = DEFAULT_CACHE_TTL_MS,
        on_trigger_error: Optional[OnTriggerError] = None,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch_open_positions = fetch_open_positions
        self._resolve_last_price = resolve_last_price
        self._on_trigger = on_trigger
        self._on_trigger_error = on_trigger_error
        self.log = log or logger
        self._clock = clock

        if interval_ms < MIN_INTERVAL_MS:
            self.log.warning(
                f"[WATCH] Interval {interval_ms}ms below floor, using {MIN_INTERVAL_MS}ms"
            )
        self.interval_ms = max(interval_ms, MIN_INTERVAL_MS)
        self.cache = PositionCache(cache_ttl_ms)
        self.stats = WatcherStats()

        self._running = False
        self._stopped = False
        self._timer_task: Optional[asyncio.Task] = None
        self._pass_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True while an evaluation pass is in flight."""
        return self._running

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def start(self) -> "RiskWatcher":
        """Run one pass right away, then one per interval."""
        if self._timer_task is not None or self._stopped:
            return self
        self.log.info(
            f"[WATCH] Started. Interval: {self.interval_ms}ms, "
            f"cache TTL: {self.cache.ttl * 1000:.0f}ms"
        )
        self.tick()
        self._timer_task = asyncio.ensure_future(self._timer_loop())
        return self

    def stop(self):
        if self._stopped:
            return
        self._stopped = True
        if self._timer_task is not None:
            self._timer_task.cancel()
        self.log.info("[WATCH] Stopped")

    async def join(self):
        """Wait for an in-flight pass, if any, to finish."""
        task = self._pass_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    def tick(self) -> bool:
        """
        Start a pass unless one is already running.
        Returns False when the tick was dropped.
        """
        if self._running:
            self.stats.skipped_ticks += 1
            self.log.debug("[WATCH] Previous pass still running, skipping tick")
            return False
        self._running = True
        self._pass_task = asyncio.ensure_future(self._run_pass())
        return True

    async def _timer_loop(self):
        interval = self.interval_ms / 1000.0
        while not self._stopped:
            await asyncio.sleep(interval)
            if self._stopped:
                break
            self.tick()

    async def _run_pass(self):
        try:
            await self.evaluate()
        except Exception as e:
            self.stats.pass_failures += 1
            self.log.error(f"[WATCH] Evaluation failed: {e}", exc_info=True)
        finally:
            self._running = False

    async def evaluate(self):
        """
        One evaluation pass. Position and price lookup errors propagate to
        the caller; close callback errors are handled per position.
        """
        self.stats.passes += 1
        positions = await self._fetch_positions()
        if not positions:
            return

        handled: Set[str] = set()
        for position in positions:
            if position is None or position.id in handled:
                continue

            event = self._evaluate_position(position)
            if event is None:
                continue

            handled.add(position.id)
            await self._dispatch(event)

    async def _fetch_positions(self) -> List[Position]:
        now = self._clock()
        cached = self.cache.get(now)
        if cached is not None:
            return cached

        positions = await _maybe_await(self._fetch_open_positions())
        self.stats.fetches += 1
        self.cache.store(positions or [], now)
        return self.cache.positions

    def _evaluate_position(self, position: Position) -> Optional[TriggerEvent]:
        if position.side is None:
            self.log.debug(f"[WATCH] {position.symbol} #{position.id}: unknown side, skipping")
            return None

        qty = position.effective_qty
        if qty is None or qty <= 0:
            self.log.debug(f"[WATCH] {position.symbol} #{position.id}: no usable qty, skipping")
            return None

        price = to_decimal(self._resolve_last_price(position.symbol))
        if price is None:
            return None

        if not position.has_targets:
            return None

        kind = check_trigger(position.side, price, position.tp_price, position.sl_price)
        if kind is None:
            return None
        return TriggerEvent(position=position, kind=kind, price=price)

    async def _dispatch(self, event: TriggerEvent):
        position = event.position
        self.log.info(
            f"[WATCH] {position.symbol} {position.side.value} #{position.id}: "
            f"{event.kind.value} HIT @ {event.price} "
            f"(TP={position.tp_price}, SL={position.sl_price})"
        )
        try:
            await _maybe_await(self._on_trigger(position, event.kind, event.price))
        except Exception as e:
            self.stats.trigger_failures += 1
            self.log.error(
                f"[WATCH] Failed to close {position.symbol} {position.side.value} "
                f"via {event.kind.value}: {e}"
            )
            await self._report_failure(event, e)
            return

        self.stats.triggers += 1
        self.cache.discard(position.id)
        self.cache.invalidate()

    async def _report_failure(self, event: TriggerEvent, error: BaseException):
        if self._on_trigger_error is None:
            return
        try:
            await _maybe_await(self._on_trigger_error(event, error))
        except Exception as e:
            self.log.warning(f"[WATCH] Trigger error sink failed: {e}")


def start_risk_watcher(
    fetch_open_positions: FetchPositions,
    resolve_last_price: ResolvePrice,
    on_trigger: OnTrigger,
    interval_ms: float = DEFAULT_INTERVAL_MS,
    cache_ttl_ms: float = DEFAULT_CACHE_TTL_MS,
    **kwargs,
) -> RiskWatcher:
    """Build and start a watcher. The returned handle exposes stop()."""
    watcher = RiskWatcher(
        fetch_open_positions,
        resolve_last_price,
        on_trigger,
        interval_ms=interval_ms,
        cache_ttl_ms=cache_ttl_ms,
        **kwargs,
    )
    return watcher.start()
