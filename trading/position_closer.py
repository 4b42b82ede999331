"""
Position Closer — Trigger callback for the risk watcher.

On a TP/SL crossing: compute realized PnL at the trigger price, mark the
position CLOSED in the store, notify. Store errors propagate so the watcher
keeps the position and retries on the next pass.
"""

from __future__ import annotations
from decimal import Decimal
from collections import OrderedDict
from typing import Optional, TYPE_CHECKING
from exchange.models import Position, Side, TriggerEvent, TriggerKind
from trading.numeric import QTY_PLACES, quantize_places
import logging

if TYPE_CHECKING:
    from storage.database import Database
    from notifications.telegram import TelegramNotifier

logger = logging.getLogger(__name__)


def calculate_pnl(side: Side, entry_price: Decimal, exit_price: Decimal, qty: Decimal) -> Decimal:
    if side == Side.LONG:
        return (exit_price - entry_price) * qty
    return (entry_price - exit_price) * qty


class PositionCloser:
    """Closes paper positions at the trigger price."""

    def __init__(
        self,
        db: "Database",
        notifier: Optional["TelegramNotifier"] = None,
        alert_every: int = 20,
        max_tracked: int = 500,
    ):
        self.db = db
        self.notifier = notifier
        self.alert_every = max(1, alert_every)
        self.max_tracked = max(1, max_tracked)
        # position id -> consecutive failed closes, least recently failed first
        self._failures: "OrderedDict[str, int]" = OrderedDict()

    async def close(self, position: Position, kind: TriggerKind, price: Decimal):
        qty = position.effective_qty or Decimal("0")
        pnl = Decimal("0")
        if position.entry_price is not None:
            pnl = quantize_places(
                calculate_pnl(position.side, position.entry_price, price, qty), QTY_PLACES
            )

        closed = self.db.close_position(position.id, close_price=price, pnl=pnl, reason=kind)
        self._failures.pop(position.id, None)

        if closed is None:
            # Closed by someone else since the snapshot was taken
            logger.warning(f"[CLOSE] {position.symbol} #{position.id}: already closed, nothing to do")
            return

        logger.info(
            f"[CLOSE] {position.symbol} {position.side.value} #{position.id} closed by "
            f"{kind.value} @ {price}. PnL=${pnl:+.4f}"
        )
        if self.notifier:
            await self.notifier.send_position_closed(
                symbol=position.symbol,
                side=position.side.value,
                reason=kind.value,
                entry_price=str(position.entry_price),
                close_price=str(price),
                qty=str(qty),
                pnl=f"{pnl:.4f}",
            )

    async def on_close_failed(self, event: TriggerEvent, error: BaseException):
        """Error sink for the watcher. Alerts on the first failure and every Nth after."""
        position = event.position
        count = self._failures.pop(position.id, 0) + 1
        self._failures[position.id] = count
        # Positions closed or edited elsewhere stop failing but never succeed here
        while len(self._failures) > self.max_tracked:
            self._failures.popitem(last=False)

        if count > 1 and count % self.alert_every != 0:
            return
        logger.warning(
            f"[CLOSE] {position.symbol} #{position.id}: close via {event.kind.value} "
            f"failed {count} time(s)"
        )
        if self.notifier:
            await self.notifier.send_trigger_failure(
                symbol=position.symbol,
                side=position.side.value,
                reason=event.kind.value,
                error=str(error),
            )

    def failure_count(self, position_id: str) -> int:
        return self._failures.get(position_id, 0)
