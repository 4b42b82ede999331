"""
Quick Trade — Opens paper positions at the current market price.

Two modes:
  USDT: size from a USD amount using the symbol's exchange filters
  QTY:  use the given base-asset quantity as-is

The stored position is what the risk watcher later monitors, so its symbol is
added to the live ticker stream before returning.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, TYPE_CHECKING
from exchange.models import Position, Side, SymbolFilters
from trading.numeric import QTY_PLACES, positive_decimal, quantize_places
from trading.quantity import QuantityValidationError, calculate_quantity
import logging
import sqlite3

if TYPE_CHECKING:
    from exchange.bybit_rest import BybitRestClient
    from exchange.bybit_ws import BybitTickerStream
    from storage.database import Database
    from trading.price_feed import PriceFeed

logger = logging.getLogger(__name__)

MODE_QTY = "QTY"
MODE_USDT = "USDT"


class QuickTradeError(Exception):
    """Order request rejected. code is BAD_REQUEST, NO_MARKET_PRICE, DB_ERROR or a sizing reason."""

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code


@dataclass
class QuickTradeRequest:
    symbol: str
    side: Any = "LONG"
    mode: str = MODE_QTY
    qty: Any = None
    usdt_amount: Any = None
    tp_price: Any = None
    sl_price: Any = None
    leverage: Any = None


class QuickTradeService:
    """Validates, sizes and stores new paper positions."""

    def __init__(
        self,
        db: "Database",
        price_feed: "PriceFeed",
        client: Optional["BybitRestClient"] = None,
        default_leverage: Decimal = Decimal("1"),
        stream: Optional["BybitTickerStream"] = None,
    ):
        self.db = db
        self.price_feed = price_feed
        self.client = client
        self.default_leverage = default_leverage
        self.stream = stream

    async def open_position(self, request: QuickTradeRequest) -> Position:
        symbol = (request.symbol or "").strip().upper()
        if not symbol:
            raise QuickTradeError("BAD_REQUEST", "Symbol is required")

        # Anything but SHORT opens a long
        side = Side.SHORT if Side.parse(request.side) == Side.SHORT else Side.LONG
        mode = MODE_USDT if str(request.mode).upper() == MODE_USDT else MODE_QTY

        entry_price = positive_decimal(self.price_feed.get_last_price(symbol))
        if entry_price is None:
            raise QuickTradeError(
                "NO_MARKET_PRICE", "No market price available for the selected symbol"
            )

        if mode == MODE_USDT:
            amount = positive_decimal(request.usdt_amount)
            if amount is None:
                raise QuickTradeError("BAD_REQUEST", "USDT amount must be greater than zero")
            filters = await self._filters_for(symbol)
            try:
                sized = calculate_quantity(amount, entry_price, filters)
            except QuantityValidationError as e:
                logger.warning(f"[TRADE] {symbol}: sizing rejected ({e.reason.value}): {e}")
                raise QuickTradeError(e.reason.value, e.message) from e
            qty = sized.quantity
        else:
            qty = positive_decimal(request.qty)
            if qty is None:
                raise QuickTradeError("BAD_REQUEST", "Quantity must be greater than zero")

        try:
            qty = quantize_places(qty, QTY_PLACES)
            size_usd = quantize_places(qty * entry_price, QTY_PLACES)
        except ArithmeticError as e:
            raise QuickTradeError("BAD_REQUEST", "Quantity is out of range") from e
        if qty <= 0:
            raise QuickTradeError("BAD_REQUEST", "Quantity must be greater than zero")

        position = Position(
            id=str(uuid.uuid4()),
            symbol=symbol,
            side=side,
            qty=qty,
            size_usd=size_usd,
            entry_price=entry_price,
            tp_price=request.tp_price,
            sl_price=request.sl_price,
            leverage=positive_decimal(request.leverage) or self.default_leverage,
            order_id=str(uuid.uuid4()),
        )

        try:
            self.db.create_position(position)
        except sqlite3.Error as e:
            logger.error(f"[TRADE] {symbol}: failed to store position: {e}")
            raise QuickTradeError("DB_ERROR", "Failed to create quick trade position") from e

        logger.info(
            f"[TRADE] Opened {side.value} {qty} {symbol} @ {entry_price} "
            f"(TP={position.tp_price}, SL={position.sl_price})"
        )
        await self._follow(symbol)
        return position

    async def _filters_for(self, symbol: str) -> SymbolFilters:
        if self.client is None:
            return SymbolFilters()
        return await self.client.get_symbol_filters(symbol)

    async def _follow(self, symbol: str):
        """Make sure the watcher sees live prices for a newly traded symbol."""
        if self.stream is None:
            return
        try:
            await self.stream.watch([symbol])
        except Exception as e:
            # The symbol is already registered; the next reconnect subscribes it
            logger.warning(f"[TRADE] {symbol}: ticker subscribe failed: {e}")
