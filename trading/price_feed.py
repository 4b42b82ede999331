"""
Price Feed — In-memory last-price table.
Written by the ticker stream, read by the risk watcher on every pass.
Lookups never touch the network.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, List, Optional
from trading.numeric import positive_decimal
import logging

logger = logging.getLogger(__name__)


class PriceFeed:
    """Latest known price per symbol."""

    def __init__(self):
        self._prices: Dict[str, Decimal] = {}

    def set_last_price(self, symbol: str, price: Any) -> bool:
        """Record a price. Returns False if the value was unusable."""
        parsed = positive_decimal(price)
        if not symbol or parsed is None:
            return False
        self._prices[symbol.upper()] = parsed
        return True

    def get_last_price(self, symbol: str) -> Optional[Decimal]:
        return self._prices.get((symbol or "").upper())

    def all_last_prices(self) -> Dict[str, Decimal]:
        return dict(self._prices)

    def seed_from_tickers(self, tickers: List[Dict]) -> int:
        """Prime the table from a REST tickers snapshot."""
        count = 0
        for ticker in tickers:
            if self.set_last_price(ticker.get("symbol", ""), ticker.get("lastPrice")):
                count += 1
        logger.info(f"[PRICE] Seeded {count} prices from REST snapshot")
        return count

    async def on_ticker(self, topic: str, data: Dict[str, Any]):
        """WebSocket tickers.<SYMBOL> handler."""
        tick_data = data.get("data", {})
        if not tick_data:
            return

        symbol = tick_data.get("symbol") or topic.rsplit(".", 1)[-1]
        # Delta messages only carry fields that changed
        last_price = tick_data.get("lastPrice")
        if last_price is None:
            return

        if not self.set_last_price(symbol, last_price):
            logger.warning(f"[PRICE] {symbol}: ignoring bad price {last_price!r}")
