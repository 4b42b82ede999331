"""
Bybit Ticker Stream — Live last prices for the risk watcher.

One public V5 connection carrying tickers.<SYMBOL> topics only. Every update
is written straight into the PriceFeed. The watched symbol set outlives the
connection: after a drop the stream reconnects and asks for all of it again.
"""

from __future__ import annotations
import asyncio
import json
from typing import Any, Iterable, List, Optional, Set, TYPE_CHECKING
import websockets
import logging

if TYPE_CHECKING:
    from trading.price_feed import PriceFeed

logger = logging.getLogger(__name__)

TICKER_PREFIX = "tickers."


def ticker_topics(symbols: Iterable[str]) -> List[str]:
    return [f"{TICKER_PREFIX}{s.upper()}" for s in symbols]


class BybitTickerStream:
    """Keeps the ticker subscription for a set of symbols alive."""

    def __init__(
        self,
        url: str,
        price_feed: "PriceFeed",
        reconnect_delay: float = 3.0,
        ping_interval: float = 20.0,
    ):
        self.url = url
        self.price_feed = price_feed
        self.reconnect_delay = reconnect_delay
        self.ping_interval = ping_interval
        self.updates = 0

        self._symbols: Set[str] = set()
        self._conn: Optional[Any] = None
        self._closing = False

    @property
    def symbols(self) -> Set[str]:
        return set(self._symbols)

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def watch(self, symbols: Iterable[str]) -> List[str]:
        """Add symbols to the stream. Returns the ones that were new."""
        added = sorted({s.upper() for s in symbols if s} - self._symbols)
        if added:
            self._symbols.update(added)
            await self._request("subscribe", added)
        return added

    async def unwatch(self, symbols: Iterable[str]) -> List[str]:
        removed = sorted({s.upper() for s in symbols if s} & self._symbols)
        if removed:
            self._symbols.difference_update(removed)
            await self._request("unsubscribe", removed)
        return removed

    async def _request(self, op: str, symbols: List[str]):
        # Not connected: the symbol set is replayed on connect
        conn = self._conn
        if conn is None:
            return
        await conn.send(json.dumps({"op": op, "args": ticker_topics(symbols)}))
        logger.info(f"[STREAM] {op} {', '.join(symbols)}")

    async def run(self):
        """Stream until close() is called, reconnecting after every drop."""
        self._closing = False
        while not self._closing:
            try:
                await self._stream_once()
            except websockets.ConnectionClosed as e:
                logger.warning(f"[STREAM] Disconnected ({e}), retrying in {self.reconnect_delay}s")
            except Exception as e:
                logger.error(f"[STREAM] Connection failed: {e}, retrying in {self.reconnect_delay}s")
            finally:
                self._conn = None
            if not self._closing:
                await asyncio.sleep(self.reconnect_delay)

    async def _stream_once(self):
        async with websockets.connect(
            self.url, ping_interval=self.ping_interval, ping_timeout=10, close_timeout=5
        ) as conn:
            self._conn = conn
            logger.info(f"[STREAM] Connected to {self.url}, {len(self._symbols)} symbols")
            if self._symbols:
                await self._request("subscribe", sorted(self._symbols))
            async for raw in conn:
                await self.handle_message(raw)

    async def close(self):
        self._closing = True
        conn = self._conn
        if conn is not None:
            await conn.close()

    async def handle_message(self, raw) -> bool:
        """Apply one frame to the price table. Returns True if it was a ticker update."""
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"[STREAM] Dropping non-JSON frame: {str(raw)[:100]}")
            return False
        if not isinstance(message, dict):
            return False

        # Subscription acks and pongs
        if "op" in message:
            if message.get("success") is False:
                logger.error(f"[STREAM] {message.get('op')} rejected: {message.get('ret_msg')}")
            return False

        topic = message.get("topic") or ""
        if not topic.startswith(TICKER_PREFIX):
            return False

        try:
            await self.price_feed.on_ticker(topic, message)
        except Exception as e:
            logger.error(f"[STREAM] {topic}: bad ticker update: {e}", exc_info=True)
            return False
        self.updates += 1
        return True
