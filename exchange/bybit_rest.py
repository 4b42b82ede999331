"""
Bybit V5 REST API Client (public market data only).
Supplies price snapshots and per-symbol trading rules for order sizing.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
import aiohttp
import logging
from exchange.models import SymbolFilters
from trading.numeric import positive_decimal

logger = logging.getLogger(__name__)


class BybitRestClient:
    """Async Bybit V5 public REST wrapper."""

    def __init__(self, base_url: str, category: str = "linear", timeout_sec: float = 10.0):
        self.base_url = base_url
        self.category = category
        self.timeout_sec = timeout_sec
        self._session: Optional[aiohttp.ClientSession] = None
        # symbol -> trading rules; instruments rarely change during a session
        self._filters: Dict[str, SymbolFilters] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec)
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, endpoint: str, params: Optional[Dict] = None) -> Dict[str, Any]:
        """GET a public endpoint."""
        session = await self._get_session()
        url = f"{self.base_url}{endpoint}"

        try:
            async with session.get(url, params=params) as resp:
                data = await resp.json()

            if data.get("retCode") != 0:
                logger.error(
                    f"[REST] GET {endpoint} Error: "
                    f"code={data.get('retCode')}, msg={data.get('retMsg')}"
                )
            return data

        except Exception as e:
            logger.error(f"[REST] GET {endpoint} Exception: {e}")
            raise

    # ==================== Market Endpoints ====================

    async def get_tickers(self, symbol: Optional[str] = None) -> List[Dict]:
        """Get tickers for the category, or a single symbol."""
        params = {"category": self.category}
        if symbol:
            params["symbol"] = symbol.upper()
        data = await self._request("/v5/market/tickers", params)
        return data.get("result", {}).get("list", [])

    async def get_instruments_info(self, symbol: Optional[str] = None) -> List[Dict]:
        """Get instrument specifications (min qty, qty step, etc.)."""
        params = {"category": self.category, "limit": "1000"}
        if symbol:
            params["symbol"] = symbol.upper()
        data = await self._request("/v5/market/instruments-info", params)
        return data.get("result", {}).get("list", [])

    async def get_symbol_filters(self, symbol: str) -> SymbolFilters:
        """
        Trading rules for a symbol, cached after the first lookup.
        Unknown symbols yield empty filters (nothing enforced).
        """
        symbol = symbol.upper()
        cached = self._filters.get(symbol)
        if cached is not None:
            return cached

        instruments = await self.get_instruments_info(symbol)
        for inst in instruments:
            if inst.get("symbol") == symbol:
                filters = parse_lot_size_filter(inst)
                self._filters[symbol] = filters
                logger.info(
                    f"[REST] {symbol} filters: step={filters.step_size}, "
                    f"min_qty={filters.min_qty}, min_notional={filters.min_notional}"
                )
                return filters

        logger.warning(f"[REST] {symbol}: no instrument info, sizing without filters")
        return SymbolFilters()


def parse_lot_size_filter(instrument: Dict[str, Any]) -> SymbolFilters:
    """Map Bybit lotSizeFilter to SymbolFilters. Zero or missing means not enforced."""
    lot = instrument.get("lotSizeFilter", {}) or {}
    return SymbolFilters(
        step_size=positive_decimal(lot.get("qtyStep") or lot.get("basePrecision")),
        min_qty=positive_decimal(lot.get("minOrderQty")),
        min_notional=positive_decimal(lot.get("minNotionalValue") or lot.get("minOrderAmt")),
    )
