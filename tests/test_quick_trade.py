import sqlite3
from decimal import Decimal

import pytest

from exchange.models import Side, SymbolFilters
from trading.price_feed import PriceFeed
from trading.quick_trade import QuickTradeError, QuickTradeRequest, QuickTradeService


class FakeFiltersClient:
    def __init__(self, filters):
        self.filters = filters
        self.calls = []

    async def get_symbol_filters(self, symbol):
        self.calls.append(symbol)
        return self.filters


class FakeStream:
    def __init__(self, fail=False):
        self.fail = fail
        self.watched = []

    async def watch(self, symbols):
        if self.fail:
            raise ConnectionError("socket closed")
        self.watched.extend(symbols)
        return list(symbols)


@pytest.fixture
def feed():
    prices = PriceFeed()
    prices.set_last_price("BTCUSDT", "50000")
    prices.set_last_price("XRPUSDT", "3.333")
    return prices


class TestQuickTrade:

    @pytest.mark.asyncio
    async def test_usdt_mode_sizes_with_filters(self, db, feed):
        client = FakeFiltersClient(SymbolFilters(step_size=Decimal("0.01"), min_notional=Decimal("50")))
        service = QuickTradeService(db, feed, client=client)

        pos = await service.open_position(
            QuickTradeRequest(symbol="xrpusdt", side="LONG", mode="USDT", usdt_amount="100", tp_price="4", sl_price="3")
        )

        assert client.calls == ["XRPUSDT"]
        assert pos.qty == Decimal("30.00")
        assert pos.entry_price == Decimal("3.333")
        assert pos.size_usd == Decimal("99.99")
        stored = db.get_position(pos.id)
        assert stored.tp_price == Decimal("4")
        assert stored.sl_price == Decimal("3")
        assert stored.order_id

    @pytest.mark.asyncio
    async def test_usdt_mode_sizing_error_code(self, db, feed):
        client = FakeFiltersClient(SymbolFilters(min_notional=Decimal("50")))
        service = QuickTradeService(db, feed, client=client)

        with pytest.raises(QuickTradeError) as exc:
            await service.open_position(QuickTradeRequest(symbol="BTCUSDT", mode="USDT", usdt_amount="1"))
        assert exc.value.code == "MIN_NOTIONAL"
        assert db.get_open_positions() == []

    @pytest.mark.asyncio
    async def test_qty_mode(self, db, feed):
        service = QuickTradeService(db, feed, default_leverage=Decimal("5"))
        pos = await service.open_position(
            QuickTradeRequest(symbol="BTCUSDT", side="short", qty="0.123456789")
        )
        assert pos.side == Side.SHORT
        assert pos.qty == Decimal("0.12345678")
        assert pos.leverage == Decimal("5")
        assert pos.tp_price is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_kwargs, code",
        [
            ({"symbol": ""}, "BAD_REQUEST"),
            ({"symbol": "DOGEUSDT", "qty": "1"}, "NO_MARKET_PRICE"),
            ({"symbol": "BTCUSDT", "qty": "0"}, "BAD_REQUEST"),
            ({"symbol": "BTCUSDT", "mode": "USDT", "usdt_amount": "-1"}, "BAD_REQUEST"),
        ],
    )
    async def test_rejections(self, db, feed, request_kwargs, code):
        service = QuickTradeService(db, feed)
        with pytest.raises(QuickTradeError) as exc:
            await service.open_position(QuickTradeRequest(**request_kwargs))
        assert exc.value.code == code

    @pytest.mark.asyncio
    async def test_store_failure_maps_to_db_error(self, db, feed, monkeypatch):
        def broken(position):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(db, "create_position", broken)
        service = QuickTradeService(db, feed)
        with pytest.raises(QuickTradeError) as exc:
            await service.open_position(QuickTradeRequest(symbol="BTCUSDT", qty="1"))
        assert exc.value.code == "DB_ERROR"

    @pytest.mark.asyncio
    async def test_new_symbol_joins_the_ticker_stream(self, db, feed):
        stream = FakeStream()
        service = QuickTradeService(db, feed, stream=stream)
        await service.open_position(QuickTradeRequest(symbol="xrpusdt", qty="10", tp_price="4"))
        assert stream.watched == ["XRPUSDT"]

    @pytest.mark.asyncio
    async def test_stream_failure_keeps_the_position(self, db, feed):
        service = QuickTradeService(db, feed, stream=FakeStream(fail=True))
        pos = await service.open_position(QuickTradeRequest(symbol="BTCUSDT", qty="1"))
        assert db.get_position(pos.id) is not None

    @pytest.mark.asyncio
    async def test_unrecognized_side_opens_long(self, db, feed):
        service = QuickTradeService(db, feed)
        pos = await service.open_position(QuickTradeRequest(symbol="BTCUSDT", side="buy", qty="1"))
        assert pos.side == Side.LONG
