from decimal import Decimal

import pytest

from conftest import make_position
from exchange.models import Position, PositionStatus, Side, TriggerKind


class TestPositionStore:

    def test_create_and_read_back(self, db):
        pos = make_position("p1", side="SHORT", qty="0.12345678", entry="64000.5", tp="60000", sl="66000")
        db.create_position(pos)

        loaded = db.get_position("p1")
        assert loaded.side == Side.SHORT
        assert loaded.qty == Decimal("0.12345678")
        assert loaded.entry_price == Decimal("64000.5")
        assert loaded.tp_price == Decimal("60000")
        assert loaded.sl_price == Decimal("66000")
        assert loaded.status == PositionStatus.OPEN

    def test_empty_id_gets_uuid(self, db):
        pos = db.create_position(Position(id="", symbol="BTCUSDT", qty="1"))
        assert len(pos.id) == 36
        assert db.get_position(pos.id) is not None

    def test_derived_qty_is_not_persisted(self, db):
        db.create_position(Position(id="d1", symbol="ETHUSDT", size_usd="500", entry_price="50"))
        loaded = db.get_position("d1")
        assert loaded.qty is None
        assert loaded.effective_qty == Decimal("10")

    def test_open_positions_filter(self, db):
        db.create_position(make_position("a", symbol="BTCUSDT"))
        db.create_position(make_position("b", symbol="ETHUSDT"))
        db.create_position(make_position("c", symbol="ETHUSDT"))
        db.close_position("c")

        assert sorted(p.id for p in db.get_open_positions()) == ["a", "b"]
        assert [p.id for p in db.get_open_positions("ethusdt")] == ["b"]
        assert sorted(db.get_open_symbols()) == ["BTCUSDT", "ETHUSDT"]

    def test_close_position_records_outcome(self, db):
        db.create_position(make_position("p1", tp="110"))
        closed = db.close_position("p1", close_price=Decimal("111"), pnl=Decimal("11"), reason=TriggerKind.TP)

        assert closed.status == PositionStatus.CLOSED
        assert closed.close_price == Decimal("111")
        assert closed.pnl == Decimal("11")
        assert closed.close_reason == TriggerKind.TP
        assert closed.closed_at is not None
        assert db.get_open_positions() == []

    def test_close_twice_is_noop(self, db):
        db.create_position(make_position("p1"))
        assert db.close_position("p1") is not None
        assert db.close_position("p1") is None
        assert db.close_position("missing") is None

    def test_update_targets(self, db):
        db.create_position(make_position("p1", tp="110", sl="90"))
        updated = db.update_targets("p1", Decimal("120"), None)
        assert updated.tp_price == Decimal("120")
        assert updated.sl_price is None

        db.close_position("p1")
        assert db.update_targets("p1", Decimal("130"), None) is None

    def test_odd_rows_do_not_break_open_positions(self, db):
        db.create_position(make_position("big", qty="1e21", tp="2"))
        db.create_position(make_position("odd", tp="2"))
        db.create_position(make_position("ok", tp="2"))
        db.conn.execute("UPDATE positions SET side = 'SIDEWAYS' WHERE id = 'odd'")
        db.conn.execute("UPDATE positions SET qty = NULL, size_usd = '1e999999', entry_price = '1e-999999' WHERE id = 'ok'")
        db.conn.commit()

        loaded = {p.id: p for p in db.get_open_positions()}
        assert loaded["big"].effective_qty == Decimal("1e21")
        assert loaded["odd"].side is None
        assert loaded["ok"].effective_qty is None

    def test_position_without_side_is_rejected(self, db):
        with pytest.raises(ValueError):
            db.create_position(Position(id="s", symbol="BTCUSDT", side="?", qty="1"))
        assert db.get_position("s") is None
