"""
SQLite Storage Layer.
Handles persistence for paper positions.
All monetary values stored as TEXT to preserve Decimal precision.
"""

from __future__ import annotations
import sqlite3
import uuid
from decimal import Decimal
from datetime import datetime
from typing import List, Optional
from exchange.models import Position, PositionStatus, TriggerKind
import logging

logger = logging.getLogger(__name__)


def _text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class Database:
    """SQLite position store with typed accessors."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self):
        """Initialize database connection and create tables."""
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        logger.info(f"[DB] Connected to {self.db_path}")

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        assert self._conn is not None, "Database not connected"
        return self._conn

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS positions (
                id TEXT PRIMARY KEY,
                symbol TEXT NOT NULL,
                side TEXT NOT NULL,
                qty TEXT,
                size_usd TEXT,
                entry_price TEXT,
                tp_price TEXT,
                sl_price TEXT,
                leverage TEXT NOT NULL DEFAULT '1',
                status TEXT NOT NULL DEFAULT 'OPEN',
                order_id TEXT,
                close_price TEXT,
                pnl TEXT,
                close_reason TEXT,
                opened_at TEXT,
                closed_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_positions_status ON positions(status);
            CREATE INDEX IF NOT EXISTS idx_positions_symbol ON positions(symbol);
        """)
        self.conn.commit()

    # ==================== Position Operations ====================

    def create_position(self, position: Position) -> Position:
        """Insert a position. Assigns a UUID when id is empty."""
        if position.side is None:
            raise ValueError(f"Position {position.id or '?'} has no side")
        if not position.id:
            position.id = str(uuid.uuid4())

        self.conn.execute(
            """INSERT INTO positions (id, symbol, side, qty, size_usd, entry_price,
               tp_price, sl_price, leverage, status, order_id, close_price, pnl,
               close_reason, opened_at, closed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                position.id, position.symbol, position.side.value,
                _text(position.qty), _text(position.size_usd),
                _text(position.entry_price),
                _text(position.tp_price), _text(position.sl_price),
                str(position.leverage), position.status.value, position.order_id,
                _text(position.close_price), _text(position.pnl),
                position.close_reason.value if position.close_reason else None,
                position.opened_at.isoformat(),
                position.closed_at.isoformat() if position.closed_at else None,
            ),
        )
        self.conn.commit()
        logger.info(
            f"[DB] Position {position.id} created: {position.side.value} "
            f"{position.symbol} qty={position.qty}"
        )
        return position

    def get_position(self, position_id: str) -> Optional[Position]:
        row = self.conn.execute(
            "SELECT * FROM positions WHERE id = ?", (str(position_id),)
        ).fetchone()
        return self._row_to_position(row) if row else None

    def get_open_positions(self, symbol: Optional[str] = None) -> List[Position]:
        if symbol:
            rows = self.conn.execute(
                "SELECT * FROM positions WHERE status = ? AND symbol = ? ORDER BY opened_at",
                (PositionStatus.OPEN.value, symbol.upper()),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM positions WHERE status = ? ORDER BY opened_at",
                (PositionStatus.OPEN.value,),
            ).fetchall()
        return [self._row_to_position(r) for r in rows]

    def get_open_symbols(self) -> List[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT symbol FROM positions WHERE status = ?",
            (PositionStatus.OPEN.value,),
        ).fetchall()
        return [r["symbol"] for r in rows]

    def update_targets(
        self,
        position_id: str,
        tp_price: Optional[Decimal],
        sl_price: Optional[Decimal],
    ) -> Optional[Position]:
        """Replace TP/SL on an open position. None clears a target."""
        cursor = self.conn.execute(
            "UPDATE positions SET tp_price=?, sl_price=? WHERE id=? AND status=?",
            (_text(tp_price), _text(sl_price), str(position_id), PositionStatus.OPEN.value),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_position(position_id)

    def close_position(
        self,
        position_id: str,
        close_price: Optional[Decimal] = None,
        pnl: Optional[Decimal] = None,
        reason: Optional[TriggerKind] = None,
    ) -> Optional[Position]:
        """
        Mark an OPEN position CLOSED.
        Returns None if it doesn't exist or was already closed.
        """
        cursor = self.conn.execute(
            """UPDATE positions SET status=?, close_price=?, pnl=?, close_reason=?,
               closed_at=? WHERE id=? AND status=?""",
            (
                PositionStatus.CLOSED.value, _text(close_price), _text(pnl),
                reason.value if reason else None,
                datetime.utcnow().isoformat(),
                str(position_id), PositionStatus.OPEN.value,
            ),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_position(position_id)

    # ==================== Row Converters ====================

    def _row_to_position(self, row) -> Position:
        return Position(
            id=row["id"],
            symbol=row["symbol"],
            side=row["side"],
            qty=row["qty"],
            size_usd=row["size_usd"],
            entry_price=row["entry_price"],
            tp_price=row["tp_price"],
            sl_price=row["sl_price"],
            leverage=row["leverage"],
            status=PositionStatus(row["status"]),
            order_id=row["order_id"],
            close_price=row["close_price"],
            pnl=row["pnl"],
            close_reason=TriggerKind(row["close_reason"]) if row["close_reason"] else None,
            opened_at=datetime.fromisoformat(row["opened_at"]) if row["opened_at"] else datetime.utcnow(),
            closed_at=datetime.fromisoformat(row["closed_at"]) if row["closed_at"] else None,
        )
