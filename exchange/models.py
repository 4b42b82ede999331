"""
Data models for the paper-trading risk watcher.
Uses Decimal for all monetary/price calculations — no floating point errors.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from datetime import datetime

from trading.numeric import QTY_PLACES, positive_decimal, quantize_places, to_decimal


class Side(Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def parse(cls, value) -> Optional["Side"]:
        """LONG/SHORT in any case. Anything else is None."""
        if isinstance(value, Side):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return None


class TriggerKind(Enum):
    TP = "TP"
    SL = "SL"


class PositionStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass
class Position:
    """
    Open (or closed) paper position.

    Numeric fields accept anything Decimal-parsable and are normalized once on
    construction. Targets that are missing, non-finite or <= 0 become None.
    An unrecognized side becomes None and the position is never evaluated.
    effective_qty is the quantity the risk watcher evaluates with: the stored
    qty when usable, otherwise size_usd / entry_price. It is never written
    back to qty.
    """
    id: str
    symbol: str
    side: Optional[Side] = Side.LONG
    qty: Optional[Decimal] = None
    size_usd: Optional[Decimal] = None
    entry_price: Optional[Decimal] = None
    tp_price: Optional[Decimal] = None
    sl_price: Optional[Decimal] = None
    leverage: Decimal = Decimal("1")
    status: PositionStatus = PositionStatus.OPEN
    order_id: Optional[str] = None
    close_price: Optional[Decimal] = None
    pnl: Optional[Decimal] = None
    close_reason: Optional[TriggerKind] = None
    opened_at: datetime = field(default_factory=datetime.utcnow)
    closed_at: Optional[datetime] = None
    effective_qty: Optional[Decimal] = field(default=None, init=False, compare=False)

    def __post_init__(self):
        self.id = str(self.id)
        self.symbol = str(self.symbol or "").upper()
        self.side = Side.parse(self.side)
        self.qty = to_decimal(self.qty)
        self.size_usd = to_decimal(self.size_usd)
        self.entry_price = to_decimal(self.entry_price)
        self.tp_price = positive_decimal(self.tp_price)
        self.sl_price = positive_decimal(self.sl_price)
        self.leverage = positive_decimal(self.leverage) or Decimal("1")
        self.close_price = to_decimal(self.close_price)
        self.pnl = to_decimal(self.pnl)
        self.effective_qty = self._resolve_qty()

    def _resolve_qty(self) -> Optional[Decimal]:
        try:
            if self.qty is not None and self.qty > 0:
                return quantize_places(self.qty, QTY_PLACES, ROUND_HALF_UP)
            size = positive_decimal(self.size_usd)
            entry = positive_decimal(self.entry_price)
            if size is not None and entry is not None:
                derived = quantize_places(size / entry, QTY_PLACES, ROUND_HALF_UP)
                return derived if derived > 0 else None
        except ArithmeticError:
            # Outside Decimal range; treated as no usable qty
            return None
        return None

    @property
    def has_targets(self) -> bool:
        return self.tp_price is not None or self.sl_price is not None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN


@dataclass(frozen=True)
class SymbolFilters:
    """Exchange trading rules for a symbol. None means not enforced."""
    step_size: Optional[Decimal] = None
    min_qty: Optional[Decimal] = None
    min_notional: Optional[Decimal] = None


@dataclass(frozen=True)
class QuantityResult:
    quantity: Decimal
    notional: Decimal


@dataclass(frozen=True)
class TriggerEvent:
    """A target crossing detected during one evaluation pass."""
    position: Position
    kind: TriggerKind
    price: Decimal
    detected_at: datetime = field(default_factory=datetime.utcnow)
