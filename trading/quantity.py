"""
Quantity Sizer — Converts a USD trade amount into an exchange-valid quantity.

Rules, applied in order:
  - amount and price must be finite and > 0
  - qty = amount / price, rounded DOWN to step size (never more than authorized)
  - rounded qty must stay above zero, min qty and min notional

Pure function, no state. Safe to call from anywhere.
"""

from __future__ import annotations
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from exchange.models import QuantityResult, SymbolFilters
from trading.numeric import EPSILON, round_down_to_step, to_decimal
import logging

logger = logging.getLogger(__name__)


class QuantityErrorReason(Enum):
    PRICE = "PRICE"
    STEP = "STEP"
    MIN_QTY = "MIN_QTY"
    MIN_NOTIONAL = "MIN_NOTIONAL"


class QuantityValidationError(ValueError):
    """Sizing failed. Branch on .reason, the message is for humans."""

    def __init__(self, reason: QuantityErrorReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message

    def __repr__(self) -> str:
        return f"QuantityValidationError({self.reason.value}, {self.message!r})"


def calculate_quantity(
    amount_usd: Any,
    price: Any,
    filters: Optional[SymbolFilters] = None,
) -> QuantityResult:
    """
    Size an order from a USD amount.
    Raises QuantityValidationError with PRICE, STEP, MIN_QTY or MIN_NOTIONAL.
    """
    amount = to_decimal(amount_usd)
    if amount is None or amount <= 0:
        raise QuantityValidationError(
            QuantityErrorReason.PRICE, "Trade amount must be greater than zero"
        )
    px = to_decimal(price)
    if px is None or px <= 0:
        raise QuantityValidationError(
            QuantityErrorReason.PRICE, "Unable to determine valid market price"
        )

    filters = filters or SymbolFilters()
    step = None
    if filters.step_size is not None:
        step = to_decimal(filters.step_size)
        if step is None or step <= 0:
            raise QuantityValidationError(
                QuantityErrorReason.STEP, "Step size must be greater than zero"
            )

    try:
        quantity = amount / px
        if step is not None:
            quantity = round_down_to_step(quantity, step)
        notional = quantity * px
    except ArithmeticError as e:
        # Overflow / InvalidOperation: the quotient is beyond Decimal range
        raise QuantityValidationError(
            QuantityErrorReason.PRICE, f"Trade amount and price are out of range ({amount} @ {px})"
        ) from e

    if quantity <= 0:
        raise QuantityValidationError(
            QuantityErrorReason.STEP,
            "Calculated quantity is zero after applying step size",
        )

    min_qty = to_decimal(filters.min_qty)
    if min_qty is not None and min_qty > 0 and quantity + EPSILON < min_qty:
        raise QuantityValidationError(
            QuantityErrorReason.MIN_QTY, f"Quantity must be at least {min_qty}"
        )

    min_notional = to_decimal(filters.min_notional)
    if min_notional is not None and min_notional > 0 and notional + EPSILON < min_notional:
        raise QuantityValidationError(
            QuantityErrorReason.MIN_NOTIONAL, f"Notional must be at least {min_notional}"
        )

    logger.debug(f"[SIZE] ${amount} @ {px} -> qty={quantity}, notional={notional}")
    return QuantityResult(quantity=quantity, notional=notional)
