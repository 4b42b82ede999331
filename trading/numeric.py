"""
Shared numeric helpers.
Everything monetary goes through Decimal; floats are converted via str() so
0.1 stays 0.1 instead of its binary expansion.
"""

from __future__ import annotations
from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Any, Optional

# Tolerance for min-qty / min-notional comparisons
EPSILON = Decimal("1e-12")

# Stored quantities keep 8 fractional digits
QTY_PLACES = 8


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse value into a finite Decimal, or None if it can't be."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    if not parsed.is_finite():
        return None
    return parsed


def positive_decimal(value: Any) -> Optional[Decimal]:
    parsed = to_decimal(value)
    if parsed is None or parsed <= 0:
        return None
    return parsed


def step_precision(step: Decimal) -> int:
    """Number of fractional digits in a step size (0.001 -> 3, 1 -> 0)."""
    exponent = step.normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


def quantize_places(value: Decimal, places: int, rounding: str = ROUND_DOWN) -> Decimal:
    with localcontext() as ctx:
        # Wide enough for every integer digit plus the kept fraction
        ctx.prec = max(ctx.prec, value.adjusted() + places + 2)
        return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)


def round_down_to_step(value: Decimal, step: Decimal) -> Decimal:
    """Round value down to an integer multiple of step."""
    with localcontext() as ctx:
        ctx.rounding = ROUND_DOWN
        steps = (value / step).to_integral_value()
        ctx.prec = max(ctx.prec, steps.adjusted() + len(step.as_tuple().digits) + 1)
        return quantize_places(steps * step, step_precision(step))
