"""
Unit tests for the quantity sizer.

Tests:
- Step-size rounding (always down, precision from step)
- Min qty / min notional enforcement
- Input validation reasons
"""

from decimal import Decimal

import pytest

from exchange.models import SymbolFilters
from trading.quantity import QuantityErrorReason, QuantityValidationError, calculate_quantity


class TestStepRounding:

    def test_rounds_down_to_step_and_passes_min_notional(self):
        result = calculate_quantity(
            100, 3.333, SymbolFilters(step_size=Decimal("0.01"), min_notional=Decimal("50"))
        )
        assert result.quantity == Decimal("30.00")
        assert result.notional == Decimal("99.99")

    def test_precision_follows_step_digits(self):
        result = calculate_quantity("10", "3", SymbolFilters(step_size=Decimal("0.001")))
        assert result.quantity == Decimal("3.333")
        assert result.quantity.as_tuple().exponent == -3

    def test_integer_step(self):
        result = calculate_quantity(1000, 7, SymbolFilters(step_size=Decimal("1")))
        assert result.quantity == Decimal("142")

    def test_coarse_step_never_rounds_up(self):
        # 0.0999 / step 0.1 must not become 0.1
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity("9.99", "100", SymbolFilters(step_size=Decimal("0.1")))
        assert exc.value.reason == QuantityErrorReason.STEP

    @pytest.mark.parametrize(
        "amount, price, step",
        [
            ("100", "3.333", "0.01"),
            ("57.31", "0.4471", "1"),
            ("250", "64123.5", "0.001"),
            ("12.5", "0.00001234", "1000"),
            ("999.99", "17.77", "0.1"),
        ],
    )
    def test_notional_never_exceeds_amount(self, amount, price, step):
        result = calculate_quantity(amount, price, SymbolFilters(step_size=Decimal(step)))
        assert result.notional <= Decimal(amount)
        assert Decimal(amount) - result.notional < Decimal(step) * Decimal(price)

    def test_no_filters_returns_raw_quantity(self):
        result = calculate_quantity(50, 200)
        assert result.quantity == Decimal("0.25")
        assert result.notional == Decimal("50")

    @pytest.mark.parametrize("step", ["0", "-0.01"])
    def test_non_positive_step_is_rejected(self, step):
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity(100, 10, SymbolFilters(step_size=Decimal(step)))
        assert exc.value.reason == QuantityErrorReason.STEP


class TestMinimums:

    def test_min_notional_rejects_small_order(self):
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity(1, 100, SymbolFilters(min_notional=Decimal("50")))
        assert exc.value.reason == QuantityErrorReason.MIN_NOTIONAL
        assert "50" in exc.value.message

    def test_min_qty_rejects_small_order(self):
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity(5, 100, SymbolFilters(min_qty=Decimal("0.1")))
        assert exc.value.reason == QuantityErrorReason.MIN_QTY

    def test_exact_minimums_are_accepted(self):
        result = calculate_quantity(
            10, 100, SymbolFilters(min_qty=Decimal("0.1"), min_notional=Decimal("10"))
        )
        assert result.quantity == Decimal("0.1")
        assert result.notional == Decimal("10.0")

    def test_min_qty_checked_before_min_notional(self):
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity(
                1, 100, SymbolFilters(min_qty=Decimal("1"), min_notional=Decimal("50"))
            )
        assert exc.value.reason == QuantityErrorReason.MIN_QTY


class TestInputValidation:

    @pytest.mark.parametrize("amount", [0, -5, None, "abc", float("nan"), float("inf")])
    def test_bad_amount(self, amount):
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity(amount, 100)
        assert exc.value.reason == QuantityErrorReason.PRICE

    @pytest.mark.parametrize("price", [0, -1, None, float("nan")])
    def test_bad_price(self, price):
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity(100, price)
        assert exc.value.reason == QuantityErrorReason.PRICE

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            calculate_quantity(0, 100)


class TestOutOfRange:

    def test_result_wider_than_default_precision(self):
        # 1e30 at 3 decimals needs 34 significant digits
        result = calculate_quantity(1, "1e-30", SymbolFilters(step_size=Decimal("0.001")))
        assert result.quantity == Decimal("1e30")
        assert result.notional == Decimal("1")

    def test_overflowing_quotient_is_a_price_error(self):
        with pytest.raises(QuantityValidationError) as exc:
            calculate_quantity("1e999999", "1e-999999", SymbolFilters(step_size=Decimal("0.001")))
        assert exc.value.reason == QuantityErrorReason.PRICE
