"""
Arithmetic helpers shared by every ledger service.

Property-based cases use hypothesis to drive the weighted average with
arbitrary receipts; the fixed cases pin the rounding rules.
"""
from decimal import Decimal

import pytest
from hypothesis import given, settings as hyp_settings, strategies as st

from inventory.services.base_service import (
    ValidationError,
    parse_decimal,
    percentage,
    round_cost,
    round_money,
    round_quantity,
    safe_divide,
    to_decimal,
    weighted_average,
)

quantities = st.decimals(min_value=Decimal("0.001"), max_value=Decimal("100000"), places=3)
costs = st.decimals(min_value=Decimal("0"), max_value=Decimal("10000"), places=4)


class TestRounding:
    """Quantities keep 3 places, costs 4, money 2, all half-up."""

    def test_quantity_rounds_half_up(self):
        assert round_quantity(Decimal("1.0005")) == Decimal("1.001")

    def test_cost_rounds_half_up(self):
        assert round_cost(Decimal("2.33335")) == Decimal("2.3334")

    def test_money_rounds_half_up(self):
        assert round_money(Decimal("0.125")) == Decimal("0.13")

    def test_safe_divide_by_zero_is_zero(self):
        assert safe_divide(Decimal("10"), Decimal("0")) == Decimal("0")

    def test_percentage_of_zero_whole(self):
        assert percentage(Decimal("5"), Decimal("0")) == Decimal("0")

    def test_percentage(self):
        assert percentage(Decimal("35"), Decimal("100")) == Decimal("35.00")


class TestParsing:

    def test_to_decimal_falls_back_on_garbage(self):
        assert to_decimal("abc") == Decimal("0")

    def test_parse_decimal_rejects_garbage(self):
        with pytest.raises(ValidationError) as exc:
            parse_decimal("abc", "quantity")
        assert exc.value.code == "VALIDATION_ERROR"
        assert exc.value.details["field"] == "quantity"

    def test_parse_decimal_requires_value(self):
        with pytest.raises(ValidationError, match="Unit cost is required"):
            parse_decimal("", "unit_cost")

    def test_parse_decimal_rejects_infinity(self):
        with pytest.raises(ValidationError):
            parse_decimal("Infinity", "quantity")

    def test_parse_decimal_keeps_float_text(self):
        assert parse_decimal(0.1, "quantity") == Decimal("0.1")


class TestWeightedAverage:

    def test_first_receipt_takes_incoming_cost(self):
        assert weighted_average(Decimal("0"), Decimal("0"), Decimal("10"), Decimal("2.5")) == Decimal("2.5000")

    def test_two_receipts(self):
        # 100 @ 2.00 then 50 @ 3.00 -> 350 / 150
        assert weighted_average(Decimal("100"), Decimal("2"), Decimal("50"), Decimal("3")) == Decimal("2.3333")

    @hyp_settings(max_examples=200)
    @given(q1=quantities, c1=costs, q2=quantities, c2=costs)
    def test_average_lies_between_inputs(self, q1, c1, q2, c2):
        result = weighted_average(q1, c1, q2, c2)
        low, high = min(c1, c2), max(c1, c2)
        assert round_cost(low) <= result <= round_cost(high)

    @hyp_settings(max_examples=200)
    @given(q1=quantities, q2=quantities, c=costs)
    def test_same_cost_is_stable(self, q1, q2, c):
        assert weighted_average(q1, c, q2, c) == round_cost(c)
