"""
Tests for business rules (tier price calculation).
"""

import pytest
from decimal import Decimal

from pricesync.processor.pricing import (
    tier_price,
    is_valid_tier_price,
    to_decimal,
    tier_label,
    format_percentage,
)


class TestTierPrice:
    """Tests for tier_price function."""

    def test_depot_discount(self):
        """18% off 1999 is 1639.18, rounded to 1639."""
        assert tier_price(1999, 18) == Decimal("1639")

    def test_warehouse_discount(self):
        """26% off 1999 is 1479.26, rounded to 1479."""
        assert tier_price(1999, 26) == Decimal("1479")

    def test_half_rounds_up(self):
        """148.5 must round up to 149, not to the even neighbour."""
        assert tier_price(150, 1) == Decimal("149")

    def test_half_rounds_up_on_even_neighbour(self):
        """12.5 rounds to 13 (banker's rounding would give 12)."""
        assert tier_price(25, 50) == Decimal("13")

    def test_result_is_whole_number(self):
        result = tier_price("19.99", 18)
        assert result == result.to_integral_value()
        assert result == Decimal("16")

    def test_zero_discount_keeps_price(self):
        assert tier_price(100, 0) == Decimal("100")

    def test_full_discount_is_zero(self):
        assert tier_price(100, 100) == Decimal("0")

    def test_zero_price(self):
        assert tier_price(0, 18) == Decimal("0")

    def test_accepts_strings_and_floats(self):
        assert tier_price("1,999", "18") == Decimal("1639")
        assert tier_price(1999.0, 18.0) == Decimal("1639")

    def test_negative_price_raises(self):
        with pytest.raises(ValueError):
            tier_price(-1, 18)

    def test_non_numeric_price_raises(self):
        with pytest.raises(ValueError):
            tier_price("abc", 18)

    def test_discount_out_of_range_raises(self):
        with pytest.raises(ValueError):
            tier_price(100, 101)
        with pytest.raises(ValueError):
            tier_price(100, -5)

    @pytest.mark.parametrize("base", [0, 1, 7, 99, 150, 1999, 12345])
    @pytest.mark.parametrize("discount", [0, 1, 18, 26, 50, 100])
    def test_calculated_price_is_always_valid(self, base, discount):
        """A calculated tier price always validates against itself."""
        assert is_valid_tier_price(base, discount, tier_price(base, discount))


class TestIsValidTierPrice:
    """Tests for is_valid_tier_price function."""

    def test_matching_price(self):
        assert is_valid_tier_price(1999, 18, 1639) is True

    def test_unrounded_price_is_invalid(self):
        assert is_valid_tier_price(1999, 18, "1639.18") is False

    def test_off_by_one_is_invalid(self):
        assert is_valid_tier_price(1999, 26, 1480) is False

    def test_blank_supplied_price_is_invalid(self):
        assert is_valid_tier_price(1999, 18, "") is False


class TestToDecimal:
    """Tests for cell value coercion."""

    def test_numbers(self):
        assert to_decimal(19.99) == Decimal("19.99")
        assert to_decimal(5) == Decimal("5")

    def test_numeric_strings(self):
        assert to_decimal(" 1 234.50 ") == Decimal("1234.50")
        assert to_decimal("2,500") == Decimal("2500")

    def test_unusable_values(self):
        assert to_decimal(None) is None
        assert to_decimal("") is None
        assert to_decimal("n/a") is None
        assert to_decimal(True) is None
        assert to_decimal(float("nan")) is None


class TestFormatting:
    """Tests for labels used in validation messages."""

    def test_tier_label(self):
        assert tier_label("depot") == "Depot"
        assert tier_label("namibia_sd") == "Namibia Sd"

    def test_format_percentage(self):
        assert format_percentage(18.0) == "18"
        assert format_percentage(26) == "26"
        assert format_percentage(12.5) == "12.5"
