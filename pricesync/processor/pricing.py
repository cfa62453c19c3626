"""
Business rules for calculating tier prices.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union


Number = Union[int, float, str, Decimal]

# Tier prices are whole numbers
WHOLE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Coerce a spreadsheet cell value to a Decimal.

    Args:
        value: Cell value (number, numeric string, or anything else)

    Returns:
        Decimal value, or None if the value is blank or not numeric
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        # str() keeps the shortest repr, so 19.99 stays 19.99
        result = Decimal(str(value))
    else:
        text = str(value).strip().replace(",", "").replace(" ", "")
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None

    if not result.is_finite():
        return None
    return result


def tier_price(base_price: Number, discount_percentage: Number) -> Decimal:
    """
    Calculate a tier price from a base price and a discount percentage.

    The discounted price is rounded to the nearest whole number, with halves
    rounded up (away from zero).

    Args:
        base_price: Regular price (>= 0)
        discount_percentage: Discount in percent, 0 to 100 (e.g. 18 for 18%)

    Returns:
        Whole-number tier price

    Raises:
        ValueError: If either input is not numeric or out of range
    """
    price = to_decimal(base_price)
    discount = to_decimal(discount_percentage)

    if price is None or price < 0:
        raise ValueError(f"Invalid base price: {base_price!r}")
    if discount is None or discount < 0 or discount > HUNDRED:
        raise ValueError(f"Invalid discount percentage: {discount_percentage!r}")

    discounted = price * (HUNDRED - discount) / HUNDRED
    return discounted.quantize(WHOLE, rounding=ROUND_HALF_UP)


def is_valid_tier_price(
    base_price: Number,
    discount_percentage: Number,
    supplied_price: Number
) -> bool:
    """Check whether a supplied tier price matches the calculated one."""
    supplied = to_decimal(supplied_price)
    if supplied is None:
        return False
    return tier_price(base_price, discount_percentage) == supplied


def tier_label(tier: str) -> str:
    """Human readable label for a tier name ("namibia_sd" -> "Namibia Sd")."""
    return tier.replace("_", " ").replace("-", " ").title()


def format_percentage(value: Number) -> str:
    """Format a discount percentage without trailing zeros (18.0 -> "18")."""
    decimal_value = to_decimal(value)
    if decimal_value is None:
        return str(value)
    if decimal_value == decimal_value.to_integral_value():
        return str(decimal_value.quantize(WHOLE))
    return str(decimal_value.normalize())
