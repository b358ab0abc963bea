"""
Money helpers - exact Decimal arithmetic for currency amounts.

Floats never enter a calculation: every input is converted through its
string form and every materialized value is quantized to the configured
number of places.
"""
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from estimate_engine.config import get_config
from estimate_engine.domain.exceptions import ValidationError

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Total digits of the NUMERIC columns amounts are persisted in
MONEY_DIGITS = 14
QUANTITY_DIGITS = 14
PERCENT_DIGITS = 20


def to_decimal(value: Number, field: str = "amount") -> Decimal:
    """
    Convert a caller-supplied number to Decimal.

    Floats go through str() so 0.1 becomes Decimal('0.1') rather than its
    binary expansion.

    Raises:
        ValidationError: If the value is missing, boolean, or not a finite number
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(field, "a numeric value is required")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(field, f"'{value}' is not a number")
    if not result.is_finite():
        raise ValidationError(field, "must be a finite number")
    return result


def column_limit(digits: int, places: int) -> Decimal:
    """Smallest magnitude a NUMERIC(digits, places) column cannot hold."""
    return Decimal(1).scaleb(digits - places)


def quantize(value: Decimal, places: int, rounding: Optional[str] = None, field: str = "amount") -> Decimal:
    """
    Round a Decimal to a fixed number of places.

    Raises:
        ValidationError: If the value has too many digits for the decimal context
    """
    rounding = rounding or get_config().rounding
    try:
        return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)
    except InvalidOperation:
        raise ValidationError(field, f"{value} is too large")


def _bounded(value: Decimal, digits: int, places: int, field: str) -> Decimal:
    """Quantize and make sure the result fits its NUMERIC column."""
    value = quantize(value, places, field=field)
    limit = column_limit(digits, places)
    if abs(value) >= limit:
        raise ValidationError(field, f"must be less than {limit:f} in absolute value, got {value}")
    return value


def quantize_money(value: Decimal, field: str = "amount") -> Decimal:
    """Round to currency precision."""
    return _bounded(value, MONEY_DIGITS, get_config().currency_places, field)


def quantize_quantity(value: Decimal, field: str = "quantity") -> Decimal:
    """Round to the precision kept for quantities and unit prices."""
    return _bounded(value, QUANTITY_DIGITS, get_config().quantity_places, field)


def quantize_percent(value: Decimal, field: str = "margin_percent") -> Decimal:
    """Round to the precision kept for percentages."""
    return _bounded(value, PERCENT_DIGITS, get_config().percent_places, field)


def margin_percent(margin: Decimal, cost: Decimal) -> Decimal:
    """
    Margin as a percentage of cost.

    Zero (not infinite) whenever cost is not positive, so free items and
    empty estimates report 0%.
    """
    if cost <= ZERO:
        return quantize_percent(ZERO)
    return quantize_percent(margin / cost * HUNDRED)
