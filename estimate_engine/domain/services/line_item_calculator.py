"""
Line Item Calculator - Derives materialized totals for one estimate line.

    total_cost         = quantity * unit_cost
    total_client_price = quantity * unit_client_price
    margin             = total_client_price - total_cost
    margin_percent     = margin / total_cost * 100   (0 when total_cost is 0)
"""
from estimate_engine.domain.entities import LineItemTotals
from estimate_engine.domain.exceptions import ValidationError
from estimate_engine.domain.money import (
    Number,
    ZERO,
    margin_percent,
    quantize_money,
    quantize_quantity,
    to_decimal,
)


def compute_line_item(
    quantity: Number,
    unit_cost: Number,
    unit_client_price: Number,
) -> LineItemTotals:
    """
    Compute the derived fields of a line item.

    Negative unit prices pass through unchanged; rejecting them is left to
    the request validation layer.

    Args:
        quantity: Non-negative quantity
        unit_cost: Internal unit price
        unit_client_price: Client-facing unit price

    Returns:
        LineItemTotals with money quantized to currency precision

    Raises:
        ValidationError: If quantity is negative, any input is not a number,
            or a value does not fit its column
    """
    quantity = to_decimal(quantity, 'quantity')
    unit_cost = to_decimal(unit_cost, 'unit_cost')
    unit_client_price = to_decimal(unit_client_price, 'unit_client_price')

    if quantity < ZERO:
        raise ValidationError('quantity', f"must be non-negative, got {quantity}")

    # Same precision the inputs are persisted with
    quantity = quantize_quantity(quantity, 'quantity')
    unit_cost = quantize_quantity(unit_cost, 'unit_cost')
    unit_client_price = quantize_quantity(unit_client_price, 'unit_client_price')

    total_cost = quantize_money(quantity * unit_cost, 'total_cost')
    total_client_price = quantize_money(quantity * unit_client_price, 'total_client_price')
    margin = quantize_money(total_client_price - total_cost, 'margin')

    return LineItemTotals(
        total_cost=total_cost,
        total_client_price=total_client_price,
        margin=margin,
        margin_percent=margin_percent(margin, total_cost),
    )
