"""
Estimate Aggregator - Rolls line items up into estimate-level totals.

Ensures mathematical invariants:
- Estimate.total_cost = Σ(Item.total_cost)
- Estimate.total_client_price = Σ(Item.total_client_price)
- Estimate.margin_percent is weighted by cost, not averaged per item
"""
from typing import Iterable

from estimate_engine.domain.entities import LineItemTotals
from estimate_engine.domain.money import ZERO, margin_percent, quantize_money, to_decimal


def aggregate(items: Iterable) -> LineItemTotals:
    """
    Sum materialized item totals into estimate totals.

    Args:
        items: Objects exposing total_cost and total_client_price
            (ORM line items or LineItemTotals)

    Returns:
        Estimate-level totals; all zeros for an empty collection
    """
    total_cost = ZERO
    total_client_price = ZERO

    for item in items:
        total_cost += to_decimal(item.total_cost, 'total_cost')
        total_client_price += to_decimal(item.total_client_price, 'total_client_price')

    total_cost = quantize_money(total_cost, 'total_cost')
    total_client_price = quantize_money(total_client_price, 'total_client_price')
    margin = quantize_money(total_client_price - total_cost, 'margin')

    return LineItemTotals(
        total_cost=total_cost,
        total_client_price=total_client_price,
        margin=margin,
        margin_percent=margin_percent(margin, total_cost),
    )
