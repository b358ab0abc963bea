"""
Line Item Entities - Priced rows of an estimate.

Implements:
- Item kind taxonomy (labor, material, subcontractor)
- Caller input shape (LineItemSpec) carrying only raw inputs
- Materialized totals (LineItemTotals) shared by items and estimates
"""
from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import Optional

from estimate_engine.domain.exceptions import ValidationError
from estimate_engine.domain.money import to_decimal


class ItemKind(str, Enum):
    """Classification of an estimate line item."""
    LABOR = "labor"
    MATERIAL = "material"
    SUBCONTRACTOR = "subcontractor"


@dataclass(frozen=True)
class LineItemTotals:
    """
    Derived cost/price/margin figures.

    Used both for one line item and for an estimate-level aggregate; the
    formulas are identical at both levels.
    """

    total_cost: Decimal
    total_client_price: Decimal
    margin: Decimal
    margin_percent: Decimal

    def to_dict(self) -> dict:
        return {
            'total_cost': self.total_cost,
            'total_client_price': self.total_client_price,
            'margin': self.margin,
            'margin_percent': self.margin_percent,
        }


# Fields derived from quantity and unit prices; never accepted as input
DERIVED_FIELDS = tuple(f.name for f in fields(LineItemTotals))


@dataclass
class LineItemSpec:
    """
    Caller-supplied description of a line item.

    Only raw inputs live here. Derived totals are computed by
    compute_line_item() and are never taken from the caller.

    Attributes:
        kind: Labor, material or subcontractor
        name: Display name
        unit: Unit-of-measure label (m2, h, pcs, ...)
        quantity: Non-negative quantity
        unit_cost: Internal unit price
        unit_client_price: Client-facing unit price
        description: Optional free text
        order: Display position; defaults to the item's index on create
        material_catalog_id: Optional catalog reference
        work_type_id: Optional work type reference
    """

    kind: ItemKind
    name: str
    unit: str
    quantity: Decimal
    unit_cost: Decimal
    unit_client_price: Decimal
    description: Optional[str] = None
    order: Optional[int] = None
    material_catalog_id: Optional[str] = None
    work_type_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'LineItemSpec':
        """
        Create a spec from a plain mapping.

        Derived keys (total_cost, margin, ...) in the mapping are ignored.

        Raises:
            ValidationError: If a required key is missing or a value is invalid
        """
        for key in ('kind', 'name', 'unit', 'quantity', 'unit_cost', 'unit_client_price'):
            if data.get(key) is None:
                raise ValidationError(key, "is required")

        return cls(
            kind=parse_kind(data['kind']),
            name=data['name'],
            unit=data['unit'],
            quantity=to_decimal(data['quantity'], 'quantity'),
            unit_cost=to_decimal(data['unit_cost'], 'unit_cost'),
            unit_client_price=to_decimal(data['unit_client_price'], 'unit_client_price'),
            description=data.get('description'),
            order=data.get('order'),
            material_catalog_id=data.get('material_catalog_id'),
            work_type_id=data.get('work_type_id'),
        )


def parse_kind(value) -> ItemKind:
    """Coerce a string or ItemKind to ItemKind."""
    try:
        return ItemKind(value)
    except ValueError:
        allowed = ', '.join(k.value for k in ItemKind)
        raise ValidationError('kind', f"'{value}' is not one of: {allowed}")
