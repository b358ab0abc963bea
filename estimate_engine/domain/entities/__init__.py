"""
Domain Entities - Value objects and enums of the estimate engine.
"""

from .line_item import ItemKind, LineItemSpec, LineItemTotals, DERIVED_FIELDS, parse_kind
from .estimate import (
    EstimateStatus,
    ALLOWED_TRANSITIONS,
    STATUS_TIMESTAMPS,
    PaginatedResult,
    can_transition,
)

__all__ = [
    'ItemKind', 'LineItemSpec', 'LineItemTotals', 'DERIVED_FIELDS', 'parse_kind',
    'EstimateStatus', 'ALLOWED_TRANSITIONS', 'STATUS_TIMESTAMPS',
    'PaginatedResult', 'can_transition',
]
