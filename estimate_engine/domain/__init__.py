"""
Domain Layer - Core business entities and services for estimates.

This module contains:
- entities/: Value objects and enums (LineItemSpec, LineItemTotals, EstimateStatus)
- services/: Domain services (calculator, aggregator, versioning, EstimateService)
- events/: ORM-level invariant guards
"""

from .entities import (
    ItemKind, LineItemSpec, LineItemTotals, DERIVED_FIELDS,
    EstimateStatus, ALLOWED_TRANSITIONS, PaginatedResult,
)
from .exceptions import DomainError

__all__ = [
    'ItemKind', 'LineItemSpec', 'LineItemTotals', 'DERIVED_FIELDS',
    'EstimateStatus', 'ALLOWED_TRANSITIONS', 'PaginatedResult',
    'DomainError',
]
