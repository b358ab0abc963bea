"""
Domain Services - Calculation, versioning, status and visibility of estimates.
"""

from .line_item_calculator import compute_line_item
from .estimate_aggregator import aggregate
from .cost_visibility import (
    PermissionChecker,
    RESTRICTED_FIELDS,
    can_view_cost,
    filter_for_viewer,
)
from .estimate_version_service import EstimateVersionService
from .estimate_service import EstimateService

__all__ = [
    'compute_line_item',
    'aggregate',
    'PermissionChecker',
    'RESTRICTED_FIELDS',
    'can_view_cost',
    'filter_for_viewer',
    'EstimateVersionService',
    'EstimateService',
]
