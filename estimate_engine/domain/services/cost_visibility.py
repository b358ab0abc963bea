"""
Cost Visibility - RBAC boundary for internal cost and margin data.

filter_for_viewer() is the single chokepoint every external read of an
estimate or line item goes through. Viewers without the view-cost
capability get a shape where the restricted keys are absent (not zeroed,
not null); client prices and non-financial fields are kept.
"""
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Dict, Optional

from estimate_engine.config import EstimateConfig, get_config

# Keys removed for viewers without view_cost. Estimates carry the last
# three; line items carry all four.
RESTRICTED_FIELDS = frozenset({'unit_cost', 'total_cost', 'margin', 'margin_percent'})


class PermissionChecker(ABC):
    """
    Capability oracle supplied by the surrounding application.

    The estimate engine only asks questions; it never decides roles itself.
    """

    @abstractmethod
    def has_permission(self, actor_id: Optional[str], resource: str, action: str) -> bool:
        """Whether the actor may perform action on resource."""
        pass


def can_view_cost(
    checker: Optional[PermissionChecker],
    actor_id: Optional[str],
    config: Optional[EstimateConfig] = None
) -> bool:
    """
    Ask the oracle for the view-cost capability.

    No checker means no capability.
    """
    if checker is None:
        return False
    config = config or get_config()
    return bool(checker.has_permission(
        actor_id, config.view_cost_resource, config.view_cost_action
    ))


def filter_for_viewer(record: Any, can_view_cost: bool) -> Dict[str, Any]:
    """
    Shape an estimate or line item for a viewer.

    Args:
        record: Mapping from to_dict(), or an entity exposing to_dict()
        can_view_cost: Capability answer from the RBAC oracle

    Returns:
        The record unchanged when can_view_cost is True; otherwise a new
        dict without restricted keys, nested items filtered the same way
    """
    if not isinstance(record, Mapping):
        record = record.to_dict()

    if can_view_cost:
        return record

    view = {key: value for key, value in record.items() if key not in RESTRICTED_FIELDS}
    if isinstance(view.get('items'), list):
        view['items'] = [filter_for_viewer(item, False) for item in view['items']]
    return view
