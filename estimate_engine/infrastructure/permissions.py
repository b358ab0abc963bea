"""
Role-based PermissionChecker backed by configured role grants.

Roles are resolved per actor through an injected lookup (the user/role
store lives outside the estimate engine); grants come from
rbac.role_grants in estimate_config.yaml.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional

from estimate_engine.config import get_config
from estimate_engine.domain.services.cost_visibility import PermissionChecker

logger = logging.getLogger(__name__)


class RolePermissionChecker(PermissionChecker):
    """
    Grants 'resource:action' pairs through the actor's roles.

    Args:
        role_lookup: actor_id -> role names
        role_grants: role name -> 'resource:action' strings; defaults to config
    """

    def __init__(
        self,
        role_lookup: Callable[[Optional[str]], Iterable[str]],
        role_grants: Optional[Dict[str, List[str]]] = None
    ):
        self.role_lookup = role_lookup
        self.role_grants = role_grants if role_grants is not None else get_config().role_grants

    def permissions_for(self, actor_id: Optional[str]) -> set:
        """All 'resource:action' grants of an actor across its roles."""
        granted = set()
        for role in self.role_lookup(actor_id) or []:
            granted.update(self.role_grants.get(role, []) or [])
        return granted

    def has_permission(self, actor_id: Optional[str], resource: str, action: str) -> bool:
        if actor_id is None:
            return False
        allowed = f"{resource}:{action}" in self.permissions_for(actor_id)
        if not allowed:
            logger.debug(f"Permission {resource}:{action} not granted to actor {actor_id}")
        return allowed
