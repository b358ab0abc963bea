"""
Request-scoped dependencies for the estimate endpoints.

Authentication is handled upstream; the gateway forwards the caller's
tenant and user as headers. Roles come from app.state.permission_checker
when the embedding application installs one. The X-Actor-Roles header is
honoured only when rbac.trust_role_header is enabled, which is safe only
behind a gateway that sets the header itself and drops any value sent by
the client. Otherwise the caller gets no grants at all.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from estimate_engine.config import EstimateConfig, get_config
from estimate_engine.models import get_db
from estimate_engine.domain.exceptions import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from estimate_engine.domain.services import EstimateService, PermissionChecker
from estimate_engine.infrastructure.permissions import RolePermissionChecker
from estimate_engine.infrastructure.repositories import RepositoryContext

logger = logging.getLogger(__name__)


def get_context(
    x_tenant_id: str = Header(..., min_length=1, description="Owning organization"),
    x_actor_id: Optional[str] = Header(None, description="Acting user"),
) -> RepositoryContext:
    """Tenant/user scope of the request."""
    return RepositoryContext(tenant_id=x_tenant_id, user_id=x_actor_id)


def get_settings() -> EstimateConfig:
    """Engine configuration as a request dependency."""
    return get_config()


def get_permission_checker(
    request: Request,
    x_actor_roles: Optional[str] = Header(None, description="Comma-separated role names"),
    config: EstimateConfig = Depends(get_settings),
) -> PermissionChecker:
    """
    RBAC oracle for the request.

    An application embedding the router may install its own checker on
    app.state.permission_checker. Without one, roles are read from
    X-Actor-Roles if the configuration trusts that header, and the actor
    has no roles otherwise.
    """
    checker = getattr(request.app.state, "permission_checker", None)
    if checker is not None:
        return checker

    if not config.trust_role_header:
        if x_actor_roles:
            logger.warning("Ignoring X-Actor-Roles; rbac.trust_role_header is disabled")
        return RolePermissionChecker(lambda actor_id: [], config.role_grants)

    roles = [role.strip() for role in (x_actor_roles or "").split(",") if role.strip()]
    return RolePermissionChecker(lambda actor_id: roles, config.role_grants)


def get_estimate_service(
    db: Session = Depends(get_db),
    context: RepositoryContext = Depends(get_context),
    checker: PermissionChecker = Depends(get_permission_checker),
    config: EstimateConfig = Depends(get_settings),
) -> EstimateService:
    return EstimateService(db, context, permission_checker=checker, config=config)


# =============================================================================
# Authorization and error mapping
# =============================================================================

ESTIMATES_RESOURCE = "estimates"
EDIT_ACTION = "edit"


def to_http_exception(error: DomainError) -> HTTPException:
    """
    Map a domain error to its HTTP response.

    Permission refusals look like missing records so that other tenants'
    data cannot be probed.
    """
    if isinstance(error, (NotFoundError, PermissionDeniedError)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, ConflictError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    message = "Not available" if isinstance(error, PermissionDeniedError) else error.message
    code = "NOT_FOUND" if isinstance(error, PermissionDeniedError) else error.code
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def require_edit(
    context: RepositoryContext = Depends(get_context),
    checker: PermissionChecker = Depends(get_permission_checker),
) -> None:
    """Refuse mutations from actors without estimates:edit."""
    if not checker.has_permission(context.user_id, ESTIMATES_RESOURCE, EDIT_ACTION):
        logger.warning(f"Actor {context.user_id} denied {ESTIMATES_RESOURCE}:{EDIT_ACTION}")
        raise to_http_exception(
            PermissionDeniedError(context.user_id, ESTIMATES_RESOURCE, EDIT_ACTION)
        )
