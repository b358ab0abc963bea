"""
Domain Exceptions for the Estimate Engine.

Custom exceptions enforcing business rules:
- Tenant-scoped lookups (not found is indistinguishable from cross-tenant)
- Calculation input validation
- Status state machine
- Version allocation and optimistic locking
- Materialization invariants
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


# =============================================================================
# Not Found Exceptions
# =============================================================================

class NotFoundError(DomainError):
    """
    Raised when an id does not resolve within the caller's tenant.

    Cross-tenant ids raise exactly the same error as ids that never existed.
    """

    def __init__(self, entity_type: str, entity_id, code: str = "NOT_FOUND"):
        message = f"{entity_type} with id '{entity_id}' not found"
        super().__init__(message, code=code)
        self.entity_type = entity_type
        self.entity_id = entity_id


class ProjectNotFoundError(NotFoundError):
    """Raised when a project cannot be found."""

    def __init__(self, project_id):
        super().__init__("Project", project_id, code="PROJECT_NOT_FOUND")
        self.project_id = project_id


class EstimateNotFoundError(NotFoundError):
    """Raised when an estimate cannot be found."""

    def __init__(self, estimate_id):
        super().__init__("Estimate", estimate_id, code="ESTIMATE_NOT_FOUND")
        self.estimate_id = estimate_id


class EstimateItemNotFoundError(NotFoundError):
    """Raised when an estimate line item cannot be found."""

    def __init__(self, item_id):
        super().__init__("Estimate item", item_id, code="ESTIMATE_ITEM_NOT_FOUND")
        self.item_id = item_id


# =============================================================================
# Validation Exceptions
# =============================================================================

class ValidationError(DomainError):
    """Raised when data validation fails."""

    def __init__(self, field: str, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(f"Validation failed for '{field}': {message}", code=code)
        self.field = field


class InvalidStatusTransitionError(ValidationError):
    """Raised when a status transition is not allowed from the current status."""

    def __init__(self, estimate_id, current_status: str, target_status: str):
        super().__init__(
            "status",
            f"estimate '{estimate_id}' cannot move from "
            f"'{current_status}' to '{target_status}'",
            code="INVALID_STATUS_TRANSITION",
        )
        self.estimate_id = estimate_id
        self.current_status = current_status
        self.target_status = target_status


# =============================================================================
# Conflict Exceptions
# =============================================================================

class ConflictError(DomainError):
    """Raised when a write lost a race against a concurrent writer."""

    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code=code)


class VersionConflictError(ConflictError):
    """Raised when the (project, version) slot was taken by another writer."""

    def __init__(self, project_id, version: int):
        message = (
            f"Estimate version {version} for project '{project_id}' "
            f"was allocated concurrently. Retry the operation."
        )
        super().__init__(message, code="VERSION_CONFLICT")
        self.project_id = project_id
        self.version = version


class ConcurrencyError(ConflictError):
    """Raised when optimistic locking fails (version mismatch)."""

    def __init__(self, entity_type: str, entity_id):
        message = (
            f"Concurrent modification detected for {entity_type} '{entity_id}'. "
            f"Please refresh and try again."
        )
        super().__init__(message, code="CONCURRENCY_ERROR")
        self.entity_type = entity_type
        self.entity_id = entity_id


# =============================================================================
# Authorization Exceptions
# =============================================================================

class PermissionDeniedError(DomainError):
    """Raised by calling layers when the RBAC oracle rejects an action."""

    def __init__(self, actor_id, resource: str, action: str):
        message = f"Actor '{actor_id}' may not {action} {resource}"
        super().__init__(message, code="PERMISSION_DENIED")
        self.actor_id = actor_id
        self.resource = resource
        self.action = action


# =============================================================================
# Invariant Exceptions
# =============================================================================

class InvariantViolationError(DomainError):
    """Raised when a mathematical invariant is violated."""

    def __init__(self, invariant_name: str, expected: str, actual: str):
        message = (
            f"Invariant '{invariant_name}' violated. "
            f"Expected: {expected}, Actual: {actual}"
        )
        super().__init__(message, code="INVARIANT_VIOLATION")
        self.invariant_name = invariant_name
        self.expected = expected
        self.actual = actual
