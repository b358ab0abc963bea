"""
Domain Event Handlers for the Estimate Engine.

Implements SQLAlchemy event listeners for:
- Line item materialization guard (derived fields must match inputs)
- Estimate versioning guard (version numbers are positive)

These handlers ensure business rules are enforced at the ORM level, so a
write that bypasses the service layer still cannot persist stale totals.
"""
from sqlalchemy import event

from estimate_engine.models import Estimate, EstimateLineItem
from estimate_engine.domain.entities import DERIVED_FIELDS
from estimate_engine.domain.exceptions import InvariantViolationError, ValidationError
from estimate_engine.domain.money import to_decimal


# =============================================================================
# Line Item Event Handlers - Materialization Guard
# =============================================================================

def validate_line_item_materialization(item: EstimateLineItem) -> bool:
    """
    Check that an item's derived fields equal a fresh computation.

    Raises:
        InvariantViolationError: If any derived field differs
    """
    from estimate_engine.domain.services.line_item_calculator import compute_line_item

    expected = compute_line_item(item.quantity, item.unit_cost, item.unit_client_price)

    for field_name in DERIVED_FIELDS:
        actual = getattr(item, field_name)
        wanted = getattr(expected, field_name)
        if actual is None or to_decimal(actual, field_name) != wanted:
            raise InvariantViolationError(
                invariant_name=f'line_item.{field_name}',
                expected=str(wanted),
                actual=str(actual),
            )
    return True


@event.listens_for(EstimateLineItem, 'before_insert')
def line_item_before_insert(mapper, connection, target):
    """Reject inserts whose materialized fields were not derived from the inputs."""
    validate_line_item_materialization(target)


@event.listens_for(EstimateLineItem, 'before_update')
def line_item_before_update(mapper, connection, target):
    """Reject updates that change inputs without re-deriving totals."""
    validate_line_item_materialization(target)


# =============================================================================
# Estimate Event Handlers - Versioning Guard
# =============================================================================

@event.listens_for(Estimate, 'before_insert')
def estimate_before_insert(mapper, connection, target):
    """Version numbers start at 1."""
    if target.version is None or target.version < 1:
        raise ValidationError('version', f"must be a positive integer, got {target.version}")
