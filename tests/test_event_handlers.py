"""
Tests for the ORM-level invariant guards.

Writes that bypass EstimateService still cannot persist line items whose
derived totals disagree with their inputs.
"""
import uuid

import pytest
from decimal import Decimal

from estimate_engine.models import Estimate, EstimateLineItem
from estimate_engine.domain.events.handlers import validate_line_item_materialization
from estimate_engine.domain.exceptions import InvariantViolationError, ValidationError

from conftest import TENANT


def _line_item(estimate_id, **overrides):
    values = dict(
        uuid=str(uuid.uuid4()),
        tenant_id=TENANT,
        estimate_id=estimate_id,
        kind='labor',
        name='Framing',
        unit='h',
        quantity=Decimal("8"),
        unit_cost=Decimal("40"),
        unit_client_price=Decimal("55"),
        total_cost=Decimal("320.00"),
        total_client_price=Decimal("440.00"),
        margin=Decimal("120.00"),
        margin_percent=Decimal("37.5000"),
    )
    values.update(overrides)
    return EstimateLineItem(**values)


@pytest.fixture
def estimate(test_db):
    session, project = test_db
    estimate = Estimate(uuid=str(uuid.uuid4()), tenant_id=TENANT, project_id=project.id, version=1)
    session.add(estimate)
    session.commit()
    return estimate


class TestLineItemGuard:
    """Tests for the before_insert/before_update listeners."""

    def test_consistent_item_accepted(self, test_db, estimate):
        session, _ = test_db
        item = _line_item(estimate.id)

        assert validate_line_item_materialization(item) is True
        session.add(item)
        session.commit()

    def test_insert_with_wrong_total_rejected(self, test_db, estimate):
        session, _ = test_db
        session.add(_line_item(estimate.id, total_cost=Decimal("1.00")))

        with pytest.raises(InvariantViolationError) as exc_info:
            session.flush()
        assert exc_info.value.invariant_name == 'line_item.total_cost'
        session.rollback()

    def test_insert_without_totals_rejected(self, test_db, estimate):
        session, _ = test_db
        session.add(_line_item(estimate.id, margin_percent=None))

        with pytest.raises(InvariantViolationError):
            session.flush()
        session.rollback()

    def test_update_input_without_recompute_rejected(self, test_db, estimate):
        """Changing quantity alone leaves stale totals and is refused."""
        session, _ = test_db
        item = _line_item(estimate.id)
        session.add(item)
        session.commit()

        item.quantity = Decimal("9")
        with pytest.raises(InvariantViolationError) as exc_info:
            session.commit()
        assert exc_info.value.expected == "360.00"
        session.rollback()


class TestEstimateGuard:
    """Tests for the estimate versioning listener."""

    def test_version_must_be_positive(self, test_db):
        session, project = test_db
        session.add(Estimate(uuid=str(uuid.uuid4()), tenant_id=TENANT, project_id=project.id, version=0))

        with pytest.raises(ValidationError):
            session.flush()
        session.rollback()
