"""
Unit Tests for EstimateService.

Tests business rules:
- Every item mutation re-materializes estimate totals
- Derived fields are never accepted from callers
- Status state machine (draft -> sent -> approved | rejected)
- Metadata updates, soft delete, verification and repair
"""
import pytest
from decimal import Decimal

from estimate_engine.models import Estimate, EstimateLineItem
from estimate_engine.domain.entities import EstimateStatus, LineItemSpec, ItemKind
from estimate_engine.domain.exceptions import (
    EstimateNotFoundError,
    EstimateItemNotFoundError,
    InvalidStatusTransitionError,
    ProjectNotFoundError,
    ValidationError,
)
from estimate_engine.domain.services import EstimateService

from conftest import FIXED_NOW


def _item(name, quantity, unit_cost, unit_client_price, kind='material'):
    return {
        'kind': kind,
        'name': name,
        'unit': 'pcs',
        'quantity': quantity,
        'unit_cost': unit_cost,
        'unit_client_price': unit_client_price,
    }


def _assert_totals(estimate, cost, client, margin, percent):
    assert estimate.total_cost == Decimal(cost)
    assert estimate.total_client_price == Decimal(client)
    assert estimate.margin == Decimal(margin)
    assert estimate.margin_percent == Decimal(percent)


# =============================================================================
# Creation
# =============================================================================

class TestCreateEstimate:
    """Tests for create_estimate."""

    def test_two_item_estimate_totals(self, test_db, service):
        """Items [{50,20,30},{10,50,75}] give 1500/2250/750/50%."""
        _, project = test_db

        estimate = service.create_estimate(project.id, [
            _item('Brick', 50, 20, 30),
            _item('Window', 10, 50, 75),
        ])

        _assert_totals(estimate, "1500", "2250", "750", "50")
        assert estimate.status == EstimateStatus.DRAFT.value
        assert estimate.version == 1
        assert estimate.tenant_id == "acme"

    def test_loss_estimate_totals(self, test_db, service):
        """A loss-making item gives a negative margin percent."""
        _, project = test_db

        estimate = service.create_estimate(project.id, [_item('Steel', 10, 150, 100)])

        _assert_totals(estimate, "1500", "1000", "-500", "-33.3333")

    def test_items_materialized(self, test_db, service, labor_item, material_item):
        """Each stored item carries its own derived totals."""
        _, project = test_db

        estimate = service.create_estimate(project.id, [labor_item, material_item])
        items = service.estimates.get_items(estimate.id)

        assert [i.name for i in items] == ['Demolition', 'Tiles']
        assert [i.order for i in items] == [0, 1]
        assert items[0].total_cost == Decimal("1000")
        assert items[0].total_client_price == Decimal("1250")
        assert items[0].margin_percent == Decimal("25")
        assert items[1].total_cost == Decimal("500")
        assert items[1].margin == Decimal("300")

    def test_derived_fields_in_input_ignored(self, test_db, service):
        """A caller-supplied total_cost never reaches storage."""
        _, project = test_db
        item = _item('Door', 2, 100, 150)
        item['total_cost'] = '999999'
        item['margin'] = '-1'

        estimate = service.create_estimate(project.id, [item])

        assert estimate.total_cost == Decimal("200")
        assert estimate.margin == Decimal("100")

    def test_accepts_line_item_spec(self, test_db, service):
        """LineItemSpec objects are accepted as well as mappings."""
        _, project = test_db
        spec = LineItemSpec(
            kind=ItemKind.SUBCONTRACTOR, name='Electrician', unit='job',
            quantity=Decimal("1"), unit_cost=Decimal("800"), unit_client_price=Decimal("1000"),
        )

        estimate = service.create_estimate(project.id, [spec], notes="Phase 1", tags=["electric"])

        assert estimate.total_client_price == Decimal("1000")
        assert estimate.notes == "Phase 1"
        assert estimate.tags == ["electric"]

    def test_empty_estimate(self, test_db, service):
        """An estimate can start without items."""
        _, project = test_db

        estimate = service.create_estimate(project.id, [])

        _assert_totals(estimate, "0", "0", "0", "0")

    def test_unknown_project(self, service):
        """Test creating an estimate for a missing project."""
        with pytest.raises(ProjectNotFoundError):
            service.create_estimate(99999, [_item('Brick', 1, 1, 1)])

    def test_negative_quantity_rejected(self, test_db, service):
        """Invalid input aborts the whole create."""
        session, project = test_db

        with pytest.raises(ValidationError):
            service.create_estimate(project.id, [
                _item('Brick', 1, 1, 1),
                _item('Broken', -3, 1, 1),
            ])

        assert session.query(Estimate).count() == 0
        assert session.query(EstimateLineItem).count() == 0


# =============================================================================
# Recalculation Triggers
# =============================================================================

class TestItemMutations:
    """Every item write re-materializes the estimate."""

    @pytest.fixture
    def estimate(self, test_db, service):
        _, project = test_db
        return service.create_estimate(project.id, [
            _item('Cabinets', 20, 100, 150),
            _item('Counter', 10, 100, 150),
        ])

    def test_delete_second_item(self, service, estimate):
        """Deleting an item that contributed 1000/1500 leaves 2000/3000."""
        _assert_totals(estimate, "3000", "4500", "1500", "50")
        second = service.estimates.get_items(estimate.id)[1]

        service.delete_item(second.id)

        estimate = service.get_estimate(estimate.id)
        _assert_totals(estimate, "2000", "3000", "1000", "50")
        assert len(service.estimates.get_items(estimate.id)) == 1

    def test_delete_last_item_zeroes_totals(self, service, estimate):
        for item in service.estimates.get_items(estimate.id):
            service.delete_item(item.id)

        _assert_totals(service.get_estimate(estimate.id), "0", "0", "0", "0")

    def test_add_item(self, service, estimate):
        """Adding an item updates totals and appends to the order."""
        item = service.add_item(estimate.id, _item('Sink', 1, 300, 500))

        assert item.total_cost == Decimal("300")
        assert item.order == 2
        _assert_totals(service.get_estimate(estimate.id), "3300", "5000", "1700", "51.5152")

    def test_add_item_explicit_order(self, service, estimate):
        item = service.add_item(estimate.id, dict(_item('Tap', 1, 10, 20), order=0))

        assert item.order == 0
        names = [i.name for i in service.estimates.get_items(estimate.id)]
        assert names[0] == 'Cabinets'  # ties keep insertion order
        assert 'Tap' in names

    def test_add_item_invalid_input_rolls_back(self, service, estimate):
        with pytest.raises(ValidationError):
            service.add_item(estimate.id, _item('Bad', -1, 10, 20))

        assert len(service.estimates.get_items(estimate.id)) == 2
        _assert_totals(service.get_estimate(estimate.id), "3000", "4500", "1500", "50")

    def test_add_item_unknown_estimate(self, service):
        with pytest.raises(EstimateNotFoundError):
            service.add_item(99999, _item('Sink', 1, 300, 500))

    def test_update_quantity(self, service, estimate):
        """Changing quantity recomputes the item and the estimate."""
        first = service.estimates.get_items(estimate.id)[0]

        item = service.update_item(first.id, {'quantity': 30})

        assert item.quantity == Decimal("30")
        assert item.total_cost == Decimal("3000")
        assert item.total_client_price == Decimal("4500")
        _assert_totals(service.get_estimate(estimate.id), "4000", "6000", "2000", "50")

    def test_update_client_price_only(self, service, estimate):
        """Missing price fields are taken from the stored item."""
        first = service.estimates.get_items(estimate.id)[0]

        item = service.update_item(first.id, {'unit_client_price': '100'})

        assert item.unit_cost == Decimal("100")
        assert item.total_client_price == Decimal("2000")
        assert item.margin == Decimal("0")
        _assert_totals(service.get_estimate(estimate.id), "3000", "3500", "500", "16.6667")

    def test_update_descriptive_fields(self, service, estimate):
        """Non-price fields can change without touching totals."""
        first = service.estimates.get_items(estimate.id)[0]

        item = service.update_item(first.id, {'name': 'Oak cabinets', 'kind': 'labor', 'description': 'Fitted'})

        assert item.name == 'Oak cabinets'
        assert item.kind == 'labor'
        assert item.description == 'Fitted'
        _assert_totals(service.get_estimate(estimate.id), "3000", "4500", "1500", "50")

    @pytest.mark.parametrize("field", ['total_cost', 'total_client_price', 'margin', 'margin_percent'])
    def test_update_derived_field_rejected(self, service, estimate, field):
        """Derived fields cannot be written directly."""
        first = service.estimates.get_items(estimate.id)[0]

        with pytest.raises(ValidationError) as exc_info:
            service.update_item(first.id, {field: 1})
        assert exc_info.value.field == field

    def test_update_unknown_field_rejected(self, service, estimate):
        first = service.estimates.get_items(estimate.id)[0]
        with pytest.raises(ValidationError):
            service.update_item(first.id, {'estimate_id': 12})

    def test_update_empty_name_rejected(self, service, estimate):
        first = service.estimates.get_items(estimate.id)[0]
        with pytest.raises(ValidationError):
            service.update_item(first.id, {'name': ''})

    def test_update_negative_quantity_rolls_back(self, service, estimate):
        first = service.estimates.get_items(estimate.id)[0]

        with pytest.raises(ValidationError):
            service.update_item(first.id, {'quantity': -5})

        assert service.estimates.require_item(first.id).quantity == Decimal("20")

    def test_update_missing_item(self, service):
        with pytest.raises(EstimateItemNotFoundError):
            service.update_item(99999, {'quantity': 1})

    def test_delete_missing_item(self, service):
        with pytest.raises(EstimateItemNotFoundError):
            service.delete_item(99999)

    def test_verify_totals_after_mutations(self, service, estimate):
        """Totals stay consistent across a sequence of writes."""
        items = service.estimates.get_items(estimate.id)
        service.update_item(items[0].id, {'quantity': '7.25'})
        service.add_item(estimate.id, _item('Grout', '3.333', '4.99', '7.49'))
        service.delete_item(items[1].id)

        is_valid, errors = service.verify_totals(estimate.id)

        assert is_valid, errors


# =============================================================================
# Status Transitions
# =============================================================================

class TestStatusTransitions:
    """Tests for send/approve/reject."""

    @pytest.fixture
    def estimate(self, test_db, service, labor_item):
        _, project = test_db
        return service.create_estimate(project.id, [labor_item])

    def test_send_then_approve(self, service, estimate):
        """send stamps sent_at; approve stamps approved_at and keeps sent_at."""
        sent = service.send(estimate.id)
        assert sent.status == 'sent'
        assert sent.sent_at == FIXED_NOW
        assert sent.approved_at is None

        later = FIXED_NOW.replace(hour=17)
        service.clock = lambda: later
        approved = service.approve(estimate.id)

        assert approved.status == 'approved'
        assert approved.approved_at == later
        assert approved.sent_at == FIXED_NOW

    def test_reject(self, service, estimate):
        service.send(estimate.id)
        rejected = service.reject(estimate.id)

        assert rejected.status == 'rejected'
        assert rejected.approved_at is None

    def test_resend_is_noop(self, service, estimate):
        """Sending an already-sent estimate keeps the original sent_at."""
        service.send(estimate.id)
        service.clock = lambda: FIXED_NOW.replace(day=20)

        again = service.send(estimate.id)

        assert again.status == 'sent'
        assert again.sent_at == FIXED_NOW

    @pytest.mark.parametrize("action", ['approve', 'reject'])
    def test_draft_cannot_be_decided(self, service, estimate, action):
        """A draft must be sent before approval or rejection."""
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            getattr(service, action)(estimate.id)

        assert exc_info.value.current_status == 'draft'
        assert service.get_estimate(estimate.id).status == 'draft'

    @pytest.mark.parametrize("terminal,action", [
        ('approve', 'reject'),
        ('approve', 'send'),
        ('reject', 'approve'),
        ('reject', 'send'),
    ])
    def test_terminal_states(self, service, estimate, terminal, action):
        """Approved and rejected estimates cannot move."""
        service.send(estimate.id)
        getattr(service, terminal)(estimate.id)

        with pytest.raises(InvalidStatusTransitionError):
            getattr(service, action)(estimate.id)

    def test_invalid_transition_is_validation_error(self, service, estimate):
        with pytest.raises(ValidationError):
            service.approve(estimate.id)

    def test_transition_unknown_estimate(self, service):
        with pytest.raises(EstimateNotFoundError):
            service.send(99999)

    def test_terminal_flags(self):
        assert EstimateStatus.APPROVED.is_terminal
        assert EstimateStatus.REJECTED.is_terminal
        assert not EstimateStatus.DRAFT.is_terminal
        assert not EstimateStatus.SENT.is_terminal


# =============================================================================
# Metadata, Listing and Repair
# =============================================================================

class TestEstimateMetadata:
    """Tests for update_estimate, soft_delete, listings, verify and repair."""

    def test_update_estimate_metadata(self, test_db, service, labor_item):
        _, project = test_db
        estimate = service.create_estimate(project.id, [labor_item])

        updated = service.update_estimate(estimate.id, notes="Revised", tags=["urgent"])

        assert updated.notes == "Revised"
        assert updated.tags == ["urgent"]
        assert updated.total_cost == Decimal("1000")

    @pytest.mark.parametrize("field", ['total_cost', 'status', 'version'])
    def test_update_estimate_rejects_other_fields(self, test_db, service, labor_item, field):
        _, project = test_db
        estimate = service.create_estimate(project.id, [labor_item])

        with pytest.raises(ValidationError):
            service.update_estimate(estimate.id, **{field: 1})

    def test_soft_delete_hides_estimate(self, test_db, service, labor_item):
        session, project = test_db
        estimate = service.create_estimate(project.id, [labor_item])
        item_id = service.estimates.get_items(estimate.id)[0].id

        service.soft_delete(estimate.id)

        with pytest.raises(EstimateNotFoundError):
            service.get_estimate(estimate.id)
        with pytest.raises(EstimateItemNotFoundError):
            service.update_item(item_id, {'quantity': 1})
        assert session.get(Estimate, estimate.id).deleted_at == FIXED_NOW

    def test_list_estimates_newest_first(self, test_db, service, labor_item):
        _, project = test_db
        first = service.create_estimate(project.id, [labor_item])
        service.create_estimate(project.id, [labor_item])
        service.create_estimate(project.id, [labor_item])
        service.soft_delete(first.id)

        result = service.list_estimates(project.id)
        assert [e.version for e in result.data] == [3, 2]
        assert result.total == 2

        with_deleted = service.list_estimates(project.id, include_deleted=True)
        assert [e.version for e in with_deleted.data] == [3, 2, 1]

    def test_list_estimates_pagination(self, test_db, service, labor_item):
        _, project = test_db
        for _ in range(5):
            service.create_estimate(project.id, [labor_item])

        page = service.list_estimates(project.id, page=2, limit=2)

        assert [e.version for e in page.data] == [3, 2]
        assert page.total == 5
        assert page.total_pages == 3
        assert page.to_dict()['page'] == 2

    def test_page_size_capped(self, test_db, service):
        _, project = test_db
        assert service.list_estimates(project.id, limit=100000).limit == service.config.max_page_size
        assert service.list_estimates(project.id).limit == service.config.default_page_size

    def test_list_by_status(self, test_db, service, labor_item):
        _, project = test_db
        draft = service.create_estimate(project.id, [labor_item])
        sent = service.create_estimate(project.id, [labor_item])
        service.send(sent.id)

        assert [e.id for e in service.list_by_status('sent').data] == [sent.id]
        assert [e.id for e in service.list_by_status(EstimateStatus.DRAFT).data] == [draft.id]
        with pytest.raises(ValidationError):
            service.list_by_status('archived')

    def test_verify_detects_tampering(self, test_db, service, labor_item):
        """A raw UPDATE bypassing the ORM is caught and repaired."""
        session, project = test_db
        estimate = service.create_estimate(project.id, [labor_item])
        session.execute(
            Estimate.__table__.update()
            .where(Estimate.id == estimate.id)
            .values(total_cost=Decimal("1.00"))
        )
        session.commit()

        is_valid, errors = service.verify_totals(estimate.id)
        assert not is_valid
        assert any('total_cost' in e for e in errors)

        repaired = service.recalculate_totals(estimate.id)
        assert repaired.total_cost == Decimal("1000")
        assert service.verify_totals(estimate.id) == (True, [])

    def test_record_pdf(self, test_db, service, labor_item):
        _, project = test_db
        estimate = service.create_estimate(project.id, [labor_item])

        updated = service.record_pdf(estimate.id, "https://files.example/estimates/1.pdf")

        assert updated.pdf_url == "https://files.example/estimates/1.pdf"
        assert updated.pdf_generated_at == FIXED_NOW

    def test_service_without_checker(self, test_db, context):
        """No permission checker means no cost visibility."""
        session, _ = test_db
        assert EstimateService(session, context).can_view_cost("user-1") is False
