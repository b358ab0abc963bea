"""
Estimate Service - Public entry point of the estimate engine.

Every mutating operation runs as one unit of work:

    item write -> flush -> re-read full item set -> aggregate
    -> estimate update -> commit          (rollback on any error)

so a reader never sees estimate totals that disagree with its items.
Reads meant for people outside the owning organization go through
filter_for_viewer().
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from estimate_engine.config import EstimateConfig, get_config
from estimate_engine.models import Estimate, EstimateLineItem, utcnow
from estimate_engine.domain.entities import (
    DERIVED_FIELDS,
    STATUS_TIMESTAMPS,
    EstimateStatus,
    LineItemTotals,
    PaginatedResult,
    can_transition,
    parse_kind,
)
from estimate_engine.domain.events import handlers  # noqa: F401  (registers ORM guards)
from estimate_engine.domain.exceptions import (
    ConcurrencyError,
    InvalidStatusTransitionError,
    ValidationError,
)
from estimate_engine.domain.money import quantize_quantity, to_decimal
from estimate_engine.infrastructure.repositories import (
    EstimateRepository,
    RepositoryContext,
)
from .cost_visibility import PermissionChecker, can_view_cost, filter_for_viewer
from .estimate_aggregator import aggregate
from .estimate_version_service import EstimateVersionService, ItemInput, coerce_spec
from .line_item_calculator import compute_line_item

logger = logging.getLogger(__name__)

# Item fields a caller may change through update_item
UPDATABLE_ITEM_FIELDS = frozenset({
    'kind', 'name', 'description', 'unit', 'quantity', 'unit_cost',
    'unit_client_price', 'order', 'material_catalog_id', 'work_type_id',
})
PRICE_INPUT_FIELDS = ('quantity', 'unit_cost', 'unit_client_price')

# Estimate fields a caller may change through update_estimate
UPDATABLE_ESTIMATE_FIELDS = frozenset({'notes', 'tags', 'valid_until'})


class EstimateService:
    """
    Service for estimate creation, item mutation, status and viewer reads.

    Ensures mathematical invariants after every committed operation:
    - Item.total_cost = Item.quantity * Item.unit_cost (likewise client price)
    - Estimate.total_cost = Σ(Item.total_cost) (likewise client price)
    - Estimate.margin_percent derived from the aggregate totals

    Args:
        session: SQLAlchemy session owned by the caller (one per request)
        context: Tenant/user scope
        permission_checker: RBAC oracle for the view-cost capability
        clock: Source of sent_at/approved_at/deleted_at timestamps
        config: Engine configuration; defaults to get_config()
    """

    def __init__(
        self,
        session: Session,
        context: RepositoryContext,
        permission_checker: Optional[PermissionChecker] = None,
        clock: Callable[[], datetime] = utcnow,
        config: Optional[EstimateConfig] = None,
    ):
        self.session = session
        self.context = context
        self.permission_checker = permission_checker
        self.clock = clock
        self.config = config or get_config()
        self.estimates = EstimateRepository(session, context)
        self.versions = EstimateVersionService(session, context)

    # =========================================================================
    # Unit of work
    # =========================================================================

    @contextmanager
    def transaction(self, entity_type: str = "Estimate", entity_id: Any = None):
        """
        Commit on success, roll back and re-raise on any error.

        A lost optimistic-lock race is reported as ConcurrencyError.
        """
        try:
            yield self.session
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            logger.warning(f"Concurrent modification of {entity_type} {entity_id}")
            raise ConcurrencyError(entity_type, entity_id) from e
        except Exception:
            self.session.rollback()
            raise

    def _relock_item(self, item_id: int) -> EstimateLineItem:
        """Re-read an item once its estimate is locked; a writer may have committed in between."""
        return self.estimates.require_item(item_id, for_update=True)

    def _rematerialize(self, estimate: Estimate) -> LineItemTotals:
        """Recompute estimate totals from the item set as stored right now."""
        self.estimates.flush()
        totals = aggregate(self.estimates.get_items(estimate.id))
        self.estimates.apply_totals(estimate, totals)
        return totals

    # =========================================================================
    # Creation and versioning
    # =========================================================================

    def create_estimate(
        self,
        project_id: int,
        items: Iterable[ItemInput],
        notes: Optional[str] = None,
        tags: Optional[List[str]] = None,
        valid_until: Optional[date] = None,
    ) -> Estimate:
        """
        Create a draft estimate at the project's next version.

        Raises:
            ProjectNotFoundError: If the project is not in the caller's tenant
            ValidationError: If an item input is invalid
            VersionConflictError: If a concurrent writer took the version; retry
        """
        with self.transaction("Project", project_id):
            estimate = self.versions.create_with_items(
                project_id, items, notes=notes, tags=tags, valid_until=valid_until
            )
        return estimate

    def clone_as_new_version(self, estimate_id: int) -> Estimate:
        """
        Copy an estimate with all its items into a new draft version.

        Raises:
            EstimateNotFoundError: If the source is not visible to the caller
            VersionConflictError: If a concurrent writer took the version; retry
        """
        with self.transaction("Estimate", estimate_id):
            clone = self.versions.clone_as_new_version(estimate_id)
        return clone

    def next_version(self, project_id: int) -> int:
        """Version number the next estimate of a project will get."""
        return self.versions.next_version(project_id)

    # =========================================================================
    # Line item mutations (each one re-materializes the estimate)
    # =========================================================================

    def add_item(self, estimate_id: int, item: ItemInput) -> EstimateLineItem:
        """
        Append a line item and recompute the estimate totals.

        Items without an explicit order go after the current last item.

        Raises:
            EstimateNotFoundError: If the estimate is not visible to the caller
            ValidationError: If the item input is invalid
        """
        spec = coerce_spec(item)
        totals = compute_line_item(spec.quantity, spec.unit_cost, spec.unit_client_price)

        with self.transaction("Estimate", estimate_id):
            estimate = self.estimates.require(estimate_id, for_update=True)
            order = spec.order if spec.order is not None else self.estimates.next_item_order(estimate.id)
            new_item = self.estimates.add_item(estimate, spec, totals, order)
            estimate_totals = self._rematerialize(estimate)

        logger.info(
            f"Added item {new_item.id} to estimate {estimate_id}; "
            f"totals now cost={estimate_totals.total_cost} client={estimate_totals.total_client_price}"
        )
        return new_item

    def update_item(self, item_id: int, changes: Dict[str, Any]) -> EstimateLineItem:
        """
        Apply a partial update to a line item and recompute totals.

        Only raw inputs and descriptive fields may be changed; the derived
        fields are always recomputed from the merged quantity and prices.

        Raises:
            EstimateItemNotFoundError: If the item is not visible to the caller
            ValidationError: If a derived or unknown field is supplied, or a value is invalid
        """
        derived = sorted(set(changes) & set(DERIVED_FIELDS))
        if derived:
            raise ValidationError(derived[0], "is derived and cannot be set directly")
        unknown = sorted(set(changes) - UPDATABLE_ITEM_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "is not an updatable item field")

        with self.transaction("Estimate item", item_id):
            item = self.estimates.require_item(item_id)
            estimate = self.estimates.require(item.estimate_id, for_update=True)
            item = self._relock_item(item_id)

            values = {
                field: changes.get(field, getattr(item, field)) for field in PRICE_INPUT_FIELDS
            }
            totals = compute_line_item(**values)

            for field, value in changes.items():
                if field in PRICE_INPUT_FIELDS:
                    value = quantize_quantity(to_decimal(value, field), field)
                elif field == 'kind':
                    value = parse_kind(value).value
                elif field in ('name', 'unit', 'order') and value in (None, ''):
                    raise ValidationError(field, "cannot be empty")
                setattr(item, field, value)
            self.estimates.apply_totals(item, totals)

            estimate_totals = self._rematerialize(estimate)

        logger.info(
            f"Updated item {item_id} of estimate {item.estimate_id}; "
            f"totals now cost={estimate_totals.total_cost} client={estimate_totals.total_client_price}"
        )
        return item

    def delete_item(self, item_id: int) -> None:
        """
        Delete a line item and recompute the estimate totals.

        Raises:
            EstimateItemNotFoundError: If the item is not visible to the caller
        """
        with self.transaction("Estimate item", item_id):
            item = self.estimates.require_item(item_id)
            estimate = self.estimates.require(item.estimate_id, for_update=True)
            item = self._relock_item(item_id)
            self.estimates.delete_item(item)
            estimate_totals = self._rematerialize(estimate)

        logger.info(
            f"Deleted item {item_id} from estimate {estimate.id}; "
            f"totals now cost={estimate_totals.total_cost} client={estimate_totals.total_client_price}"
        )

    def recalculate_totals(self, estimate_id: int) -> Estimate:
        """
        Re-materialize estimate totals from its current items.

        Repair operation; every mutation above already does this.
        """
        with self.transaction("Estimate", estimate_id):
            estimate = self.estimates.require(estimate_id, for_update=True)
            self._rematerialize(estimate)
        return estimate

    def verify_totals(self, estimate_id: int) -> Tuple[bool, List[str]]:
        """
        Check the materialization invariants without changing anything.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        estimate = self.estimates.require(estimate_id)
        items = self.estimates.get_items(estimate.id)
        errors = []

        for item in items:
            expected = compute_line_item(item.quantity, item.unit_cost, item.unit_client_price)
            for field in DERIVED_FIELDS:
                if to_decimal(getattr(item, field), field) != getattr(expected, field):
                    errors.append(
                        f"Item {item.id} {field} ({getattr(item, field)}) does not match "
                        f"recomputed value ({getattr(expected, field)})"
                    )

        expected = aggregate(items)
        for field in DERIVED_FIELDS:
            if to_decimal(getattr(estimate, field), field) != getattr(expected, field):
                errors.append(
                    f"Estimate {estimate.id} {field} ({getattr(estimate, field)}) does not match "
                    f"sum of items ({getattr(expected, field)})"
                )

        return len(errors) == 0, errors

    # =========================================================================
    # Status transitions
    # =========================================================================

    def _transition(self, estimate_id: int, target: EstimateStatus) -> Estimate:
        """
        Move an estimate to target status and stamp the matching timestamp.

        Repeating the transition the estimate already went through is a
        no-op: the status and its timestamp stay as they are.
        """
        with self.transaction("Estimate", estimate_id):
            estimate = self.estimates.require(estimate_id, for_update=True)
            current = EstimateStatus(estimate.status)

            if current == target:
                logger.info(f"Estimate {estimate_id} already {target.value}; nothing to do")
                return estimate

            if not can_transition(current, target):
                logger.warning(
                    f"Rejected transition of estimate {estimate_id} "
                    f"from {current.value} to {target.value}"
                )
                raise InvalidStatusTransitionError(estimate_id, current.value, target.value)

            estimate.status = target.value
            timestamp_field = STATUS_TIMESTAMPS.get(target)
            if timestamp_field:
                setattr(estimate, timestamp_field, self.clock())

        logger.info(f"Estimate {estimate_id} moved from {current.value} to {target.value}")
        return estimate

    def send(self, estimate_id: int) -> Estimate:
        """draft -> sent, stamping sent_at."""
        return self._transition(estimate_id, EstimateStatus.SENT)

    def approve(self, estimate_id: int) -> Estimate:
        """sent -> approved, stamping approved_at."""
        return self._transition(estimate_id, EstimateStatus.APPROVED)

    def reject(self, estimate_id: int) -> Estimate:
        """sent -> rejected."""
        return self._transition(estimate_id, EstimateStatus.REJECTED)

    # =========================================================================
    # Estimate metadata
    # =========================================================================

    def update_estimate(self, estimate_id: int, **changes) -> Estimate:
        """
        Change notes, tags or valid_until.

        Totals and status cannot be set through this method.

        Raises:
            ValidationError: If any other field is supplied
        """
        unknown = sorted(set(changes) - UPDATABLE_ESTIMATE_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "is not an updatable estimate field")

        with self.transaction("Estimate", estimate_id):
            estimate = self.estimates.require(estimate_id, for_update=True)
            for field, value in changes.items():
                if field == 'tags':
                    value = list(value or [])
                setattr(estimate, field, value)
        return estimate

    def soft_delete(self, estimate_id: int) -> Estimate:
        """
        Hide an estimate from every read. Its version number stays taken.

        Raises:
            EstimateNotFoundError: If the estimate is not visible to the caller
        """
        with self.transaction("Estimate", estimate_id):
            estimate = self.estimates.require(estimate_id, for_update=True)
            self.estimates.soft_delete(estimate, self.clock())
        logger.info(f"Soft-deleted estimate {estimate_id}")
        return estimate

    def record_pdf(self, estimate_id: int, pdf_url: str) -> Estimate:
        """Store the location of a rendered PDF (called by the PDF worker)."""
        with self.transaction("Estimate", estimate_id):
            estimate = self.estimates.require(estimate_id, for_update=True)
            estimate.pdf_url = pdf_url
            estimate.pdf_generated_at = self.clock()
        return estimate

    # =========================================================================
    # Reads
    # =========================================================================

    def get_estimate(self, estimate_id: int) -> Estimate:
        """Unfiltered estimate entity, for callers inside the owning organization."""
        return self.estimates.require(estimate_id)

    def list_estimates(
        self,
        project_id: int,
        page: int = 1,
        limit: Optional[int] = None,
        include_deleted: bool = False,
    ) -> PaginatedResult:
        """Estimates of a project, newest version first."""
        return self.estimates.get_by_project(
            project_id, page=page, limit=self._page_size(limit), include_deleted=include_deleted
        )

    def list_by_status(
        self,
        status: EstimateStatus,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PaginatedResult:
        """Live estimates in a status."""
        try:
            status = EstimateStatus(status)
        except ValueError:
            raise ValidationError('status', f"'{status}' is not a valid status")
        return self.estimates.get_by_status(status, page=page, limit=self._page_size(limit))

    def _page_size(self, limit: Optional[int]) -> int:
        if not limit or limit < 1:
            return self.config.default_page_size
        return min(limit, self.config.max_page_size)

    def can_view_cost(self, actor_id: Optional[str]) -> bool:
        """Ask the RBAC oracle whether an actor sees cost and margin fields."""
        return can_view_cost(self.permission_checker, actor_id, self.config)

    def get_for_viewer(self, estimate_id: int, actor_id: Optional[str]) -> Dict[str, Any]:
        """
        Estimate with items, shaped for the actor.

        Raises:
            EstimateNotFoundError: If the estimate is not visible to the caller
        """
        estimate = self.estimates.require(estimate_id)
        return filter_for_viewer(estimate.to_dict(), self.can_view_cost(actor_id))

    def view_item(self, item: EstimateLineItem, actor_id: Optional[str]) -> Dict[str, Any]:
        """Line item shaped for the actor."""
        return filter_for_viewer(item.to_dict(), self.can_view_cost(actor_id))

    def view_estimates(
        self,
        estimates: Iterable[Estimate],
        actor_id: Optional[str],
        include_items: bool = False,
    ) -> List[Dict[str, Any]]:
        """Several estimates shaped for the actor (one oracle call)."""
        allowed = self.can_view_cost(actor_id)
        return [
            filter_for_viewer(estimate.to_dict(include_items=include_items), allowed)
            for estimate in estimates
        ]
