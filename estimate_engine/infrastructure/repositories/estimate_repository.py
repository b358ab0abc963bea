"""
Estimate Repository - Data access layer for Estimates and their line items.

Implements repository pattern for Estimate operations with:
- Tenant isolation on every query (items included)
- Per-project version numbering backed by a unique constraint
- Soft delete for estimates, hard delete for items
"""
import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from estimate_engine.models import Estimate, EstimateLineItem
from estimate_engine.domain.entities import (
    EstimateStatus,
    LineItemSpec,
    LineItemTotals,
    PaginatedResult,
)
from estimate_engine.domain.exceptions import (
    EstimateNotFoundError,
    EstimateItemNotFoundError,
    VersionConflictError,
)
from estimate_engine.domain.money import quantize_quantity, to_decimal
from .base_repository import BaseRepository, RepositoryContext

VERSION_CONSTRAINT = 'uq_project_estimate_version'


def _is_version_collision(error: IntegrityError) -> bool:
    """Whether an IntegrityError came from the (project_id, version) constraint."""
    text = str(error.orig)
    return (
        VERSION_CONSTRAINT in text
        or 'estimates.project_id, estimates.version' in text
    )


class EstimateRepository(BaseRepository[Estimate]):
    """
    Repository for Estimate and EstimateLineItem entities.

    Items have no existence outside their estimate; they are loaded and
    written through this repository only.
    """

    def __init__(self, session: Session, context: RepositoryContext):
        super().__init__(session, Estimate, context)

    def exists(self, **criteria) -> bool:
        """Check if a live Estimate matching the criteria exists within the tenant."""
        query = self.scoped_query()
        for field, value in criteria.items():
            query = query.filter(getattr(Estimate, field) == value)
        return query.first() is not None

    # =========================================================================
    # Estimates
    # =========================================================================

    def require(self, estimate_id: int, for_update: bool = False) -> Estimate:
        """
        Get a live estimate or fail.

        Args:
            estimate_id: Estimate identifier
            for_update: Lock the row and reload it from the database

        Raises:
            EstimateNotFoundError: If missing, soft-deleted, or owned by another tenant
        """
        query = self.scoped_query().filter(Estimate.id == estimate_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        estimate = query.first()
        if not estimate:
            raise EstimateNotFoundError(estimate_id)
        return estimate

    def get_latest_version(self, project_id: int) -> int:
        """
        Get the highest version number used by a project.

        Soft-deleted estimates count, so their numbers are never reused.

        Returns:
            Highest version, or 0 when the project has no estimates
        """
        latest = self.session.query(func.max(Estimate.version)).filter(
            Estimate.project_id == project_id,
            Estimate.tenant_id == self.tenant_id,
        ).scalar()
        return latest or 0

    def get_by_project(
        self,
        project_id: int,
        page: int = 1,
        limit: int = 10,
        include_deleted: bool = False
    ) -> PaginatedResult:
        """
        Get estimates of a project, newest version first.

        Args:
            project_id: Project identifier
            page: 1-based page number
            limit: Page size
            include_deleted: Also list soft-deleted versions

        Returns:
            PaginatedResult of Estimate entities
        """
        query = self.scoped_query(include_deleted).filter(Estimate.project_id == project_id)
        return self._paginate(query.order_by(Estimate.version.desc()), page, limit)

    def get_by_status(self, status: EstimateStatus, page: int = 1, limit: int = 10) -> PaginatedResult:
        """Get live estimates in a status, most recently created first."""
        query = self.scoped_query().filter(Estimate.status == EstimateStatus(status).value)
        return self._paginate(
            query.order_by(Estimate.created_at.desc(), Estimate.id.desc()), page, limit
        )

    def _paginate(self, query, page: int, limit: int) -> PaginatedResult:
        page = max(page, 1)
        total = query.count()
        data = query.offset((page - 1) * limit).limit(limit).all()
        return PaginatedResult(data=data, total=total, page=page, limit=limit)

    def create(
        self,
        project_id: int,
        version: int,
        totals: LineItemTotals,
        status: EstimateStatus = EstimateStatus.DRAFT,
        notes: Optional[str] = None,
        tags: Optional[List[str]] = None,
        valid_until: Optional[date] = None,
    ) -> Estimate:
        """
        Create and flush a new estimate version.

        Args:
            project_id: Parent project
            version: Version number to claim
            totals: Materialized totals of the items that will be attached
            status: Initial status
            notes: Optional notes
            tags: Optional tags
            valid_until: Optional expiry date

        Returns:
            Created estimate entity

        Raises:
            VersionConflictError: If another writer claimed the same version
        """
        estimate = Estimate(
            uuid=str(uuid.uuid4()),
            project_id=project_id,
            version=version,
            status=EstimateStatus(status).value,
            notes=notes,
            tags=list(tags or []),
            valid_until=valid_until,
        )
        self.apply_totals(estimate, totals)
        self.add(estimate)

        try:
            self.flush()
        except IntegrityError as e:
            if _is_version_collision(e):
                raise VersionConflictError(project_id, version) from e
            raise
        return estimate

    @staticmethod
    def apply_totals(entity, totals: LineItemTotals) -> None:
        """Write materialized totals onto an estimate or line item."""
        for field, value in totals.to_dict().items():
            setattr(entity, field, value)

    def soft_delete(self, estimate: Estimate, when: datetime) -> Estimate:
        """Hide an estimate from reads; its version number stays taken."""
        estimate.deleted_at = when
        return estimate

    # =========================================================================
    # Line items
    # =========================================================================

    def _item_query(self):
        return self.session.query(EstimateLineItem).join(
            Estimate, EstimateLineItem.estimate_id == Estimate.id
        ).filter(
            EstimateLineItem.tenant_id == self.tenant_id,
            Estimate.tenant_id == self.tenant_id,
            Estimate.deleted_at.is_(None),
        )

    def get_items(self, estimate_id: int) -> List[EstimateLineItem]:
        """
        Read the current item set of an estimate from the database.

        Pending writes must be flushed first; the result reflects the
        store, not the estimate's loaded collection.
        """
        return self._item_query().filter(
            EstimateLineItem.estimate_id == estimate_id
        ).order_by(EstimateLineItem.order, EstimateLineItem.id).all()

    def require_item(self, item_id: int, for_update: bool = False) -> EstimateLineItem:
        """
        Get a line item or fail.

        Args:
            item_id: Line item identifier
            for_update: Lock the row and reload it from the database

        Raises:
            EstimateItemNotFoundError: If missing, on a deleted estimate, or in another tenant
        """
        query = self._item_query().filter(EstimateLineItem.id == item_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        item = query.first()
        if not item:
            raise EstimateItemNotFoundError(item_id)
        return item

    def next_item_order(self, estimate_id: int) -> int:
        """Position after the last item of an estimate."""
        last = self.session.query(func.max(EstimateLineItem.order)).filter(
            EstimateLineItem.estimate_id == estimate_id,
            EstimateLineItem.tenant_id == self.tenant_id,
        ).scalar()
        return 0 if last is None else last + 1

    def add_item(
        self,
        estimate: Estimate,
        spec: LineItemSpec,
        totals: LineItemTotals,
        order: int
    ) -> EstimateLineItem:
        """
        Attach a new item built from a spec and its computed totals.

        Args:
            estimate: Owning estimate
            spec: Raw caller inputs
            totals: Output of compute_line_item for the spec
            order: Display position

        Returns:
            The pending item entity
        """
        item = EstimateLineItem(
            uuid=str(uuid.uuid4()),
            estimate_id=estimate.id,
            kind=spec.kind.value if hasattr(spec.kind, 'value') else spec.kind,
            name=spec.name,
            description=spec.description,
            unit=spec.unit,
            quantity=quantize_quantity(to_decimal(spec.quantity, 'quantity'), 'quantity'),
            unit_cost=quantize_quantity(to_decimal(spec.unit_cost, 'unit_cost'), 'unit_cost'),
            unit_client_price=quantize_quantity(
                to_decimal(spec.unit_client_price, 'unit_client_price'), 'unit_client_price'
            ),
            order=order,
            material_catalog_id=spec.material_catalog_id,
            work_type_id=spec.work_type_id,
        )
        self.apply_totals(item, totals)
        return self.add(item)

    def copy_item(self, estimate: Estimate, source: EstimateLineItem) -> EstimateLineItem:
        """Attach a copy of an existing item, materialized fields included."""
        item = EstimateLineItem(
            uuid=str(uuid.uuid4()),
            estimate_id=estimate.id,
            kind=source.kind,
            name=source.name,
            description=source.description,
            unit=source.unit,
            quantity=source.quantity,
            unit_cost=source.unit_cost,
            unit_client_price=source.unit_client_price,
            total_cost=source.total_cost,
            total_client_price=source.total_client_price,
            margin=source.margin,
            margin_percent=source.margin_percent,
            order=source.order,
            material_catalog_id=source.material_catalog_id,
            work_type_id=source.work_type_id,
        )
        return self.add(item)

    def delete_item(self, item: EstimateLineItem) -> None:
        """Hard-delete a line item."""
        self.delete(item)
