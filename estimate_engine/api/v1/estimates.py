"""
Estimate API Endpoints - Versioned estimates and their line items.

Implements:
- POST /api/v1/estimates - Create estimate (next version of a project)
- GET /api/v1/estimates?status= - List estimates in a status
- GET /api/v1/estimates/project/{project_id} - List a project's versions
- GET /api/v1/estimates/{id} - Get estimate with items
- PATCH /api/v1/estimates/{id} - Update notes/tags/valid_until
- DELETE /api/v1/estimates/{id} - Soft delete
- POST /api/v1/estimates/{id}/items - Add line item
- PATCH /api/v1/estimates/items/{item_id} - Update line item
- DELETE /api/v1/estimates/items/{item_id} - Delete line item
- POST /api/v1/estimates/{id}/send|approve|reject - Status transitions
- POST /api/v1/estimates/{id}/versions - Clone into a new version

Cost, margin and unit cost are only returned to actors with
estimates:view_cost. Money is serialized as decimal strings.
"""
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field

from estimate_engine.domain.entities import EstimateStatus, ItemKind
from estimate_engine.domain.exceptions import DomainError
from estimate_engine.domain.money import QUANTITY_DIGITS, column_limit
from estimate_engine.domain.services import EstimateService
from estimate_engine.infrastructure.repositories import RepositoryContext
from .deps import get_context, get_estimate_service, require_edit, to_http_exception

router = APIRouter()


# Quantities and unit prices are stored as NUMERIC(14, 4)
UNIT_LIMIT = column_limit(QUANTITY_DIGITS, 4)


def _encode(data: Any) -> Any:
    return jsonable_encoder(data, custom_encoder={Decimal: str})


# =============================================================================
# Pydantic Models
# =============================================================================

class LineItemCreate(BaseModel):
    """Request model for a line item. Derived totals are not accepted."""
    kind: ItemKind = Field(..., description="labor, material or subcontractor")
    name: str = Field(..., min_length=1, max_length=200, description="Item name")
    unit: str = Field(..., min_length=1, max_length=20, description="Unit of measure")
    quantity: Decimal = Field(..., ge=0, lt=UNIT_LIMIT, description="Quantity")
    unit_cost: Decimal = Field(..., ge=0, lt=UNIT_LIMIT, description="Internal unit price")
    unit_client_price: Decimal = Field(..., ge=0, lt=UNIT_LIMIT, description="Client unit price")
    description: Optional[str] = Field(None, max_length=2000)
    order: Optional[int] = Field(None, ge=0, description="Display position")
    material_catalog_id: Optional[str] = Field(None, max_length=36)
    work_type_id: Optional[str] = Field(None, max_length=36)

    model_config = ConfigDict(extra="forbid")


class LineItemUpdate(BaseModel):
    """Request model for a partial line item update."""
    kind: Optional[ItemKind] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    unit: Optional[str] = Field(None, min_length=1, max_length=20)
    quantity: Optional[Decimal] = Field(None, ge=0, lt=UNIT_LIMIT)
    unit_cost: Optional[Decimal] = Field(None, ge=0, lt=UNIT_LIMIT)
    unit_client_price: Optional[Decimal] = Field(None, ge=0, lt=UNIT_LIMIT)
    description: Optional[str] = Field(None, max_length=2000)
    order: Optional[int] = Field(None, ge=0)
    material_catalog_id: Optional[str] = Field(None, max_length=36)
    work_type_id: Optional[str] = Field(None, max_length=36)

    model_config = ConfigDict(extra="forbid")


class EstimateCreate(BaseModel):
    """Request model for creating an estimate."""
    project_id: int = Field(..., description="Parent project")
    items: List[LineItemCreate] = Field(..., min_length=1, description="At least one line item")
    notes: Optional[str] = Field(None, max_length=5000)
    tags: List[str] = Field(default_factory=list)
    valid_until: Optional[date] = None


class EstimateUpdate(BaseModel):
    """Request model for updating estimate metadata."""
    notes: Optional[str] = Field(None, max_length=5000)
    tags: Optional[List[str]] = None
    valid_until: Optional[date] = None

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# Estimate Endpoints
# =============================================================================

@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a new estimate",
    description="Create a draft estimate at the project's next version number",
    dependencies=[Depends(require_edit)],
)
def create_estimate(
    estimate_data: EstimateCreate,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """Create an estimate with its items; totals are computed server-side."""
    try:
        estimate = service.create_estimate(
            project_id=estimate_data.project_id,
            items=[item.model_dump() for item in estimate_data.items],
            notes=estimate_data.notes,
            tags=estimate_data.tags,
            valid_until=estimate_data.valid_until,
        )
        return _encode(service.get_for_viewer(estimate.id, context.user_id))
    except DomainError as e:
        raise to_http_exception(e)


@router.get(
    "",
    summary="List estimates by status",
    description="Live estimates of the tenant in the given status",
)
def list_estimates_by_status(
    status_filter: EstimateStatus = Query(..., alias="status"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """List estimates in a status without their items."""
    result = service.list_by_status(status_filter, page=page, limit=limit)
    return _encode(result.to_dict(service.view_estimates(result.data, context.user_id)))


@router.get(
    "/project/{project_id}",
    summary="List estimates for project",
    description="All versions of a project's estimate, newest first",
)
def list_estimates_for_project(
    project_id: int,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    include_deleted: bool = Query(False),
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """List a project's estimate versions without their items."""
    result = service.list_estimates(
        project_id, page=page, limit=limit, include_deleted=include_deleted
    )
    return _encode(result.to_dict(service.view_estimates(result.data, context.user_id)))


@router.get(
    "/{estimate_id}",
    summary="Get estimate by ID",
    description="Retrieve an estimate with its line items",
)
def get_estimate(
    estimate_id: int,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """Get an estimate shaped for the caller."""
    try:
        return _encode(service.get_for_viewer(estimate_id, context.user_id))
    except DomainError as e:
        raise to_http_exception(e)


@router.patch(
    "/{estimate_id}",
    summary="Update estimate",
    description="Update notes, tags or valid_until. Totals and status are not editable.",
    dependencies=[Depends(require_edit)],
)
def update_estimate(
    estimate_id: int,
    estimate_data: EstimateUpdate,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """Update estimate metadata."""
    try:
        service.update_estimate(estimate_id, **estimate_data.model_dump(exclude_unset=True))
        return _encode(service.get_for_viewer(estimate_id, context.user_id))
    except DomainError as e:
        raise to_http_exception(e)


@router.delete(
    "/{estimate_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete estimate",
    description="Soft delete. The version number stays reserved.",
    dependencies=[Depends(require_edit)],
)
def delete_estimate(
    estimate_id: int,
    service: EstimateService = Depends(get_estimate_service),
):
    """Soft-delete an estimate."""
    try:
        service.soft_delete(estimate_id)
    except DomainError as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Line Item Endpoints
# =============================================================================

@router.post(
    "/{estimate_id}/items",
    status_code=status.HTTP_201_CREATED,
    summary="Add line item",
    description="Append a line item and recompute the estimate totals",
    dependencies=[Depends(require_edit)],
)
def add_item(
    estimate_id: int,
    item_data: LineItemCreate,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """Add a line item to an estimate."""
    try:
        item = service.add_item(estimate_id, item_data.model_dump())
        return _encode(service.view_item(item, context.user_id))
    except DomainError as e:
        raise to_http_exception(e)


@router.patch(
    "/items/{item_id}",
    summary="Update line item",
    description="Partial update; derived totals are always recomputed",
    dependencies=[Depends(require_edit)],
)
def update_item(
    item_id: int,
    item_data: LineItemUpdate,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """Update a line item."""
    try:
        item = service.update_item(item_id, item_data.model_dump(exclude_unset=True))
        return _encode(service.view_item(item, context.user_id))
    except DomainError as e:
        raise to_http_exception(e)


@router.delete(
    "/items/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete line item",
    description="Delete a line item and recompute the estimate totals",
    dependencies=[Depends(require_edit)],
)
def delete_item(
    item_id: int,
    service: EstimateService = Depends(get_estimate_service),
):
    """Delete a line item."""
    try:
        service.delete_item(item_id)
    except DomainError as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Status and Versioning Endpoints
# =============================================================================

def _transition(service: EstimateService, estimate_id: int, action: str, actor_id: Optional[str]):
    try:
        getattr(service, action)(estimate_id)
        return _encode(service.get_for_viewer(estimate_id, actor_id))
    except DomainError as e:
        raise to_http_exception(e)


@router.post(
    "/{estimate_id}/send",
    summary="Send estimate",
    description="draft -> sent; stamps sent_at",
    dependencies=[Depends(require_edit)],
)
def send_estimate(
    estimate_id: int,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    return _transition(service, estimate_id, "send", context.user_id)


@router.post(
    "/{estimate_id}/approve",
    summary="Approve estimate",
    description="sent -> approved; stamps approved_at",
    dependencies=[Depends(require_edit)],
)
def approve_estimate(
    estimate_id: int,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    return _transition(service, estimate_id, "approve", context.user_id)


@router.post(
    "/{estimate_id}/reject",
    summary="Reject estimate",
    description="sent -> rejected",
    dependencies=[Depends(require_edit)],
)
def reject_estimate(
    estimate_id: int,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    return _transition(service, estimate_id, "reject", context.user_id)


@router.post(
    "/{estimate_id}/versions",
    status_code=status.HTTP_201_CREATED,
    summary="Create new version",
    description="Copy an estimate and its items into the project's next version",
    dependencies=[Depends(require_edit)],
)
def create_version(
    estimate_id: int,
    service: EstimateService = Depends(get_estimate_service),
    context: RepositoryContext = Depends(get_context),
):
    """Clone an estimate into a new draft version."""
    try:
        clone = service.clone_as_new_version(estimate_id)
        return _encode(service.get_for_viewer(clone.id, context.user_id))
    except DomainError as e:
        raise to_http_exception(e)
