"""
Estimate Version Service - Creates and clones numbered estimate versions.

Implements the versioning rules:
- Versions are numbered 1, 2, 3, ... per project
- Soft-deleted versions keep their number (never reused)
- A new version always starts in draft with its items' totals materialized
- Cloning copies every item of the source and leaves the source untouched

This service flushes but never commits: it runs inside the caller's
transaction so estimate and items persist all-or-nothing.
"""
import logging
from datetime import date
from typing import Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from estimate_engine.models import Estimate
from estimate_engine.domain.entities import EstimateStatus, LineItemSpec
from estimate_engine.infrastructure.repositories import (
    EstimateRepository,
    ProjectRepository,
    RepositoryContext,
)
from .estimate_aggregator import aggregate
from .line_item_calculator import compute_line_item

logger = logging.getLogger(__name__)

ItemInput = Union[LineItemSpec, dict]


def coerce_spec(item: ItemInput) -> LineItemSpec:
    """Accept a LineItemSpec or a plain mapping."""
    if isinstance(item, LineItemSpec):
        return item
    return LineItemSpec.from_dict(item)


class EstimateVersionService:
    """
    Service for estimate version allocation.

    Ensures:
    - next_version(p) = 1 + max(version | project = p), or 1
    - (project_id, version) uniqueness is enforced by the database;
      a lost race surfaces as VersionConflictError
    """

    def __init__(self, session: Session, context: RepositoryContext):
        self.session = session
        self.context = context
        self.estimates = EstimateRepository(session, context)
        self.projects = ProjectRepository(session, context)

    def next_version(self, project_id: int) -> int:
        """
        Version number the next estimate of a project will get.

        Raises:
            ProjectNotFoundError: If the project is not in the caller's tenant
        """
        self.projects.require(project_id)
        return self.estimates.get_latest_version(project_id) + 1

    def create_with_items(
        self,
        project_id: int,
        items: Iterable[ItemInput],
        notes: Optional[str] = None,
        tags: Optional[List[str]] = None,
        valid_until: Optional[date] = None,
    ) -> Estimate:
        """
        Create a draft estimate at the next version with its items.

        Each item's totals are derived by compute_line_item and the estimate
        totals by aggregate; nothing derived is taken from the input.
        Items without an explicit order get their position in the list.

        Raises:
            ProjectNotFoundError: If the project is not in the caller's tenant
            ValidationError: If an item input is invalid
            VersionConflictError: If the version was claimed concurrently
        """
        specs = [coerce_spec(item) for item in items]
        derived = [
            compute_line_item(spec.quantity, spec.unit_cost, spec.unit_client_price)
            for spec in specs
        ]

        version = self.next_version(project_id)
        estimate = self.estimates.create(
            project_id=project_id,
            version=version,
            totals=aggregate(derived),
            status=EstimateStatus.DRAFT,
            notes=notes,
            tags=tags,
            valid_until=valid_until,
        )

        for index, (spec, totals) in enumerate(zip(specs, derived)):
            order = spec.order if spec.order is not None else index
            self.estimates.add_item(estimate, spec, totals, order)
        self.estimates.flush()

        logger.info(
            f"Created estimate {estimate.id} v{version} for project {project_id} "
            f"with {len(specs)} items (cost={estimate.total_cost}, "
            f"client={estimate.total_client_price})"
        )
        return estimate

    def clone_as_new_version(self, source_estimate_id: int) -> Estimate:
        """
        Copy an estimate and all its items into the next version.

        The copy is a draft with sent_at/approved_at unset; notes and tags
        are carried over. The source estimate and its items are not modified.

        Raises:
            EstimateNotFoundError: If the source is missing or in another tenant
            VersionConflictError: If the version was claimed concurrently
        """
        source = self.estimates.require(source_estimate_id)
        source_items = self.estimates.get_items(source.id)

        version = self.next_version(source.project_id)
        clone = self.estimates.create(
            project_id=source.project_id,
            version=version,
            totals=aggregate(source_items),
            status=EstimateStatus.DRAFT,
            notes=source.notes,
            tags=list(source.tags or []),
        )

        for item in source_items:
            self.estimates.copy_item(clone, item)
        self.estimates.flush()

        logger.info(
            f"Cloned estimate {source.id} v{source.version} into {clone.id} v{version} "
            f"({len(source_items)} items)"
        )
        return clone
