"""
Project Repository - Data access layer for Project entities.
"""
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from estimate_engine.models import Project
from estimate_engine.domain.exceptions import ProjectNotFoundError
from .base_repository import BaseRepository, RepositoryContext


class ProjectRepository(BaseRepository[Project]):
    """
    Repository for Project entities.

    Projects are only resolved here; the wider project CRUD lives outside
    the estimate engine.
    """

    def __init__(self, session: Session, context: RepositoryContext):
        super().__init__(session, Project, context)

    def exists(self, **criteria) -> bool:
        """Check if a Project matching the criteria exists within the tenant."""
        query = self.scoped_query()
        for field, value in criteria.items():
            query = query.filter(getattr(Project, field) == value)
        return query.first() is not None

    def get_by_code(self, code: str) -> Optional[Project]:
        """Get a project by its tenant-unique code."""
        return self.scoped_query().filter(Project.code == code).first()

    def require(self, project_id: int) -> Project:
        """
        Get a project or fail.

        Raises:
            ProjectNotFoundError: If the project is missing or owned by another tenant
        """
        project = self.get_by_id(project_id)
        if not project:
            raise ProjectNotFoundError(project_id)
        return project

    def create(self, name: str, code: str, description: Optional[str] = None) -> Project:
        """
        Create a new project in the current tenant.

        Args:
            name: Display name
            code: Tenant-unique short code
            description: Optional description

        Returns:
            Created project entity
        """
        project = Project(
            uuid=str(uuid.uuid4()),
            name=name,
            code=code,
            description=description,
        )
        self.add(project)
        return project
