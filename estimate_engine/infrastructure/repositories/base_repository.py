"""
Base Repository - Abstract tenant-scoped repository implementation.

Provides common CRUD operations and query helpers for all entities.
Every query is filtered on the tenant of the repository context; rows of
other tenants are indistinguishable from rows that do not exist.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, TypeVar, Optional, Type

from sqlalchemy.orm import Query, Session

from estimate_engine.models import Base

T = TypeVar('T', bound=Base)


@dataclass(frozen=True)
class RepositoryContext:
    """
    Caller identity for data access.

    Attributes:
        tenant_id: Owning organization; every query filters on it
        user_id: Acting user, used for permission lookups
    """
    tenant_id: str
    user_id: Optional[str] = None


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository providing common data access operations.

    Type Parameters:
        T: The SQLAlchemy model type this repository manages
    """

    def __init__(self, session: Session, model_class: Type[T], context: RepositoryContext):
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
            context: Tenant/user scope applied to every query
        """
        self.session = session
        self.model_class = model_class
        self.context = context

    @property
    def tenant_id(self) -> str:
        return self.context.tenant_id

    def scoped_query(self, include_deleted: bool = False) -> Query:
        """
        Query filtered to the current tenant.

        Soft-deleted rows are excluded unless include_deleted is set
        (only for models with a deleted_at column).
        """
        query = self.session.query(self.model_class).filter(
            self.model_class.tenant_id == self.tenant_id
        )
        if not include_deleted and hasattr(self.model_class, 'deleted_at'):
            query = query.filter(self.model_class.deleted_at.is_(None))
        return query

    def get_by_id(self, entity_id: int, include_deleted: bool = False) -> Optional[T]:
        """
        Retrieve an entity by its primary key within the tenant.

        Args:
            entity_id: Primary key value
            include_deleted: Also return soft-deleted rows

        Returns:
            The entity if found, None otherwise
        """
        return self.scoped_query(include_deleted).filter(
            self.model_class.id == entity_id
        ).first()

    def get_by_uuid(self, uuid: str) -> Optional[T]:
        """
        Retrieve an entity by its UUID within the tenant.

        Args:
            uuid: UUID string

        Returns:
            The entity if found, None otherwise
        """
        return self.scoped_query().filter(self.model_class.uuid == uuid).first()

    def count(self) -> int:
        """Count entities of the tenant."""
        return self.scoped_query().count()

    def add(self, entity: T) -> T:
        """
        Add a new entity to the session, stamped with the tenant.

        Args:
            entity: Entity to add

        Returns:
            The added entity
        """
        entity.tenant_id = self.tenant_id
        self.session.add(entity)
        return entity

    def delete(self, entity: T) -> None:
        """
        Delete an entity.

        Args:
            entity: Entity to delete
        """
        self.session.delete(entity)

    def flush(self) -> None:
        """Flush pending changes to the database."""
        self.session.flush()

    @abstractmethod
    def exists(self, **criteria) -> bool:
        """
        Check if an entity matching the criteria exists within the tenant.

        Args:
            **criteria: Field-value pairs to match

        Returns:
            True if entity exists, False otherwise
        """
        pass
