"""
Repository implementations for data access layer.
"""
from .base_repository import BaseRepository, RepositoryContext
from .project_repository import ProjectRepository
from .estimate_repository import EstimateRepository

__all__ = [
    'BaseRepository',
    'RepositoryContext',
    'ProjectRepository',
    'EstimateRepository',
]
