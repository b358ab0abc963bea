"""
Shared fixtures: in-memory database, a project in tenant "acme", and
service factories.
"""
import uuid
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from estimate_engine.models import Base, Project
from estimate_engine.domain.services import EstimateService, PermissionChecker
from estimate_engine.infrastructure.repositories import RepositoryContext

TENANT = "acme"
OTHER_TENANT = "globex"
FIXED_NOW = datetime(2024, 6, 15, 9, 30, 0)


class StaticPermissionChecker(PermissionChecker):
    """Grants a fixed set of 'resource:action' pairs to every actor."""

    def __init__(self, *grants):
        self.grants = set(grants)
        self.calls = []

    def has_permission(self, actor_id, resource, action):
        self.calls.append((actor_id, resource, action))
        return f"{resource}:{action}" in self.grants


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database with a project in tenant acme."""
    session = session_factory()

    project = Project(
        uuid=str(uuid.uuid4()),
        tenant_id=TENANT,
        name="Kitchen Remodel",
        code="KR-001"
    )
    session.add(project)
    session.commit()

    yield session, project

    session.close()


@pytest.fixture
def context():
    return RepositoryContext(tenant_id=TENANT, user_id="user-1")


@pytest.fixture
def service(test_db, context):
    """EstimateService with a fixed clock and full cost visibility."""
    session, _ = test_db
    return EstimateService(
        session,
        context,
        permission_checker=StaticPermissionChecker("estimates:view_cost"),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def labor_item():
    return {
        'kind': 'labor',
        'name': 'Demolition',
        'unit': 'h',
        'quantity': '10',
        'unit_cost': '100',
        'unit_client_price': '125',
    }


@pytest.fixture
def material_item():
    return {
        'kind': 'material',
        'name': 'Tiles',
        'unit': 'm2',
        'quantity': '20',
        'unit_cost': '25',
        'unit_client_price': '40',
    }
