"""
Database models and SQLAlchemy setup for the Estimate Engine.

Money is stored as fixed-point NUMERIC and handled as Decimal in Python;
derived totals are materialized next to the inputs they come from.
Every row carries the owning tenant_id.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    create_engine, Column, Integer, String, Numeric, Date,
    DateTime, Text, JSON, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship

from estimate_engine.config import get_config
from estimate_engine.domain.money import MONEY_DIGITS, PERCENT_DIGITS, QUANTITY_DIGITS


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _make_engine(url: str, echo: bool = False):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


engine = _make_engine(get_config().database_url, get_config().database_echo)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

MONEY = Numeric(MONEY_DIGITS, 2)
UNIT = Numeric(QUANTITY_DIGITS, 4)
PERCENT = Numeric(PERCENT_DIGITS, 4)


# =============================================================================
# Project Entity (Level 0 in Hierarchy)
# =============================================================================

class Project(Base):
    """
    Top-level project entity.
    All estimates belong to a project; a project belongs to one tenant.
    """
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False)  # External UUID
    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    code = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    estimates = relationship("Estimate", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_tenant_project_code'),
    )


# =============================================================================
# Estimate Entity (Level 1 - Versioned proposal)
# =============================================================================

class Estimate(Base):
    """
    One version of a priced proposal for a project.
    INVARIANT: total_cost = Σ(items.total_cost), total_client_price = Σ(items.total_client_price)
    INVARIANT: (project_id, version) is unique
    """
    __tablename__ = "estimates"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False)  # External UUID
    tenant_id = Column(String(36), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey('projects.id'), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default='draft', index=True)  # draft, sent, approved, rejected

    # Materialized totals (never set directly by callers)
    total_cost = Column(MONEY, nullable=False, default=0)
    total_client_price = Column(MONEY, nullable=False, default=0)
    margin = Column(MONEY, nullable=False, default=0)
    margin_percent = Column(PERCENT, nullable=False, default=0)

    valid_until = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    sent_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    pdf_url = Column(String(500), nullable=True)  # Written by the PDF collaborator
    pdf_generated_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True, index=True)  # Soft delete
    version_id = Column(Integer, nullable=False)  # Optimistic locking
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    project = relationship("Project", back_populates="estimates")
    items = relationship(
        "EstimateLineItem",
        back_populates="estimate",
        cascade="all, delete-orphan",
        order_by="[EstimateLineItem.order, EstimateLineItem.id]",
    )

    __table_args__ = (
        UniqueConstraint('project_id', 'version', name='uq_project_estimate_version'),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        """Full (unfiltered) representation, including cost fields."""
        data = {
            'id': self.id,
            'uuid': self.uuid,
            'project_id': self.project_id,
            'version': self.version,
            'status': self.status,
            'total_cost': self.total_cost,
            'total_client_price': self.total_client_price,
            'margin': self.margin,
            'margin_percent': self.margin_percent,
            'valid_until': self.valid_until,
            'notes': self.notes,
            'tags': list(self.tags or []),
            'sent_at': self.sent_at,
            'approved_at': self.approved_at,
            'pdf_url': self.pdf_url,
            'pdf_generated_at': self.pdf_generated_at,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        return data


# =============================================================================
# Estimate Line Item Entity (Level 2 - Priced rows)
# =============================================================================

class EstimateLineItem(Base):
    """
    One priced row of an estimate. Exclusively owned by its estimate.
    INVARIANT: total_cost = quantity * unit_cost
    INVARIANT: total_client_price = quantity * unit_client_price
    """
    __tablename__ = "estimate_line_items"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, index=True, nullable=False)  # External UUID
    tenant_id = Column(String(36), nullable=False, index=True)
    estimate_id = Column(Integer, ForeignKey('estimates.id'), nullable=False, index=True)
    kind = Column(String(20), nullable=False)  # labor, material, subcontractor
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    unit = Column(String(20), nullable=False)

    # Raw inputs
    quantity = Column(UNIT, nullable=False)
    unit_cost = Column(UNIT, nullable=False)
    unit_client_price = Column(UNIT, nullable=False)

    # Materialized from the inputs above
    total_cost = Column(MONEY, nullable=False)
    total_client_price = Column(MONEY, nullable=False)
    margin = Column(MONEY, nullable=False)
    margin_percent = Column(PERCENT, nullable=False)

    order = Column(Integer, nullable=False, default=0)
    material_catalog_id = Column(String(36), nullable=True)
    work_type_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    estimate = relationship("Estimate", back_populates="items")

    def to_dict(self) -> dict:
        """Full (unfiltered) representation, including cost fields."""
        return {
            'id': self.id,
            'uuid': self.uuid,
            'estimate_id': self.estimate_id,
            'kind': self.kind,
            'name': self.name,
            'description': self.description,
            'unit': self.unit,
            'quantity': self.quantity,
            'unit_cost': self.unit_cost,
            'unit_client_price': self.unit_client_price,
            'total_cost': self.total_cost,
            'total_client_price': self.total_client_price,
            'margin': self.margin,
            'margin_percent': self.margin_percent,
            'order': self.order,
            'material_catalog_id': self.material_catalog_id,
            'work_type_id': self.work_type_id,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


def init_db(bind=None):
    """Initialize the database and create all tables."""
    # Registers the ORM-level invariant guards
    import estimate_engine.domain.events.handlers  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Database session dependency for FastAPI."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
