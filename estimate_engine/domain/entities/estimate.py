"""
Estimate Entity - Status state machine and pagination shapes.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Generic, List, Optional, TypeVar

T = TypeVar('T')


class EstimateStatus(str, Enum):
    """Lifecycle status of an estimate version."""
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


# draft -> sent -> approved | rejected; approved and rejected are terminal
ALLOWED_TRANSITIONS: Dict[EstimateStatus, FrozenSet[EstimateStatus]] = {
    EstimateStatus.DRAFT: frozenset({EstimateStatus.SENT}),
    EstimateStatus.SENT: frozenset({EstimateStatus.APPROVED, EstimateStatus.REJECTED}),
    EstimateStatus.APPROVED: frozenset(),
    EstimateStatus.REJECTED: frozenset(),
}

# Timestamp column stamped when entering a status
STATUS_TIMESTAMPS: Dict[EstimateStatus, str] = {
    EstimateStatus.SENT: 'sent_at',
    EstimateStatus.APPROVED: 'approved_at',
}


def can_transition(current: EstimateStatus, target: EstimateStatus) -> bool:
    """Check whether target is reachable from current in one step."""
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class PaginatedResult(Generic[T]):
    """One page of a tenant-scoped listing."""

    data: List[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    def to_dict(self, data: Optional[list] = None) -> dict:
        return {
            'data': self.data if data is None else data,
            'total': self.total,
            'page': self.page,
            'limit': self.limit,
            'total_pages': self.total_pages,
        }
