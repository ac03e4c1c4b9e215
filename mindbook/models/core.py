"""
Core data models for the personal memory store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

QUERY_TYPE_GENERAL = 'general'
QUERY_TYPE_SIMILARITY = 'similarity'
QUERY_TYPES = (QUERY_TYPE_GENERAL, QUERY_TYPE_SIMILARITY)

STRATEGY_TEMPORAL = 'temporal'
STRATEGY_SIMILARITY = 'similarity'


@dataclass
class Note:
    """A free-text note captured for one owner.

    The embedding lives in the similarity index; notes read back from the
    graph carry an empty embedding.
    """
    id: str
    owner_id: str  # Each note belongs to exactly one user partition
    text: str
    day_name: str  # Weekday of creation, e.g. 'Friday'
    created_at: datetime
    embedding: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class TimeConstraints:
    """Explicit time filters extracted from a question.

    A None field leaves that hierarchy level unconstrained.
    """
    year: Optional[str] = None
    month: Optional[str] = None  # Full English month name
    day: Optional[str] = None  # Day of month without leading zero

    def is_empty(self) -> bool:
        return self.year is None and self.month is None and self.day is None


@dataclass(frozen=True)
class QueryDecision:
    """Validated output of the query classifier."""
    processed_query: str
    query_type: str  # 'general' or 'similarity'
    time_constraints: TimeConstraints = field(default_factory=TimeConstraints)

    @property
    def is_temporal(self) -> bool:
        return self.query_type == QUERY_TYPE_GENERAL


@dataclass
class RetrievalResult:
    """A primary similarity hit with the texts of its related notes."""
    note: Note
    score: float
    related_notes: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DayNodeRef:
    """Reference to a merged Day vertex in a user's temporal hierarchy."""
    key: str
    owner_id: str
    year: int
    month: str
    day: int
    day_name: str


@dataclass
class QueryOutcome:
    """Everything the query pipeline decided and produced for one question."""
    decision: QueryDecision
    strategy: str  # 'temporal' or 'similarity'
    fell_back: bool
    context_blocks: List[str]
    answer: str
    results: List[RetrievalResult] = field(default_factory=list)
