"""
Shared types for the ranking core.

Items are built per request from store output and live only for the
duration of one ranking call. display_metadata is opaque: it is copied
into results and never inspected.
"""

from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

# Maximum allowed |text_weight + vector_weight - 1|
WEIGHT_EPSILON = 0.001


# =============================================================================
# Enums
# =============================================================================

class MatchKind(Enum):
    """Which signal lists contained a result. For display only."""
    LEXICAL_ONLY = "lexical-only"
    VECTOR_ONLY = "vector-only"
    BOTH = "both"
    NONE = "none"


class EmbeddingStatus(Enum):
    """Freshness of an item's stored embedding."""
    MISSING = "missing"
    FRESH = "fresh"
    STALE = "stale"
    PENDING = "pending"


# =============================================================================
# Inputs
# =============================================================================

@dataclass
class SearchableItem:
    """A candidate entry as returned by the store."""
    id: str
    lexical_score: Optional[float] = None
    vector: Optional[Sequence[float]] = None
    vector_checksum: Optional[str] = None
    display_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_vector(self) -> bool:
        return self.vector is not None and len(self.vector) > 0


@dataclass
class LexicalHit:
    """Full-text match. score is None when the entry did not match."""
    id: str
    score: Optional[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorHit:
    """Vector match with its cosine similarity to the query."""
    id: str
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RankingOptions:
    """Options for one hybrid ranking call. No defaults for weights."""
    text_weight: float
    vector_weight: float
    limit: int
    threshold: float = 0.0


@dataclass
class SimilarityOptions:
    """Options for a find-similar call."""
    limit: int = 10
    threshold: float = 0.7
    dimension: Optional[int] = None


# =============================================================================
# Outputs
# =============================================================================

@dataclass
class RankedResult:
    """A ranked entry with its per-signal and combined scores."""
    id: str
    display_metadata: Dict[str, Any]
    lexical_score: float = 0.0
    vector_score: float = 0.0
    combined_score: float = 0.0
    match_kind: MatchKind = MatchKind.NONE

    def to_dict(self) -> dict:
        return {
            **self.display_metadata,
            'id': self.id,
            'lexical_score': self.lexical_score,
            'vector_score': self.vector_score,
            'combined_score': self.combined_score,
            'match_kind': self.match_kind.value,
        }


@dataclass
class ComputationTicket:
    """
    Result of asking to start an embedding computation.

    Exactly one of dispatch / join_existing is True. A dispatching caller
    must finish the ticket with complete_computation or fail_computation;
    joiners wait on future.
    """
    checksum: str
    dispatch: bool
    join_existing: bool
    future: "Future[np.ndarray]"

    def wait(self, timeout: Optional[float] = None) -> np.ndarray:
        """Block until the shared computation finishes."""
        return self.future.result(timeout=timeout)


@dataclass
class EmbeddingSource:
    """Text and recorded embedding state for one entry."""
    entry_id: str
    text: str
    recorded_checksum: Optional[str] = None
    has_vector: bool = False


@dataclass
class EmbeddingOutcome:
    """What happened when an entry's embedding was ensured."""
    entry_id: str
    checksum: str
    status: EmbeddingStatus
    vector: Optional[np.ndarray] = None
    dispatched: bool = False
    joined: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.vector is not None


@dataclass
class RegenerationReport:
    """Summary of a batch embedding run."""
    total: int = 0
    generated: int = 0
    joined: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return self.generated + self.joined

    def to_dict(self) -> dict:
        return {
            'total_entries': self.total,
            'successful': self.successful,
            'generated': self.generated,
            'joined': self.joined,
            'skipped': self.skipped,
            'failed': self.failed,
            'errors': self.errors,
        }
