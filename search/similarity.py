"""
Similarity search over stored embeddings.

find_similar ranks a candidate pool against one reference vector ("more
like this"). score_vector_candidates does the same for a query embedding
and produces VectorHits for the hybrid ranker.

Candidates without a usable vector are skipped, never scored as 0: an
unknown similarity is not the same as a dissimilar entry.
"""

from numbers import Integral, Real
from typing import List, Optional, Sequence, Tuple

import numpy as np

from core.errors import EmptyCandidatePool, InvalidOptions, ReferenceNotFound

from .models import (
    MatchKind,
    RankedResult,
    SearchableItem,
    SimilarityOptions,
    VectorHit,
)
from .vector_math import cosine_similarities, is_valid_vector, validate_vector


def _check_limit_and_threshold(limit, threshold) -> None:
    if isinstance(limit, bool) or not isinstance(limit, Integral) or limit < 1:
        raise InvalidOptions('limit must be an integer >= 1', limit=limit)
    if isinstance(threshold, bool) or not isinstance(threshold, Real) or not 0 <= threshold <= 1:
        raise InvalidOptions('threshold must be between 0 and 1', threshold=threshold)


def _score_pool(
    reference: np.ndarray,
    candidates: Sequence[SearchableItem],
    dimension: int,
    exclude_id: Optional[str] = None
) -> List[Tuple[int, SearchableItem, float]]:
    """Score every eligible candidate; returns (input index, item, similarity)."""
    eligible = [
        (idx, item) for idx, item in enumerate(candidates)
        if item.id != exclude_id and is_valid_vector(item.vector, dimension)
    ]
    if not eligible:
        return []

    matrix = np.vstack([np.asarray(item.vector, dtype=np.float64) for _, item in eligible])
    sims = cosine_similarities(reference, matrix)

    return [(idx, item, float(sim)) for (idx, item), sim in zip(eligible, sims)]


def _top(scored, threshold: float, limit: int):
    kept = [entry for entry in scored if entry[2] >= threshold]
    # Ties keep input order
    kept.sort(key=lambda entry: (-entry[2], entry[0]))
    return kept[:limit]


def find_similar(
    reference_vector: Optional[Sequence[float]],
    candidates: Sequence[SearchableItem],
    options: SimilarityOptions,
    reference_id: Optional[str] = None
) -> List[RankedResult]:
    """
    Rank candidates by cosine similarity to a reference vector.

    Args:
        reference_vector: Embedding of the reference entry (None if it has none)
        candidates: Pool to rank, normally excluding the reference itself
        options: limit, threshold in [0, 1], and optional deployment dimension
        reference_id: If given, a candidate with this id is skipped

    Returns:
        RankedResults sorted by similarity descending (vector-only)

    Raises:
        ReferenceNotFound: If the reference has no vector
        DimensionMismatch: If the reference disagrees with the deployment dimension
        EmptyCandidatePool: If candidates is literally empty
    """
    if reference_vector is None:
        raise ReferenceNotFound(reference_id=reference_id)

    _check_limit_and_threshold(options.limit, options.threshold)

    dimension = options.dimension if options.dimension is not None else len(reference_vector)
    reference = validate_vector(reference_vector, dimension)

    if len(candidates) == 0:
        raise EmptyCandidatePool(reference_id=reference_id)

    scored = _score_pool(reference, candidates, dimension, exclude_id=reference_id)

    return [
        RankedResult(
            id=item.id,
            display_metadata=item.display_metadata,
            lexical_score=0.0,
            vector_score=sim,
            combined_score=sim,
            match_kind=MatchKind.VECTOR_ONLY,
        )
        for _, item, sim in _top(scored, options.threshold, options.limit)
    ]


def score_vector_candidates(
    query_vector: Sequence[float],
    candidates: Sequence[SearchableItem],
    dimension: int,
    threshold: float = 0.0,
    limit: Optional[int] = None
) -> List[VectorHit]:
    """
    Turn stored vectors into VectorHits for a query embedding.

    Unlike find_similar, an empty pool is not an error: a scope with no
    embeddings simply contributes no vector hits.

    Raises:
        DimensionMismatch: If the query vector has the wrong dimension
        InvalidVector: If the query vector is empty or non-finite
    """
    query = validate_vector(query_vector, dimension)

    scored = _score_pool(query, candidates, dimension)
    kept = _top(scored, threshold, limit if limit is not None else len(scored))

    return [
        VectorHit(id=item.id, similarity=sim, metadata=item.display_metadata)
        for _, item, sim in kept
    ]
