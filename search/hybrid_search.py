"""
Hybrid Ranking for ContextVault

Combines full-text (lexical) scores and embedding (vector) similarities
into one ranked list using a weighted sum.

Features:
- Full outer join of the two candidate lists
- Explicit, validated weighting per call
- Threshold filtering and result capping
- Deterministic ordering, including ties

The ranker is a pure function of its inputs. It performs no I/O, does not
log and has no fallback logic: when vector hits are unavailable the caller
passes an empty list and gets lexical-only ranking.

Lexical scores are used as supplied. Callers must provide them in a range
comparable to cosine similarity; the ranker never rescales them.

Usage:
    from search.hybrid_search import rank_hybrid
    from search.models import LexicalHit, VectorHit, RankingOptions

    results = rank_hybrid(
        [LexicalHit('E1', 0.8), LexicalHit('E2', 0.3)],
        [VectorHit('E2', 0.9), VectorHit('E3', 0.6)],
        RankingOptions(text_weight=0.3, vector_weight=0.7, limit=10, threshold=0.2)
    )

    for result in results:
        print(f"{result.combined_score:.2f} - {result.id} ({result.match_kind.value})")
"""

import math
from numbers import Integral, Real
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from core.errors import InvalidCandidate, InvalidOptions, InvalidWeights

from .models import (
    WEIGHT_EPSILON,
    LexicalHit,
    MatchKind,
    RankedResult,
    RankingOptions,
    VectorHit,
)


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_weights(text_weight: float, vector_weight: float) -> None:
    """
    Check that both weights are in [0, 1] and sum to 1 within WEIGHT_EPSILON.

    Raises:
        InvalidWeights: If either check fails
    """
    for name, value in (('text_weight', text_weight), ('vector_weight', vector_weight)):
        if not _is_number(value) or value < 0 or value > 1:
            raise InvalidWeights(
                f'{name} must be a number between 0 and 1',
                text_weight=text_weight,
                vector_weight=vector_weight
            )

    if abs(text_weight + vector_weight - 1) > WEIGHT_EPSILON:
        raise InvalidWeights(
            'Text weight and vector weight must sum to 1',
            text_weight=text_weight,
            vector_weight=vector_weight
        )


def validate_options(options: RankingOptions) -> None:
    """Validate a full set of ranking options."""
    validate_weights(options.text_weight, options.vector_weight)

    if isinstance(options.limit, bool) or not isinstance(options.limit, Integral) or options.limit < 1:
        raise InvalidOptions('limit must be an integer >= 1', limit=options.limit)

    if not _is_number(options.threshold):
        raise InvalidOptions('threshold must be a finite number', threshold=options.threshold)


@dataclass
class _Candidate:
    """Merge-time state for one id."""
    id: str
    metadata: Dict[str, Any]
    position: int
    lexical_score: float = 0.0
    vector_score: float = 0.0
    in_lexical: bool = False
    in_vector: bool = False

    @property
    def match_kind(self) -> MatchKind:
        if self.in_lexical and self.in_vector:
            return MatchKind.BOTH
        if self.in_lexical:
            return MatchKind.LEXICAL_ONLY
        if self.in_vector:
            return MatchKind.VECTOR_ONLY
        return MatchKind.NONE


class HybridRanker:
    """
    Weighted-sum ranker over lexical and vector candidate lists.

    combined_score = lexical_score * text_weight + vector_score * vector_weight

    Ordering: combined score descending, then vector score descending,
    then position in the lexical list (vector-only items follow, in
    vector-list order).
    """

    def rank(
        self,
        lexical_hits: Sequence[LexicalHit],
        vector_hits: Sequence[VectorHit],
        options: RankingOptions
    ) -> List[RankedResult]:
        """
        Merge, score, filter, sort and cap.

        Args:
            lexical_hits: Full-text hits, best first as returned by the store
            vector_hits: Similarity hits for the same scope
            options: Weights, limit and minimum combined score

        Returns:
            List of RankedResult sorted by combined score

        Raises:
            InvalidWeights: If the weights are out of range or don't sum to 1
            InvalidOptions: If limit < 1 or threshold is not a number
            InvalidCandidate: If a score is negative or non-finite
        """
        validate_options(options)

        merged = self.merge(lexical_hits, vector_hits)
        results = [self._score(candidate, options) for candidate in merged]

        filtered = [r for r, _ in results if r.combined_score >= options.threshold]
        positions = {r.id: pos for r, pos in results}

        ordered = sorted(
            filtered,
            key=lambda r: (-r.combined_score, -r.vector_score, positions[r.id])
        )
        return ordered[:options.limit]

    def merge(
        self,
        lexical_hits: Sequence[LexicalHit],
        vector_hits: Sequence[VectorHit]
    ) -> List[_Candidate]:
        """
        Full outer join keyed by id.

        The first occurrence of an id within a list wins; later duplicates
        are ignored.
        """
        candidates: Dict[str, _Candidate] = {}
        seen_lexical = set()
        seen_vector = set()

        for hit in lexical_hits:
            if hit.id in seen_lexical:
                continue
            seen_lexical.add(hit.id)

            if hit.score is not None and (not _is_number(hit.score) or hit.score < 0):
                raise InvalidCandidate(
                    'Lexical score must be a finite, non-negative number',
                    id=hit.id,
                    score=hit.score
                )

            candidates[hit.id] = _Candidate(
                id=hit.id,
                metadata=hit.metadata,
                position=len(candidates),
                lexical_score=float(hit.score) if hit.score is not None else 0.0,
                vector_score=0.0,
                in_lexical=hit.score is not None,
            )

        for hit in vector_hits:
            if hit.id in seen_vector:
                continue
            seen_vector.add(hit.id)

            if not _is_number(hit.similarity):
                raise InvalidCandidate(
                    'Vector similarity must be a finite number',
                    id=hit.id,
                    similarity=hit.similarity
                )

            existing = candidates.get(hit.id)
            if existing is not None:
                existing.vector_score = float(hit.similarity)
                existing.in_vector = True
            else:
                candidates[hit.id] = _Candidate(
                    id=hit.id,
                    metadata=hit.metadata,
                    position=len(candidates),
                    lexical_score=0.0,
                    vector_score=float(hit.similarity),
                    in_vector=True,
                )

        return list(candidates.values())

    def _score(self, candidate: _Candidate, options: RankingOptions):
        combined = (
            candidate.lexical_score * options.text_weight
            + candidate.vector_score * options.vector_weight
        )
        result = RankedResult(
            id=candidate.id,
            display_metadata=candidate.metadata,
            lexical_score=candidate.lexical_score,
            vector_score=candidate.vector_score,
            combined_score=combined,
            match_kind=candidate.match_kind,
        )
        return result, candidate.position


_default_ranker = HybridRanker()


def rank_hybrid(
    lexical_hits: Sequence[LexicalHit],
    vector_hits: Sequence[VectorHit],
    options: RankingOptions
) -> List[RankedResult]:
    """Rank with the shared HybridRanker. See HybridRanker.rank."""
    return _default_ranker.rank(lexical_hits, vector_hits, options)
