"""
Search System for ContextVault

Provides:
- Weighted hybrid ranking of full-text and embedding matches
- "More like this" similarity over stored embeddings
- Embedding providers (local, OpenAI, deterministic hash)
- Embedding lifecycle tracking with in-flight deduplication

Usage:
    from search import rank_hybrid, RankingOptions, LexicalHit, VectorHit

    results = rank_hybrid(
        [LexicalHit('E1', 0.8)],
        [VectorHit('E1', 0.6), VectorHit('E2', 0.9)],
        RankingOptions(text_weight=0.3, vector_weight=0.7, limit=10)
    )

    # Full service over the SQLite store
    from search import create_service
    service = create_service()
    response = service.hybrid_search("react hooks", scope="user-1")
"""

from .embeddings import (
    EmbeddingProvider,
    HashEmbeddingProvider,
    LocalEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_provider,
)
from .hybrid_search import HybridRanker, rank_hybrid
from .lifecycle import EmbeddingLifecycleCoordinator, check_embedding_status, compute_checksum
from .models import (
    EmbeddingStatus,
    LexicalHit,
    MatchKind,
    RankedResult,
    RankingOptions,
    SearchableItem,
    SimilarityOptions,
    VectorHit,
)
from .service import SearchResponse, SearchService, create_service
from .similarity import find_similar
from .vector_math import cosine_similarity, is_valid_vector

__all__ = [
    'EmbeddingProvider',
    'HashEmbeddingProvider',
    'LocalEmbeddingProvider',
    'OpenAIEmbeddingProvider',
    'create_provider',
    'HybridRanker',
    'rank_hybrid',
    'EmbeddingLifecycleCoordinator',
    'check_embedding_status',
    'compute_checksum',
    'EmbeddingStatus',
    'LexicalHit',
    'MatchKind',
    'RankedResult',
    'RankingOptions',
    'SearchableItem',
    'SimilarityOptions',
    'VectorHit',
    'SearchResponse',
    'SearchService',
    'create_service',
    'find_similar',
    'cosine_similarity',
    'is_valid_vector',
]
