"""
Search Service for ContextVault

Wires the ranking core to its collaborators:
- CandidateStore for lexical hits and stored vectors
- EmbeddingProvider for query and entry embeddings
- EmbeddingLifecycleCoordinator so identical content is embedded once

Hybrid search runs the lexical query and the query embedding in parallel.
If the provider fails, the search still answers with lexical-only ranking
and the response is marked degraded.

Usage:
    from search.service import create_service

    service = create_service()
    response = service.hybrid_search("machine learning ethics", scope="user-1")
    print(response.to_dict())
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from core.config import SearchConfig, get_config
from core.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    ReferenceNotFound,
    ValidationError,
)
from core.logging_config import AuditLogger, log_performance
from core.metrics import SearchMetrics, Timer, get_search_metrics

from .embeddings import EmbeddingProvider, create_provider, prepare_entry_text
from .hybrid_search import HybridRanker, validate_options
from .lifecycle import EmbeddingLifecycleCoordinator, compute_checksum
from .models import (
    ComputationTicket,
    EmbeddingOutcome,
    EmbeddingSource,
    EmbeddingStatus,
    MatchKind,
    RankedResult,
    RankingOptions,
    RegenerationReport,
    SimilarityOptions,
    VectorHit,
)
from .similarity import find_similar, score_vector_candidates
from .vector_math import is_valid_vector, validate_vector

logger = logging.getLogger(__name__)


@dataclass
class SearchResponse:
    """Ranked results plus what produced them."""
    query: str
    search_type: str
    results: List[RankedResult] = field(default_factory=list)
    weights: Optional[Dict[str, float]] = None
    degraded: bool = False
    duration_ms: float = 0.0

    @property
    def count(self) -> int:
        return len(self.results)

    def breakdown(self) -> Dict[str, int]:
        """How many results each signal contributed."""
        counts = {kind.value: 0 for kind in MatchKind if kind is not MatchKind.NONE}
        for result in self.results:
            if result.match_kind is not MatchKind.NONE:
                counts[result.match_kind.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'results': [r.to_dict() for r in self.results],
            'query': self.query,
            'count': self.count,
            'search_type': self.search_type,
            'degraded': self.degraded,
            'duration_ms': round(self.duration_ms, 2),
        }
        if self.weights is not None:
            data['weights'] = dict(self.weights)
            data['breakdown'] = self.breakdown()
        return data


class SearchService:
    """
    Search and embedding operations for one deployment.

    Args:
        store: CandidateStore (lexical matches and stored vectors)
        provider: EmbeddingProvider, or None for lexical-only operation
        config: SearchConfig (defaults to get_config())
        coordinator: Shared EmbeddingLifecycleCoordinator
        metrics: SearchMetrics collector (defaults to the process-wide one)
        embeddings: EmbeddingRepository (defaults to store)
    """

    def __init__(
        self,
        store,
        provider: Optional[EmbeddingProvider] = None,
        config: Optional[SearchConfig] = None,
        coordinator: Optional[EmbeddingLifecycleCoordinator] = None,
        metrics: Optional[SearchMetrics] = None,
        embeddings=None
    ):
        self.store = store
        self.provider = provider
        self.config = config or get_config()
        self.coordinator = coordinator or EmbeddingLifecycleCoordinator()
        self.metrics = metrics or get_search_metrics()
        self.embeddings = embeddings if embeddings is not None else store
        self.ranker = HybridRanker()
        self.audit = AuditLogger()

    @property
    def dimension(self) -> Optional[int]:
        """Deployment vector dimension, taken from the provider."""
        return self.provider.dimension if self.provider is not None else None

    # =========================================================================
    # Search
    # =========================================================================

    def text_search(
        self,
        query: str,
        scope: str,
        limit: Optional[int] = None,
        filters: Optional[Dict[str, Any]] = None
    ) -> SearchResponse:
        """Full-text search only."""
        _require_query(query)
        options = RankingOptions(1.0, 0.0, self._resolve_limit(limit))
        validate_options(options)

        with Timer() as timer:
            hits = self.store.find_lexical_matches(query, scope, options.limit, filters)
            results = self.ranker.rank(hits, [], options)

        return self._finish(SearchResponse(query, 'text', results, duration_ms=timer.duration_ms), scope)

    def vector_search(
        self,
        query: str,
        scope: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        filters: Optional[Dict[str, Any]] = None
    ) -> SearchResponse:
        """
        Embedding search only.

        Raises:
            EmbeddingProviderError: If the query cannot be embedded
        """
        _require_query(query)
        if threshold is None:
            threshold = self.config.ranking.similarity_threshold
        options = RankingOptions(0.0, 1.0, self._resolve_limit(limit), threshold)
        validate_options(options)

        with Timer() as timer:
            hits = self._vector_hits(query, scope, options.limit, threshold, filters)
            results = self.ranker.rank([], hits, options)

        return self._finish(SearchResponse(query, 'vector', results, duration_ms=timer.duration_ms), scope)

    @log_performance('contextvault.search')
    def hybrid_search(
        self,
        query: str,
        scope: str,
        text_weight: Optional[float] = None,
        vector_weight: Optional[float] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        filters: Optional[Dict[str, Any]] = None
    ) -> SearchResponse:
        """
        Weighted lexical + vector search.

        Each side fetches limit * candidate_multiplier candidates. When the
        embedding provider fails, ranking proceeds with no vector hits and
        the response is marked degraded. A degraded search does not apply
        the threshold, so lexical matches are still returned in order.

        Raises:
            InvalidWeights / InvalidOptions: Before any store or provider call
            DimensionMismatch: If the provider returns a vector of the wrong size
        """
        _require_query(query)
        ranking = self.config.ranking
        options = RankingOptions(
            text_weight=ranking.text_weight if text_weight is None else text_weight,
            vector_weight=ranking.vector_weight if vector_weight is None else vector_weight,
            limit=self._resolve_limit(limit),
            threshold=ranking.hybrid_threshold if threshold is None else threshold,
        )
        validate_options(options)

        candidate_limit = options.limit * ranking.candidate_multiplier
        degraded = False

        with Timer() as timer:
            with ThreadPoolExecutor(max_workers=2) as executor:
                lexical_future = executor.submit(
                    self.store.find_lexical_matches, query, scope, candidate_limit, filters
                )
                vector_future = executor.submit(
                    self._vector_hits, query, scope, candidate_limit,
                    ranking.hybrid_vector_threshold, filters
                )

                lexical_hits = lexical_future.result()
                try:
                    vector_hits = vector_future.result()
                except EmbeddingProviderError as e:
                    logger.warning(
                        f"Vector signal unavailable, ranking lexical only: {e.message}",
                        extra={'scope': scope, 'provider': e.provider, 'error_type': e.error_type}
                    )
                    self.metrics.record_error(e.error_type)
                    vector_hits = []
                    degraded = True

            # degraded ranking keeps every lexical match
            rank_options = replace(options, threshold=0.0) if degraded else options
            results = self.ranker.rank(lexical_hits, vector_hits, rank_options)

        response = SearchResponse(
            query,
            'hybrid',
            results,
            weights={'text': options.text_weight, 'vector': options.vector_weight},
            degraded=degraded,
            duration_ms=timer.duration_ms,
        )
        return self._finish(response, scope)

    @log_performance('contextvault.search')
    def find_similar_entries(
        self,
        entry_id: str,
        scope: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> SearchResponse:
        """
        Entries most similar to a stored entry.

        Raises:
            ReferenceNotFound: If the entry is not in scope or has no usable embedding
            EmptyCandidatePool: If the scope holds no other entries
        """
        options = SimilarityOptions(
            limit=10 if limit is None else limit,
            threshold=self.config.ranking.similarity_threshold if threshold is None else threshold,
            dimension=self.dimension,
        )

        with Timer() as timer:
            items = self.store.list_vectors(scope)
            reference = next((item for item in items if item.id == entry_id), None)
            if reference is None or not reference.has_vector:
                raise ReferenceNotFound(reference_id=entry_id)
            if not is_valid_vector(reference.vector, self.dimension or len(reference.vector)):
                logger.warning(
                    f"Stored embedding for {entry_id} is unusable, treating as missing",
                    extra={'scope': scope, 'entry_id': entry_id}
                )
                raise ReferenceNotFound(reference_id=entry_id)

            pool = [item for item in items if item.id != entry_id]
            results = find_similar(reference.vector, pool, options, reference_id=entry_id)

        return self._finish(SearchResponse(entry_id, 'similar', results, duration_ms=timer.duration_ms), scope)

    # =========================================================================
    # Embedding Lifecycle
    # =========================================================================

    def ensure_embedding(
        self,
        entry_id: str,
        text: str,
        recorded_checksum: Optional[str] = None,
        has_vector: bool = False,
        force: bool = False,
        persist: bool = True
    ) -> EmbeddingOutcome:
        """
        Make sure an entry's stored embedding matches its text.

        Fresh embeddings are left alone unless force is set. Concurrent
        requests for the same text share one provider call. Failures are
        reported on the outcome, never retried here.
        """
        checksum = compute_checksum(text)
        status = self.coordinator.status_for(checksum, recorded_checksum, has_vector)

        if status is EmbeddingStatus.FRESH and not force:
            self.metrics.record_embedding('skipped')
            return EmbeddingOutcome(entry_id=entry_id, checksum=checksum, status=status)

        try:
            vector, ticket = self.coordinator.compute(
                checksum,
                lambda: self._embed_document(text),
                timeout=self.config.embedding.timeout_seconds * 3
            )
        except (EmbeddingProviderError, ValidationError, FuturesTimeout) as e:
            message = getattr(e, 'message', None) or str(e) or type(e).__name__
            logger.error(
                f"Failed to generate embedding for entry {entry_id}: {message}",
                extra={'entry_id': entry_id, 'checksum': checksum}
            )
            self.metrics.record_embedding('failed')
            return EmbeddingOutcome(
                entry_id=entry_id,
                checksum=checksum,
                status=self.coordinator.check_embedding_status(checksum, recorded_checksum, has_vector),
                error=message,
            )

        if persist and self.embeddings is not None:
            self.embeddings.save_embedding(entry_id, vector, checksum, self.provider.model)

        self.metrics.record_embedding('dispatched' if ticket.dispatch else 'joined')
        return EmbeddingOutcome(
            entry_id=entry_id,
            checksum=checksum,
            status=EmbeddingStatus.FRESH,
            vector=vector,
            dispatched=ticket.dispatch,
            joined=ticket.join_existing,
        )

    def add_entry(self, entry: Dict[str, Any]) -> Tuple[str, Optional[EmbeddingOutcome]]:
        """
        Store an entry and, when auto-generation is on, embed it.

        An embedding failure does not undo the save; the outcome carries
        the error.
        """
        entry_id = self.store.save(entry)

        if not self.config.embedding.auto_generate or self.provider is None:
            return entry_id, None

        text = prepare_entry_text(entry.get('title'), entry.get('content'), entry.get('tags'))
        return entry_id, self.ensure_embedding(entry_id, text)

    def regenerate_embeddings(
        self,
        scope: str,
        entry_ids: Optional[Sequence[str]] = None,
        only_missing: bool = False,
        force: bool = False,
        show_progress: bool = False
    ) -> RegenerationReport:
        """
        (Re)generate embeddings for a scope.

        Entries that need work are grouped by content checksum and embedded
        through the provider's embed_batch, embedding.batch_size checksums
        at a time. Each checksum still goes through the coordinator: text
        already being embedded elsewhere is joined, and entries sharing
        text share one vector.

        Args:
            scope: User id
            entry_ids: Restrict to these entries
            only_missing: Skip entries that already have any vector
            force: Re-embed even fresh entries
            show_progress: Show a tqdm progress bar

        Returns:
            RegenerationReport with per-outcome counts
        """
        if self.provider is None:
            raise ConfigurationError('No embedding provider configured')

        sources = self.embeddings.list_embedding_sources(scope, entry_ids)
        report = RegenerationReport(total=len(sources))
        start_time = time.time()

        groups: Dict[str, List[EmbeddingSource]] = {}
        for source in sources:
            if only_missing and source.has_vector:
                report.skipped += 1
                continue

            checksum = compute_checksum(source.text)
            status = self.coordinator.check_embedding_status(
                checksum, source.recorded_checksum, source.has_vector
            )
            if status is EmbeddingStatus.FRESH and not force:
                self.metrics.record_embedding('skipped')
                report.skipped += 1
                continue

            groups.setdefault(checksum, []).append(source)

        checksums = list(groups)
        batch_size = self.config.embedding.batch_size

        with tqdm(total=len(checksums), desc="Embedding entries", disable=not show_progress) as progress:
            for start in range(0, len(checksums), batch_size):
                chunk = checksums[start:start + batch_size]
                for ticket, vector, error in self._embed_chunk(chunk, groups):
                    self._record_group(groups[ticket.checksum], ticket, vector, error, report)
                progress.update(len(chunk))

        duration = time.time() - start_time
        logger.info(
            f"Embedding regeneration finished: {report.successful} successful, {report.failed} failed",
            extra={'scope': scope, 'total_entries': report.total}
        )
        self.audit.log_embedding_run(
            scope, report.total, report.successful, report.failed, round(duration, 2)
        )
        return report

    def embedding_status_summary(self, scope: str) -> Dict[str, Any]:
        """Counts of missing, fresh, stale and pending embeddings in a scope."""
        counts = {status.value: 0 for status in EmbeddingStatus}
        sources = self.embeddings.list_embedding_sources(scope)

        for source in sources:
            status = self.coordinator.status_for(
                compute_checksum(source.text), source.recorded_checksum, source.has_vector
            )
            counts[status.value] += 1

        with_embeddings = sum(1 for s in sources if s.has_vector)
        return {
            'total_entries': len(sources),
            'with_embeddings': with_embeddings,
            'without_embeddings': len(sources) - with_embeddings,
            'vector_search_enabled': with_embeddings > 0 and self.provider is not None,
            'status': counts,
            'provider': self.provider.name if self.provider else None,
            'model': self.provider.model if self.provider else None,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve_limit(self, limit: Optional[int]) -> int:
        ranking = self.config.ranking
        if limit is None:
            limit = ranking.default_limit
        if isinstance(limit, int) and not isinstance(limit, bool) and limit > ranking.max_results:
            return ranking.max_results
        return limit

    def _embed_query(self, query: str):
        if self.provider is None:
            raise EmbeddingProviderError(
                'No embedding provider configured',
                provider='none',
                retryable=False
            )
        return validate_vector(self.provider.embed(query), self.dimension)

    def _embed_document(self, text: str):
        if self.provider is None:
            raise ConfigurationError('No embedding provider configured')
        return validate_vector(self.provider.embed(text), self.dimension)

    def _embed_chunk(
        self,
        checksums: List[str],
        groups: Dict[str, List[EmbeddingSource]]
    ) -> List[Tuple[ComputationTicket, Optional[np.ndarray], Optional[str]]]:
        """
        Claim or join each checksum and embed the claimed ones in one batch.

        Every dispatched ticket is completed or failed before returning, so
        joiners elsewhere never wait on an abandoned computation.
        """
        tickets = [self.coordinator.begin_embedding_computation(c) for c in checksums]
        dispatched = [t for t in tickets if t.dispatch]

        if dispatched:
            texts = [groups[t.checksum][0].text for t in dispatched]
            try:
                vectors = self.provider.embed_batch(texts)
            except (EmbeddingProviderError, ValidationError) as e:
                vectors = [e] * len(dispatched)
            except BaseException as e:
                for ticket in dispatched:
                    self.coordinator.fail_computation(ticket.checksum, e)
                raise

            if len(vectors) != len(dispatched):
                error = EmbeddingProviderError(
                    f'Provider returned {len(vectors)} vectors for {len(dispatched)} texts',
                    provider=self.provider.name
                )
                vectors = [error] * len(dispatched)

            for ticket, vector in zip(dispatched, vectors):
                self._settle(ticket, vector)

        timeout = self.config.embedding.timeout_seconds * 3
        results = []
        for ticket in tickets:
            try:
                results.append((ticket, ticket.wait(timeout), None))
            except (EmbeddingProviderError, ValidationError, FuturesTimeout) as e:
                message = getattr(e, 'message', None) or str(e) or type(e).__name__
                results.append((ticket, None, message))
        return results

    def _settle(self, ticket: ComputationTicket, vector) -> None:
        if vector is None:
            vector = EmbeddingProviderError(provider=self.provider.name)
        if isinstance(vector, BaseException):
            self.coordinator.fail_computation(ticket.checksum, vector)
            return

        try:
            vector = validate_vector(vector, self.dimension)
        except ValidationError as e:
            self.coordinator.fail_computation(ticket.checksum, e)
            return
        self.coordinator.complete_computation(ticket.checksum, vector)

    def _record_group(
        self,
        sources: List[EmbeddingSource],
        ticket: ComputationTicket,
        vector: Optional[np.ndarray],
        error: Optional[str],
        report: RegenerationReport
    ) -> None:
        for index, source in enumerate(sources):
            if error is not None:
                logger.error(
                    f"Failed to generate embedding for entry {source.entry_id}: {error}",
                    extra={'entry_id': source.entry_id, 'checksum': ticket.checksum}
                )
                self.metrics.record_embedding('failed')
                report.failed += 1
                report.errors.append({'entry_id': source.entry_id, 'error': error})
                continue

            self.embeddings.save_embedding(source.entry_id, vector, ticket.checksum, self.provider.model)
            if ticket.dispatch and index == 0:
                self.metrics.record_embedding('dispatched')
                report.generated += 1
            else:
                self.metrics.record_embedding('joined')
                report.joined += 1

    def _vector_hits(
        self,
        query: str,
        scope: str,
        limit: int,
        threshold: float,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[VectorHit]:
        query_vector = self._embed_query(query)
        items = self.store.list_vectors(scope, filters)
        return score_vector_candidates(
            query_vector, items, self.dimension, threshold=threshold, limit=limit
        )

    def _finish(self, response: SearchResponse, scope: str) -> SearchResponse:
        self.metrics.record_search(
            response.search_type, response.count, response.duration_ms, response.degraded
        )
        self.audit.log_search(
            response.query,
            response.count,
            mode=response.search_type,
            scope=scope,
            duration_ms=round(response.duration_ms, 2),
            degraded=response.degraded,
        )
        return response


def _require_query(query: str) -> None:
    if not isinstance(query, str) or not query.strip():
        raise ValidationError('Search query is required')


def create_service(config: Optional[SearchConfig] = None, provider: Optional[EmbeddingProvider] = None) -> SearchService:
    """
    Build a SearchService over the SQLite repository named in config.

    The provider comes from create_provider(config) unless one is given.
    """
    from database.repository import EntryRepository

    config = config or get_config()
    store = EntryRepository(config.storage.db_path)
    if provider is None:
        provider = create_provider(config)
    return SearchService(store, provider, config)


# =============================================================================
# CLI
# =============================================================================

if __name__ == '__main__':
    import argparse
    import json

    from core.logging_config import setup_logging

    from .embeddings import HashEmbeddingProvider

    parser = argparse.ArgumentParser(description="ContextVault search")
    parser.add_argument('--user', '-u', required=True, help="User scope")
    parser.add_argument('--db', '-d', help="Database path (overrides config)")
    parser.add_argument('--hash-embeddings', type=int, metavar='DIM',
                        help="Use deterministic hash embeddings of this dimension")
    parser.add_argument('--json', action='store_true', help="Output as JSON")
    parser.add_argument('--progress', action='store_true', help="Show progress bars")

    sub = parser.add_subparsers(dest='command', required=True)

    search_cmd = sub.add_parser('search', help="Search entries")
    search_cmd.add_argument('query', help="Search query")
    search_cmd.add_argument('--mode', '-m', choices=['hybrid', 'text', 'vector'], default='hybrid')
    search_cmd.add_argument('--limit', '-l', type=int, help="Max results")
    search_cmd.add_argument('--threshold', '-t', type=float, help="Minimum score")
    search_cmd.add_argument('--text-weight', type=float, help="Lexical weight")
    search_cmd.add_argument('--vector-weight', type=float, help="Vector weight")

    similar_cmd = sub.add_parser('similar', help="Find entries similar to one entry")
    similar_cmd.add_argument('entry_id', help="Reference entry id")
    similar_cmd.add_argument('--limit', '-l', type=int, help="Max results")
    similar_cmd.add_argument('--threshold', '-t', type=float, help="Minimum similarity")

    embed_cmd = sub.add_parser('embed', help="Generate embeddings")
    embed_cmd.add_argument('entry_ids', nargs='*', help="Entries to embed (default: all)")
    embed_cmd.add_argument('--all', action='store_true', help="Re-embed everything")
    embed_cmd.add_argument('--only-missing', action='store_true', help="Only entries with no vector")

    sub.add_parser('status', help="Embedding status for the user")

    args = parser.parse_args()

    config = get_config()
    setup_logging(level=config.log_level, json_format=config.log_json)
    if args.db:
        config = config.model_copy(update={'storage': config.storage.model_copy(update={'db_path': args.db})})

    provider = HashEmbeddingProvider(args.hash_embeddings) if args.hash_embeddings else None
    service = create_service(config, provider)

    if args.command == 'search':
        if args.mode == 'text':
            response = service.text_search(args.query, args.user, args.limit)
        elif args.mode == 'vector':
            response = service.vector_search(args.query, args.user, args.limit, args.threshold)
        else:
            response = service.hybrid_search(
                args.query, args.user, args.text_weight, args.vector_weight,
                args.limit, args.threshold
            )
        output = response.to_dict()
    elif args.command == 'similar':
        output = service.find_similar_entries(args.entry_id, args.user, args.limit, args.threshold).to_dict()
    elif args.command == 'embed':
        output = service.regenerate_embeddings(
            args.user,
            entry_ids=args.entry_ids or None,
            only_missing=args.only_missing,
            force=args.all,
            show_progress=args.progress,
        ).to_dict()
    else:
        output = service.embedding_status_summary(args.user)

    if args.json or args.command in ('embed', 'status'):
        print(json.dumps(output, indent=2, default=str))
    else:
        print(f"\nFound {output['count']} results for '{output['query']}'"
              f"{' (lexical only)' if output['degraded'] else ''}:\n")
        for i, result in enumerate(output['results'], 1):
            print(f"{i}. [{result['combined_score']:.3f}] {result.get('title', result['id'])}"
                  f" ({result['match_kind']})")
            if result.get('preview'):
                print(f"   {result['preview'][:100]}")
            print()
