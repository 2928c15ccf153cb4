"""
Tests for embedding lifecycle coordination.

Covers checksums, status classification and in-flight deduplication,
including concurrent requests for the same content.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
import sys

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import EmbeddingProviderError
from search.lifecycle import (
    EmbeddingLifecycleCoordinator,
    check_embedding_status,
    compute_checksum,
    normalize_text,
)
from search.models import EmbeddingStatus


class TestChecksum:
    """Tests for compute_checksum."""

    def test_stable(self):
        assert compute_checksum("machine learning ethics") == compute_checksum("machine learning ethics")

    def test_whitespace_insensitive(self):
        assert compute_checksum("  machine\n learning\tethics ") == compute_checksum("machine learning ethics")

    def test_content_sensitive(self):
        assert compute_checksum("machine learning ethics") != compute_checksum("machine learning")

    def test_length(self):
        assert len(compute_checksum("anything")) == 16

    def test_normalize_none(self):
        assert normalize_text(None) == ''


class TestCheckEmbeddingStatus:
    """Tests for status classification."""

    def test_missing(self):
        assert check_embedding_status('abc', None, has_vector=False) is EmbeddingStatus.MISSING
        assert check_embedding_status('abc', 'abc', has_vector=False) is EmbeddingStatus.MISSING

    def test_fresh(self):
        assert check_embedding_status('abc', 'abc', has_vector=True) is EmbeddingStatus.FRESH

    def test_stale(self):
        assert check_embedding_status('abc', 'old', has_vector=True) is EmbeddingStatus.STALE

    def test_unverifiable_vector_is_stale(self):
        """A vector with no recorded checksum cannot be trusted as fresh."""
        assert check_embedding_status('abc', None, has_vector=True) is EmbeddingStatus.STALE


class TestCoordinator:
    """Tests for EmbeddingLifecycleCoordinator."""

    @pytest.fixture
    def coordinator(self):
        return EmbeddingLifecycleCoordinator()

    def test_first_request_dispatches(self, coordinator):
        ticket = coordinator.begin_embedding_computation('c1')

        assert ticket.dispatch is True
        assert ticket.join_existing is False
        assert coordinator.is_pending('c1')

    def test_second_request_joins(self, coordinator):
        first = coordinator.begin_embedding_computation('c1')
        second = coordinator.begin_embedding_computation('c1')

        assert second.dispatch is False
        assert second.join_existing is True
        assert second.future is first.future

    def test_different_checksums_independent(self, coordinator):
        assert coordinator.begin_embedding_computation('c1').dispatch
        assert coordinator.begin_embedding_computation('c2').dispatch
        assert coordinator.in_flight_count == 2

    def test_complete_releases_and_notifies(self, coordinator):
        coordinator.begin_embedding_computation('c1')
        joiner = coordinator.begin_embedding_computation('c1')

        coordinator.complete_computation('c1', [0.1, 0.2])

        assert not coordinator.is_pending('c1')
        np.testing.assert_allclose(joiner.wait(timeout=1), [0.1, 0.2])

    def test_failure_releases_and_propagates(self, coordinator):
        coordinator.begin_embedding_computation('c1')
        joiner = coordinator.begin_embedding_computation('c1')

        coordinator.fail_computation('c1', EmbeddingProviderError('boom'))

        assert not coordinator.is_pending('c1')
        with pytest.raises(EmbeddingProviderError):
            joiner.wait(timeout=1)

    def test_unconvertible_vector_fails_joiners(self, coordinator):
        """A vector that cannot become an array still resolves the computation."""
        coordinator.begin_embedding_computation('c1')
        joiner = coordinator.begin_embedding_computation('c1')

        with pytest.raises(ValueError):
            coordinator.complete_computation('c1', [[1.0, 2.0], [3.0]])

        assert not coordinator.is_pending('c1')
        with pytest.raises(ValueError):
            joiner.wait(timeout=1)

    def test_no_automatic_retry(self, coordinator):
        """After a failure the next request dispatches anew."""
        coordinator.begin_embedding_computation('c1')
        coordinator.fail_computation('c1', EmbeddingProviderError('boom'))

        assert coordinator.begin_embedding_computation('c1').dispatch is True

    def test_complete_unknown_checksum_is_noop(self, coordinator):
        coordinator.complete_computation('never-started', [1.0])
        coordinator.fail_computation('never-started', RuntimeError('x'))
        assert coordinator.in_flight_count == 0

    def test_status_for_pending(self, coordinator):
        coordinator.begin_embedding_computation('c1')

        assert coordinator.status_for('c1', None, False) is EmbeddingStatus.PENDING
        assert coordinator.status_for('c2', 'c2', True) is EmbeddingStatus.FRESH

    def test_compute_success(self, coordinator):
        vector, ticket = coordinator.compute('c1', lambda: np.array([1.0, 0.0]))

        assert ticket.dispatch
        np.testing.assert_allclose(vector, [1.0, 0.0])
        assert coordinator.in_flight_count == 0

    def test_compute_failure(self, coordinator):
        def fail():
            raise EmbeddingProviderError('provider down')

        with pytest.raises(EmbeddingProviderError):
            coordinator.compute('c1', fail)

        assert coordinator.in_flight_count == 0


class TestConcurrentDeduplication:
    """Concurrent requests for the same checksum."""

    def test_two_threads_one_dispatch_one_join(self):
        coordinator = EmbeddingLifecycleCoordinator()
        barrier = threading.Barrier(2)

        def request():
            barrier.wait()
            return coordinator.begin_embedding_computation('same-content')

        with ThreadPoolExecutor(max_workers=2) as executor:
            tickets = list(executor.map(lambda _: request(), range(2)))

        assert sum(t.dispatch for t in tickets) == 1
        assert sum(t.join_existing for t in tickets) == 1

    def test_joiners_share_one_computation(self):
        coordinator = EmbeddingLifecycleCoordinator()
        calls = []
        started = threading.Event()
        release = threading.Event()

        def embed():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            return np.array([0.5, 0.5])

        with ThreadPoolExecutor(max_workers=1) as executor:
            dispatcher = executor.submit(coordinator.compute, 'same-content', embed, 5)
            assert started.wait(timeout=5)

            joiners = [coordinator.begin_embedding_computation('same-content') for _ in range(7)]
            assert all(t.join_existing for t in joiners)

            release.set()
            vector, ticket = dispatcher.result(timeout=5)

        assert len(calls) == 1
        assert ticket.dispatch
        np.testing.assert_allclose(vector, [0.5, 0.5])
        for joiner in joiners:
            np.testing.assert_allclose(joiner.wait(timeout=5), [0.5, 0.5])
        assert coordinator.in_flight_count == 0
