"""
Embedding Lifecycle Coordination

Decides whether an entry's embedding is missing, fresh or stale, and makes
sure that at most one computation per content checksum is in flight in
this process. The coordinator never computes or stores embeddings itself:
callers dispatch the work and persist the result.

State per entry:
    MISSING --request--> PENDING --success--> FRESH
    STALE   --request--> PENDING --failure--> MISSING / STALE (no retry)

Usage:
    from search.lifecycle import EmbeddingLifecycleCoordinator, compute_checksum

    coordinator = EmbeddingLifecycleCoordinator()
    checksum = compute_checksum(text)

    ticket = coordinator.begin_embedding_computation(checksum)
    if ticket.dispatch:
        try:
            vector = provider.embed(text)
        except Exception as e:
            coordinator.fail_computation(checksum, e)
            raise
        coordinator.complete_computation(checksum, vector)
    else:
        vector = ticket.wait()
"""

import hashlib
import re
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Optional

import numpy as np

from .models import ComputationTicket, EmbeddingStatus

CHECKSUM_LENGTH = 16

_WHITESPACE = re.compile(r'\s+')


def normalize_text(text: str) -> str:
    """Collapse whitespace and trim. Checksums are taken over this form."""
    return _WHITESPACE.sub(' ', text or '').strip()


def compute_checksum(text: str) -> str:
    """
    Stable digest of the text used to produce an embedding.

    Same normalized text always gives the same checksum.
    """
    digest = hashlib.sha256(normalize_text(text).encode('utf-8')).hexdigest()
    return digest[:CHECKSUM_LENGTH]


def check_embedding_status(
    item_checksum: str,
    recorded_checksum: Optional[str],
    has_vector: bool
) -> EmbeddingStatus:
    """
    Classify a stored embedding against the current content.

    Args:
        item_checksum: Checksum of the entry's current content
        recorded_checksum: Checksum stored alongside the vector
        has_vector: Whether a vector is on record

    Returns:
        MISSING, FRESH or STALE. A vector without a recorded checksum
        cannot be verified and counts as STALE.
    """
    if not has_vector:
        return EmbeddingStatus.MISSING
    if recorded_checksum is not None and recorded_checksum == item_checksum:
        return EmbeddingStatus.FRESH
    return EmbeddingStatus.STALE


class EmbeddingLifecycleCoordinator:
    """
    Thread-safe tracker of in-flight embedding computations.

    The in-flight map is only read and written under a lock, so two
    requests racing on the same checksum always resolve to one dispatch
    and one join.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}

    def check_embedding_status(
        self,
        item_checksum: str,
        recorded_checksum: Optional[str],
        has_vector: bool
    ) -> EmbeddingStatus:
        """See module-level check_embedding_status."""
        return check_embedding_status(item_checksum, recorded_checksum, has_vector)

    def status_for(
        self,
        item_checksum: str,
        recorded_checksum: Optional[str],
        has_vector: bool
    ) -> EmbeddingStatus:
        """Like check_embedding_status, but PENDING while a computation runs."""
        if self.is_pending(item_checksum):
            return EmbeddingStatus.PENDING
        return check_embedding_status(item_checksum, recorded_checksum, has_vector)

    def begin_embedding_computation(self, checksum: str) -> ComputationTicket:
        """
        Claim the computation for a checksum or join the one already running.

        Returns:
            Ticket with dispatch=True for the first caller, join_existing=True
            for every caller while that computation is pending
        """
        with self._lock:
            existing = self._in_flight.get(checksum)
            if existing is not None:
                return ComputationTicket(
                    checksum=checksum,
                    dispatch=False,
                    join_existing=True,
                    future=existing
                )

            future: Future = Future()
            future.set_running_or_notify_cancel()
            self._in_flight[checksum] = future

        return ComputationTicket(
            checksum=checksum,
            dispatch=True,
            join_existing=False,
            future=future
        )

    def complete_computation(self, checksum: str, vector) -> None:
        """Publish a finished vector to joiners and clear the checksum."""
        try:
            result = np.asarray(vector, dtype=np.float64)
        except (TypeError, ValueError) as e:
            self.fail_computation(checksum, e)
            raise

        future = self._release(checksum)
        if future is not None:
            future.set_result(result)

    def fail_computation(self, checksum: str, error: BaseException) -> None:
        """Propagate a failure to joiners and clear the checksum."""
        future = self._release(checksum)
        if future is not None:
            future.set_exception(error)

    def compute(
        self,
        checksum: str,
        fn: Callable[[], np.ndarray],
        timeout: Optional[float] = None
    ):
        """
        Run fn under the dispatch/join protocol.

        Returns:
            Tuple of (vector, ticket). Exceptions from fn reach both the
            dispatching caller and every joiner.
        """
        ticket = self.begin_embedding_computation(checksum)
        if ticket.join_existing:
            return ticket.wait(timeout), ticket

        try:
            vector = fn()
        except BaseException as e:
            self.fail_computation(checksum, e)
            raise

        self.complete_computation(checksum, vector)
        return ticket.future.result(), ticket

    def is_pending(self, checksum: str) -> bool:
        with self._lock:
            return checksum in self._in_flight

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def _release(self, checksum: str) -> Optional[Future]:
        with self._lock:
            return self._in_flight.pop(checksum, None)
