"""
Vector Math for Semantic Search

Pure, stateless helpers over embedding vectors:
- Cosine similarity (single pair and batched against a matrix)
- Vector validity and dimension checks

A zero vector is a legitimate degenerate embedding, so similarity against
it is 0.0 rather than an error. Vectors of the wrong length are rejected,
never truncated or padded.

Usage:
    from search.vector_math import cosine_similarity, is_valid_vector

    if is_valid_vector(vec, 384):
        score = cosine_similarity(query_vec, vec)
"""

import math
from numbers import Real
from typing import Sequence, Union

import numpy as np

from core.errors import DimensionMismatch, InvalidVector

VectorLike = Union[Sequence[float], np.ndarray]


def _as_array(vec: VectorLike) -> np.ndarray:
    return np.asarray(vec, dtype=np.float64).reshape(-1)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Cosine similarity score (-1 to 1); 0.0 if either vector has zero magnitude

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(
            f'Cannot compare vectors of length {len(a)} and {len(b)}',
            left=len(a),
            right=len(b)
        )

    vec1 = _as_array(a)
    vec2 = _as_array(b)

    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    score = float(np.dot(vec1, vec2) / (norm1 * norm2))
    return max(-1.0, min(1.0, score))


def cosine_similarities(reference: VectorLike, matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one reference vector against every row of a matrix.

    Rows (or a reference) with zero magnitude score 0.0.

    Args:
        reference: Vector of shape (dimension,)
        matrix: Array of shape (n, dimension)

    Returns:
        Array of shape (n,) with values in [-1, 1]
    """
    ref = _as_array(reference)
    corpus = np.asarray(matrix, dtype=np.float64)

    if corpus.size == 0:
        return np.zeros(0, dtype=np.float64)

    if corpus.ndim != 2 or corpus.shape[1] != ref.shape[0]:
        raise DimensionMismatch(
            f'Reference has {ref.shape[0]} dimensions, candidates have {corpus.shape[-1]}',
            left=int(ref.shape[0]),
            right=int(corpus.shape[-1])
        )

    ref_norm = np.linalg.norm(ref)
    if ref_norm == 0:
        return np.zeros(corpus.shape[0], dtype=np.float64)

    row_norms = np.linalg.norm(corpus, axis=1)
    dots = corpus @ ref

    denom = row_norms * ref_norm
    sims = np.zeros(corpus.shape[0], dtype=np.float64)
    nonzero = denom > 0
    sims[nonzero] = dots[nonzero] / denom[nonzero]

    return np.clip(sims, -1.0, 1.0)


def is_valid_vector(vec, expected_dim: int) -> bool:
    """
    Check that a vector can take part in similarity scoring.

    True iff vec is non-empty, has exactly expected_dim numeric entries
    and contains no NaN or Infinity.
    """
    if vec is None or isinstance(vec, (str, bytes)):
        return False

    if isinstance(vec, np.ndarray):
        if vec.ndim != 1 or vec.size == 0 or vec.size != expected_dim:
            return False
        if not np.issubdtype(vec.dtype, np.number) or np.issubdtype(vec.dtype, np.bool_):
            return False
        return bool(np.all(np.isfinite(vec)))

    try:
        length = len(vec)
    except TypeError:
        return False

    if length == 0 or length != expected_dim:
        return False

    for value in vec:
        # bool is a Real subclass but never a meaningful embedding component
        if isinstance(value, bool) or not isinstance(value, (Real, np.number)):
            return False
        if not math.isfinite(value):
            return False

    return True


def validate_vector(vec, expected_dim: int) -> np.ndarray:
    """
    Validate a vector and return it as a float array.

    Raises:
        DimensionMismatch: If the length differs from expected_dim
        InvalidVector: If the vector is empty, non-numeric or non-finite
    """
    if vec is None:
        raise InvalidVector('Vector is missing')

    try:
        length = len(vec)
    except TypeError:
        raise InvalidVector('Vector must be a sequence of numbers')

    if length == 0:
        raise InvalidVector('Vector is empty')

    if length != expected_dim:
        raise DimensionMismatch(
            f'Expected {expected_dim} dimensions, got {length}',
            expected=expected_dim,
            actual=length
        )

    if not is_valid_vector(vec, expected_dim):
        raise InvalidVector('Vector contains non-numeric or non-finite values')

    return _as_array(vec)
