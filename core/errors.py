"""
ContextVault Search Error Types

Provides:
- A base exception carrying an HTTP-style status and error type
- Validation errors for ranking and similarity inputs
- Provider and configuration errors for the collaborators

Every error is raised synchronously to the immediate caller. The ranking
core never logs, retries or swallows these; translating them into a user
facing response is the caller's job.

Usage:
    from core.errors import InvalidWeights, SearchCoreError

    try:
        results = rank_hybrid(lexical, vector, options)
    except SearchCoreError as e:
        return e.to_dict(), e.status_code
"""

from typing import Any, Dict


# =============================================================================
# Base
# =============================================================================

class SearchCoreError(Exception):
    """Base exception for ContextVault search errors."""

    status_code = 500
    error_type = 'internal_error'
    message = 'An unexpected error occurred'

    def __init__(self, message: str = None, **kwargs):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details: Dict[str, Any] = kwargs

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.error_type,
            'message': self.message,
            'details': self.details
        }


class ValidationError(SearchCoreError):
    """Invalid input to a ranking or similarity call."""
    status_code = 400
    error_type = 'validation_error'
    message = 'Invalid input'


# =============================================================================
# Ranking / Similarity Errors
# =============================================================================

class InvalidWeights(ValidationError):
    """Text and vector weights out of range or not summing to 1."""
    error_type = 'invalid_weights'
    message = 'Text weight and vector weight must each be in [0, 1] and sum to 1'


class InvalidOptions(ValidationError):
    """Limit or threshold out of range."""
    error_type = 'invalid_options'
    message = 'Invalid search options'


class InvalidCandidate(ValidationError):
    """A candidate carries a score that cannot be ranked."""
    error_type = 'invalid_candidate'
    message = 'Candidate score must be a finite, non-negative number'


class DimensionMismatch(ValidationError):
    """Two vectors (or a vector and the deployment) disagree on length."""
    error_type = 'dimension_mismatch'
    message = 'Vector dimensions do not match'


class InvalidVector(ValidationError):
    """Vector is empty, non-numeric, or contains NaN/Infinity."""
    error_type = 'invalid_vector'
    message = 'Vector must be a non-empty sequence of finite numbers'


class ReferenceNotFound(SearchCoreError):
    """Similarity search on an unknown or un-embedded reference."""
    status_code = 404
    error_type = 'reference_not_found'
    message = 'Reference entry not found or has no embeddings'


class EmptyCandidatePool(SearchCoreError):
    """Similarity search was given no candidates at all."""
    status_code = 400
    error_type = 'empty_candidate_pool'
    message = 'Candidate pool is empty'


# =============================================================================
# Collaborator Errors
# =============================================================================

class EmbeddingProviderError(SearchCoreError):
    """Embedding generation failed."""
    status_code = 502
    error_type = 'embedding_provider_error'
    message = 'Embedding generation failed'

    def __init__(
        self,
        message: str = None,
        provider: str = 'unknown',
        retryable: bool = True,
        original_error: Exception = None,
        **kwargs
    ):
        super().__init__(message, provider=provider, **kwargs)
        self.provider = provider
        self.retryable = retryable
        self.original_error = original_error


class RateLimitError(EmbeddingProviderError):
    """Provider rate limit exceeded."""
    status_code = 429
    error_type = 'rate_limit_exceeded'
    message = 'Embedding provider rate limit exceeded'


class ConfigurationError(SearchCoreError):
    """Configuration issue."""
    status_code = 500
    error_type = 'configuration_error'
    message = 'Search configuration error'
