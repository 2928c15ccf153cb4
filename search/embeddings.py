"""
Embedding Providers for Semantic Search

Turns text into fixed-dimension vectors. The ranking core never calls a
provider; the search service does, and decides what to do when it fails.

Providers:
- LocalEmbeddingProvider: sentence-transformers, runs entirely locally
- OpenAIEmbeddingProvider: OpenAI embeddings API, retried on rate limits
- HashEmbeddingProvider: deterministic vectors for development and tests

Text helpers:
- preprocess_text, prepare_entry_text, chunk_text
- estimate_token_count, generate_preview

Usage:
    from search.embeddings import create_provider

    provider = create_provider(config)
    vec = provider.embed("machine learning ethics")
"""

import hashlib
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    RateLimitError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Lazy import for sentence-transformers
_model = None
_model_name = None

# Output sizes of the hosted models we know about
OPENAI_MODEL_DIMENSIONS = {
    'text-embedding-ada-002': 1536,
    'text-embedding-3-small': 1536,
    'text-embedding-3-large': 3072,
}

MAX_TEXT_LENGTH = 8000

_WHITESPACE = re.compile(r'\s+')
_DISALLOWED = re.compile(r'[^\w\s.,!?-]')


def get_model(model_name: str = 'all-MiniLM-L6-v2'):
    """
    Get or create the sentence-transformers model.

    Uses lazy loading to avoid import cost until needed.
    """
    global _model, _model_name

    if _model is not None and _model_name == model_name:
        return _model

    try:
        from sentence_transformers import SentenceTransformer
    except ImportError:
        raise EmbeddingProviderError(
            "sentence-transformers not installed. "
            "Install with: pip install sentence-transformers",
            provider='local',
            retryable=False
        )

    logger.info(f"Loading embedding model: {model_name}")
    _model = SentenceTransformer(model_name)
    _model_name = model_name
    return _model


# =============================================================================
# Text Preparation
# =============================================================================

def preprocess_text(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    """
    Clean text before embedding.

    Trims, collapses whitespace, drops characters outside word characters
    and basic punctuation, and caps the length.
    """
    cleaned = _WHITESPACE.sub(' ', text.strip())
    cleaned = _DISALLOWED.sub('', cleaned)
    return cleaned[:max_length]


def prepare_entry_text(
    title: Optional[str],
    content: Optional[str],
    tags: Optional[Sequence[str]] = None
) -> str:
    """Combine an entry's title, content and tags into the text to embed."""
    parts = []

    if title:
        parts.append(title)

    if content:
        parts.append(content)

    if tags:
        parts.append(f"Tags: {', '.join(tags)}")

    return '\n\n'.join(parts)


def chunk_text(text: str, max_length: int = 1000, overlap: int = 100) -> List[str]:
    """
    Split text into overlapping chunks, preferring sentence or line breaks.

    Args:
        text: Text to chunk
        max_length: Maximum chunk length in characters
        overlap: Characters shared between consecutive chunks

    Returns:
        Non-empty chunks in order
    """
    if overlap >= max_length:
        raise ValueError('overlap must be smaller than max_length')

    chunks = []
    start = 0

    while start < len(text):
        end = min(start + max_length, len(text))
        chunk = text[start:end]

        if end >= len(text):
            chunks.append(chunk.strip())
            break

        break_point = max(chunk.rfind('.'), chunk.rfind('\n'))

        if break_point > max_length * 0.5:
            chunks.append(chunk[:break_point + 1].strip())
            start = max(start + break_point + 1 - overlap, start + 1)
        else:
            chunks.append(chunk.strip())
            start = end - overlap

    return [c for c in chunks if c]


def estimate_token_count(text: str) -> int:
    """Rough token estimate: ~4 characters per token."""
    return -(-len(text) // 4)


def generate_preview(content: Optional[str], max_length: int = 200) -> str:
    """Shorten content for display, cutting at a word boundary when close."""
    if not content:
        return ''

    cleaned = content.strip()
    if len(cleaned) <= max_length:
        return cleaned

    truncated = cleaned[:max_length]
    last_space = truncated.rfind(' ')

    if last_space > max_length * 0.8:
        return truncated[:last_space] + '...'
    return truncated + '...'


def _require_text(text: str) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError('Text must be a non-empty string')


# =============================================================================
# Provider Base Class
# =============================================================================

class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    embed() returns a 1-D float array of length `dimension`, or raises
    EmbeddingProviderError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging/metrics."""
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of the vectors this provider produces."""
        pass

    @property
    def model(self) -> str:
        """Model identifier recorded alongside stored embeddings."""
        return self.name

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """
        Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            Numpy array of shape (dimension,)

        Raises:
            EmbeddingProviderError: If generation fails
        """
        pass

    def embed_batch(self, texts: List[str]) -> List[Optional[np.ndarray]]:
        """
        Embed several texts, one at a time.

        A failed text yields None in its slot instead of failing the batch.
        """
        vectors = []
        for text in texts:
            try:
                vectors.append(self.embed(text))
            except (EmbeddingProviderError, ValidationError) as e:
                logger.error(
                    f"Failed to generate embedding for text: {e}",
                    extra={'provider': self.name, 'text_preview': str(text)[:100]}
                )
                vectors.append(None)
        return vectors


# =============================================================================
# Local Provider (sentence-transformers)
# =============================================================================

class LocalEmbeddingProvider(EmbeddingProvider):
    """
    Generate embeddings using local sentence-transformers models.

    No API calls, no cost.
    """

    def __init__(self, model_name: str = 'all-MiniLM-L6-v2', max_text_length: int = MAX_TEXT_LENGTH):
        """
        Args:
            model_name: Name of the sentence-transformers model to use.
                        Default is 'all-MiniLM-L6-v2' (384 dimensions).
            max_text_length: Characters kept after preprocessing
        """
        self.model_name = model_name
        self.max_text_length = max_text_length
        self._model = None

    @property
    def name(self) -> str:
        return 'local'

    @property
    def model(self) -> str:
        return f'local-{self.model_name}'

    @property
    def encoder(self):
        """Lazy load the model."""
        if self._model is None:
            self._model = get_model(self.model_name)
        return self._model

    @property
    def dimension(self) -> int:
        return self.encoder.get_sentence_embedding_dimension()

    def embed(self, text: str) -> np.ndarray:
        _require_text(text)
        clean = preprocess_text(text, self.max_text_length)

        try:
            vector = self.encoder.encode(clean, convert_to_numpy=True)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            raise EmbeddingProviderError(
                f"Local embedding generation failed: {e}",
                provider=self.name,
                original_error=e
            )

        return np.asarray(vector, dtype=np.float64)

    def embed_batch(self, texts: List[str], batch_size: int = 32) -> List[Optional[np.ndarray]]:
        """Encode in batches; fall back to one-by-one if a batch fails."""
        if not texts:
            return []

        if any(not isinstance(t, str) or not t.strip() for t in texts):
            return super().embed_batch(texts)

        cleaned = [preprocess_text(t, self.max_text_length) for t in texts]
        try:
            matrix = self.encoder.encode(cleaned, batch_size=batch_size, convert_to_numpy=True)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            logger.warning(f"Batch encoding failed, retrying per text: {e}")
            return super().embed_batch(texts)

        return [np.asarray(row, dtype=np.float64) for row in matrix]


# =============================================================================
# OpenAI Provider
# =============================================================================

class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API provider."""

    def __init__(
        self,
        api_key: str,
        model: str = 'text-embedding-ada-002',
        dimension: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_text_length: int = MAX_TEXT_LENGTH
    ):
        if not api_key:
            raise ConfigurationError('OpenAI API key not configured')

        self._api_key = api_key
        self._model = model
        self._dimension = dimension or OPENAI_MODEL_DIMENSIONS.get(model)
        self._base_url = base_url
        self._timeout = timeout
        self.max_text_length = max_text_length
        self._client = None

        if self._dimension is None:
            raise ConfigurationError(
                f'Unknown dimension for model {model}; set embedding.dimension',
                model=model
            )

    @property
    def name(self) -> str:
        return 'openai'

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self):
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            try:
                from openai import OpenAI
            except ImportError:
                raise EmbeddingProviderError(
                    "openai package not installed. Run: pip install openai",
                    provider=self.name,
                    retryable=False
                )
            kwargs = {"api_key": self._api_key, "timeout": self._timeout}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = OpenAI(**kwargs)
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((RateLimitError,)),
        reraise=True
    )
    def embed(self, text: str) -> np.ndarray:
        _require_text(text)
        clean = preprocess_text(text, self.max_text_length)
        client = self._get_client()

        start_time = time.time()
        try:
            response = client.embeddings.create(input=clean, model=self._model)
        except Exception as e:
            error_str = str(e).lower()
            if "rate" in error_str or "429" in error_str:
                raise RateLimitError(str(e), provider=self.name, original_error=e)
            if "auth" in error_str or "401" in error_str or "api_key" in error_str:
                raise EmbeddingProviderError(
                    str(e), provider=self.name, retryable=False, original_error=e
                )
            raise EmbeddingProviderError(
                f"Embedding generation failed: {e}",
                provider=self.name,
                original_error=e
            )

        vector = np.asarray(response.data[0].embedding, dtype=np.float64)

        logger.debug(
            'Generated OpenAI embedding',
            extra={
                'text_length': len(clean),
                'embedding_dimension': int(vector.shape[0]),
                'model': self._model,
                'duration_ms': int((time.time() - start_time) * 1000)
            }
        )

        return vector


# =============================================================================
# Deterministic Hash Provider
# =============================================================================

class HashEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic hash-based embeddings.

    The same text always yields the same unit vector, without any model.
    Useful for development and tests; carries no semantic meaning.
    """

    def __init__(self, dimension: int = 384):
        if dimension < 1:
            raise ConfigurationError('dimension must be >= 1', dimension=dimension)
        self._dimension = dimension

    @property
    def name(self) -> str:
        return 'hash'

    @property
    def model(self) -> str:
        return f'hash-{self._dimension}'

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> np.ndarray:
        _require_text(text)
        clean = preprocess_text(text)

        digest = hashlib.sha256(clean.encode('utf-8')).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], 'big'))
        vector = rng.standard_normal(self._dimension)

        norm = np.linalg.norm(vector)
        return vector / norm if norm > 0 else vector


# =============================================================================
# Factory
# =============================================================================

def create_provider(config) -> EmbeddingProvider:
    """
    Create the embedding provider described by a SearchConfig.

    Local embeddings are used when requested or when no API key is set.

    Raises:
        ConfigurationError: If a hosted model's dimension disagrees with
                            the configured deployment dimension
    """
    emb = config.embedding

    if config.use_local_embeddings:
        logger.info(f"Using local embeddings ({emb.local_model})")
        return LocalEmbeddingProvider(emb.local_model, max_text_length=emb.max_text_length)

    known = OPENAI_MODEL_DIMENSIONS.get(emb.openai_model)
    if known is not None and known != emb.dimension:
        raise ConfigurationError(
            f'Model {emb.openai_model} produces {known} dimensions, '
            f'but embedding.dimension is {emb.dimension}',
            model=emb.openai_model,
            dimension=emb.dimension
        )

    logger.info(f"Using OpenAI embeddings ({emb.openai_model})")
    return OpenAIEmbeddingProvider(
        api_key=emb.openai_api_key,
        model=emb.openai_model,
        dimension=emb.dimension,
        base_url=emb.openai_base_url,
        timeout=emb.timeout_seconds,
        max_text_length=emb.max_text_length
    )
