"""
Configuration for ContextVault Search

Layered configuration:
- Model defaults
- YAML file (~/.contextvault/config.yaml, or CONTEXTVAULT_CONFIG)
- Environment variables (a .env file is loaded first)

Usage:
    from core.config import get_config

    config = get_config()
    dim = config.embedding.dimension
    weights = (config.ranking.text_weight, config.ranking.vector_weight)
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / '.contextvault' / 'config.yaml'


# =============================================================================
# Models
# =============================================================================

class EmbeddingConfig(BaseModel):
    """Embedding provider settings."""
    dimension: int = Field(default=1536, ge=1)
    use_local: bool = False
    local_model: str = 'all-MiniLM-L6-v2'
    openai_api_key: Optional[str] = None
    openai_model: str = 'text-embedding-ada-002'
    openai_base_url: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_text_length: int = Field(default=8000, ge=1)
    auto_generate: bool = True
    batch_size: int = Field(default=32, ge=1)


class RankingConfig(BaseModel):
    """Defaults handed explicitly to the ranker by callers."""
    text_weight: float = Field(default=0.3, ge=0, le=1)
    vector_weight: float = Field(default=0.7, ge=0, le=1)
    hybrid_threshold: float = 0.5
    hybrid_vector_threshold: float = Field(default=0.3, ge=0, le=1)
    similarity_threshold: float = Field(default=0.7, ge=0, le=1)
    default_limit: int = Field(default=20, ge=1)
    max_results: int = Field(default=50, ge=1)
    candidate_multiplier: int = Field(default=2, ge=1)

    @model_validator(mode='after')
    def _weights_sum_to_one(self) -> 'RankingConfig':
        if abs(self.text_weight + self.vector_weight - 1) > 0.001:
            raise ValueError('text_weight and vector_weight must sum to 1')
        return self


class StorageConfig(BaseModel):
    """Reference SQLite store settings."""
    db_path: str = str(Path('data') / 'contextvault.db')


class SearchConfig(BaseModel):
    """Top-level configuration."""
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = 'INFO'
    log_json: bool = False

    @property
    def has_api_key(self) -> bool:
        return bool(self.embedding.openai_api_key)

    @property
    def use_local_embeddings(self) -> bool:
        """Local embeddings when asked for, or when no API key is configured."""
        return self.embedding.use_local or not self.has_api_key


# =============================================================================
# Loading
# =============================================================================

def _env_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# env var -> (section, key, converter)
ENV_MAPPING = {
    'EMBEDDING_DIMENSION': ('embedding', 'dimension', int),
    'USE_LOCAL_EMBEDDINGS': ('embedding', 'use_local', _env_bool),
    'LOCAL_EMBEDDING_MODEL': ('embedding', 'local_model', str),
    'OPENAI_API_KEY': ('embedding', 'openai_api_key', str),
    'OPENAI_MODEL': ('embedding', 'openai_model', str),
    'OPENAI_BASE_URL': ('embedding', 'openai_base_url', str),
    'AUTO_GENERATE_EMBEDDINGS': ('embedding', 'auto_generate', _env_bool),
    'VECTOR_SIMILARITY_THRESHOLD': ('ranking', 'similarity_threshold', float),
    'MAX_SEARCH_RESULTS': ('ranking', 'max_results', int),
    'CONTEXTVAULT_DB_PATH': ('storage', 'db_path', str),
    'LOG_LEVEL': (None, 'log_level', str),
}


def _load_yaml(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f'Config file must contain a mapping: {path}', path=str(path))
    return data


def _apply_env(data: Dict[str, Any], environ) -> Dict[str, Any]:
    for env_key, (section, key, convert) in ENV_MAPPING.items():
        raw = environ.get(env_key)
        if raw is None or raw == '':
            continue
        try:
            value = convert(raw)
        except ValueError:
            raise ConfigurationError(
                f'Invalid value for {env_key}: {raw!r}',
                variable=env_key
            )
        if section is None:
            data[key] = value
        else:
            data.setdefault(section, {})[key] = value
    return data


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
    load_env_file: bool = True
) -> SearchConfig:
    """
    Build a SearchConfig from defaults, YAML and environment.

    Args:
        config_path: YAML file to read (defaults to CONTEXTVAULT_CONFIG or
                     ~/.contextvault/config.yaml if it exists)
        environ: Environment mapping (defaults to os.environ)
        load_env_file: Load a .env file into the process environment first

    Raises:
        ConfigurationError: If the file or any value is invalid
    """
    if load_env_file and environ is None:
        load_dotenv()

    environ = os.environ if environ is None else environ

    if config_path is None:
        env_path = environ.get('CONTEXTVAULT_CONFIG')
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
        required = bool(env_path)
    else:
        config_path = Path(config_path)
        required = True

    data: Dict[str, Any] = {}
    if config_path.exists():
        data = _load_yaml(config_path)
        logger.debug(f"Loaded config from {config_path}")
    elif required:
        raise ConfigurationError(f'Config file not found: {config_path}', path=str(config_path))

    data = _apply_env(data, environ)

    try:
        return SearchConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f'Invalid configuration: {e}', errors=e.errors())


_config: Optional[SearchConfig] = None
_config_lock = threading.Lock()


def get_config() -> SearchConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config
    with _config_lock:
        if _config is None:
            _config = load_config()
        return _config


def reset_config(config: Optional[SearchConfig] = None):
    """Replace (or clear) the process-wide configuration."""
    global _config
    with _config_lock:
        _config = config
