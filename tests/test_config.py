"""
Tests for configuration loading.
"""

from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import SearchConfig, get_config, load_config, reset_config
from core.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_config():
    reset_config()
    yield
    reset_config()


class TestDefaults:
    """Tests for model defaults."""

    def test_ranking_defaults(self):
        config = SearchConfig()

        assert config.ranking.text_weight == 0.3
        assert config.ranking.vector_weight == 0.7
        assert config.ranking.hybrid_threshold == 0.5
        assert config.ranking.hybrid_vector_threshold == 0.3
        assert config.ranking.similarity_threshold == 0.7
        assert config.ranking.max_results == 50
        assert config.ranking.candidate_multiplier == 2

    def test_embedding_defaults(self):
        config = SearchConfig()

        assert config.embedding.dimension == 1536
        assert config.embedding.openai_model == 'text-embedding-ada-002'
        assert config.embedding.auto_generate is True

    def test_no_key_means_local(self):
        config = SearchConfig()

        assert config.has_api_key is False
        assert config.use_local_embeddings is True


class TestLoadConfig:
    """Tests for load_config."""

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("")

        config = load_config(path, environ={})

        assert config.ranking.text_weight == 0.3
        assert config.storage.db_path.endswith('contextvault.db')

    def test_yaml_file(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(
            "ranking:\n"
            "  text_weight: 0.5\n"
            "  vector_weight: 0.5\n"
            "embedding:\n"
            "  dimension: 384\n"
            "  use_local: true\n"
        )

        config = load_config(path, environ={})

        assert config.ranking.text_weight == 0.5
        assert config.embedding.dimension == 384
        assert config.use_local_embeddings is True

    def test_environment_overrides_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("embedding:\n  dimension: 384\n")

        config = load_config(path, environ={
            'EMBEDDING_DIMENSION': '768',
            'OPENAI_API_KEY': 'sk-test',
            'USE_LOCAL_EMBEDDINGS': 'false',
            'VECTOR_SIMILARITY_THRESHOLD': '0.8',
            'MAX_SEARCH_RESULTS': '25',
            'LOG_LEVEL': 'DEBUG',
        })

        assert config.embedding.dimension == 768
        assert config.has_api_key
        assert config.use_local_embeddings is False
        assert config.ranking.similarity_threshold == 0.8
        assert config.ranking.max_results == 25
        assert config.log_level == 'DEBUG'

    def test_config_path_from_environment(self, tmp_path):
        path = tmp_path / 'custom.yaml'
        path.write_text("storage:\n  db_path: /tmp/custom.db\n")

        config = load_config(environ={'CONTEXTVAULT_CONFIG': str(path)})

        assert config.storage.db_path == '/tmp/custom.db'

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / 'missing.yaml', environ={})

    def test_weights_must_sum_to_one(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("ranking:\n  text_weight: 0.4\n  vector_weight: 0.4\n")

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    def test_bad_environment_value(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("{}\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path, environ={'EMBEDDING_DIMENSION': 'lots'})

        assert exc_info.value.details['variable'] == 'EMBEDDING_DIMENSION'

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})


class TestSingleton:
    """Tests for get_config / reset_config."""

    def test_reset_with_instance(self):
        config = SearchConfig()
        reset_config(config)

        assert get_config() is config

    def test_cached(self):
        reset_config(SearchConfig())
        assert get_config() is get_config()
