"""
Unit tests for configuration management.

Tests the Pydantic settings implementation and environment variable handling.
"""

import pytest
import os
from unittest.mock import patch

from pydantic import ValidationError

from store_rag.config.settings import Settings, get_settings


class TestSettings:
    """Test cases for Settings class."""

    def test_settings_initialization(self):
        """Test that settings load without secrets and expose the documented defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

            assert settings.openai_api_key is None
            assert settings.pinecone_api_key is None
            assert settings.vector_backend == "pinecone"
            assert settings.embedding_model == "text-embedding-3-small"
            assert settings.chunk_size == 1000
            assert settings.chunk_overlap == 200
            assert settings.lock_ttl_seconds == 10
            assert settings.job_max_retries == 3
            assert settings.delete_step_timeout == 45
            assert settings.locale_precedence == ["es", "en", "pt"]

    def test_api_keys_from_environment(self):
        """Test API keys are read case-insensitively from the environment."""
        with patch.dict(os.environ, {
            'OPENAI_API_KEY': 'test_openai_key',
            'pinecone_api_key': 'test_pinecone_key'
        }, clear=True):
            settings = Settings(_env_file=None)

            assert settings.openai_api_key == 'test_openai_key'
            assert settings.pinecone_api_key == 'test_pinecone_key'

    def test_search_weights_default(self):
        """Test the hybrid search weights sum to one."""
        settings = Settings(_env_file=None)
        assert settings.semantic_search_weight == pytest.approx(0.7)
        assert settings.keyword_search_weight == pytest.approx(0.3)

    def test_validator_log_level(self):
        """Test log level validation."""
        with patch.dict(os.environ, {'LOG_LEVEL': 'debug'}):
            settings = Settings(_env_file=None)
            assert settings.log_level == 'DEBUG'

        with patch.dict(os.environ, {'LOG_LEVEL': 'verbose'}):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    @pytest.mark.parametrize("backend,expected", [
        ("memory", "memory"),
        ("MEMORY", "memory"),
        ("pinecone", "pinecone"),
    ])
    def test_vector_backend_validation(self, backend, expected):
        """Test vector backend normalization."""
        with patch.dict(os.environ, {'VECTOR_BACKEND': backend}):
            settings = Settings(_env_file=None)
            assert settings.vector_backend == expected

    def test_vector_backend_rejects_unknown(self):
        """Test an unknown vector backend is rejected."""
        with patch.dict(os.environ, {'VECTOR_BACKEND': 'chroma'}):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_environment_properties(self):
        """Test environment-related properties."""
        with patch.dict(os.environ, {'ENVIRONMENT': 'Production'}):
            settings = Settings(_env_file=None)

            assert settings.environment == 'production'
            assert settings.is_production is True
            assert settings.is_development is False

    def test_list_field_parsing(self):
        """Test parsing of comma-separated list fields."""
        with patch.dict(os.environ, {
            'ALLOWED_ORIGINS': 'http://localhost:3000, http://localhost:8080',
            'LOCALE_PRECEDENCE': 'pt,es'
        }):
            settings = Settings(_env_file=None)

            assert settings.allowed_origins == ['http://localhost:3000', 'http://localhost:8080']
            assert settings.locale_precedence == ['pt', 'es']

    @pytest.mark.parametrize("log_format,expected", [
        ("json", "json"),
        ("JSON", "json"),
        ("text", "text"),
    ])
    def test_log_format_validation(self, log_format, expected):
        """Test log format validation and normalization."""
        with patch.dict(os.environ, {'LOG_FORMAT': log_format}):
            settings = Settings(_env_file=None)
            assert settings.log_format == expected

    def test_get_settings_function(self):
        """Test the get_settings dependency injection function."""
        assert isinstance(get_settings(), Settings)
        assert get_settings() is get_settings()
