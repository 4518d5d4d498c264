"""
Configuration Tests
"""

import importlib
import os
import sys
from unittest.mock import patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config


@pytest.fixture(autouse=True)
def restore_config():
    yield
    importlib.reload(config)


class TestConfiguration:
    """Environment-driven settings."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            importlib.reload(config)

        assert config.ENVIRONMENT == "development"
        assert config.API_PORT == 8080
        assert config.API_PREFIX == ""
        assert config.DATABASE_URL == "sqlite:///taskboard.db"
        assert config.DEFAULT_ACTOR == "system"
        assert config.BULK_MAX_RETRIES == 3
        assert config.LOG_JSON is False

    def test_api_prefix_trailing_slash_is_stripped(self):
        with patch.dict(os.environ, {"API_PREFIX": "/api/"}):
            importlib.reload(config)
        assert config.API_PREFIX == "/api"

    def test_origins_are_split(self):
        with patch.dict(os.environ, {"ALLOWED_ORIGINS": "https://a.example.com, https://b.example.com,"}):
            importlib.reload(config)
        assert config.ALLOWED_ORIGINS == ["https://a.example.com", "https://b.example.com"]

    def test_wildcard_cors_rejected_in_production(self):
        env = {"ENVIRONMENT": "production", "ALLOWED_ORIGINS": "*"}
        with patch.dict(os.environ, env):
            with pytest.raises(SystemExit) as exc_info:
                importlib.reload(config)
        assert exc_info.value.code == 1

    def test_wildcard_cors_warns_in_development(self, capsys):
        env = {"ENVIRONMENT": "development", "ALLOWED_ORIGINS": "*"}
        with patch.dict(os.environ, env):
            importlib.reload(config)
        assert config.ALLOWED_ORIGINS == ["*"]
        assert "WARNING" in capsys.readouterr().out

    def test_bulk_retries_must_be_positive(self):
        with patch.dict(os.environ, {"BULK_MAX_RETRIES": "0"}):
            with pytest.raises(SystemExit) as exc_info:
                importlib.reload(config)
        assert exc_info.value.code == 1

    def test_page_size_must_fit_maximum(self):
        with patch.dict(os.environ, {"DEFAULT_PAGE_SIZE": "500", "MAX_PAGE_SIZE": "200"}):
            with pytest.raises(SystemExit):
                importlib.reload(config)
