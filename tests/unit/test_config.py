"""Unit tests for configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from voxcast.core.config import Settings, get_settings
from voxcast.stores.message_store import MessageStoreConfig

REQUIRED_ENV = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_KEY": "test-key",
}


class TestSettings:
    """Tests for Settings class."""

    def test_settings_loads_from_environment(self) -> None:
        """Test that Settings loads values from environment variables."""
        env_vars = {
            **REQUIRED_ENV,
            "APP_ENV": "staging",
            "DEBUG": "true",
            "HISTORY_PAGE_SIZE": "25",
            "POLL_INTERVAL_SECONDS": "3.5",
            "PENDING_MATCH_WINDOW_SECONDS": "30",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.app_env == "staging"
            assert settings.debug is True
            assert settings.supabase_url == "https://test.supabase.co"
            assert settings.history_page_size == 25
            assert settings.poll_interval_seconds == 3.5
            assert settings.pending_match_window_seconds == 30

    def test_settings_requires_supabase(self) -> None:
        """Test that missing Supabase credentials fail validation."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_settings_is_production_property(self) -> None:
        """Test the is_production property."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "APP_ENV": "production"}, clear=False):
            assert Settings().is_production is True

    def test_polling_enabled_property(self) -> None:
        """Test that a zero interval disables polling."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "POLL_INTERVAL_SECONDS": "0"}, clear=False):
            assert Settings().polling_enabled is False


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_is_cached(self) -> None:
        """Test that get_settings returns the same instance."""
        get_settings.cache_clear()

        assert get_settings() is get_settings()

        get_settings.cache_clear()


class TestMessageStoreConfig:
    """Tests for MessageStoreConfig.from_settings."""

    def test_from_settings(self) -> None:
        """Test that store tunables come from settings."""
        env_vars = {**REQUIRED_ENV, "HISTORY_PAGE_SIZE": "10", "POLL_INTERVAL_SECONDS": "2"}

        with patch.dict(os.environ, env_vars, clear=False):
            get_settings.cache_clear()
            config = MessageStoreConfig.from_settings()
        get_settings.cache_clear()

        assert config.history_page_size == 10
        assert config.poll_interval_seconds == 2
