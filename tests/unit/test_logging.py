"""Unit tests for logging setup."""

import logging
from typing import Any
from unittest.mock import patch

from voxcast.core.logging import LOG_FORMAT, setup_logging


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_uses_configured_level(self, test_settings: Any) -> None:
        """Test that the LOG_LEVEL setting drives the root level."""
        with patch("voxcast.core.logging.logging.basicConfig") as basic_config:
            setup_logging()

        basic_config.assert_called_once_with(level=logging.INFO, format=LOG_FORMAT)

    def test_explicit_level_wins(self) -> None:
        """Test that an explicit level overrides settings."""
        with patch("voxcast.core.logging.logging.basicConfig") as basic_config:
            setup_logging("debug")

        assert basic_config.call_args.kwargs["level"] == logging.DEBUG

    def test_quiets_realtime_logger(self) -> None:
        """Test that realtime heartbeat chatter is suppressed."""
        with patch("voxcast.core.logging.logging.basicConfig"):
            setup_logging("info")

        assert logging.getLogger("realtime").level == logging.WARNING
