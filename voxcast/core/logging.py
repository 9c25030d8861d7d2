"""Logging configuration."""

import logging

from voxcast.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for processes embedding the chat store.

    Args:
        level: Log level name; defaults to the LOG_LEVEL setting.
    """
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )
    # realtime logs every heartbeat at INFO
    logging.getLogger("realtime").setLevel(logging.WARNING)
