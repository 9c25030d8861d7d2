"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any

import pytest

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-publishable-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-for-unit-tests-0123456789")
os.environ.setdefault("POLL_INTERVAL_SECONDS", "0")

from fakes import USER_A, FakeMessageService  # noqa: E402

from voxcast.services.identity_service import StaticIdentityProvider  # noqa: E402
from voxcast.stores.message_store import MessageStore, MessageStoreConfig  # noqa: E402


@pytest.fixture
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from voxcast.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def fake_service() -> FakeMessageService:
    """Provide a persistence double with manually resolved inserts."""
    return FakeMessageService()


@pytest.fixture
def store(fake_service: FakeMessageService) -> MessageStore:
    """Provide a store for USER_A with polling disabled."""
    return MessageStore(
        fake_service,
        StaticIdentityProvider(USER_A),
        MessageStoreConfig(poll_interval_seconds=0),
    )
