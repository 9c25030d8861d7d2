"""Unit tests for the shared Supabase client."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from voxcast.core import supabase as supabase_module
from voxcast.core.supabase import get_async_supabase_client, reset_async_supabase_client


@pytest.fixture(autouse=True)
def clean_client_state():
    """Reset the module-level client between tests."""
    supabase_module._async_client = None
    supabase_module._client_loop = None
    supabase_module._client_lock = None
    yield
    supabase_module._async_client = None
    supabase_module._client_loop = None
    supabase_module._client_lock = None


class TestGetAsyncSupabaseClient:
    """Tests for get_async_supabase_client function."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_client(self, test_settings: Any) -> None:
        """Test that racing callers on one loop create a single client."""
        client = MagicMock()
        with patch("voxcast.core.supabase.acreate_client", new=AsyncMock(return_value=client)) as create:
            first, second = await asyncio.gather(get_async_supabase_client(), get_async_supabase_client())

        assert first is client
        assert second is client
        create.assert_awaited_once_with(test_settings.supabase_url, test_settings.supabase_key)

    @pytest.mark.asyncio
    async def test_new_loop_gets_new_client(self) -> None:
        """Test that a client created on another loop is not reused."""
        stale = MagicMock()
        supabase_module._async_client = stale
        supabase_module._client_loop = object()
        supabase_module._client_lock = asyncio.Lock()
        fresh = MagicMock()

        with patch("voxcast.core.supabase.acreate_client", new=AsyncMock(return_value=fresh)):
            client = await get_async_supabase_client()

        assert client is fresh
        assert supabase_module._client_loop is asyncio.get_running_loop()

    @pytest.mark.asyncio
    async def test_reset_removes_channels(self) -> None:
        """Test that resetting drops realtime channels and the client."""
        client = MagicMock()
        client.remove_all_channels = AsyncMock()
        with patch("voxcast.core.supabase.acreate_client", new=AsyncMock(return_value=client)):
            await get_async_supabase_client()
            await reset_async_supabase_client()

        client.remove_all_channels.assert_awaited_once()
        assert supabase_module._async_client is None
