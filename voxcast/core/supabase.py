"""Supabase async client factory for database and realtime operations."""

import asyncio

from supabase import AsyncClient, acreate_client

from voxcast.core.config import get_settings

_async_client: AsyncClient | None = None
_client_loop: asyncio.AbstractEventLoop | None = None
_client_lock: asyncio.Lock | None = None


def _get_client_lock() -> asyncio.Lock:
    """Return the creation lock for the running event loop.

    The client's realtime socket and the lock both belong to the loop that
    created them, so a different loop starts over with its own client.
    """
    global _async_client, _client_loop, _client_lock
    loop = asyncio.get_running_loop()
    if _client_lock is None or _client_loop is not loop:
        _client_loop = loop
        _client_lock = asyncio.Lock()
        _async_client = None
    return _client_lock


async def get_async_supabase_client() -> AsyncClient:
    """Get or create the shared async Supabase client.

    The async client is required for realtime channels; the sync client
    does not implement them. Uses the publishable key, so row level
    security applies to every query issued through it.

    Returns:
        AsyncClient: Supabase client instance for the running loop.
    """
    global _async_client
    async with _get_client_lock():
        if _async_client is None:
            settings = get_settings()
            _async_client = await acreate_client(
                settings.supabase_url,
                settings.supabase_key,
            )
        return _async_client


async def reset_async_supabase_client() -> None:
    """Drop the shared client and its realtime channels."""
    global _async_client
    async with _get_client_lock():
        if _async_client is not None:
            await _async_client.remove_all_channels()
            _async_client = None
