"""Live count of conversations with unread messages."""

import asyncio
import logging
from collections.abc import Callable

from voxcast.schemas.message import ChatMessage
from voxcast.stores.protocols import MessagePersistence, Subscription

logger = logging.getLogger(__name__)

CountListener = Callable[[int], None]


class UnreadCounter:
    """Keeps the unread conversation count of one user current.

    Recounts on start, whenever any message is inserted, and on a polling
    interval as a fallback for missed realtime events.
    """

    def __init__(self, service: MessagePersistence, poll_interval_seconds: float = 8.0) -> None:
        self.service = service
        self.poll_interval_seconds = poll_interval_seconds
        self.user_id: str | None = None
        self.count = 0
        self._subscription: Subscription | None = None
        self._poll_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._stale = False
        self._listeners: list[CountListener] = []
        self._closed = True

    def add_listener(self, listener: CountListener) -> Callable[[], None]:
        """Register a callback invoked with the new count when it changes."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self, user_id: str | None) -> None:
        """Start tracking a user; a missing user resets the count to zero."""
        await self.close()
        self.user_id = user_id
        if not user_id:
            self._set_count(0)
            return

        self._closed = False
        await self.refresh()
        try:
            self._subscription = await self.service.subscribe_inserts(None, self._on_insert)
        except Exception as e:
            logger.warning("Unread subscription failed for %s: %s", user_id, e)
        if self.poll_interval_seconds > 0:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def refresh(self) -> int:
        """Recount unread conversations.

        Returns:
            int: The current count (unchanged if the backend call fails).
        """
        if self._closed or not self.user_id:
            return self.count
        try:
            count = await self.service.get_unread_conversations_count(self.user_id)
        except Exception as e:
            logger.warning("Unread count failed for %s: %s", self.user_id, e)
            return self.count
        if not self._closed:
            self._set_count(count)
        return self.count

    def _on_insert(self, message: ChatMessage) -> None:
        if self._closed:
            return
        # Collapse bursts of inserts into one recount; an insert landing
        # while a recount is querying gets one more pass afterwards
        self._stale = True
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._recount())

    async def _recount(self) -> None:
        while self._stale and not self._closed:
            self._stale = False
            await self.refresh()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_seconds)
            await self.refresh()

    def _set_count(self, count: int) -> None:
        if count == self.count:
            return
        self.count = count
        for listener in list(self._listeners):
            try:
                listener(count)
            except Exception:
                logger.exception("Unread counter listener failed")

    async def close(self) -> None:
        """Stop tracking: close the feed and cancel background work."""
        self._closed = True
        for task in (self._poll_task, self._refresh_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._poll_task = None
        self._refresh_task = None
        self._stale = False

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
