"""Optimistic message store for a single conversation.

Blends confirmed history with locally staged sends. A send is visible the
moment it is made; the append to the database runs in the background and
the entry is swapped for the stored row once the row is observed, either
through the append's own result or through the realtime feed, whichever
comes first.

The feed does not echo the client's temp ID back, so a confirmed row is
paired with a pending entry by sender and content, oldest pending entry
first.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
import time
from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from voxcast.core.exceptions import LoadError, NotFoundError, SendError
from voxcast.models.message import MessageStatus
from voxcast.schemas.message import SELF_USERNAME, ChatMessage, SenderProfile
from voxcast.stores.protocols import IdentityProvider, MessagePersistence, Subscription

logger = logging.getLogger(__name__)

Listener = Callable[["MessageStore"], None]

# Shared by every store so temp IDs are unique for the whole process
_temp_counter = itertools.count(1)


def new_temp_id() -> str:
    """Generate a client-side ID for a pending message."""
    return f"optimistic-{next(_temp_counter)}-{secrets.token_hex(4)}"


@dataclass
class MessageStoreConfig:
    """Tunables for the message store."""

    history_page_size: int = 50
    poll_interval_seconds: float = 8.0  # 0 disables polling
    pending_match_window_seconds: float = 120.0

    @classmethod
    def from_settings(cls) -> MessageStoreConfig:
        """Create config from application settings."""
        from voxcast.core.config import get_settings

        settings = get_settings()
        return cls(
            history_page_size=settings.history_page_size,
            poll_interval_seconds=settings.poll_interval_seconds,
            pending_match_window_seconds=settings.pending_match_window_seconds,
        )


@dataclass
class _Slot:
    """A visible entry plus its bookkeeping."""

    message: ChatMessage
    seq: int  # arrival order, breaks created_at ties
    staged_at: float | None = None  # monotonic time of the last append attempt


@dataclass
class _Claim:
    """A feed row paired with a pending entry whose append has not returned."""

    message_id: str
    pending: _Slot  # the entry as it was before the row replaced it
    error: SendError | None = None  # set if the entry's own append failed meanwhile


class MessageStore:
    """Reconciled, ordered message list for one conversation."""

    def __init__(
        self,
        service: MessagePersistence,
        identity: IdentityProvider,
        config: MessageStoreConfig | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            service: Message persistence backend.
            identity: Source of the current user's ID.
            config: Optional store configuration.
        """
        self.service = service
        self.identity = identity
        self.config = config or MessageStoreConfig()

        self.conversation_id: str | None = None
        self.current_user_id: str | None = None
        self.is_loading = False
        self.load_error: LoadError | None = None

        self._profile: SenderProfile | None = None
        self._slots: list[_Slot] = []
        self._seq = itertools.count()
        self._view: list[ChatMessage] = []
        self._send_errors: dict[str, SendError] = {}
        self._in_flight: set[str] = set()
        # Entries the feed confirmed before their append returned, by temp_id
        self._reconciled: dict[str, _Claim] = {}
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self._subscription: Subscription | None = None
        self._listeners: list[Listener] = []
        self._closed = True

    # Read side

    @property
    def messages(self) -> list[ChatMessage]:
        """Messages in display order: confirmed by time, then pending by staging order."""
        return list(self._view)

    @property
    def send_errors(self) -> dict[str, SendError]:
        """Last append failure of each entry currently in error state."""
        return dict(self._send_errors)

    @property
    def is_open(self) -> bool:
        """Whether the store is attached to a conversation."""
        return not self._closed

    def get(self, temp_id: str) -> ChatMessage | None:
        """Look up a pending or failed entry by temp ID."""
        slot = self._find_temp(temp_id)
        return slot.message if slot else None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a change callback.

        Args:
            listener: Called with the store after every visible change.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # Lifecycle

    async def initialize(
        self,
        conversation_id: str | None,
        current_user_id: str | None = None,
        current_user_profile: SenderProfile | None = None,
    ) -> None:
        """Load history and open the live feed for a conversation.

        Failures are captured in ``load_error`` rather than raised.

        Args:
            conversation_id: Conversation to show.
            current_user_id: Acting user; defaults to the identity provider's.
            current_user_profile: Profile stamped on optimistic entries.
        """
        await self.close()

        self.conversation_id = conversation_id
        self.current_user_id = current_user_id or self.identity.current_user_id()
        self._profile = current_user_profile
        self._slots = []
        self._send_errors = {}
        self._reconciled = {}
        self.load_error = None

        if not self.conversation_id or not self.current_user_id:
            self.is_loading = False
            self._refresh_view()
            return

        self._closed = False
        self.is_loading = True
        self._refresh_view()

        try:
            # Subscribe first so nothing inserted during the history load is missed
            self._subscription = await self.service.subscribe_inserts(
                self.conversation_id, self._on_insert
            )
            history = await self.service.list_messages(
                self.conversation_id, limit=self.config.history_page_size
            )
        except Exception as e:
            logger.error("Failed to load conversation %s: %s", self.conversation_id, e)
            self.load_error = LoadError(f"Failed to load messages: {e}")
            await self._close_subscription()
            self._closed = True
            self._slots = []
            self.is_loading = False
            self._refresh_view()
            return

        for message in history:
            self._apply_confirmed(message)
        self.is_loading = False
        self._refresh_view()

        self._spawn(self._mark_read(self.conversation_id, self.current_user_id))
        if self.config.poll_interval_seconds > 0:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def refresh(self) -> None:
        """Re-fetch history and merge it, keeping pending and failed entries."""
        if self._closed:
            return
        conversation_id = self.conversation_id
        try:
            history = await self.service.list_messages(
                conversation_id, limit=self.config.history_page_size
            )
        except Exception as e:
            logger.warning("History refresh failed for %s: %s", conversation_id, e)
            return

        if self._closed or conversation_id != self.conversation_id:
            return
        changed = False
        for message in history:
            changed = self._apply_confirmed(message) or changed
        if changed:
            self._refresh_view()

    async def close(self) -> None:
        """Detach from the conversation.

        Closes the live feed and stops polling; any callback arriving
        afterwards is ignored. In-flight appends are not cancelled.
        """
        self._closed = True
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        await self._close_subscription()

    async def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    async def _poll_loop(self) -> None:
        """Polling fallback in case the realtime feed drops events."""
        while True:
            await asyncio.sleep(self.config.poll_interval_seconds)
            await self.refresh()

    async def _mark_read(self, conversation_id: str, user_id: str) -> None:
        try:
            await self.service.mark_conversation_read(conversation_id, user_id)
        except Exception as e:
            logger.warning("Failed to mark conversation %s read: %s", conversation_id, e)

    # Mutations

    def send(self, content: str) -> str | None:
        """Stage a message and append it in the background.

        Must be called from the running event loop. Returns immediately.

        Args:
            content: Message body; surrounding whitespace is stripped.

        Returns:
            The pending entry's temp ID, or None if nothing was sent.
        """
        text = content.strip()
        if not text or self._closed:
            return None

        temp_id = new_temp_id()
        message = ChatMessage(
            temp_id=temp_id,
            conversation_id=self.conversation_id,
            sender_id=self.current_user_id,
            content=text,
            created_at=datetime.now(timezone.utc),
            status=MessageStatus.SENDING,
            sender=self._profile or SenderProfile.placeholder(self.current_user_id, SELF_USERNAME),
        )
        self._slots.append(_Slot(message, next(self._seq), time.monotonic()))
        self._refresh_view()
        self._dispatch(temp_id, text)
        return temp_id

    def retry(self, temp_id: str) -> None:
        """Re-send a failed entry with its original content and timestamp."""
        try:
            slot = self._require_failed(temp_id)
        except NotFoundError as e:
            logger.debug("Ignoring retry: %s", e.message)
            return

        slot.message = slot.message.model_copy(update={"status": MessageStatus.SENDING})
        slot.staged_at = time.monotonic()
        self._send_errors.pop(temp_id, None)
        self._refresh_view()
        self._dispatch(temp_id, slot.message.content)

    def dismiss(self, temp_id: str) -> None:
        """Drop a failed entry for good. Unknown IDs are ignored."""
        try:
            slot = self._require_failed(temp_id)
        except NotFoundError as e:
            logger.debug("Ignoring dismiss: %s", e.message)
            return

        self._slots.remove(slot)
        self._send_errors.pop(temp_id, None)
        self._refresh_view()

    def _require_failed(self, temp_id: str) -> _Slot:
        slot = self._find_temp(temp_id)
        if slot is None or slot.message.status != MessageStatus.ERROR:
            raise NotFoundError(f"No failed message with temp id {temp_id}")
        if temp_id in self._in_flight:
            raise NotFoundError(f"Message {temp_id} is already being sent")
        return slot

    # Delivery

    def _dispatch(self, temp_id: str, content: str) -> None:
        self._in_flight.add(temp_id)
        self._spawn(self._deliver(temp_id, self.conversation_id, self.current_user_id, content))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, temp_id: str, conversation_id: str, sender_id: str, content: str) -> None:
        try:
            stored = await self.service.insert_message(conversation_id, sender_id, content)
        except Exception as e:
            self._in_flight.discard(temp_id)
            logger.warning("Send failed for %s in %s: %s", temp_id, conversation_id, e)
            self._on_send_failed(temp_id, SendError(temp_id, f"Failed to send message: {e}"))
            return

        self._in_flight.discard(temp_id)
        self._on_send_succeeded(temp_id, stored)

    def _on_send_succeeded(self, temp_id: str, stored: ChatMessage) -> None:
        if self._closed:
            return
        claim = self._reconciled.pop(temp_id, None)
        if claim is not None and claim.message_id == stored.id:
            # The feed got here first
            return

        # The append result is authoritative: a feed row paired with another
        # entry by content belongs to this one, so hand that entry back
        for other_id, other in list(self._reconciled.items()):
            if other.message_id == stored.id:
                del self._reconciled[other_id]
                self._restore(other_id, other)

        if claim is not None:
            # Our entry was given someone else's row; keep that row and add ours
            if self._find_id(stored.id) is None:
                self._slots.append(_Slot(self._as_sent(stored, claim.pending.message), next(self._seq)))
            self._refresh_view()
            return

        slot = self._find_temp(temp_id)
        if slot is None:
            self._refresh_view()
            return

        if self._find_id(stored.id) is not None:
            # Delivered by the feed without being matched; keep that copy
            self._slots.remove(slot)
        else:
            slot.message = self._as_sent(stored, slot.message)
            slot.staged_at = None
        self._refresh_view()

    def _on_send_failed(self, temp_id: str, error: SendError) -> None:
        if self._closed:
            return
        claim = self._reconciled.get(temp_id)
        if claim is not None:
            # The paired row may still be ours; another append returning it says otherwise
            claim.error = error
            return

        slot = self._find_temp(temp_id)
        if slot is None or slot.message.status != MessageStatus.SENDING:
            return
        slot.message = slot.message.model_copy(update={"status": MessageStatus.ERROR})
        self._send_errors[temp_id] = error
        self._refresh_view()

    def _restore(self, temp_id: str, claim: _Claim) -> None:
        """Put back an entry that was paired with a row it does not own."""
        slot = claim.pending
        if claim.error is not None:
            slot.message = slot.message.model_copy(update={"status": MessageStatus.ERROR})
            self._send_errors[temp_id] = claim.error
        self._slots.append(slot)

    @staticmethod
    def _as_sent(stored: ChatMessage, local: ChatMessage) -> ChatMessage:
        return stored.model_copy(
            update={
                "status": MessageStatus.SENT,
                "temp_id": None,
                "sender": stored.sender or local.sender,
            }
        )

    # Reconciliation

    def _on_insert(self, message: ChatMessage) -> None:
        """Feed callback for a newly confirmed row."""
        if self._closed or message.conversation_id != self.conversation_id:
            return
        if self._apply_confirmed(message):
            self._refresh_view()
        if message.sender_id != self.current_user_id:
            self._spawn(self._mark_read(self.conversation_id, self.current_user_id))

    def _apply_confirmed(self, message: ChatMessage) -> bool:
        """Merge one confirmed row. Returns whether anything changed."""
        confirmed = message.model_copy(update={"status": None, "temp_id": None})

        existing = self._find_id(message.id)
        if existing is not None:
            if existing.message == confirmed:
                return False
            existing.message = confirmed.model_copy(
                update={"sender": message.sender or existing.message.sender}
            )
            return True

        pending = self._match_pending(message)
        if pending is not None:
            temp_id = pending.message.temp_id
            if temp_id in self._in_flight:
                self._reconciled[temp_id] = _Claim(
                    message.id, _Slot(pending.message, pending.seq, pending.staged_at)
                )
            self._send_errors.pop(temp_id, None)
            pending.message = confirmed.model_copy(
                update={"sender": message.sender or pending.message.sender}
            )
            pending.staged_at = None
            return True

        self._slots.append(_Slot(confirmed, next(self._seq)))
        return True

    def _match_pending(self, message: ChatMessage) -> _Slot | None:
        """Find the pending entry a confirmed row most likely belongs to."""
        if message.sender_id != self.current_user_id:
            return None

        if message.temp_id:
            # Backend echoed our key; no need to guess
            slot = self._find_temp(message.temp_id)
            return slot if slot and slot.message.is_pending else None

        now = time.monotonic()
        window = self.config.pending_match_window_seconds
        candidates = [
            slot
            for slot in self._slots
            if slot.message.is_pending
            and slot.message.status == MessageStatus.SENDING
            and slot.message.content == message.content
            and slot.staged_at is not None
            and now - slot.staged_at <= window
        ]
        return min(candidates, key=lambda s: s.seq) if candidates else None

    # Internals

    def _find_temp(self, temp_id: str) -> _Slot | None:
        for slot in self._slots:
            if slot.message.temp_id == temp_id:
                return slot
        return None

    def _find_id(self, message_id: str | None) -> _Slot | None:
        if message_id is None:
            return None
        for slot in self._slots:
            if slot.message.id == message_id:
                return slot
        return None

    def _refresh_view(self) -> None:
        confirmed = sorted(
            (s for s in self._slots if not s.message.is_pending),
            key=lambda s: (s.message.created_at, s.seq),
        )
        pending = sorted(
            (s for s in self._slots if s.message.is_pending),
            key=lambda s: s.seq,
        )
        self._view = [s.message for s in confirmed + pending]

        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Message store listener failed")


@asynccontextmanager
async def open_conversation(
    service: MessagePersistence,
    identity: IdentityProvider,
    conversation_id: str,
    current_user_profile: SenderProfile | None = None,
    config: MessageStoreConfig | None = None,
) -> AsyncIterator[MessageStore]:
    """Open a message store for the lifetime of a conversation view.

    Args:
        service: Message persistence backend.
        identity: Source of the current user's ID.
        conversation_id: Conversation to show.
        current_user_profile: Profile stamped on optimistic entries.
        config: Optional store configuration.

    Yields:
        MessageStore: The initialized store; closed on exit.
    """
    store = MessageStore(service, identity, config)
    await store.initialize(conversation_id, current_user_profile=current_user_profile)
    try:
        yield store
    finally:
        await store.close()
