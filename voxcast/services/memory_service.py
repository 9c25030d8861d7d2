"""In-memory message persistence for local development and tests.

Mirrors the Supabase service closely enough to run the stores without a
database: rows get server-assigned IDs and timestamps, and inserts reach
subscribers on a later loop iteration, the way realtime pushes arrive.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from uuid import uuid4

from voxcast.core.exceptions import PersistenceError
from voxcast.schemas.message import ChatMessage, SenderProfile
from voxcast.stores.protocols import InsertCallback

logger = logging.getLogger(__name__)


class InMemorySubscription:
    """Subscription handle returned by InMemoryMessageService."""

    def __init__(self, service: "InMemoryMessageService", conversation_id: str | None, on_insert: InsertCallback) -> None:
        self.conversation_id = conversation_id
        self.on_insert = on_insert
        self._service = service
        self.closed = False

    def matches(self, message: ChatMessage) -> bool:
        return self.conversation_id is None or self.conversation_id == message.conversation_id

    def deliver(self, message: ChatMessage) -> None:
        if not self.closed:
            self.on_insert(message)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._service.subscriptions.discard(self)


class InMemoryMessageService:
    """Process-local message store with a simulated realtime feed."""

    def __init__(self, profiles: list[SenderProfile] | None = None) -> None:
        self.messages: dict[str, list[ChatMessage]] = defaultdict(list)
        self.last_read: dict[tuple[str, str], datetime] = {}
        self.participants: dict[str, set[str]] = defaultdict(set)
        self.profiles = {p.id: p for p in profiles or []}
        self.subscriptions: set[InMemorySubscription] = set()
        # Set to an exception to make the next insert calls fail
        self.fail_inserts: Exception | None = None

    def add_participant(self, conversation_id: str, user_id: str) -> None:
        """Register a user as a participant of a conversation."""
        self.participants[conversation_id].add(user_id)

    async def list_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ChatMessage]:
        rows = sorted(self.messages[conversation_id], key=lambda m: m.created_at)
        end = offset + limit if limit else None
        return rows[offset:end]

    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
    ) -> ChatMessage:
        if self.fail_inserts is not None:
            raise self.fail_inserts
        if not content:
            raise PersistenceError("Message content must not be empty")

        message = ChatMessage(
            id=str(uuid4()),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            created_at=datetime.now(timezone.utc),
            sender=self.profiles.get(sender_id) or SenderProfile.placeholder(sender_id),
        )
        self.messages[conversation_id].append(message)
        self.participants[conversation_id].add(sender_id)

        loop = asyncio.get_running_loop()
        for subscription in list(self.subscriptions):
            if subscription.matches(message):
                loop.call_soon(subscription.deliver, message)
        return message

    async def subscribe_inserts(
        self,
        conversation_id: str | None,
        on_insert: InsertCallback,
    ) -> InMemorySubscription:
        subscription = InMemorySubscription(self, conversation_id, on_insert)
        self.subscriptions.add(subscription)
        logger.debug("In-memory subscription opened for %s", conversation_id or "all conversations")
        return subscription

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> None:
        self.participants[conversation_id].add(user_id)
        self.last_read[(conversation_id, user_id)] = datetime.now(timezone.utc)

    async def get_unread_conversations_count(self, user_id: str) -> int:
        unread = 0
        for conversation_id, members in self.participants.items():
            if user_id not in members:
                continue
            last_read = self.last_read.get((conversation_id, user_id))
            if any(
                m.sender_id != user_id and (last_read is None or m.created_at > last_read)
                for m in self.messages[conversation_id]
            ):
                unread += 1
        return unread
