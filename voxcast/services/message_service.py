"""Supabase-backed message persistence and realtime feed."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from supabase import AsyncClient

from voxcast.core.config import Settings, get_settings
from voxcast.core.exceptions import PersistenceError
from voxcast.core.supabase import get_async_supabase_client
from voxcast.models.message import MessageInsert, MessageRow
from voxcast.schemas.message import ChatMessage, SenderProfile
from voxcast.stores.protocols import InsertCallback

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "id, username, display_name, avatar_url"
MESSAGE_COLUMNS = (
    "id, conversation_id, sender_id, content, created_at, "
    f"sender:sender_id ({PROFILE_COLUMNS})"
)


def _extract_record(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Pull the inserted row out of a realtime postgres_changes payload."""
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("record"), dict):
        return data["record"]
    for key in ("new", "record"):
        if isinstance(payload.get(key), dict):
            return payload[key]
    return None


class MessageSubscription:
    """Realtime insert subscription for one channel.

    Realtime callbacks only enqueue the raw record; a single worker task
    enriches rows with sender profiles and hands them to the consumer, so
    rows are delivered in the order the channel received them.
    """

    def __init__(
        self,
        service: "MessageService",
        channel: Any,
        on_insert: InsertCallback,
    ) -> None:
        self._service = service
        self._channel = channel
        self._on_insert = on_insert
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._closed = False
        self.connected = False

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def start(self) -> None:
        """Start the delivery worker."""
        if self._worker is None:
            self._worker = asyncio.create_task(self._deliver_loop())

    def handle_payload(self, payload: dict[str, Any]) -> None:
        """Realtime callback for INSERT events."""
        if self._closed:
            return
        record = _extract_record(payload)
        if record is None:
            logger.warning("Ignoring realtime payload without a record: %s", payload)
            return
        self._queue.put_nowait(record)

    def handle_status(self, status: Any, err: Exception | None = None) -> None:
        """Realtime callback for channel state changes."""
        if status == "SUBSCRIBED":
            self.connected = True
            logger.info("Realtime connected to channel %s", self._channel.topic)
        elif status in ("TIMED_OUT", "CHANNEL_ERROR"):
            self.connected = False
            logger.warning("Realtime subscription failed on %s: %s %s", self._channel.topic, status, err)
        elif status == "CLOSED":
            self.connected = False

    async def _deliver_loop(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                message = await self._service.build_message(record)
            except Exception as e:
                logger.error("Dropping malformed realtime message %s: %s", record.get("id"), e)
                continue
            if not self._closed:
                self._on_insert(message)

    async def close(self) -> None:
        """Stop delivery and remove the realtime channel. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self.connected = False
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self._service.client.remove_channel(self._channel)


class MessageService:
    """Service for conversation messages stored in Supabase."""

    MESSAGES_TABLE = "messages"
    PROFILES_TABLE = "profiles"
    PARTICIPANTS_TABLE = "conversation_participants"
    CONVERSATIONS_TABLE = "conversations"

    def __init__(self, client: AsyncClient, settings: Settings | None = None) -> None:
        """Initialize message service.

        Args:
            client: Async Supabase client (realtime requires the async client).
            settings: Optional settings; defaults to the cached settings.
        """
        self.client = client
        self.settings = settings or get_settings()
        self._profiles: dict[str, SenderProfile] = {}

    @classmethod
    async def create(cls) -> "MessageService":
        """Build a service on the shared async Supabase client."""
        return cls(await get_async_supabase_client())

    async def list_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ChatMessage]:
        """List messages of a conversation, oldest first.

        Args:
            conversation_id: The conversation's ID.
            limit: Maximum rows to return; defaults to history_page_size.
            offset: Rows to skip.

        Returns:
            list[ChatMessage]: Confirmed messages with sender profiles.
        """
        page_size = limit or self.settings.history_page_size
        response = await (
            self.client.table(self.MESSAGES_TABLE)
            .select(MESSAGE_COLUMNS)
            .eq("conversation_id", conversation_id)
            .order("created_at")
            .range(offset, offset + page_size - 1)
            .execute()
        )

        messages = []
        for row in response.data or []:
            if row.get("sender"):
                self._profiles[row["sender_id"]] = SenderProfile.model_validate(row["sender"])
            messages.append(self._to_message(row))
        return messages

    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
    ) -> ChatMessage:
        """Append a message to a conversation.

        Args:
            conversation_id: The conversation's ID.
            sender_id: The author's user ID.
            content: Message body.

        Returns:
            ChatMessage: The stored row.

        Raises:
            PersistenceError: If Supabase returns no row.
        """
        payload: MessageInsert = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
        }
        response = await self.client.table(self.MESSAGES_TABLE).insert(payload).execute()
        if not response.data:
            raise PersistenceError("Message insert returned no row")

        await self._touch_conversation(conversation_id)

        row: MessageRow = response.data[0]
        sender = await self.get_sender_profile(sender_id)
        return self._to_message(row, sender)

    async def _touch_conversation(self, conversation_id: str) -> None:
        """Bump the conversation's updated_at so inbox ordering follows activity."""
        try:
            await (
                self.client.table(self.CONVERSATIONS_TABLE)
                .update({"updated_at": datetime.now(timezone.utc).isoformat()})
                .eq("id", conversation_id)
                .execute()
            )
        except Exception as e:
            # The message itself is stored; failing here would invite a duplicate retry.
            logger.warning("Failed to touch conversation %s: %s", conversation_id, e)

    async def get_sender_profile(self, user_id: str) -> SenderProfile:
        """Get a user's public profile, cached per service instance.

        Args:
            user_id: The profile's ID.

        Returns:
            SenderProfile: The profile, or an "unknown" placeholder if it cannot be read.
        """
        cached = self._profiles.get(user_id)
        if cached is not None:
            return cached

        try:
            response = await (
                self.client.table(self.PROFILES_TABLE)
                .select(PROFILE_COLUMNS)
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to load profile %s: %s", user_id, e)
            return SenderProfile.placeholder(user_id)

        if not (response and response.data):
            return SenderProfile.placeholder(user_id)

        profile = SenderProfile.model_validate(response.data)
        self._profiles[user_id] = profile
        return profile

    async def build_message(self, record: dict[str, Any]) -> ChatMessage:
        """Turn a bare realtime row into a ChatMessage with its sender profile."""
        sender = await self.get_sender_profile(record["sender_id"])
        return self._to_message(record, sender)

    def _to_message(self, row: dict[str, Any], sender: SenderProfile | None = None) -> ChatMessage:
        data = dict(row)
        if sender is not None:
            data["sender"] = sender
        elif not data.get("sender"):
            data["sender"] = SenderProfile.placeholder(data["sender_id"])
        return ChatMessage.model_validate(data)

    async def subscribe_inserts(
        self,
        conversation_id: str | None,
        on_insert: InsertCallback,
    ) -> MessageSubscription:
        """Subscribe to new messages through Supabase realtime.

        Args:
            conversation_id: Conversation to watch, or None for every
                conversation the user can read.
            on_insert: Called with each new message, in delivery order.

        Returns:
            MessageSubscription: Handle that must be closed on teardown.
        """
        topic = f"messages:{conversation_id}" if conversation_id else "messages:all"
        channel = self.client.channel(topic)
        subscription = MessageSubscription(self, channel, on_insert)

        options: dict[str, Any] = {
            "schema": self.settings.realtime_schema,
            "table": self.MESSAGES_TABLE,
        }
        if conversation_id:
            options["filter"] = f"conversation_id=eq.{conversation_id}"

        channel.on_postgres_changes("INSERT", callback=subscription.handle_payload, **options)
        subscription.start()
        try:
            await channel.subscribe(subscription.handle_status)
        except Exception:
            await subscription.close()
            raise
        return subscription

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> None:
        """Set the participant's last_read_at to now.

        Args:
            conversation_id: The conversation's ID.
            user_id: The reading participant.
        """
        await (
            self.client.table(self.PARTICIPANTS_TABLE)
            .update({"last_read_at": datetime.now(timezone.utc).isoformat()})
            .eq("conversation_id", conversation_id)
            .eq("user_id", user_id)
            .execute()
        )

    async def get_unread_conversations_count(self, user_id: str) -> int:
        """Count conversations with messages from others newer than last_read_at.

        Args:
            user_id: The participant to count for.

        Returns:
            int: Number of conversations with unread messages.
        """
        response = await (
            self.client.table(self.PARTICIPANTS_TABLE)
            .select("conversation_id, last_read_at")
            .eq("user_id", user_id)
            .execute()
        )
        participations = response.data or []
        if not participations:
            return 0

        counts = await asyncio.gather(
            *(self._count_unread(p, user_id) for p in participations)
        )
        return sum(1 for count in counts if count > 0)

    async def _count_unread(self, participation: dict[str, Any], user_id: str) -> int:
        query = (
            self.client.table(self.MESSAGES_TABLE)
            .select("id", count="exact", head=True)
            .eq("conversation_id", participation["conversation_id"])
            .neq("sender_id", user_id)
        )
        if participation.get("last_read_at"):
            query = query.gt("created_at", participation["last_read_at"])

        response = await query.execute()
        return response.count or 0

    async def is_conversation_participant(self, conversation_id: str, user_id: str) -> bool:
        """Check whether a user takes part in a conversation.

        Args:
            conversation_id: The conversation's ID.
            user_id: The user to check.

        Returns:
            bool: True if the user is a participant.
        """
        response = await (
            self.client.table(self.PARTICIPANTS_TABLE)
            .select("conversation_id")
            .eq("conversation_id", conversation_id)
            .eq("user_id", user_id)
            .maybe_single()
            .execute()
        )
        return bool(response and response.data)
