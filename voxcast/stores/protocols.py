"""Collaborator interfaces consumed by the chat stores.

Structural (duck-typed) protocols so the stores can run against Supabase,
the in-memory backend or test doubles alike.
"""

from collections.abc import Callable
from typing import Protocol

from voxcast.schemas.message import ChatMessage

InsertCallback = Callable[[ChatMessage], None]


class Subscription(Protocol):
    """Handle for a live insert feed. Must be closed when no longer needed."""

    async def close(self) -> None:
        """Stop delivering inserts and release the underlying channel."""
        ...


class MessagePersistence(Protocol):
    """Durable append-only message store keyed by conversation."""

    async def list_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ChatMessage]:
        """List confirmed messages ordered by creation time ascending."""
        ...

    async def insert_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
    ) -> ChatMessage:
        """Append a message and return the stored row."""
        ...

    async def subscribe_inserts(
        self,
        conversation_id: str | None,
        on_insert: InsertCallback,
    ) -> Subscription:
        """Deliver every newly inserted message of a conversation (or all when None)."""
        ...

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> None:
        """Record that the user has read the conversation up to now."""
        ...

    async def get_unread_conversations_count(self, user_id: str) -> int:
        """Count conversations with messages from others newer than the last read."""
        ...


class IdentityProvider(Protocol):
    """Source of the current actor's identity."""

    def current_user_id(self) -> str | None:
        """Return the signed-in user's ID, or None when signed out."""
        ...
