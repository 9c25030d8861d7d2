"""Message model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import TypedDict


class MessageStatus(str, Enum):
    """Delivery status of a locally staged message.

    Confirmed history carries no status at all.
    """

    SENDING = "sending"
    SENT = "sent"
    ERROR = "error"


class ProfileRow(TypedDict):
    """Public profile columns joined onto messages."""

    id: str
    username: str
    display_name: str | None
    avatar_url: str | None


class MessageRow(TypedDict, total=False):
    """Messages table row representation.

    History queries embed the author's profile under ``sender``; realtime
    insert payloads carry the bare row.
    """

    id: str
    conversation_id: str
    sender_id: str
    content: str
    created_at: datetime
    sender: ProfileRow | None


class MessageInsert(TypedDict):
    """Data required to create a new message."""

    conversation_id: str
    sender_id: str
    content: str


class ParticipationRow(TypedDict):
    """conversation_participants row subset used for read tracking."""

    conversation_id: str
    last_read_at: datetime | None
