"""Message Pydantic schemas exposed to the presentation layer."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from voxcast.models.message import MessageStatus

UNKNOWN_USERNAME = "unknown"
SELF_USERNAME = "you"


class SenderProfile(BaseModel):
    """Public profile of a message author."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(description="Profile ID (same as the auth user ID)")
    username: str = Field(description="Handle shown in the chat")
    display_name: str | None = Field(default=None, description="Optional display name")
    avatar_url: str | None = Field(default=None, description="Optional avatar URL")

    @classmethod
    def placeholder(cls, user_id: str, username: str = UNKNOWN_USERNAME) -> "SenderProfile":
        """Profile used when the real one is not available."""
        return cls(id=user_id, username=username)


class ChatMessage(BaseModel):
    """A message as shown in a conversation.

    Pending entries have no ``id`` and are keyed by ``temp_id``; confirmed
    entries have an ``id`` and, once observed on the feed or in history,
    no ``status``. Instances are immutable: state transitions produce copies.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str | None = Field(default=None, description="Server identifier, None while pending")
    temp_id: str | None = Field(default=None, description="Client identifier of a pending send")
    conversation_id: str = Field(description="Parent conversation ID")
    sender_id: str = Field(description="Author's user ID")
    content: str = Field(min_length=1, description="Message body")
    created_at: datetime = Field(description="Creation timestamp")
    status: MessageStatus | None = Field(default=None, description="Delivery status of local sends")
    sender: SenderProfile | None = Field(default=None, description="Author profile if known")

    @property
    def is_pending(self) -> bool:
        """Whether the server has not acknowledged this message yet."""
        return self.id is None

    @property
    def is_failed(self) -> bool:
        """Whether the last append attempt for this message failed."""
        return self.status == MessageStatus.ERROR
