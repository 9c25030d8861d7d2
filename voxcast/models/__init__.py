"""Database model type definitions."""

from voxcast.models.message import (
    MessageInsert,
    MessageRow,
    MessageStatus,
    ParticipationRow,
    ProfileRow,
)

__all__ = [
    "MessageInsert",
    "MessageRow",
    "MessageStatus",
    "ParticipationRow",
    "ProfileRow",
]
