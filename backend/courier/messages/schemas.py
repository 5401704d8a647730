"""Pydantic schemas for persisted chat messages."""
import uuid
from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

# Maximum length of an identity string (user id or email-like key)
MAX_IDENTITY_LENGTH = 256

Identity = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_IDENTITY_LENGTH),
]
"""Opaque user key used in room membership and message records."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return str(uuid.uuid4())


class MessageCreate(BaseModel):
    """Request body for writing a message without a live connection."""
    sender: Identity
    receiver: Identity
    content: str = Field(..., min_length=1)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class Message(BaseModel):
    """A persisted direct message between two identities.

    Messages are immutable once stored; ``id`` is assigned by the store on
    append and ``createdAt`` when the message is built.

    Attributes:
        id: Store-assigned UUID (None until appended).
        sender: Identity of the author.
        receiver: Identity of the recipient.
        content: Message text, stored exactly as received.
        createdAt: UTC creation timestamp.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(default=None, description="Store-assigned message ID")
    sender: str = Field(..., description="Identity of the sender")
    receiver: str = Field(..., description="Identity of the receiver")
    content: str = Field(..., description="Message content")
    createdAt: datetime = Field(
        default_factory=utc_now,
        description="UTC creation timestamp"
    )

    def to_event(self) -> dict:
        """Build the outbound ``receive-message`` frame for this message."""
        return {"type": "receive-message", **self.model_dump(mode="json")}
