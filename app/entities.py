"""
Domain entities held in the entity maps.

These are the stored shapes of conversations, messages and analytics
events. Field names are snake_case in Python and camelCase on the wire.
For request/response validation models, see schemas.py.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ConversationType = Literal["direct", "group"]
MessageType = Literal["text", "image", "video", "audio", "file", "system"]


class Entity(BaseModel):
    """Base for every stored record. Serializes with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    id: str


class Participant(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    user_name: str
    avatar_url: Optional[str] = None
    is_online: bool = False
    last_seen_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None


class Attachment(BaseModel):
    """File, media or link attached to a message."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    type: str
    url: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None


class Conversation(Entity):
    """
    A direct or group conversation owned by a single user.

    last_message_id / last_message_at / last_message_preview are derived
    from the message set and maintained by the preview synchronizer.
    """

    user_id: str
    type: ConversationType
    name: str
    participants: list[Participant] = Field(default_factory=list)
    last_message_id: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_preview: str = ""
    unread_count: int = 0
    is_typing: list[str] = Field(default_factory=list)
    is_pinned: bool = False
    is_muted: bool = False
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class Message(Entity):
    """A single message inside a conversation."""

    conversation_id: str
    sender_id: str
    sender_name: str
    content: str
    type: MessageType = "text"
    attachments: list[Attachment] = Field(default_factory=list)
    reply_to_id: Optional[str] = None
    is_edited: bool = False
    is_read: bool = False
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class AnalyticsEvent(Entity):
    """
    Client-reported analytics event.

    id is the client-generated eventId and doubles as the idempotency key.
    Events without a user_id are anonymous and never returned by per-user
    queries.
    """

    user_id: Optional[str] = None
    event_name: str
    event_properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    session_id: Optional[str] = None
    device_id: Optional[str] = None
    platform: Optional[str] = None
    app_version: Optional[str] = None
    created_at: datetime
