"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

Stored entity shapes (Conversation, Message, AnalyticsEvent) live in
entities.py and are returned as response models directly.
"""

from datetime import datetime
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.config import settings
from app.entities import Attachment, ConversationType, MessageType, Participant


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys, also accepts snake_case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartialUpdate(CamelModel):
    """Base for PATCH/PUT bodies where only the keys sent are applied."""

    # Fields that may be explicitly cleared with null
    NULLABLE_FIELDS: ClassVar[frozenset] = frozenset()

    def changes(self) -> dict[str, Any]:
        """Fields present in the body; explicit nulls survive only for nullable fields."""
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key in self.NULLABLE_FIELDS
        }


# =============================================================================
# Conversation Request Models
# =============================================================================

class ConversationCreate(CamelModel):
    """
    Fields a caller may set when creating a conversation.

    Preview fields are derived from messages and cannot be supplied.
    """
    type: ConversationType
    name: str = Field(..., min_length=1, max_length=200)
    participants: list[Participant] = Field(default_factory=list)
    unread_count: int = Field(default=0, ge=0)
    is_typing: list[str] = Field(default_factory=list)
    is_pinned: bool = False
    is_muted: bool = False
    is_archived: bool = False
    archived_at: Optional[datetime] = None


class ConversationUpdate(PartialUpdate):
    """Partial conversation update; only fields present in the body are applied."""
    NULLABLE_FIELDS: ClassVar[frozenset] = frozenset({"archived_at"})

    type: Optional[ConversationType] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    participants: Optional[list[Participant]] = None
    unread_count: Optional[int] = Field(default=None, ge=0)
    is_typing: Optional[list[str]] = None
    is_pinned: Optional[bool] = None
    is_muted: Optional[bool] = None
    is_archived: Optional[bool] = None
    archived_at: Optional[datetime] = None


# =============================================================================
# Message Request Models
# =============================================================================

class MessageCreate(CamelModel):
    """A message sent into a conversation."""
    sender_id: str = Field(..., min_length=1)
    sender_name: str = Field(..., min_length=1, max_length=200)
    content: str = Field(default="", max_length=10000)
    type: MessageType = "text"
    attachments: list[Attachment] = Field(default_factory=list)
    reply_to_id: Optional[str] = None


class MessageUpdate(PartialUpdate):
    """
    Partial message update.

    conversation_id, sender and created_at are immutable. When is_edited is
    omitted it is derived from whether content changed.
    """
    NULLABLE_FIELDS: ClassVar[frozenset] = frozenset({"reply_to_id", "delivered_at", "read_at"})

    content: Optional[str] = Field(default=None, max_length=10000)
    type: Optional[MessageType] = None
    attachments: Optional[list[Attachment]] = None
    reply_to_id: Optional[str] = None
    is_edited: Optional[bool] = None
    is_read: Optional[bool] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None


# =============================================================================
# Analytics Request Models
# =============================================================================

class AnalyticsIdentity(CamelModel):
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    session_id: Optional[str] = None


class AnalyticsEventPayload(CamelModel):
    """
    One client-reported event.

    event_id is generated by the client and is the idempotency key.
    """
    event_id: str = Field(..., min_length=1, max_length=100)
    event_name: str = Field(..., min_length=1, max_length=100)
    timestamp: datetime
    properties: dict[str, Any] = Field(default_factory=dict)
    identity: AnalyticsIdentity = Field(default_factory=AnalyticsIdentity)
    app_version: Optional[str] = Field(default=None, max_length=20)
    platform: Optional[str] = Field(default=None, max_length=20)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "eventId": "2f0c6b52-3f5e-4a3c-9d55-0d3b0c8e1a11",
                    "eventName": "app_open",
                    "timestamp": "2025-01-15T10:00:00Z",
                    "properties": {"screen": "home"},
                    "identity": {"userId": "u1", "sessionId": "s1"},
                    "platform": "ios",
                    "appVersion": "1.4.0",
                }
            ]
        }
    }


class AnalyticsBatchRequest(CamelModel):
    events: list[AnalyticsEventPayload] = Field(
        ...,
        min_length=1,
        max_length=settings.ANALYTICS_MAX_BATCH,
    )
    schema_version: str = "1.0.0"
    mode: Optional[Literal["default", "privacy"]] = None


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class StatusResponse(BaseModel):
    status: str
    timestamp: datetime


class AnalyticsBatchResponse(CamelModel):
    """Acknowledgement for an ingested analytics batch."""
    received: int = Field(..., ge=0, description="Events in the batch")
    ingested: int = Field(..., ge=0, description="Events stored for the first time")
    duplicates: int = Field(..., ge=0, description="Events skipped as already stored")
    timestamp: datetime
    schema_version: str


class AnalyticsDeleteResponse(BaseModel):
    deleted: int = Field(..., ge=0, description="Number of events removed")
