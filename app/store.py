"""
Conversation and message store.

MessagingStore owns the conversation and message entity maps. Every
mutation is a read-modify-write under a single re-entrant lock, and
message mutations trigger preview resynchronization before returning.

Not-found and not-owned are deliberately indistinguishable: both come
back as None / False / [].
"""

import logging
import threading
import uuid
from typing import Any, Optional

from app.clock import Clock, MonotonicClock
from app.config import Settings, settings as default_settings
from app.entities import AnalyticsEvent, Attachment, Conversation, Message
from app.metrics import record_message_operation
from app.preview import PreviewSynchronizer
from app.search import search_messages
from app.storage import EntityMap, InMemoryEntityMap, SessionLocal, SqlEntityMap, init_db

logger = logging.getLogger(__name__)

# Message fields that callers may change after creation
MUTABLE_MESSAGE_FIELDS = frozenset({
    "content", "type", "attachments", "reply_to_id", "is_edited",
    "is_read", "delivered_at", "read_at",
})

# Conversation fields that callers may change; preview fields are derived
MUTABLE_CONVERSATION_FIELDS = frozenset({
    "type", "name", "participants", "unread_count", "is_typing",
    "is_pinned", "is_muted", "is_archived", "archived_at",
})


def new_id() -> str:
    return str(uuid.uuid4())


class MessagingStore:
    """Conversations, their messages, and the derived preview on each conversation."""

    def __init__(
        self,
        conversations: EntityMap[Conversation],
        messages: EntityMap[Message],
        clock: Optional[Clock] = None,
    ):
        self.conversations = conversations
        self.messages = messages
        self.clock = clock or MonotonicClock()
        self.previews = PreviewSynchronizer(conversations, messages, self.clock)
        self._lock = threading.RLock()

    # =========================================================================
    # Conversations
    # =========================================================================

    def get_conversations(self, user_id: str) -> list[Conversation]:
        with self._lock:
            owned = [c for c in self.conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: (c.updated_at, c.id), reverse=True)
        return owned

    def get_conversation(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        with self._lock:
            return self._owned_conversation(conversation_id, user_id)

    def create_conversation(self, user_id: str, **fields: Any) -> Conversation:
        """
        Create a conversation owned by user_id.

        Args:
            user_id: Owner; the only caller allowed to read or change it
            **fields: Any of MUTABLE_CONVERSATION_FIELDS; type and name are required
        """
        with self._lock:
            now = self.clock()
            conversation = Conversation(
                **self._pick(fields, MUTABLE_CONVERSATION_FIELDS),
                id=new_id(),
                user_id=user_id,
                created_at=now,
                updated_at=now,
            )
            self.conversations.put(conversation)

        logger.info(f"Conversation created: id={conversation.id}, user={user_id}")
        return conversation

    def update_conversation(
        self, conversation_id: str, user_id: str, updates: dict[str, Any]
    ) -> Optional[Conversation]:
        with self._lock:
            conversation = self._owned_conversation(conversation_id, user_id)
            if conversation is None:
                return None
            data = conversation.model_dump()
            data.update(self._pick(updates, MUTABLE_CONVERSATION_FIELDS))
            data["updated_at"] = self.clock()
            updated = Conversation.model_validate(data)
            self.conversations.put(updated)

        logger.info(f"Conversation updated: id={conversation_id}")
        return updated

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation and every message in it."""
        with self._lock:
            if self._owned_conversation(conversation_id, user_id) is None:
                return False
            doomed = [m.id for m in self.messages.values() if m.conversation_id == conversation_id]
            removed = self.messages.delete_many(doomed)
            self.conversations.delete(conversation_id)

        logger.info(f"Conversation deleted: id={conversation_id}, messages_removed={removed}")
        return True

    # =========================================================================
    # Messages
    # =========================================================================

    def get_messages(self, conversation_id: str, user_id: str) -> list[Message]:
        """Messages of an owned conversation, oldest first."""
        with self._lock:
            if self._owned_conversation(conversation_id, user_id) is None:
                return []
            found = [m for m in self.messages.values() if m.conversation_id == conversation_id]
        found.sort(key=lambda m: (m.created_at, m.id))
        return found

    def get_message(self, message_id: str, user_id: str) -> Optional[Message]:
        with self._lock:
            return self._owned_message(message_id, user_id)

    def create_message(
        self,
        conversation_id: str,
        sender_id: str,
        sender_name: str,
        content: str,
        type: str = "text",
        attachments: Optional[list[Attachment]] = None,
        reply_to_id: Optional[str] = None,
    ) -> Message:
        """
        Append a message to a conversation and make it the conversation's preview.

        Ownership of the conversation is checked by the caller.
        """
        with self._lock:
            now = self.clock()
            message = Message(
                id=new_id(),
                conversation_id=conversation_id,
                sender_id=sender_id,
                sender_name=sender_name,
                content=content,
                type=type,
                attachments=attachments or [],
                reply_to_id=reply_to_id,
                created_at=now,
                updated_at=now,
            )
            self.messages.put(message)
            self.previews.message_created(message)

        record_message_operation("create")
        logger.info(f"Message created: id={message.id}, conversation={conversation_id}")
        return message

    def update_message(
        self, message_id: str, user_id: str, updates: dict[str, Any]
    ) -> Optional[Message]:
        """
        Apply a partial update to a message.

        is_edited follows an explicit value in updates; otherwise it becomes
        True when content changes and is left alone when it does not.
        """
        with self._lock:
            message = self._owned_message(message_id, user_id)
            if message is None:
                return None

            changes = self._pick(updates, MUTABLE_MESSAGE_FIELDS)
            content_changed = "content" in changes and changes["content"] != message.content
            if changes.get("is_edited") is None:
                changes["is_edited"] = True if content_changed else message.is_edited

            data = message.model_dump()
            data.update(changes)
            data["updated_at"] = self.clock()
            updated = Message.model_validate(data)
            self.messages.put(updated)
            self.previews.message_edited(updated, content_changed)

        record_message_operation("update")
        logger.info(f"Message updated: id={message_id}, content_changed={content_changed}")
        return updated

    def delete_message(self, message_id: str, user_id: str) -> bool:
        with self._lock:
            message = self._owned_message(message_id, user_id)
            if message is None:
                return False
            if not self.messages.delete(message_id):
                return False
            self.previews.message_deleted(message)

        record_message_operation("delete")
        logger.info(f"Message deleted: id={message_id}")
        return True

    def search_messages(
        self,
        query: str,
        user_id: str,
        conversation_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Message]:
        with self._lock:
            return search_messages(
                self.conversations,
                self.messages,
                query,
                user_id,
                conversation_id=conversation_id,
                limit=limit,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _owned_conversation(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    def _owned_message(self, message_id: str, user_id: str) -> Optional[Message]:
        message = self.messages.get(message_id)
        if message is None:
            return None
        if self._owned_conversation(message.conversation_id, user_id) is None:
            return None
        return message

    @staticmethod
    def _pick(fields: dict[str, Any], allowed: frozenset) -> dict[str, Any]:
        ignored = set(fields) - allowed
        if ignored:
            logger.debug(f"Ignoring immutable or derived fields: {sorted(ignored)}")
        return {key: value for key, value in fields.items() if key in allowed}


# =============================================================================
# Factory
# =============================================================================

def build_entity_maps(config: Settings = default_settings) -> tuple[
    EntityMap[Conversation], EntityMap[Message], EntityMap[AnalyticsEvent]
]:
    """Create the three entity maps for the configured backend."""
    if config.STORE_BACKEND == "sql":
        init_db()
        return (
            SqlEntityMap(Conversation, "conversation", SessionLocal),
            SqlEntityMap(Message, "message", SessionLocal),
            SqlEntityMap(AnalyticsEvent, "analytics_event", SessionLocal),
        )
    return (
        InMemoryEntityMap[Conversation](),
        InMemoryEntityMap[Message](),
        InMemoryEntityMap[AnalyticsEvent](),
    )
