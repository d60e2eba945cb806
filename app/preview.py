"""
Conversation preview synchronization.

A conversation caches a summary of its newest message
(last_message_id / last_message_at / last_message_preview) so list views
never scan messages. The synchronizer keeps that cache consistent with
the live message set on create, edit and delete.
"""

import logging
from typing import Iterable, Optional

from app.clock import Clock
from app.entities import Conversation, Message
from app.metrics import record_preview_resync
from app.storage import EntityMap

logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_LIMIT = 80
ELLIPSIS = "…"


def build_message_preview(content: str) -> str:
    """
    Build the short preview string shown in conversation lists.

    Trimmed content longer than MESSAGE_PREVIEW_LIMIT is cut to the limit
    and suffixed with a single ellipsis character.
    """
    trimmed = content.strip()
    if len(trimmed) <= MESSAGE_PREVIEW_LIMIT:
        return trimmed
    return trimmed[:MESSAGE_PREVIEW_LIMIT] + ELLIPSIS


def latest_message(messages: Iterable[Message]) -> Optional[Message]:
    """Newest message by created_at; equal timestamps fall back to the larger id."""
    return max(messages, key=lambda message: (message.created_at, message.id), default=None)


class PreviewSynchronizer:
    """
    Maintains Conversation.last_message_* against the message map.

    Every hook is a no-op when the conversation no longer exists; callers
    validate existence and ownership before mutating messages.
    """

    def __init__(
        self,
        conversations: EntityMap[Conversation],
        messages: EntityMap[Message],
        clock: Clock,
    ):
        self.conversations = conversations
        self.messages = messages
        self.clock = clock

    def message_created(self, message: Message) -> None:
        # A freshly created message is by construction the newest one.
        conversation = self.conversations.get(message.conversation_id)
        if conversation is None:
            return
        self._adopt(conversation, message)
        conversation.updated_at = message.created_at
        self.conversations.put(conversation)
        record_preview_resync("create")

    def message_edited(self, message: Message, content_changed: bool) -> None:
        if not content_changed:
            return
        conversation = self.conversations.get(message.conversation_id)
        if conversation is None or conversation.last_message_id != message.id:
            return
        conversation.last_message_preview = build_message_preview(message.content)
        conversation.updated_at = message.updated_at
        self.conversations.put(conversation)
        logger.debug(f"Preview refreshed after edit: conversation={conversation.id}")
        record_preview_resync("edit")

    def message_deleted(self, message: Message) -> None:
        conversation = self.conversations.get(message.conversation_id)
        if conversation is None or conversation.last_message_id != message.id:
            return
        self.resync(conversation)
        record_preview_resync("delete")

    def resync(self, conversation: Conversation) -> Conversation:
        """Recompute the preview from scratch by scanning remaining messages."""
        latest = latest_message(
            message for message in self.messages.values()
            if message.conversation_id == conversation.id
        )
        if latest is not None:
            self._adopt(conversation, latest)
        else:
            conversation.last_message_id = None
            conversation.last_message_at = None
            conversation.last_message_preview = ""
        conversation.updated_at = self.clock()
        self.conversations.put(conversation)
        logger.debug(
            f"Preview recomputed: conversation={conversation.id}, "
            f"last_message_id={conversation.last_message_id}"
        )
        return conversation

    @staticmethod
    def _adopt(conversation: Conversation, message: Message) -> None:
        conversation.last_message_id = message.id
        conversation.last_message_at = message.created_at
        conversation.last_message_preview = build_message_preview(message.content)
