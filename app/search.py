"""
Access-scoped message search.

Matching is case-insensitive substring containment over a per-message
text blob built on demand (content, sender name, attachment metadata).
Only messages in conversations owned by the caller are ever considered.
"""

import logging
from typing import Optional

from app.entities import Conversation, Message
from app.storage import EntityMap

logger = logging.getLogger(__name__)


def build_message_search_index(message: Message) -> str:
    """Lowercase searchable text for a message and its attachment metadata."""
    attachment_tokens = [
        " ".join(
            part for part in (attachment.file_name, attachment.mime_type, attachment.type) if part
        )
        for attachment in message.attachments
    ]
    parts = [message.content, message.sender_name, *attachment_tokens]
    return " ".join(part for part in parts if part).lower()


def owned_conversation_ids(conversations: EntityMap[Conversation], user_id: str) -> set[str]:
    return {
        conversation.id
        for conversation in conversations.values()
        if conversation.user_id == user_id
    }


def search_messages(
    conversations: EntityMap[Conversation],
    messages: EntityMap[Message],
    query: str,
    user_id: str,
    conversation_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[Message]:
    """
    Search the caller's messages, newest first.

    Args:
        query: Free text; blank matches every message in scope
        user_id: Caller; only conversations they own are searched
        conversation_id: Optional narrowing to one conversation. A conversation
            the caller does not own yields an empty list, same as no match.
        limit: Optional maximum number of results after ordering

    Returns:
        Matching messages ordered by created_at descending
    """
    normalized = query.strip().lower()
    scope = owned_conversation_ids(conversations, user_id)

    if conversation_id is not None:
        if conversation_id not in scope:
            logger.debug(f"Search scoped to inaccessible conversation: {conversation_id}")
            return []
        scope = {conversation_id}

    scoped = [message for message in messages.values() if message.conversation_id in scope]
    if normalized:
        scoped = [message for message in scoped if normalized in build_message_search_index(message)]

    scoped.sort(key=lambda message: (message.created_at, message.id), reverse=True)

    if limit is not None:
        scoped = scoped[:max(limit, 0)]

    logger.debug(f"Search matched {len(scoped)} messages across {len(scope)} conversations")
    return scoped
