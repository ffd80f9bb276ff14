"""
Owner-scoped conversation and message operations.

Every lookup filters by owner, so a conversation that belongs to someone
else is indistinguishable from one that does not exist.
"""
import logging
import uuid
from typing import List, Optional, Union

from asgiref.sync import sync_to_async
from django.db import transaction
from django.utils import timezone

from apps.knowledge.models import Passage

from .models import DEFAULT_TITLE, Conversation, Message, MessageRole

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255

ConversationId = Union[str, uuid.UUID]


class ConversationNotFound(Exception):
    """Raised when a conversation does not exist or is not owned by the caller."""
    pass


class InvalidTitle(ValueError):
    """Raised when a conversation title is missing or blank."""
    pass


def parse_conversation_id(value) -> uuid.UUID:
    """
    Parse a client-supplied conversation ID.

    Raises:
        ValueError: If the value is not a UUID
    """
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        raise ValueError("Conversation ID must be a string")
    return uuid.UUID(value.strip())


def clean_title(title) -> str:
    if not isinstance(title, str) or not title.strip():
        raise InvalidTitle("Title is required")
    return title.strip()[:MAX_TITLE_LENGTH]


class ConversationService:
    """Conversation CRUD and message history for one database."""

    async def list_conversations(self, owner_id: str) -> List[Conversation]:
        """Owner's conversations, most recently active first."""
        return [
            c async for c in Conversation.objects.filter(owner_id=owner_id).order_by('-updated_at')
        ]

    async def create_conversation(self, owner_id: str, title: Optional[str] = None) -> Conversation:
        if isinstance(title, str) and title.strip():
            title = clean_title(title)
        else:
            title = DEFAULT_TITLE
        conversation = await Conversation.objects.acreate(owner_id=owner_id, title=title)
        logger.info(f"Created conversation {conversation.id} for owner {owner_id}")
        return conversation

    async def get_conversation(self, owner_id: str, conversation_id: ConversationId) -> Conversation:
        """
        Raises:
            ConversationNotFound: If missing or owned by someone else
        """
        try:
            return await Conversation.objects.aget(id=conversation_id, owner_id=owner_id)
        except Conversation.DoesNotExist:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")

    async def rename_conversation(
        self, owner_id: str, conversation_id: ConversationId, title: str
    ) -> Conversation:
        """
        Raises:
            InvalidTitle: If title is not a non-empty string
            ConversationNotFound: If missing or owned by someone else
        """
        title = clean_title(title)
        conversation = await self.get_conversation(owner_id, conversation_id)
        conversation.title = title
        await conversation.asave(update_fields=['title', 'updated_at'])
        return conversation

    async def delete_conversation(self, owner_id: str, conversation_id: ConversationId) -> None:
        """
        Delete a conversation with its passages and messages.

        Raises:
            ConversationNotFound: If missing or owned by someone else
        """
        conversation = await self.get_conversation(owner_id, conversation_id)

        def _delete():
            with transaction.atomic():
                passages, _ = Passage.objects.filter(conversation=conversation).delete()
                messages, _ = Message.objects.filter(conversation=conversation).delete()
                conversation.delete()
            return passages, messages

        passages, messages = await sync_to_async(_delete)()
        logger.info(
            f"Deleted conversation {conversation_id} "
            f"({messages} messages, {passages} passages)"
        )

    async def get_messages(self, owner_id: str, conversation_id: ConversationId) -> List[Message]:
        """
        Ordered history of an owned conversation.

        Raises:
            ConversationNotFound: If missing or owned by someone else
        """
        conversation = await self.get_conversation(owner_id, conversation_id)
        return [
            m async for m in Message.objects.filter(conversation=conversation).order_by('created_at', 'id')
        ]

    async def save_message(self, conversation_id: ConversationId, role: str, content: str) -> Message:
        """Append a message and mark the conversation as recently active."""
        if role not in MessageRole.values:
            raise ValueError(f"Invalid message role: {role}")
        message = await Message.objects.acreate(
            conversation_id=conversation_id, role=role, content=content
        )
        await Conversation.objects.filter(id=conversation_id).aupdate(updated_at=timezone.now())
        return message
