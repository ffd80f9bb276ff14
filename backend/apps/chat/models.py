"""
Conversation and Message models.
"""
import uuid
from django.db import models

DEFAULT_TITLE = "New Chat"


class MessageRole(models.TextChoices):
    """Who wrote a message."""
    USER = 'user', 'User'
    ASSISTANT = 'assistant', 'Assistant'


class Conversation(models.Model):
    """
    A chat conversation owned by one user.

    Deleting a conversation deletes its messages and any passages
    (uploads or memories) scoped to it.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Owner is the Keycloak 'sub' claim (user ID)
    owner_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Keycloak user ID (sub claim)"
    )

    title = models.CharField(max_length=255, default=DEFAULT_TITLE)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'conversations'
        ordering = ['-updated_at']
        indexes = [
            models.Index(fields=['owner_id', 'updated_at']),
        ]

    def __str__(self):
        return f"{self.title} ({self.owner_id})"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class Message(models.Model):
    """A single message in a conversation."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name='messages',
    )

    role = models.CharField(max_length=20, choices=MessageRole.choices)
    content = models.TextField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'messages'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['conversation', 'created_at']),
        ]

    def __str__(self):
        preview = self.content[:50] + '...' if len(self.content) > 50 else self.content
        return f"{self.role}: {preview}"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }
