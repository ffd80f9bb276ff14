"""
Passage model: the retrievable unit of the knowledge base.

Document chunks and pinned conversation memories are stored the same way,
so search ranks them together without caring where they came from.
"""
import uuid
from django.conf import settings
from django.db import models
from pgvector.django import VectorField


class SourceType(models.TextChoices):
    """Where a passage came from."""
    DOCUMENT = 'document', 'Document chunk'
    MEMORY = 'memory', 'Conversation memory'


class Passage(models.Model):
    """
    A stored piece of text with its embedding and provenance.

    Passages are append-only: they are created by ingestion or by pinning a
    conversation, and only ever removed (directly or via their conversation).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Owner is the Keycloak 'sub' claim (user ID); every search filters on it
    owner_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Keycloak user ID (sub claim)"
    )

    content = models.TextField(
        help_text="The text that was embedded"
    )

    embedding = VectorField(
        dimensions=getattr(settings, 'EMBEDDING_DIMENSIONS', 768),
        null=True,
        blank=True,
        help_text="Vector embedding of content"
    )

    source_type = models.CharField(
        max_length=20,
        choices=SourceType.choices,
        default=SourceType.DOCUMENT,
        help_text="Kind of source this passage came from"
    )

    # Filename for documents, summary-<conversation id> for memories. Not unique.
    source_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Provenance identifier"
    )

    # Scoping only, never ownership
    conversation = models.ForeignKey(
        'chat.Conversation',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='passages',
        help_text="Conversation the passage belongs to, if any"
    )

    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'passages'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['owner_id', 'created_at']),
        ]

    def __str__(self):
        preview = self.content[:50] + '...' if len(self.content) > 50 else self.content
        return f"{self.source_type}:{self.source_id}: {preview}"
