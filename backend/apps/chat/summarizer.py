"""
Conversation memory summarizer ("pin to memory").

Compresses a conversation into factual notes with the chat model and stores
them as a memory passage, so later searches find them alongside documents.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from apps.knowledge.embeddings import BaseEmbeddingClient
from apps.knowledge.models import Passage, SourceType
from apps.knowledge.store import VectorStore

from .llm_client import BaseLLMGateway

logger = logging.getLogger(__name__)

NO_MEMORY_SENTINEL = "NO_MEMORY_VALUE"
SUMMARY_VERSION = "v1"
MIN_MESSAGES = 2

TOO_SHORT_REASON = "Conversation too short"
NO_CONTENT_REASON = "No useful content"

ARCHIVIST_PROMPT = (
    "You are an expert archivist. Summarize this conversation into a concise set "
    "of factual notes. Remove all greetings, pleasantries, and fluff. Keep only the "
    "core information, code snippets, and decisions. If there is no useful "
    f"information, return {NO_MEMORY_SENTINEL}."
)


@dataclass
class SummaryResult:
    """Outcome of pinning a conversation."""
    skipped: bool
    reason: Optional[str] = None
    summary: Optional[str] = None

    def to_dict(self) -> dict:
        if self.skipped:
            return {"skipped": True, "message": self.reason}
        return {"success": True, "summary": self.summary}


def memory_source_id(conversation_id) -> str:
    # Not unique: pinning twice stores two memories
    return f"summary-{conversation_id}"


class MemorySummarizer:
    """Turns a conversation into a stored memory passage."""

    def __init__(
        self,
        llm: BaseLLMGateway,
        embeddings: BaseEmbeddingClient,
        store: VectorStore,
        message_store,
    ):
        self.llm = llm
        self.embeddings = embeddings
        self.store = store
        self.message_store = message_store

    async def summarize(self, conversation_id, owner_id: str) -> SummaryResult:
        """
        Summarize a conversation into a memory passage.

        Args:
            conversation_id: Conversation to pin
            owner_id: Keycloak subject ID; must own the conversation

        Returns:
            SummaryResult, skipped when there is nothing worth keeping

        Raises:
            ConversationNotFound: If the conversation is not the owner's
            LLMError: If the summary call fails
            EmbeddingError: If the summary cannot be embedded
        """
        messages = await self.message_store.get_messages(owner_id, conversation_id)

        if len(messages) < MIN_MESSAGES:
            logger.info(f"Skipping pin of {conversation_id}: {len(messages)} messages")
            return SummaryResult(skipped=True, reason=TOO_SHORT_REASON)

        prompt = json.dumps(
            [
                {
                    "role": m.role,
                    "content": m.content,
                    "createdAt": m.created_at.isoformat() if m.created_at else None,
                }
                for m in messages
            ],
            ensure_ascii=False,
        )

        summary = await self.llm.complete(system=ARCHIVIST_PROMPT, prompt=prompt)

        summary = summary.strip()
        if not summary or NO_MEMORY_SENTINEL in summary:
            logger.info(f"Nothing worth keeping in conversation {conversation_id}")
            return SummaryResult(skipped=True, reason=NO_CONTENT_REASON)

        vector = await self.embeddings.embed(summary)

        passage = Passage(
            owner_id=owner_id,
            conversation_id=conversation_id,
            content=summary,
            embedding=vector,
            source_type=SourceType.MEMORY,
            source_id=memory_source_id(conversation_id),
            metadata={
                "pinnedAt": datetime.now(timezone.utc).isoformat(),
                "summaryVersion": SUMMARY_VERSION,
            },
        )
        await self.store.insert_many([passage])

        logger.info(f"Pinned conversation {conversation_id} as memory ({len(summary)} chars)")
        return SummaryResult(skipped=False, summary=summary)
