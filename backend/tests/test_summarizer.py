"""
Tests for pinning conversations to memory.
"""
import json

import pytest

from apps.chat.llm_client import LLMError
from apps.chat.services import ConversationNotFound
from apps.chat.summarizer import (
    ARCHIVIST_PROMPT,
    NO_CONTENT_REASON,
    NO_MEMORY_SENTINEL,
    SUMMARY_VERSION,
    TOO_SHORT_REASON,
    MemorySummarizer,
    memory_source_id,
)
from apps.knowledge.models import SourceType

from conftest import FakeEmbeddings, FakeLLM, FakeMessageStore, FakeStore, make_messages


def make_summarizer(messages=None, completion="", llm=None, message_store=None):
    store = FakeStore()
    summarizer = MemorySummarizer(
        llm=llm or FakeLLM(completion=completion),
        embeddings=FakeEmbeddings(),
        store=store,
        message_store=message_store or FakeMessageStore(messages),
    )
    return summarizer, store


class TestMemorySummarizer:
    """Tests for MemorySummarizer.summarize."""

    @pytest.mark.asyncio
    async def test_short_conversation_is_skipped(self):
        summarizer, store = make_summarizer(make_messages(("user", "hi")))

        result = await summarizer.summarize("conv-1", "user-a")

        assert result.skipped
        assert result.to_dict() == {"skipped": True, "message": TOO_SHORT_REASON}
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_greetings_only_conversation_stores_nothing(self):
        messages = make_messages(("user", "hi"), ("assistant", "hello!"), ("user", "bye"))
        summarizer, store = make_summarizer(messages, completion=NO_MEMORY_SENTINEL)

        result = await summarizer.summarize("conv-1", "user-a")

        assert result.to_dict() == {"skipped": True, "message": NO_CONTENT_REASON}
        assert store.inserted == []

    @pytest.mark.asyncio
    async def test_blank_summary_stores_nothing(self):
        messages = make_messages(("user", "I prefer green tea"), ("assistant", "Noted."))
        summarizer, store = make_summarizer(messages, completion="  \n\t ")

        result = await summarizer.summarize("conv-1", "user-a")

        assert result.to_dict() == {"skipped": True, "message": NO_CONTENT_REASON}
        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_summary_is_stored_as_memory(self):
        messages = make_messages(("user", "I prefer green tea"), ("assistant", "Noted."))
        summarizer, store = make_summarizer(messages, completion="  User prefers green tea.\n")

        result = await summarizer.summarize("conv-1", "user-a")

        assert result.to_dict() == {"success": True, "summary": "User prefers green tea."}
        [passage] = store.inserted
        assert passage.owner_id == "user-a"
        assert passage.content == "User prefers green tea."
        assert passage.source_type == SourceType.MEMORY
        assert passage.source_id == memory_source_id("conv-1") == "summary-conv-1"
        assert passage.metadata["summaryVersion"] == SUMMARY_VERSION
        assert "pinnedAt" in passage.metadata
        assert passage.embedding is not None

    @pytest.mark.asyncio
    async def test_prompt_carries_transcript(self):
        messages = make_messages(("user", "I prefer green tea"), ("assistant", "Noted."))
        llm = FakeLLM(completion="User prefers green tea.")
        summarizer, _ = make_summarizer(messages, llm=llm)

        await summarizer.summarize("conv-1", "user-a")

        [call] = llm.complete_calls
        assert call["system"] == ARCHIVIST_PROMPT
        transcript = json.loads(call["prompt"])
        assert [m["role"] for m in transcript] == ["user", "assistant"]
        assert transcript[0]["content"] == "I prefer green tea"
        assert transcript[0]["createdAt"].startswith("2025-01-01")

    @pytest.mark.asyncio
    async def test_missing_conversation_propagates(self):
        summarizer, _ = make_summarizer(message_store=FakeMessageStore(missing=True))
        with pytest.raises(ConversationNotFound):
            await summarizer.summarize("conv-1", "user-b")

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self):
        messages = make_messages(("user", "a"), ("assistant", "b"))
        summarizer, store = make_summarizer(messages, llm=FakeLLM(fail=True))

        with pytest.raises(LLMError):
            await summarizer.summarize("conv-1", "user-a")
        assert store.inserted == []
