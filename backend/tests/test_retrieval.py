"""
Tests for knowledge-base retrieval and the search tool built on it.
"""
import pytest

from apps.chat.tools import (
    INVALID_QUERY_MESSAGE,
    MAX_QUERY_LENGTH,
    SEARCH_TOOL_NAME,
    build_knowledge_base_tools,
    normalize_tool_query,
)
from apps.knowledge.models import Passage
from apps.knowledge.retrieval import (
    NO_RESULTS_MESSAGE,
    SEARCH_ERROR_MESSAGE,
    Retriever,
    format_results,
)
from apps.knowledge.store import SearchHit

from conftest import FakeEmbeddings, FakeStore


def hit(content, similarity):
    return SearchHit(passage=Passage(owner_id="user-a", content=content, source_id="x"), similarity=similarity)


class TestFormatResults:
    """Tests for the text handed to the model."""

    def test_numbered_and_blank_line_separated(self):
        text = format_results([hit("Ada likes tea.", 0.9), hit("Ada lives in London.", 0.8)])
        assert text == "[1] Ada likes tea.\n\n[2] Ada lives in London."


class TestRetriever:
    """Tests for Retriever.retrieve."""

    @pytest.mark.asyncio
    async def test_formats_hits(self):
        store = FakeStore(hits=[hit("Ada likes tea.", 0.9)])
        retriever = Retriever(FakeEmbeddings(), store)

        result = await retriever.retrieve("what does Ada like?", "user-a")

        assert result == "[1] Ada likes tea."

    @pytest.mark.asyncio
    async def test_defaults_and_owner_are_passed_to_store(self):
        store = FakeStore()
        retriever = Retriever(FakeEmbeddings(), store, default_limit=7, default_threshold=0.25)

        await retriever.retrieve("anything", "user-b")

        assert store.searches == [
            {"owner_id": "user-b", "limit": 7, "threshold": 0.25, "conversation_id": None}
        ]

    @pytest.mark.asyncio
    async def test_no_hits_returns_sentinel(self):
        retriever = Retriever(FakeEmbeddings(), FakeStore())
        assert await retriever.retrieve("anything", "user-a") == NO_RESULTS_MESSAGE

    @pytest.mark.asyncio
    async def test_embedding_failure_returns_error_sentinel(self):
        retriever = Retriever(FakeEmbeddings(fail=True), FakeStore())
        assert await retriever.retrieve("anything", "user-a") == SEARCH_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_store_failure_returns_error_sentinel(self):
        retriever = Retriever(FakeEmbeddings(), FakeStore(fail_search=True))
        assert await retriever.retrieve("anything", "user-a") == SEARCH_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_search_propagates_errors(self):
        retriever = Retriever(FakeEmbeddings(), FakeStore(fail_search=True))
        with pytest.raises(RuntimeError):
            await retriever.search("anything", "user-a")


class TestNormalizeToolQuery:
    """Tests for tool argument validation."""

    @pytest.mark.parametrize("value", [None, "", "   ", 42, ["query"]])
    def test_unusable_values(self, value):
        assert normalize_tool_query(value) is None

    def test_strips_and_truncates(self):
        assert normalize_tool_query("  tea  ") == "tea"
        assert len(normalize_tool_query("q" * (MAX_QUERY_LENGTH + 100))) == MAX_QUERY_LENGTH


class TestKnowledgeBaseTools:
    """Tests for the per-user search tool."""

    @pytest.mark.asyncio
    async def test_tool_is_bound_to_owner(self):
        store = FakeStore(hits=[hit("note", 0.9)])
        [tool] = build_knowledge_base_tools(Retriever(FakeEmbeddings(), store), "user-a")

        assert tool.name == SEARCH_TOOL_NAME
        assert await tool({"query": "note"}) == "[1] note"
        assert store.searches[0]["owner_id"] == "user-a"

    @pytest.mark.asyncio
    async def test_invalid_query_skips_search(self):
        store = FakeStore()
        [tool] = build_knowledge_base_tools(Retriever(FakeEmbeddings(), store), "user-a")

        assert await tool({"query": ""}) == INVALID_QUERY_MESSAGE
        assert await tool({}) == INVALID_QUERY_MESSAGE
        assert store.searches == []

    def test_spec_is_openai_function_format(self):
        [tool] = build_knowledge_base_tools(Retriever(FakeEmbeddings(), FakeStore()), "user-a")
        spec = tool.spec.to_dict()

        assert spec["type"] == "function"
        assert spec["function"]["name"] == SEARCH_TOOL_NAME
        assert spec["function"]["parameters"]["required"] == ["query"]
