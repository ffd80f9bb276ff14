"""
Shared fakes and fixtures.

The fakes stand in for the model gateway, embedding service, vector store
and message store so components can be tested without network or database.
"""
import itertools
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from apps.authn.jwt_validator import Session
from apps.chat.llm_client import LLMError, TextDelta, ToolCall
from apps.chat.services import ConversationNotFound
from apps.knowledge.embeddings import EmbeddingServiceError, validate_input

_ids = itertools.count()


class FakeEmbeddings:
    """Deterministic embeddings: a vector derived from the text length."""

    def __init__(self, dimensions: int = 4, fail: bool = False):
        self.dimensions = dimensions
        self.fail = fail
        self.model = "fake-embed"
        self.embed_calls: List[str] = []
        self.batch_calls: List[List[str]] = []

    def vector_for(self, text: str) -> List[float]:
        return [float(len(text) % 7 + 1)] + [1.0] * (self.dimensions - 1)

    async def embed(self, text: str) -> List[float]:
        validate_input(text)
        self.embed_calls.append(text)
        if self.fail:
            raise EmbeddingServiceError("Embedding service is down")
        return self.vector_for(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        for text in texts:
            validate_input(text)
        self.batch_calls.append(list(texts))
        if self.fail:
            raise EmbeddingServiceError("Embedding service is down")
        return [self.vector_for(t) for t in texts]


class FakeStore:
    """Records inserts; returns canned hits from search."""

    def __init__(self, hits=None, fail_search: bool = False, fail_insert: bool = False):
        self.hits = hits or []
        self.fail_search = fail_search
        self.fail_insert = fail_insert
        self.inserted: List[Any] = []
        self.insert_calls = 0
        self.searches: List[Dict[str, Any]] = []

    async def insert_many(self, passages):
        self.insert_calls += 1
        if self.fail_insert:
            raise RuntimeError("database unavailable")
        self.inserted.extend(passages)

    async def search(self, query_vector, owner_id, limit=5, threshold=0.5, conversation_id=None):
        self.searches.append({
            "owner_id": owner_id,
            "limit": limit,
            "threshold": threshold,
            "conversation_id": conversation_id,
        })
        if self.fail_search:
            raise RuntimeError("database unavailable")
        return list(self.hits)


class FakeLLM:
    """
    Scripted model gateway.

    Each entry in `rounds` is the list of items one stream_chat call yields.
    When the script runs out the model answers "Done."
    """

    def __init__(self, rounds=None, completion: str = "", fail: bool = False):
        self.rounds = list(rounds or [])
        self.completion = completion
        self.fail = fail
        self.model = "fake-llm"
        self.model_name = "fake-llm"
        self.calls: List[Dict[str, Any]] = []
        self.complete_calls: List[Dict[str, str]] = []

    async def stream_chat(self, messages, system=None, tools=None):
        self.calls.append({"messages": list(messages), "system": system, "tools": tools})
        if self.fail:
            raise LLMError("model unavailable")
        items = self.rounds.pop(0) if self.rounds else [TextDelta("Done.")]
        for item in items:
            yield item

    async def complete(self, system: str, prompt: str) -> str:
        self.complete_calls.append({"system": system, "prompt": prompt})
        if self.fail:
            raise LLMError("model unavailable")
        return self.completion

    async def ping(self) -> bool:
        return True


class FakeMessageStore:
    """In-memory message store; optionally fails every save."""

    def __init__(self, messages=None, fail_save: bool = False, missing: bool = False):
        self.messages = list(messages or [])
        self.fail_save = fail_save
        self.missing = missing
        self.saved: List[tuple] = []

    async def save_message(self, conversation_id, role, content):
        if self.fail_save:
            raise RuntimeError("database unavailable")
        self.saved.append((conversation_id, role, content))

    async def get_messages(self, owner_id, conversation_id):
        if self.missing:
            raise ConversationNotFound(str(conversation_id))
        return list(self.messages)


def make_messages(*pairs):
    """Build message records from (role, content) pairs."""
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return [
        SimpleNamespace(role=role, content=content, created_at=start + timedelta(minutes=i))
        for i, (role, content) in enumerate(pairs)
    ]


def tool_call(query: Any, name: str = "search_knowledge_base", call_id: Optional[str] = None) -> ToolCall:
    return ToolCall(id=call_id or f"call_{next(_ids)}", name=name, arguments={"query": query})


@pytest.fixture
def session():
    return Session(user_id="user-a", user_name="Ada", email="ada@example.com")


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()


@pytest.fixture
def fake_store():
    return FakeStore()
