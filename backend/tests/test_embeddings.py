"""
Tests for the embedding clients.

The remote service is replaced with httpx.MockTransport.
"""
import json

import httpx
import pytest

from apps.knowledge.embeddings import (
    EmbeddingServiceError,
    InvalidInput,
    OllamaEmbeddingClient,
    OpenAIEmbeddingClient,
    normalize_input,
)


def recording_transport(payload, status_code=200):
    """MockTransport returning `payload` and recording request bodies."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler), requests


def ollama_client(transport, dimensions=3):
    return OllamaEmbeddingClient(
        base_url="http://ollama:11434/", model="nomic-embed-text",
        dimensions=dimensions, transport=transport,
    )


class TestNormalizeInput:
    """Tests for input normalization."""

    def test_newlines_become_spaces(self):
        assert normalize_input("line one\nline two\r\nthree") == "line one line two three"


class TestOllamaEmbeddingClient:
    """Tests for the Ollama /api/embed client."""

    @pytest.mark.asyncio
    async def test_embed_single(self):
        transport, requests = recording_transport({"embeddings": [[0.1, 0.2, 0.3]]})
        client = ollama_client(transport)

        vector = await client.embed("hello\nworld")

        assert vector == [0.1, 0.2, 0.3]
        assert requests == [{"model": "nomic-embed-text", "input": ["hello world"]}]

    @pytest.mark.asyncio
    async def test_embed_batch_keeps_order(self):
        transport, requests = recording_transport({"embeddings": [[1, 0, 0], [0, 1, 0]]})
        client = ollama_client(transport)

        vectors = await client.embed_batch(["first", "second"])

        assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
        assert requests[0]["input"] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self):
        transport, requests = recording_transport({"embeddings": []})
        assert await ollama_client(transport).embed_batch([]) == []
        assert requests == []

    @pytest.mark.asyncio
    async def test_blank_text_is_rejected_before_request(self):
        transport, requests = recording_transport({"embeddings": [[0.0, 0.0, 0.0]]})
        client = ollama_client(transport)

        with pytest.raises(InvalidInput):
            await client.embed("   ")
        with pytest.raises(InvalidInput):
            await client.embed_batch(["fine", ""])
        assert requests == []

    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self):
        transport, _ = recording_transport({"embeddings": [[0.1, 0.2, 0.3]]})
        with pytest.raises(EmbeddingServiceError):
            await ollama_client(transport).embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_http_error_raises_service_error(self):
        transport, _ = recording_transport({"error": "model not found"}, status_code=500)
        with pytest.raises(EmbeddingServiceError):
            await ollama_client(transport).embed("hello")

    @pytest.mark.asyncio
    async def test_connection_error_raises_service_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ollama_client(httpx.MockTransport(handler))
        with pytest.raises(EmbeddingServiceError):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_malformed_response_raises_service_error(self):
        transport, _ = recording_transport({"unexpected": True})
        with pytest.raises(EmbeddingServiceError):
            await ollama_client(transport).embed("hello")


class TestOpenAIEmbeddingClient:
    """Tests for the OpenAI-compatible /embeddings client."""

    @pytest.mark.asyncio
    async def test_results_are_reordered_by_index(self):
        transport, _ = recording_transport({
            "data": [
                {"index": 1, "embedding": [0.0, 1.0]},
                {"index": 0, "embedding": [1.0, 0.0]},
            ]
        })
        client = OpenAIEmbeddingClient(
            base_url="https://api.example.com/v1", api_key="sk-test",
            model="text-embedding-3-small", dimensions=2, transport=transport,
        )

        vectors = await client.embed_batch(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]

    @pytest.mark.asyncio
    async def test_sends_bearer_token_and_dimensions(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5, 0.5]}]})

        client = OpenAIEmbeddingClient(
            base_url="https://api.example.com/v1/", api_key="sk-test",
            model="text-embedding-3-small", dimensions=2,
            transport=httpx.MockTransport(handler),
        )
        await client.embed("hello")

        assert seen["url"] == "https://api.example.com/v1/embeddings"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["dimensions"] == 2
