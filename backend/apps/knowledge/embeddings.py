"""
Embedding service for passages and queries.

Maps text to fixed-dimension vectors through a remote model. The same
model embeds document chunks, conversation memories and search queries,
so they are comparable with cosine similarity.

Providers:
- Ollama (/api/embed, native batch input)
- OpenAI-compatible APIs (/embeddings)
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

# Must match the dimension in Passage.embedding
EMBEDDING_DIMENSIONS = 768

_NEWLINES = re.compile(r'\r\n|\r|\n')


class EmbeddingError(Exception):
    """Base class for embedding failures."""
    pass


class InvalidInput(EmbeddingError):
    """Raised when the text to embed is empty or not a string."""
    pass


class EmbeddingServiceError(EmbeddingError):
    """Raised when the remote embedding service fails."""
    pass


def normalize_input(text: str) -> str:
    """Collapse newlines to spaces; embedding models are sensitive to them."""
    return _NEWLINES.sub(' ', text)


def validate_input(text: Any) -> str:
    """
    Validate a single embedding input.

    Raises:
        InvalidInput: If text is not a str or is blank
    """
    if not isinstance(text, str):
        raise InvalidInput(f"Cannot embed value of type {type(text).__name__}")
    if not text.strip():
        raise InvalidInput("Cannot generate embedding for empty text")
    return normalize_input(text)


class BaseEmbeddingClient(ABC):
    """Abstract base class for embedding clients."""

    def __init__(
        self,
        model: str,
        dimensions: int = EMBEDDING_DIMENSIONS,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.transport = transport

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for a single text.

        Args:
            text: The text to embed

        Returns:
            Embedding vector

        Raises:
            InvalidInput: If text is empty or not a string
            EmbeddingServiceError: If the remote call fails
        """
        normalized = validate_input(text)
        vectors = await self._request([normalized])
        if len(vectors) != 1:
            raise EmbeddingServiceError(f"Expected 1 embedding, got {len(vectors)}")
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in one request.

        Args:
            texts: Texts to embed

        Returns:
            Embedding vectors, same length and order as the input

        Raises:
            InvalidInput: If any text is empty or not a string
            EmbeddingServiceError: If the remote call fails
        """
        if not texts:
            return []

        normalized = [validate_input(t) for t in texts]
        vectors = await self._request(normalized)

        if len(vectors) != len(normalized):
            raise EmbeddingServiceError(
                f"Embedding count mismatch: sent {len(normalized)}, got {len(vectors)}"
            )

        logger.info(f"Generated {len(vectors)} embeddings")
        return vectors

    async def _request(self, inputs: List[str]) -> List[List[float]]:
        try:
            async with httpx.AsyncClient(
                timeout=float(self.timeout), transport=self.transport
            ) as client:
                response = await client.post(
                    self.endpoint,
                    json=self.build_payload(inputs),
                    headers=self.headers(),
                )
                response.raise_for_status()
                vectors = self.parse_response(response.json())

        except httpx.HTTPStatusError as e:
            logger.error(f"Embedding request failed: {e}")
            raise EmbeddingServiceError(f"Embedding service error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("Embedding request timed out")
            raise EmbeddingServiceError("Embedding service timed out")
        except httpx.RequestError as e:
            logger.error(f"Embedding service connection error: {e}")
            raise EmbeddingServiceError("Could not connect to embedding service")
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"Unexpected embedding response format: {e}")
            raise EmbeddingServiceError("Invalid response from embedding service")

        for vector in vectors:
            if len(vector) != self.dimensions:
                logger.warning(
                    f"Embedding dimension mismatch: expected {self.dimensions}, "
                    f"got {len(vector)}"
                )
                break

        return vectors

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Full URL of the embedding endpoint."""
        pass

    @abstractmethod
    def build_payload(self, inputs: List[str]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def parse_response(self, data: Dict[str, Any]) -> List[List[float]]:
        pass


class OllamaEmbeddingClient(BaseEmbeddingClient):
    """Embedding client for Ollama local inference."""

    def __init__(self, base_url: str, model: str = 'nomic-embed-text', **kwargs):
        super().__init__(model=model, **kwargs)
        self.base_url = base_url.rstrip('/')

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/api/embed"

    def build_payload(self, inputs: List[str]) -> Dict[str, Any]:
        return {"model": self.model, "input": inputs}

    def parse_response(self, data: Dict[str, Any]) -> List[List[float]]:
        # Ollama /api/embed returns {"embeddings": [[...], ...]}
        embeddings = data["embeddings"]
        if not embeddings:
            raise ValueError("Ollama returned no embeddings")
        return [list(map(float, e)) for e in embeddings]


class OpenAIEmbeddingClient(BaseEmbeddingClient):
    """
    Embedding client for OpenAI-compatible APIs.

    Works with: OpenAI, Azure OpenAI, Together, local servers, etc.
    """

    def __init__(self, base_url: str, api_key: str, model: str = 'text-embedding-3-small', **kwargs):
        super().__init__(model=model, **kwargs)
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/embeddings"

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, inputs: List[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "input": inputs}
        # text-embedding-3 models can be shortened to the configured size
        if self.model.startswith('text-embedding-3'):
            payload["dimensions"] = self.dimensions
        return payload

    def parse_response(self, data: Dict[str, Any]) -> List[List[float]]:
        # {"data": [{"index": 0, "embedding": [...]}, ...]}; order is by index
        items = sorted(data["data"], key=lambda item: item["index"])
        return [list(map(float, item["embedding"])) for item in items]


def build_embedding_client(settings_obj: Optional[Any] = None) -> BaseEmbeddingClient:
    """
    Construct the configured embedding client.

    Uses EMBEDDING_PROVIDER to pick the provider:
    - "ollama" (default): Local Ollama inference
    - "openai": OpenAI or compatible API
    """
    if settings_obj is None:
        from django.conf import settings as settings_obj

    provider = getattr(settings_obj, 'EMBEDDING_PROVIDER', 'ollama').lower()
    dimensions = getattr(settings_obj, 'EMBEDDING_DIMENSIONS', EMBEDDING_DIMENSIONS)
    timeout = getattr(settings_obj, 'EMBED_TIMEOUT', 120)

    if provider == 'openai':
        logger.info("Using OpenAI-compatible API for embeddings")
        return OpenAIEmbeddingClient(
            base_url=settings_obj.OPENAI_BASE_URL,
            api_key=settings_obj.OPENAI_API_KEY,
            model=settings_obj.OPENAI_EMBED_MODEL,
            dimensions=dimensions,
            timeout=timeout,
        )

    logger.info("Using Ollama for embeddings")
    return OllamaEmbeddingClient(
        base_url=settings_obj.OLLAMA_BASE_URL,
        model=settings_obj.OLLAMA_EMBED_MODEL,
        dimensions=dimensions,
        timeout=timeout,
    )
