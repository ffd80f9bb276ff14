"""
Retrieval service for the chat model's knowledge-base tool.

Embeds the query, runs an owner-scoped vector search and formats the hits
as numbered snippets for the model to read.

Retrieval never raises: a failure is logged and reported to the model as
a sentinel string, so a broken search degrades the turn instead of
aborting it.
"""
import logging
from typing import List, Optional

from .embeddings import BaseEmbeddingClient
from .store import SearchHit, VectorStore

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_THRESHOLD = 0.3

# Read by the model, not shown as application errors
NO_RESULTS_MESSAGE = "No relevant documents found"
SEARCH_ERROR_MESSAGE = "Error searching the knowledge base"


def format_results(hits: List[SearchHit]) -> str:
    """
    Format hits for LLM consumption.

    Each hit becomes "[i] content" (1-based), separated by blank lines.
    """
    parts = []
    for i, hit in enumerate(hits, 1):
        parts.append(f"[{i}] {hit.passage.content}")
    return "\n\n".join(parts)


class Retriever:
    """Knowledge-base search over one owner's passages."""

    def __init__(
        self,
        embeddings: BaseEmbeddingClient,
        store: VectorStore,
        default_limit: int = DEFAULT_TOP_K,
        default_threshold: float = DEFAULT_THRESHOLD,
    ):
        self.embeddings = embeddings
        self.store = store
        self.default_limit = default_limit
        self.default_threshold = default_threshold

    async def search(
        self,
        query: str,
        owner_id: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchHit]:
        """Embed a query and return raw hits. Errors propagate."""
        query_vector = await self.embeddings.embed(query)
        return await self.store.search(
            query_vector,
            owner_id=owner_id,
            limit=self.default_limit if limit is None else limit,
            threshold=self.default_threshold if threshold is None else threshold,
        )

    async def retrieve(
        self,
        query: str,
        owner_id: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> str:
        """
        Search the owner's knowledge base and format the results.

        Args:
            query: Natural-language search query
            owner_id: Owner whose passages are searched
            limit: Maximum number of passages (default from settings)
            threshold: Minimum similarity, exclusive (default from settings)

        Returns:
            Formatted passages, NO_RESULTS_MESSAGE or SEARCH_ERROR_MESSAGE
        """
        try:
            hits = await self.search(query, owner_id, limit=limit, threshold=threshold)
        except Exception:
            logger.exception(f"Knowledge base search failed for owner {owner_id}")
            return SEARCH_ERROR_MESSAGE

        if not hits:
            logger.info(f"No passages cleared the threshold for owner {owner_id}")
            return NO_RESULTS_MESSAGE

        logger.info(
            f"Retrieved {len(hits)} passages for owner {owner_id} "
            f"(top similarity {hits[0].similarity:.3f})"
        )
        return format_results(hits)
