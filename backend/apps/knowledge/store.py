"""
Vector store for passages.

Two interchangeable backends share one contract:
- PgVectorStore: pgvector's cosine distance operator (<=>), served by the
  HNSW index on PostgreSQL
- ExactVectorStore: owner-scoped ORM fetch ranked in-process with numpy,
  usable on any database and for small corpora

similarity = 1 - cosine_distance. Every search is filtered by owner first;
a passage owned by someone else is never a candidate, whatever its score.
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from asgiref.sync import sync_to_async
from django.db import connection, transaction

from .models import Passage

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_THRESHOLD = 0.5

ConversationRef = Optional[Union[str, uuid.UUID]]


class InvalidPassage(Exception):
    """Raised when a passage cannot be stored as given."""
    pass


@dataclass
class SearchHit:
    """A passage that cleared the similarity threshold."""
    passage: Passage
    similarity: float

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": str(self.passage.id),
            "content": self.passage.content,
            "sourceType": self.passage.source_type,
            "sourceId": self.passage.source_id,
            "similarity": round(self.similarity, 4),
        }


def validate_passage(passage: Passage, dimensions: Optional[int] = None) -> None:
    """
    Check that a passage is storable.

    Raises:
        InvalidPassage: If content, owner or embedding is missing or malformed
    """
    if not isinstance(passage.content, str) or not passage.content.strip():
        raise InvalidPassage("Passage content must be non-empty text")
    if not passage.owner_id or not str(passage.owner_id).strip():
        raise InvalidPassage("Passage has no owner")
    if passage.embedding is None or len(passage.embedding) == 0:
        raise InvalidPassage(f"Passage from {passage.source_id!r} has no embedding")
    if dimensions is not None and len(passage.embedding) != dimensions:
        raise InvalidPassage(
            f"Embedding has {len(passage.embedding)} dimensions, expected {dimensions}"
        )


def require_owner(owner_id: str) -> str:
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise ValueError("owner_id is required for every search")
    return owner_id


def cosine_similarities(query_vector: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity between one query and each row of a matrix.

    Zero vectors have no direction; their similarity is 0.
    """
    query = np.asarray(query_vector, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float64)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query

    sims = np.zeros(len(matrix), dtype=np.float64)
    nonzero = norms > 0
    sims[nonzero] = dots[nonzero] / norms[nonzero]
    return sims


def rank_by_similarity(
    query_vector: Sequence[float],
    candidates: Sequence[Passage],
    limit: int = DEFAULT_LIMIT,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[SearchHit]:
    """
    Rank candidate passages against a query vector.

    Keeps passages with similarity strictly greater than the threshold,
    best first. Equal scores keep candidate order, so callers that pass
    candidates in insertion order get insertion order as the tie-break.
    """
    candidates = [p for p in candidates if p.embedding is not None and len(p.embedding)]
    if not candidates or limit <= 0:
        return []

    matrix = np.vstack([np.asarray(p.embedding, dtype=np.float64) for p in candidates])
    sims = cosine_similarities(query_vector, matrix)

    order = np.argsort(-sims, kind='stable')

    hits = []
    for idx in order:
        similarity = float(sims[idx])
        if not similarity > threshold:
            # Sorted descending, nothing further can clear it
            break
        hits.append(SearchHit(passage=candidates[idx], similarity=similarity))
        if len(hits) >= limit:
            break

    return hits


class VectorStore(ABC):
    """Storage and owner-scoped similarity search over passages."""

    def __init__(self, dimensions: Optional[int] = None, default_threshold: float = DEFAULT_THRESHOLD):
        self.dimensions = dimensions
        self.default_threshold = default_threshold

    async def insert_many(self, passages: Iterable[Passage]) -> None:
        """
        Store passages all-or-nothing.

        Every passage is validated before anything is written, then all
        rows are written in one transaction.

        Raises:
            InvalidPassage: If any passage is not storable
        """
        passages = list(passages)
        if not passages:
            return

        for passage in passages:
            validate_passage(passage, self.dimensions)

        await sync_to_async(self._insert_all)(passages)
        logger.info(f"Stored {len(passages)} passages for owner {passages[0].owner_id}")

    def _insert_all(self, passages: List[Passage]) -> None:
        with transaction.atomic():
            Passage.objects.bulk_create(passages)

    async def search(
        self,
        query_vector: Sequence[float],
        owner_id: str,
        limit: int = DEFAULT_LIMIT,
        threshold: Optional[float] = None,
        conversation_id: ConversationRef = None,
    ) -> List[SearchHit]:
        """
        Find the owner's passages most similar to a query vector.

        Args:
            query_vector: Embedding of the query
            owner_id: Only this owner's passages are considered
            limit: Maximum number of hits
            threshold: Hits must have similarity strictly above this
                (default_threshold when omitted)
            conversation_id: Optionally narrow to one conversation's passages

        Returns:
            Hits ordered by similarity, best first; empty when none clear the threshold

        Raises:
            ValueError: If owner_id is blank
        """
        require_owner(owner_id)
        if threshold is None:
            threshold = self.default_threshold
        hits = await sync_to_async(self._search)(
            list(query_vector), owner_id, limit, threshold, conversation_id
        )
        logger.info(
            f"Search for owner {owner_id} returned {len(hits)} hits "
            f"(limit={limit}, threshold={threshold})"
        )
        return hits

    @abstractmethod
    def _search(
        self,
        query_vector: List[float],
        owner_id: str,
        limit: int,
        threshold: float,
        conversation_id: ConversationRef,
    ) -> List[SearchHit]:
        pass


def to_vector_literal(vector: Sequence[float]) -> str:
    """Format a vector as a pgvector text literal."""
    return '[' + ','.join(str(float(x)) for x in vector) + ']'


def build_search_query(
    query_vector: Sequence[float],
    owner_id: str,
    limit: int,
    threshold: float,
    conversation_id: ConversationRef = None,
) -> Tuple[str, list]:
    """
    Build the SQL and parameters for a pgvector similarity search.

    The owner filter is always present; the conversation filter only when
    a conversation is given. Results are ordered by the bare <=> distance so
    the HNSW index (vector_cosine_ops) can serve the ordering.
    """
    embedding_str = to_vector_literal(query_vector)

    conditions = [
        "p.owner_id = %s",
        "p.embedding IS NOT NULL",
        "1 - (p.embedding <=> %s::vector) > %s",
    ]
    params: list = [embedding_str, owner_id, embedding_str, threshold]

    if conversation_id is not None:
        conditions.append("p.conversation_id = %s")
        params.append(str(conversation_id))

    sql = f"""
        SELECT
            p.id,
            p.owner_id,
            p.content,
            p.source_type,
            p.source_id,
            p.conversation_id,
            p.metadata,
            p.created_at,
            1 - (p.embedding <=> %s::vector) AS similarity
        FROM passages p
        WHERE {' AND '.join(conditions)}
        ORDER BY p.embedding <=> %s::vector, p.created_at, p.id
        LIMIT %s
    """
    params.extend([embedding_str, limit])

    return sql, params


def load_metadata(value) -> dict:
    # psycopg hands jsonb back to Django as text
    if isinstance(value, str):
        return json.loads(value)
    return value or {}


class PgVectorStore(VectorStore):
    """Similarity search in PostgreSQL with the pgvector <=> operator."""

    def _search(self, query_vector, owner_id, limit, threshold, conversation_id):
        sql, params = build_search_query(
            query_vector, owner_id, limit, threshold, conversation_id
        )

        hits = []
        with connection.cursor() as cursor:
            cursor.execute(sql, params)
            for row in cursor.fetchall():
                (passage_id, row_owner, content, source_type, source_id,
                 conv_id, metadata, created_at, similarity) = row

                passage = Passage(
                    id=passage_id,
                    owner_id=row_owner,
                    content=content,
                    source_type=source_type,
                    source_id=source_id,
                    conversation_id=conv_id,
                    metadata=load_metadata(metadata),
                    created_at=created_at,
                )
                hits.append(SearchHit(passage=passage, similarity=float(similarity)))

        return hits


class ExactVectorStore(VectorStore):
    """Exact cosine ranking in-process over the owner's passages."""

    def _search(self, query_vector, owner_id, limit, threshold, conversation_id):
        queryset = Passage.objects.filter(owner_id=owner_id, embedding__isnull=False)
        if conversation_id is not None:
            queryset = queryset.filter(conversation_id=conversation_id)

        candidates = list(queryset.order_by('created_at', 'id'))
        return rank_by_similarity(query_vector, candidates, limit=limit, threshold=threshold)


def build_vector_store(settings_obj=None) -> VectorStore:
    """
    Construct the configured vector store.

    VECTOR_STORE_BACKEND picks the backend:
    - "pgvector": SQL search on PostgreSQL
    - "exact": in-process ranking, any database
    """
    if settings_obj is None:
        from django.conf import settings as settings_obj

    backend = getattr(settings_obj, 'VECTOR_STORE_BACKEND', 'pgvector').lower()
    dimensions = getattr(settings_obj, 'EMBEDDING_DIMENSIONS', None)
    threshold = getattr(settings_obj, 'SEARCH_DEFAULT_THRESHOLD', DEFAULT_THRESHOLD)

    if backend == 'exact':
        logger.info("Using exact in-process vector search")
        return ExactVectorStore(dimensions=dimensions, default_threshold=threshold)

    if backend != 'pgvector':
        raise ValueError(f"Unknown VECTOR_STORE_BACKEND: {backend}")

    logger.info("Using pgvector similarity search")
    return PgVectorStore(dimensions=dimensions, default_threshold=threshold)
