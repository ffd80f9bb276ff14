"""
Document ingestion pipeline.

extract -> chunk -> embed (all chunks) -> store (once)

Nothing is written until every chunk has a vector, so a file is either
fully indexed or not at all.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from asgiref.sync import sync_to_async

from apps.knowledge.embeddings import BaseEmbeddingClient
from apps.knowledge.models import Passage, SourceType
from apps.knowledge.store import VectorStore

from .chunker import RecursiveChunker
from .extractor import UploadedContent, extract, resolve_content_type

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Raised when a file cannot be indexed for a reason other than its content."""
    pass


@dataclass
class IngestionResult:
    """Outcome of indexing one file."""
    chunk_count: int
    source_id: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "chunksCreated": self.chunk_count,
            "message": f"Processed {self.source_id}: {self.chunk_count} chunks indexed.",
        }


class IngestionPipeline:
    """Turns an uploaded file into stored document passages."""

    def __init__(
        self,
        embeddings: BaseEmbeddingClient,
        store: VectorStore,
        chunker: Optional[RecursiveChunker] = None,
    ):
        self.embeddings = embeddings
        self.store = store
        self.chunker = chunker or RecursiveChunker()

    async def ingest(
        self,
        upload: UploadedContent,
        owner_id: str,
        conversation_id=None,
    ) -> IngestionResult:
        """
        Index one uploaded file for an owner.

        Args:
            upload: File bytes, declared MIME type and name
            owner_id: Keycloak subject ID of the uploader
            conversation_id: Optional conversation the upload belongs to

        Returns:
            IngestionResult with the number of passages stored

        Raises:
            ExtractionError: If the file is unsupported, empty or corrupt
            EmbeddingError: If the embedding service fails
            IngestionError: If vectors and chunks do not line up
        """
        # Parsing PDFs and Word files is CPU-bound
        text = await sync_to_async(extract, thread_sensitive=False)(upload)

        chunks = self.chunker.chunk(text)
        if not chunks:
            raise IngestionError(f"No chunks produced from {upload.name}")

        logger.info(f"Embedding {len(chunks)} chunks from {upload.name}")
        vectors = await self.embeddings.embed_batch(chunks)

        if len(vectors) != len(chunks):
            raise IngestionError("Embedding generation failed to match chunk count")

        uploaded_at = datetime.now(timezone.utc).isoformat()
        file_type = resolve_content_type(upload.content_type, upload.name) or upload.content_type

        passages = [
            Passage(
                owner_id=owner_id,
                conversation_id=conversation_id,
                content=chunk,
                embedding=vector,
                source_type=SourceType.DOCUMENT,
                source_id=upload.name,
                metadata={
                    "filename": upload.name,
                    "fileType": file_type,
                    "uploadedAt": uploaded_at,
                },
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        await self.store.insert_many(passages)

        logger.info(f"Indexed {upload.name} for owner {owner_id}: {len(passages)} passages")
        return IngestionResult(chunk_count=len(passages), source_id=upload.name)
