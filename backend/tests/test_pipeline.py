"""
Tests for the document ingestion pipeline.
"""
import pytest

from apps.ingestion.extractor import UnsupportedFileType, UploadedContent
from apps.ingestion.pipeline import IngestionPipeline
from apps.knowledge.embeddings import EmbeddingServiceError
from apps.knowledge.models import SourceType

from conftest import FakeEmbeddings, FakeStore


def text_upload(text, name="notes.txt"):
    return UploadedContent(data=text.encode("utf-8"), content_type="text/plain", name=name)


@pytest.fixture
def long_text():
    # 1200 characters of distinct words
    return " ".join(f"w{i:04d}" for i in range(200)) + "."


class TestIngestionPipeline:
    """Tests for IngestionPipeline.ingest."""

    @pytest.mark.asyncio
    async def test_text_file_becomes_document_passages(self, long_text):
        assert len(long_text) == 1200
        embeddings = FakeEmbeddings()
        store = FakeStore()

        result = await IngestionPipeline(embeddings, store).ingest(text_upload(long_text), "user-a")

        assert result.chunk_count == 3
        assert sum(len(batch) for batch in embeddings.batch_calls) == 3
        assert store.insert_calls == 1
        assert len(store.inserted) == 3
        assert {p.source_id for p in store.inserted} == {"notes.txt"}
        assert {p.source_type for p in store.inserted} == {SourceType.DOCUMENT}
        assert {p.owner_id for p in store.inserted} == {"user-a"}
        assert result.to_dict() == {
            "success": True,
            "chunksCreated": 3,
            "message": "Processed notes.txt: 3 chunks indexed.",
        }

    @pytest.mark.asyncio
    async def test_metadata_records_file(self):
        store = FakeStore()
        await IngestionPipeline(FakeEmbeddings(), store).ingest(
            text_upload("A short note.", name="a.md"), "user-a"
        )

        [passage] = store.inserted
        assert passage.metadata["filename"] == "a.md"
        assert passage.metadata["fileType"] == "text/markdown"
        assert "uploadedAt" in passage.metadata

    @pytest.mark.asyncio
    async def test_conversation_scope_is_kept(self):
        store = FakeStore()
        await IngestionPipeline(FakeEmbeddings(), store).ingest(
            text_upload("Scoped note."), "user-a", conversation_id="3f1c9a52-8a4e-4c57-9a43-0d2b7c1e5f10"
        )

        assert str(store.inserted[0].conversation_id) == "3f1c9a52-8a4e-4c57-9a43-0d2b7c1e5f10"

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(self, long_text):
        store = FakeStore()

        with pytest.raises(EmbeddingServiceError):
            await IngestionPipeline(FakeEmbeddings(fail=True), store).ingest(
                text_upload(long_text), "user-a"
            )

        assert store.insert_calls == 0

    @pytest.mark.asyncio
    async def test_unsupported_file_stores_nothing(self):
        store = FakeStore()
        upload = UploadedContent(data=b"\x89PNG", content_type="image/png", name="a.png")

        with pytest.raises(UnsupportedFileType):
            await IngestionPipeline(FakeEmbeddings(), store).ingest(upload, "user-a")

        assert store.insert_calls == 0
