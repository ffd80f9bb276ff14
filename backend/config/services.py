"""
Process-wide service wiring.

Clients and components are built once at start-up (see config/asgi.py) and
handed to views through get_services(). Tests swap in fakes with
set_services().
"""
import logging
from dataclasses import dataclass
from typing import Optional

from apps.chat.llm_client import BaseLLMGateway, build_llm_gateway
from apps.chat.orchestrator import ChatOrchestrator
from apps.chat.services import ConversationService
from apps.chat.summarizer import MemorySummarizer
from apps.chat.tools import build_knowledge_base_tools
from apps.ingestion.chunker import RecursiveChunker
from apps.ingestion.pipeline import IngestionPipeline
from apps.knowledge.embeddings import BaseEmbeddingClient, build_embedding_client
from apps.knowledge.retrieval import Retriever
from apps.knowledge.store import VectorStore, build_vector_store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the views need, constructed together."""
    llm: BaseLLMGateway
    embeddings: BaseEmbeddingClient
    store: VectorStore
    conversations: ConversationService
    retriever: Retriever
    orchestrator: ChatOrchestrator
    summarizer: MemorySummarizer
    ingestion: IngestionPipeline


def build_services(settings_obj=None) -> Services:
    """Construct all services from Django settings."""
    if settings_obj is None:
        from django.conf import settings as settings_obj

    llm = build_llm_gateway(settings_obj)
    embeddings = build_embedding_client(settings_obj)
    store = build_vector_store(settings_obj)
    conversations = ConversationService()

    retriever = Retriever(
        embeddings=embeddings,
        store=store,
        default_limit=settings_obj.RETRIEVAL_TOP_K,
        default_threshold=settings_obj.RETRIEVAL_THRESHOLD,
    )

    orchestrator = ChatOrchestrator(
        llm=llm,
        tools_factory=lambda owner_id: build_knowledge_base_tools(retriever, owner_id),
        message_store=conversations,
        max_tool_steps=settings_obj.CHAT_MAX_TOOL_STEPS,
        assistant_name=settings_obj.ASSISTANT_NAME,
    )

    summarizer = MemorySummarizer(
        llm=llm,
        embeddings=embeddings,
        store=store,
        message_store=conversations,
    )

    ingestion = IngestionPipeline(
        embeddings=embeddings,
        store=store,
        chunker=RecursiveChunker(
            chunk_size=settings_obj.CHUNK_SIZE,
            chunk_overlap=settings_obj.CHUNK_OVERLAP,
        ),
    )

    logger.info(
        f"Services ready: llm={llm.model_name}, embeddings={embeddings.model}, "
        f"store={type(store).__name__}"
    )

    return Services(
        llm=llm,
        embeddings=embeddings,
        store=store,
        conversations=conversations,
        retriever=retriever,
        orchestrator=orchestrator,
        summarizer=summarizer,
        ingestion=ingestion,
    )


_services: Optional[Services] = None


def set_services(services: Optional[Services]) -> None:
    """Install the service container (entry point and tests)."""
    global _services
    _services = services


def get_services() -> Services:
    """
    Get the installed service container.

    Built from settings on first use when the entry point did not install
    one (management commands, the dev server).
    """
    global _services
    if _services is None:
        _services = build_services()
    return _services
