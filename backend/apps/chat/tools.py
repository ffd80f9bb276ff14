"""
Tools offered to the chat model.

Currently one: search_knowledge_base, semantic search over the requesting
user's documents and pinned memories.

Tools are built per request with the owner bound in, so the model can only
ever search the knowledge base of the user it is talking to.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apps.knowledge.retrieval import Retriever

from .llm_client import ToolSpec

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "search_knowledge_base"

# Hard limits
MAX_QUERY_LENGTH = 500

INVALID_QUERY_MESSAGE = "Invalid query: provide a non-empty search string"


def unknown_tool_message(name: str) -> str:
    return f"Unknown tool: {name}"


@dataclass
class Tool:
    """A callable tool: its schema for the model plus the bound handler."""
    spec: ToolSpec
    handler: Callable[[Dict[str, Any]], Awaitable[str]]

    @property
    def name(self) -> str:
        return self.spec.name

    async def __call__(self, arguments: Dict[str, Any]) -> str:
        return await self.handler(arguments)


SEARCH_TOOL_SPEC = ToolSpec(
    name=SEARCH_TOOL_NAME,
    description=(
        "Search the user's knowledge base (uploaded documents and saved "
        "conversation memories) for information relevant to the query."
    ),
    parameters={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query to find relevant information",
            },
        },
        "required": ["query"],
    },
)


def normalize_tool_query(value: Any) -> Optional[str]:
    """Return the cleaned query, or None if it is not a usable string."""
    if not isinstance(value, str):
        return None
    query = value.strip()
    if not query:
        return None
    if len(query) > MAX_QUERY_LENGTH:
        logger.warning(f"Query truncated from {len(query)} to {MAX_QUERY_LENGTH} chars")
        query = query[:MAX_QUERY_LENGTH]
    return query


def build_knowledge_base_tools(retriever: Retriever, owner_id: str) -> List[Tool]:
    """
    Build the tool set for one user's chat turn.

    Args:
        retriever: Knowledge-base retriever
        owner_id: Keycloak subject ID; every search is scoped to it

    Returns:
        Tools ready to hand to the orchestrator
    """
    async def search_knowledge_base(arguments: Dict[str, Any]) -> str:
        query = normalize_tool_query((arguments or {}).get("query"))
        if query is None:
            logger.info("search_knowledge_base called without a usable query")
            return INVALID_QUERY_MESSAGE

        result = await retriever.retrieve(query, owner_id)
        logger.info(f"search_knowledge_base: query='{query[:50]}' returned {len(result)} chars")
        return result

    return [Tool(spec=SEARCH_TOOL_SPEC, handler=search_knowledge_base)]
