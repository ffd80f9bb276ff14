"""
LLM gateway abstraction layer.

Provides a unified interface for chat model calls that can switch between:
- Ollama (local inference, /api/chat NDJSON stream)
- OpenAI-compatible APIs (/chat/completions SSE stream)

Two operations:
- stream_chat: streamed completion with tool calling, yields TextDelta
  increments and, at the end of a round, any ToolCalls the model requested
- complete: single-shot completion returning the full text
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when an LLM call fails."""
    pass


@dataclass(frozen=True)
class TextDelta:
    """An increment of generated text."""
    text: str


@dataclass(frozen=True)
class ToolCall:
    """A structured request from the model to run a tool."""
    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass
class ToolSpec:
    """A tool offered to the model, described by a JSON schema."""
    name: str
    description: str
    parameters: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ChatMessage:
    """A message in a chat conversation."""
    role: str  # "user", "assistant" or "tool"
    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None  # set on tool results
    name: Optional[str] = None  # tool name, set on tool results


StreamItem = Union[TextDelta, ToolCall]


class BaseLLMGateway(ABC):
    """Abstract base class for LLM gateways."""

    def __init__(self, model: str, timeout: float = 300.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @property
    def model_name(self) -> str:
        return self.model

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=float(self.timeout), transport=self.transport)

    @abstractmethod
    def stream_chat(
        self,
        messages: List[ChatMessage],
        system: Optional[str] = None,
        tools: Optional[List[ToolSpec]] = None,
    ) -> AsyncIterator[StreamItem]:
        """
        Stream one model round.

        Args:
            messages: Conversation so far (no system message)
            system: System instruction
            tools: Tools the model may call this round

        Yields:
            TextDelta items as text is generated, then any ToolCall items

        Raises:
            LLMError: If the request fails
        """
        pass

    @abstractmethod
    async def complete(self, system: str, prompt: str) -> str:
        """
        Single-shot completion.

        Raises:
            LLMError: If the request fails or the response is empty
        """
        pass

    async def ping(self) -> bool:
        """Cheap reachability check for readiness probes."""
        return True


def _raise_for_http_error(provider: str, e: Exception) -> None:
    if isinstance(e, httpx.HTTPStatusError):
        logger.error(f"{provider} HTTP error: {e}")
        raise LLMError(f"{provider} service error: {e.response.status_code}")
    if isinstance(e, httpx.TimeoutException):
        logger.error(f"{provider} request timed out")
        raise LLMError(f"{provider} service timed out")
    logger.error(f"{provider} connection error: {e}")
    raise LLMError(f"Could not connect to {provider}")


# =============================================================================
# Ollama
# =============================================================================

class OllamaGateway(BaseLLMGateway):
    """LLM gateway for Ollama local inference."""

    def __init__(self, base_url: str, model: str = 'llama3.1', **kwargs):
        super().__init__(model=model, **kwargs)
        self.base_url = base_url.rstrip('/')

    @staticmethod
    def to_wire(messages: List[ChatMessage], system: Optional[str]) -> List[Dict[str, Any]]:
        wire = []
        if system:
            wire.append({"role": "system", "content": system})
        for msg in messages:
            item: Dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.tool_calls:
                item["tool_calls"] = [
                    {"function": {"name": c.name, "arguments": c.arguments}}
                    for c in msg.tool_calls
                ]
            if msg.role == "tool" and msg.name:
                item["tool_name"] = msg.name
            wire.append(item)
        return wire

    async def stream_chat(self, messages, system=None, tools=None):
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self.to_wire(messages, system),
            "stream": True,
        }
        if tools:
            payload["tools"] = [t.to_dict() for t in tools]

        logger.info(f"Calling Ollama chat: model={self.model}, tools={len(tools or [])}")

        tool_calls: List[ToolCall] = []
        try:
            async with self._client() as client:
                async with client.stream("POST", f"{self.base_url}/api/chat", json=payload) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        chunk = json.loads(line)
                        if chunk.get("error"):
                            raise LLMError(f"Ollama error: {chunk['error']}")

                        message = chunk.get("message") or {}
                        if message.get("content"):
                            yield TextDelta(message["content"])

                        for call in message.get("tool_calls") or []:
                            function = call.get("function") or {}
                            arguments = function.get("arguments") or {}
                            if isinstance(arguments, str):
                                arguments = _parse_arguments(arguments)
                            tool_calls.append(ToolCall(
                                id=call.get("id") or f"call_{len(tool_calls)}",
                                name=function.get("name", ""),
                                arguments=arguments,
                            ))

                        if chunk.get("done"):
                            break
        except (httpx.HTTPStatusError, httpx.TimeoutException, httpx.RequestError) as e:
            _raise_for_http_error("Ollama", e)
        except json.JSONDecodeError as e:
            logger.error(f"Malformed Ollama stream line: {e}")
            raise LLMError("Invalid response from Ollama")

        for call in tool_calls:
            yield call

    async def complete(self, system: str, prompt: str) -> str:
        logger.info(f"Calling Ollama completion: model={self.model}")
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/api/chat",
                    json={
                        "model": self.model,
                        "messages": [
                            {"role": "system", "content": system},
                            {"role": "user", "content": prompt},
                        ],
                        "stream": False,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPStatusError, httpx.TimeoutException, httpx.RequestError) as e:
            _raise_for_http_error("Ollama", e)

        content = (data.get("message") or {}).get("content", "")
        if not content:
            raise LLMError("Empty response from Ollama")

        logger.info(f"Ollama response: {len(content)} chars")
        return content

    async def ping(self) -> bool:
        async with httpx.AsyncClient(timeout=5.0, transport=self.transport) as client:
            response = await client.get(f"{self.base_url}/api/version")
            return response.status_code == 200


# =============================================================================
# OpenAI-compatible
# =============================================================================

def _parse_arguments(raw: str) -> Dict[str, Any]:
    """Parse tool-call arguments; malformed JSON yields no arguments."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Model sent malformed tool arguments: {raw[:100]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAICompatibleGateway(BaseLLMGateway):
    """
    LLM gateway for OpenAI-compatible APIs.

    Works with: OpenAI, Azure OpenAI, Groq, Together, vLLM, etc.
    """

    def __init__(self, base_url: str, api_key: str, model: str = 'gpt-4o-mini', **kwargs):
        super().__init__(model=model, **kwargs)
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def to_wire(messages: List[ChatMessage], system: Optional[str]) -> List[Dict[str, Any]]:
        wire = []
        if system:
            wire.append({"role": "system", "content": system})
        for msg in messages:
            if msg.role == "tool":
                wire.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.tool_calls:
                wire.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": c.id,
                            "type": "function",
                            "function": {"name": c.name, "arguments": json.dumps(c.arguments)},
                        }
                        for c in msg.tool_calls
                    ],
                })
            else:
                wire.append({"role": msg.role, "content": msg.content})
        return wire

    async def stream_chat(self, messages, system=None, tools=None):
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self.to_wire(messages, system),
            "stream": True,
        }
        if tools:
            payload["tools"] = [t.to_dict() for t in tools]

        logger.info(f"Calling OpenAI chat: model={self.model}, tools={len(tools or [])}")

        # Tool calls arrive as fragments keyed by index
        pending: Dict[int, Dict[str, str]] = {}
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self.headers(),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break

                        chunk = json.loads(data)
                        choices = chunk.get("choices") or []
                        if not choices:
                            continue
                        delta = choices[0].get("delta") or {}

                        if delta.get("content"):
                            yield TextDelta(delta["content"])

                        for fragment in delta.get("tool_calls") or []:
                            slot = pending.setdefault(
                                fragment.get("index", 0), {"id": "", "name": "", "arguments": ""}
                            )
                            if fragment.get("id"):
                                slot["id"] = fragment["id"]
                            function = fragment.get("function") or {}
                            if function.get("name"):
                                slot["name"] += function["name"]
                            if function.get("arguments"):
                                slot["arguments"] += function["arguments"]
        except (httpx.HTTPStatusError, httpx.TimeoutException, httpx.RequestError) as e:
            _raise_for_http_error("OpenAI", e)
        except json.JSONDecodeError as e:
            logger.error(f"Malformed OpenAI stream event: {e}")
            raise LLMError("Invalid response from OpenAI")

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCall(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            )

    async def complete(self, system: str, prompt: str) -> str:
        logger.info(f"Calling OpenAI completion: model={self.model}")
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json={
                        "model": self.model,
                        "messages": [
                            {"role": "system", "content": system},
                            {"role": "user", "content": prompt},
                        ],
                    },
                    headers=self.headers(),
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPStatusError, httpx.TimeoutException, httpx.RequestError) as e:
            _raise_for_http_error("OpenAI", e)

        choices = data.get("choices", [])
        if not choices:
            raise LLMError("No choices in OpenAI response")

        content = (choices[0].get("message") or {}).get("content") or ""
        if not content:
            raise LLMError("Empty response from OpenAI")

        logger.info(f"OpenAI response: {len(content)} chars")
        return content


# =============================================================================
# Gateway Factory
# =============================================================================

def build_llm_gateway(settings_obj=None) -> BaseLLMGateway:
    """
    Construct the configured LLM gateway.

    Uses LLM_PROVIDER setting to determine which gateway to use:
    - "ollama" (default): Local Ollama inference
    - "openai": OpenAI or compatible API
    """
    if settings_obj is None:
        from django.conf import settings as settings_obj

    provider = getattr(settings_obj, 'LLM_PROVIDER', 'ollama').lower()
    timeout = getattr(settings_obj, 'LLM_TIMEOUT', 300)

    if provider == 'openai':
        if not settings_obj.OPENAI_API_KEY:
            raise LLMError("OPENAI_API_KEY not configured")
        logger.info("Using OpenAI-compatible API for LLM inference")
        return OpenAICompatibleGateway(
            base_url=settings_obj.OPENAI_BASE_URL,
            api_key=settings_obj.OPENAI_API_KEY,
            model=settings_obj.OPENAI_CHAT_MODEL,
            timeout=timeout,
        )

    logger.info("Using Ollama for LLM inference")
    return OllamaGateway(
        base_url=settings_obj.OLLAMA_BASE_URL,
        model=settings_obj.OLLAMA_CHAT_MODEL,
        timeout=timeout,
    )
