"""
Chat API views.

Provides endpoints for:
- GET/POST /api/conversations - List / create conversations
- PATCH/DELETE /api/conversations/<id> - Rename / delete a conversation
- GET /api/conversations/<id>/messages - Message history
- POST /api/chat - Chat turn, streamed as Server-Sent Events
- POST /api/chat/pin - Save a conversation as a memory
"""
import json
import logging
from contextlib import aclosing
from typing import Any, Dict, List, Optional

from django.http import HttpRequest, JsonResponse, StreamingHttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.authn.audit import (
    audit_chat_turn,
    audit_conversation_deleted,
    audit_memory_pinned,
    audit_memory_skipped,
)
from apps.authn.middleware import session_required
from apps.knowledge.embeddings import EmbeddingError
from config.services import get_services

from .llm_client import ChatMessage, LLMError, TextDelta
from .models import MessageRole
from .orchestrator import ToolInvocation, TurnComplete
from .services import ConversationNotFound, InvalidTitle, parse_conversation_id

logger = logging.getLogger(__name__)

MAX_HISTORY_MESSAGES = 100


def error_response(message: str, code: str, status: int) -> JsonResponse:
    return JsonResponse({"error": message, "code": code}, status=status)


def internal_error() -> JsonResponse:
    return error_response("Internal server error", "INTERNAL_ERROR", 500)


def not_found() -> JsonResponse:
    return error_response("Conversation not found", "NOT_FOUND", 404)


def parse_json_body(request: HttpRequest) -> Optional[Dict[str, Any]]:
    """Parse a JSON object body; None if it is malformed or not an object."""
    try:
        body = json.loads(request.body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def sse_event(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def message_text(raw: Dict[str, Any]) -> Optional[str]:
    """
    Text of a client message.

    Accepts {"content": "..."} or the parts form
    {"parts": [{"type": "text", "text": "..."}]}.
    """
    content = raw.get("content")
    if isinstance(content, str):
        return content

    parts = raw.get("parts")
    if isinstance(parts, list):
        texts = [
            p.get("text") for p in parts
            if isinstance(p, dict) and p.get("type") == "text" and isinstance(p.get("text"), str)
        ]
        return "".join(texts)

    return None


def parse_history(raw_messages: Any) -> List[ChatMessage]:
    """
    Validate the chat history sent by the client.

    Raises:
        ValueError: If it is not a list of user/assistant messages ending
            with a non-empty user message
    """
    if not isinstance(raw_messages, list) or not raw_messages:
        raise ValueError("messages must be a non-empty list")

    history = []
    for raw in raw_messages[-MAX_HISTORY_MESSAGES:]:
        if not isinstance(raw, dict):
            raise ValueError("Each message must be an object")
        role = raw.get("role")
        if role not in MessageRole.values:
            raise ValueError(f"Invalid message role: {role}")
        text = message_text(raw)
        if text is None:
            raise ValueError("Each message needs text content")
        history.append(ChatMessage(role=role, content=text))

    if history[-1].role != MessageRole.USER or not history[-1].content.strip():
        raise ValueError("The last message must be a non-empty user message")

    return history


# =============================================================================
# Conversations
# =============================================================================

@csrf_exempt
@require_http_methods(["GET", "POST"])
@session_required
async def conversations(request: HttpRequest) -> JsonResponse:
    """
    GET /api/conversations - List the user's conversations (most recent first)
    POST /api/conversations - Create a conversation

    Request body (POST, optional):
        {"title": "Trip planning"}
    """
    owner_id = request.session_info.user_id
    service = get_services().conversations

    try:
        if request.method == "GET":
            items = await service.list_conversations(owner_id)
            return JsonResponse({"conversations": [c.to_dict() for c in items]})

        body = parse_json_body(request)
        if body is None:
            return error_response("Invalid JSON", "VALIDATION_ERROR", 400)

        conversation = await service.create_conversation(owner_id, body.get("title"))
        return JsonResponse(conversation.to_dict(), status=201)

    except Exception as e:
        logger.exception(f"Conversation request failed: {e}")
        return internal_error()


@csrf_exempt
@require_http_methods(["PATCH", "DELETE"])
@session_required
async def conversation_detail(request: HttpRequest, conversation_id: str) -> JsonResponse:
    """
    PATCH /api/conversations/<id> - Rename, body {"title": "..."}
    DELETE /api/conversations/<id> - Delete with its messages and passages
    """
    owner_id = request.session_info.user_id
    service = get_services().conversations

    try:
        conv_uuid = parse_conversation_id(conversation_id)
    except ValueError:
        return error_response("Invalid conversation ID", "VALIDATION_ERROR", 400)

    try:
        if request.method == "DELETE":
            await service.delete_conversation(owner_id, conv_uuid)
            audit_conversation_deleted(request, str(conv_uuid))
            return JsonResponse({"success": True})

        body = parse_json_body(request)
        if body is None:
            return error_response("Invalid JSON", "VALIDATION_ERROR", 400)

        conversation = await service.rename_conversation(owner_id, conv_uuid, body.get("title"))
        return JsonResponse(conversation.to_dict())

    except InvalidTitle as e:
        return error_response(str(e), "VALIDATION_ERROR", 400)
    except ConversationNotFound:
        return not_found()
    except Exception as e:
        logger.exception(f"Conversation update failed: {e}")
        return internal_error()


@require_http_methods(["GET"])
@session_required
async def conversation_messages(request: HttpRequest, conversation_id: str) -> JsonResponse:
    """GET /api/conversations/<id>/messages - Ordered message history."""
    owner_id = request.session_info.user_id

    try:
        conv_uuid = parse_conversation_id(conversation_id)
    except ValueError:
        return error_response("Invalid conversation ID", "VALIDATION_ERROR", 400)

    try:
        messages = await get_services().conversations.get_messages(owner_id, conv_uuid)
        return JsonResponse({"messages": [m.to_dict() for m in messages]})
    except ConversationNotFound:
        return not_found()
    except Exception as e:
        logger.exception(f"Message history failed: {e}")
        return internal_error()


# =============================================================================
# Chat
# =============================================================================

@csrf_exempt
@require_http_methods(["POST"])
@session_required
async def chat(request: HttpRequest):
    """
    POST /api/chat

    Run one chat turn with Server-Sent Events for the streamed answer.

    Request body:
        {
            "messages": [{"role": "user", "content": "What do I like?"}],
            "conversationId": "uuid"  // optional, enables history saving
        }

    Response: SSE stream with events:
        event: status    data: {"state": "streaming"}
        event: delta     data: {"text": "..."}
        event: tool      data: {"name": "search_knowledge_base", "arguments": {...}}
        event: complete  data: {"text": "...", "toolSteps": 1}
        event: error     data: {"error": "...", "code": "..."}
    """
    session = request.session_info
    services = get_services()

    body = parse_json_body(request)
    if body is None:
        return error_response("Invalid JSON", "VALIDATION_ERROR", 400)

    try:
        history = parse_history(body.get("messages"))
    except ValueError as e:
        return error_response(str(e), "VALIDATION_ERROR", 400)

    conversation_id = None
    raw_conversation_id = body.get("conversationId")
    if raw_conversation_id not in (None, ""):
        try:
            conversation_id = parse_conversation_id(raw_conversation_id)
        except ValueError:
            return error_response("Invalid conversation ID", "VALIDATION_ERROR", 400)
        try:
            await services.conversations.get_conversation(session.user_id, conversation_id)
        except ConversationNotFound:
            return not_found()
        except Exception as e:
            logger.exception(f"Conversation lookup failed: {e}")
            return internal_error()

    async def event_stream():
        """Relay orchestrator events as SSE."""
        yield sse_event("status", {"state": "streaming"})

        turn = services.orchestrator.run_turn(session, history, conversation_id=conversation_id)
        try:
            async with aclosing(turn) as events:
                async for event in events:
                    if isinstance(event, TextDelta):
                        yield sse_event("delta", {"text": event.text})
                    elif isinstance(event, ToolInvocation):
                        yield sse_event("tool", event.to_dict())
                    elif isinstance(event, TurnComplete):
                        audit_chat_turn(
                            request,
                            message_count=len(history),
                            tool_steps=event.tool_steps,
                            answer_length=len(event.text),
                        )
                        yield sse_event("complete", {"text": event.text, "toolSteps": event.tool_steps})

        except LLMError as e:
            logger.error(f"Chat turn failed: {e}")
            audit_chat_turn(request, len(history), 0, 0, outcome='failure')
            yield sse_event("error", {"error": "The language model is unavailable", "code": "LLM_ERROR"})

        except Exception as e:
            logger.exception(f"Streaming chat error: {e}")
            yield sse_event("error", {"error": "Internal server error", "code": "INTERNAL_ERROR"})

    response = StreamingHttpResponse(event_stream(), content_type='text/event-stream')
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'  # Disable nginx buffering
    return response


@csrf_exempt
@require_http_methods(["POST"])
@session_required
async def pin(request: HttpRequest) -> JsonResponse:
    """
    POST /api/chat/pin

    Summarize a conversation into a memory passage.

    Request body:
        {"conversationId": "uuid"}

    Response:
        {"skipped": true, "message": "Conversation too short"}
        or
        {"success": true, "summary": "..."}
    """
    owner_id = request.session_info.user_id

    body = parse_json_body(request)
    if body is None:
        return error_response("Invalid JSON", "VALIDATION_ERROR", 400)

    try:
        conversation_id = parse_conversation_id(body.get("conversationId"))
    except ValueError:
        return error_response("Invalid conversation ID", "VALIDATION_ERROR", 400)

    try:
        result = await get_services().summarizer.summarize(conversation_id, owner_id)
    except ConversationNotFound:
        return not_found()
    except (LLMError, EmbeddingError) as e:
        logger.error(f"Pin failed for conversation {conversation_id}: {e}")
        return error_response("Summarization service unavailable", "SERVICE_UNAVAILABLE", 503)
    except Exception as e:
        logger.exception(f"Pin to memory error: {e}")
        return internal_error()

    if result.skipped:
        audit_memory_skipped(request, str(conversation_id), result.reason)
    else:
        audit_memory_pinned(request, str(conversation_id), len(result.summary))

    return JsonResponse(result.to_dict())
