"""
Audit logging for security and compliance.

Structured JSON events on the dedicated 'audit' logger. Events carry IDs,
sizes and counts, never message or document content.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

audit_logger = logging.getLogger('audit')

MAX_REASON_LENGTH = 200


class AuditEvent:
    """Audit event types, '<subject>.<action>'."""
    AUTH_TOKEN_REJECTED = 'auth.token_rejected'

    DOCUMENT_UPLOADED = 'document.uploaded'
    DOCUMENT_REJECTED = 'document.rejected'

    MEMORY_PINNED = 'memory.pinned'
    MEMORY_SKIPPED = 'memory.skipped'

    CONVERSATION_DELETED = 'conversation.deleted'

    CHAT_TURN = 'chat.turn'


def request_context(request) -> Dict[str, Optional[str]]:
    """
    Who and where a request came from.

    The first X-Forwarded-For hop is the client when running behind the
    proxy. A request ID is taken from X-Request-ID or minted once and kept
    on the request so every event of one request correlates.
    """
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    client_ip = forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR', 'unknown')

    request_id = getattr(request, 'request_id', None) or request.META.get('HTTP_X_REQUEST_ID')
    if not request_id:
        request_id = uuid.uuid4().hex[:8]
        request.request_id = request_id

    session = getattr(request, 'session_info', None)

    return {
        'user_id': session.user_id if session else None,
        'request_id': request_id,
        'client_ip': client_ip,
    }


def log_audit(
    event_type: str,
    outcome: str = 'success',
    metadata: Optional[Dict[str, Any]] = None,
    **context: Optional[str],
):
    """
    Emit one audit event as a JSON line.

    Args:
        event_type: One of AuditEvent constants
        outcome: 'success' or 'failure'
        metadata: Event-specific data (IDs and counts only)
        **context: user_id, request_id, client_ip
    """
    event = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'event_type': event_type,
        'user_id': context.get('user_id'),
        'request_id': context.get('request_id'),
        'client_ip': context.get('client_ip'),
        'outcome': outcome,
        'metadata': metadata or {},
    }
    audit_logger.info(json.dumps(event))


def log_audit_from_request(request, event_type: str, outcome: str = 'success', **metadata):
    log_audit(event_type, outcome=outcome, metadata=metadata, **request_context(request))


def audit_auth_rejected(request, reason: str):
    log_audit_from_request(
        request, AuditEvent.AUTH_TOKEN_REJECTED, outcome='failure',
        reason=reason[:MAX_REASON_LENGTH],
    )


def audit_document_uploaded(request, filename: str, size_bytes: int, chunk_count: int):
    log_audit_from_request(
        request, AuditEvent.DOCUMENT_UPLOADED,
        filename=filename, size_bytes=size_bytes, chunk_count=chunk_count,
    )


def audit_document_rejected(request, filename: str, reason: str):
    """Log an upload that was not indexed."""
    log_audit_from_request(
        request, AuditEvent.DOCUMENT_REJECTED, outcome='failure',
        filename=filename, reason=reason[:MAX_REASON_LENGTH],
    )


def audit_memory_pinned(request, conversation_id: str, summary_length: int):
    log_audit_from_request(
        request, AuditEvent.MEMORY_PINNED,
        conversation_id=conversation_id, summary_length=summary_length,
    )


def audit_memory_skipped(request, conversation_id: str, reason: str):
    log_audit_from_request(
        request, AuditEvent.MEMORY_SKIPPED,
        conversation_id=conversation_id, reason=reason,
    )


def audit_conversation_deleted(request, conversation_id: str):
    log_audit_from_request(request, AuditEvent.CONVERSATION_DELETED, conversation_id=conversation_id)


def audit_chat_turn(request, message_count: int, tool_steps: int, answer_length: int, outcome: str = 'success'):
    """Log a chat turn (without the question or answer text)."""
    log_audit_from_request(
        request, AuditEvent.CHAT_TURN, outcome=outcome,
        message_count=message_count, tool_steps=tool_steps, answer_length=answer_length,
    )
