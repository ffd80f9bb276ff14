"""
Document upload view.

POST /api/documents/upload - Extract, chunk, embed and store a file in one
request. The file is either fully indexed or not stored at all.
"""
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from apps.authn.audit import audit_document_rejected, audit_document_uploaded
from apps.authn.middleware import session_required
from apps.chat.services import ConversationNotFound, parse_conversation_id
from apps.knowledge.embeddings import EmbeddingError
from config.services import get_services

from .extractor import EmptyExtraction, ExtractionError, UnsupportedFileType, UploadedContent

logger = logging.getLogger(__name__)


def error_response(message: str, code: str, status: int, **extra) -> JsonResponse:
    return JsonResponse({"success": False, "error": message, "code": code, **extra}, status=status)


@csrf_exempt
@require_http_methods(["POST"])
@session_required
async def upload_document(request: HttpRequest) -> JsonResponse:
    """
    Upload and index a document.

    Accepts multipart/form-data with a 'file' field and an optional
    'conversationId' field scoping the upload to a conversation.

    Supported: PDF, Word (.docx), CSV, plain text, Markdown

    Returns:
        {
            "success": true,
            "chunksCreated": 3,
            "message": "Processed notes.txt: 3 chunks indexed."
        }
    """
    owner_id = request.session_info.user_id
    services = get_services()

    if 'file' not in request.FILES:
        return error_response('No file provided', 'MISSING_FILE', 400)

    uploaded_file = request.FILES['file']
    filename = uploaded_file.name
    size_bytes = uploaded_file.size

    logger.info(
        f"Upload request: {filename}, {uploaded_file.content_type}, "
        f"{size_bytes} bytes from user {owner_id}"
    )

    if size_bytes > settings.MAX_UPLOAD_SIZE:
        max_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
        audit_document_rejected(request, filename, 'file too large')
        return error_response(
            f'File too large. Maximum size is {max_mb}MB',
            'FILE_TOO_LARGE',
            400,
            maxSize=settings.MAX_UPLOAD_SIZE,
        )

    conversation_id = None
    raw_conversation_id = request.POST.get('conversationId')
    if raw_conversation_id:
        try:
            conversation_id = parse_conversation_id(raw_conversation_id)
        except ValueError:
            return error_response('Invalid conversation ID', 'VALIDATION_ERROR', 400)
        try:
            await services.conversations.get_conversation(owner_id, conversation_id)
        except ConversationNotFound:
            return error_response('Conversation not found', 'NOT_FOUND', 404)
        except Exception as e:
            logger.exception(f"Conversation lookup failed: {e}")
            audit_document_rejected(request, filename, 'internal error')
            return error_response('Internal server error', 'INTERNAL_ERROR', 500)

    upload = UploadedContent(
        data=uploaded_file.read(),
        content_type=uploaded_file.content_type or '',
        name=filename,
    )

    try:
        result = await services.ingestion.ingest(upload, owner_id, conversation_id=conversation_id)

    except UnsupportedFileType as e:
        audit_document_rejected(request, filename, str(e))
        return error_response(
            'Unsupported file type. Allowed: PDF, DOCX, CSV, TXT, MD',
            'UNSUPPORTED_FILE_TYPE',
            400,
        )
    except EmptyExtraction as e:
        audit_document_rejected(request, filename, str(e))
        return error_response(f'No text content found in {filename}', 'EMPTY_DOCUMENT', 400)
    except ExtractionError as e:
        audit_document_rejected(request, filename, str(e))
        return error_response(f'Could not read {filename}', 'EXTRACTION_FAILED', 400)
    except EmbeddingError as e:
        logger.error(f"Embedding failed for {filename}: {e}")
        audit_document_rejected(request, filename, str(e))
        return error_response('Embedding service unavailable', 'EMBEDDING_UNAVAILABLE', 503)
    except Exception as e:
        logger.exception(f"File processing error: {e}")
        audit_document_rejected(request, filename, 'internal error')
        return error_response('Internal server error', 'INTERNAL_ERROR', 500)

    audit_document_uploaded(request, filename, size_bytes, result.chunk_count)
    return JsonResponse(result.to_dict())
