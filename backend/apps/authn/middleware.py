"""
Authentication decorator for JWT-protected async views.
"""
import logging
from functools import wraps
from typing import Callable, Optional

from asgiref.sync import sync_to_async
from django.http import HttpRequest, JsonResponse

from .audit import audit_auth_rejected
from .jwt_validator import JWTValidationError, validate_token

logger = logging.getLogger(__name__)


def get_token_from_request(request: HttpRequest) -> Optional[str]:
    """
    Extract Bearer token from Authorization header.

    Returns:
        The token string if found, None otherwise
    """
    auth_header = request.META.get('HTTP_AUTHORIZATION', '')
    if not auth_header:
        return None

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None

    return parts[1]


def session_required(view_func: Callable) -> Callable:
    """
    Decorator that requires a valid JWT token on an async view.

    Validates the token and attaches the Session to request.session_info.
    Nothing in the view runs without one.

    Usage:
        @session_required
        async def my_view(request):
            owner_id = request.session_info.user_id
            ...
    """
    @wraps(view_func)
    async def wrapper(request: HttpRequest, *args, **kwargs):
        token = get_token_from_request(request)

        if not token:
            return JsonResponse(
                {'error': 'Authorization header missing or invalid'},
                status=401
            )

        try:
            # JWKS fetch is blocking I/O
            session = await sync_to_async(validate_token)(token)
        except JWTValidationError as e:
            logger.warning(f"JWT validation failed: {e}")
            audit_auth_rejected(request, str(e))
            return JsonResponse({'error': str(e)}, status=401)

        request.session_info = session
        logger.debug(f"Authenticated user: {session.user_name} (sub={session.user_id})")
        return await view_func(request, *args, **kwargs)

    return wrapper
