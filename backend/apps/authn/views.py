"""
Authentication views.
"""
import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_http_methods

from .middleware import session_required

logger = logging.getLogger(__name__)


@require_http_methods(["GET"])
@session_required
async def me(request: HttpRequest) -> JsonResponse:
    """
    GET /api/me

    Returns the authenticated user's information.

    Response:
        {
            "id": "<sub>",
            "username": "<display name>",
            "email": "<email or null>",
            "roles": ["user"]
        }
    """
    return JsonResponse(request.session_info.to_dict())
