"""
Health check endpoints for Kubernetes/Docker probes.

- /healthz - Liveness (is process running?)
- /readyz - Readiness (can we serve traffic?)
"""
import logging
from datetime import datetime, timezone
from typing import Tuple

from asgiref.sync import sync_to_async
from django.db import connection
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET

from config.services import get_services

logger = logging.getLogger(__name__)


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


@csrf_exempt
@require_GET
async def healthz(request):
    """
    Liveness probe endpoint.

    Returns 200 if the process is running. Dependencies are for readiness.
    """
    return JsonResponse({
        'status': 'healthy',
        'timestamp': get_timestamp()
    })


def check_database() -> Tuple[str, bool]:
    """Check database connectivity."""
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
            cursor.fetchone()
        return 'ok', True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return f'error: {str(e)[:50]}', False


async def check_llm() -> Tuple[str, bool]:
    """
    Check the model gateway (degrades gracefully).

    A model outage should not take the conversation list offline.
    """
    try:
        ok = await get_services().llm.ping()
        return ('ok' if ok else 'unreachable'), True
    except Exception as e:
        logger.warning(f"LLM health check failed: {e}")
        return f'degraded: {str(e)[:30]}', True


@csrf_exempt
@require_GET
async def readyz(request):
    """
    Readiness probe endpoint.

    Returns 200 only if all critical dependencies are reachable.
    """
    checks = {}
    all_ok = True

    status, ok = await sync_to_async(check_database)()
    checks['database'] = status
    if not ok:
        all_ok = False

    status, _ = await check_llm()
    checks['llm'] = status

    return JsonResponse(
        {
            'status': 'ready' if all_ok else 'not_ready',
            'timestamp': get_timestamp(),
            'checks': checks
        },
        status=200 if all_ok else 503
    )
