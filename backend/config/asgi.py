"""
ASGI config for the SAK Chat backend.

Served by daphne. Chat answers stream over plain HTTP (SSE), so Django's
ASGI handler is all that is needed.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

# Initialize Django ASGI application early to ensure the AppRegistry
# is populated before importing code that may import ORM models.
application = get_asgi_application()

# Import after Django setup
from config.services import build_services, set_services  # noqa: E402

set_services(build_services())
