"""
URL configuration for the SAK Chat backend.
"""
from django.urls import include, path

from apps.chat.health import healthz, readyz

urlpatterns = [
    # Health check endpoints (no auth)
    path('healthz', healthz, name='healthz'),
    path('readyz', readyz, name='readyz'),

    # API routes
    path('api/', include('apps.authn.urls')),
    path('api/', include('apps.chat.urls')),
    path('api/documents/', include('apps.ingestion.urls')),
]
