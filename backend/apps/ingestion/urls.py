"""
Document ingestion URL routes.
"""
from django.urls import path

from . import views

urlpatterns = [
    path('upload', views.upload_document, name='upload_document'),
]
