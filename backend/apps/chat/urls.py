"""
Chat URL routes.
"""
from django.urls import path

from . import views

urlpatterns = [
    path('conversations', views.conversations, name='conversations'),
    path('conversations/<str:conversation_id>', views.conversation_detail, name='conversation_detail'),
    path('conversations/<str:conversation_id>/messages', views.conversation_messages, name='conversation_messages'),
    path('chat', views.chat, name='chat'),
    path('chat/pin', views.pin, name='chat_pin'),
]
