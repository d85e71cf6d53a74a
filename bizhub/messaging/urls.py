from django.urls import path
from .views import (
    conversation_list_create, conversation_detail, conversation_mark_read,
    message_create, presence_list,
)

urlpatterns = [
    # Conversation endpoints
    path('conversations/', conversation_list_create, name='conversation-list-create'),
    path('conversations/<int:pk>/', conversation_detail, name='conversation-detail'),
    path('conversations/<int:pk>/read/', conversation_mark_read, name='conversation-mark-read'),

    # Message endpoints
    path('messages/', message_create, name='message-create'),

    # Presence
    path('presence/', presence_list, name='presence-list'),
]
