from django.contrib import admin
from .models import Conversation, ConversationParticipant, Message


class ConversationParticipantInline(admin.TabularInline):
    model = ConversationParticipant
    extra = 0
    readonly_fields = ['joined_at']


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ['__str__', 'company', 'is_direct_message', 'created_at', 'updated_at']
    list_filter = ['is_direct_message', 'company']
    search_fields = ['name']
    ordering = ['-updated_at']
    inlines = [ConversationParticipantInline]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ['id', 'conversation', 'sender', 'is_system_message', 'created_at']
    list_filter = ['is_system_message']
    search_fields = ['content', 'sender__email']
    ordering = ['-created_at']
