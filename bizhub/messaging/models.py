from django.conf import settings
from django.db import models


class Conversation(models.Model):
    name = models.CharField(max_length=200, blank=True)
    company = models.ForeignKey('core.Company', on_delete=models.CASCADE, null=True, blank=True,
                                related_name='conversations')
    is_direct_message = models.BooleanField(default=False)
    participants = models.ManyToManyField(settings.AUTH_USER_MODEL, through='ConversationParticipant',
                                          related_name='conversations')
    created_at = models.DateTimeField(auto_now_add=True)
    # Bumped on every new message, drives "newest activity first"
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name or f"Conversation {self.pk}"

    def room(self):
        return f"conversation:{self.pk}"

    class Meta:
        db_table = 'conversations'
        ordering = ['-updated_at']
        indexes = [
            models.Index(fields=['company', 'updated_at'], name='conversati_company_3b8f2a_idx'),
        ]


class ConversationParticipant(models.Model):
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='memberships')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE,
                             related_name='conversation_memberships')
    last_read_at = models.DateTimeField(null=True, blank=True)
    joined_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.user} in {self.conversation}"

    class Meta:
        db_table = 'conversation_participants'
        unique_together = [['conversation', 'user']]


class Message(models.Model):
    conversation = models.ForeignKey(Conversation, on_delete=models.CASCADE, related_name='messages')
    sender = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                               related_name='sent_messages')
    content = models.TextField()
    attachments = models.JSONField(default=list, blank=True)
    is_system_message = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Message {self.pk} in {self.conversation_id}"

    class Meta:
        db_table = 'messages'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['conversation', 'created_at'], name='messages_convers_7c4e1d_idx'),
        ]
