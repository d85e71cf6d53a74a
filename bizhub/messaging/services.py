"""
Conversation rules shared by the REST views and the Socket.IO handlers.

Every function here is synchronous; the realtime layer calls them through
``sync_to_async``.
"""
import logging

from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from bizhub.core.models import SUPER_ADMIN, COMPANY_ADMIN
from .models import Conversation, ConversationParticipant, Message

logger = logging.getLogger(__name__)


class ConversationAccessError(Exception):
    """A user may not see or act on a conversation"""

    def __init__(self, message, status_code=403):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def is_participant(conversation_id, user_id):
    return ConversationParticipant.objects.filter(conversation_id=conversation_id, user_id=user_id).exists()


def get_conversation_for(user, conversation_id, verb='access'):
    """
    Load a conversation ``user`` may act on.

    Non participants are refused unless they are super admins, company
    admins are refused outside their own company.
    """
    conversation = Conversation.objects.filter(pk=conversation_id).first()
    if conversation is None:
        raise ConversationAccessError('Conversation not found', 404)
    if user.role != SUPER_ADMIN and not is_participant(conversation.pk, user.pk):
        raise ConversationAccessError('You are not a member of this conversation')
    if user.role == COMPANY_ADMIN and user.company_id and conversation.company_id != user.company_id:
        raise ConversationAccessError(f'You do not have permission to {verb} this conversation')
    return conversation


def post_message(user, conversation_id, content, attachments=None, is_system_message=False):
    """Store a message, bump the conversation activity and the sender's read marker"""
    conversation = get_conversation_for(user, conversation_id, 'send messages in')
    if is_system_message and user.role not in (SUPER_ADMIN, COMPANY_ADMIN):
        raise ConversationAccessError('You do not have permission to send system messages')

    with transaction.atomic():
        message = Message.objects.create(
            conversation=conversation,
            sender=user,
            content=content,
            attachments=attachments or [],
            is_system_message=is_system_message,
        )
        conversation.save(update_fields=['updated_at'])
        ConversationParticipant.objects.filter(conversation=conversation, user=user).update(
            last_read_at=timezone.now())

    logger.debug(f"Message {message.pk} posted in conversation {conversation.pk} by user {user.pk}")
    return message


def add_system_message(conversation, user, content):
    message = Message.objects.create(conversation=conversation, sender=user, content=content,
                                     is_system_message=True)
    conversation.save(update_fields=['updated_at'])
    return message


def mark_read(user, conversation_id):
    """Move the user's read marker to now; returns the new timestamp"""
    if not Conversation.objects.filter(pk=conversation_id).exists():
        raise ConversationAccessError('Conversation not found', 404)
    read_at = timezone.now()
    updated = ConversationParticipant.objects.filter(conversation_id=conversation_id, user=user).update(
        last_read_at=read_at)
    if not updated:
        raise ConversationAccessError('You are not a member of this conversation')
    return read_at


def find_direct_conversation(user_id, other_user_id):
    """The direct conversation between exactly these two users, if any"""
    first = ConversationParticipant.objects.filter(user_id=user_id).values('conversation_id')
    second = ConversationParticipant.objects.filter(user_id=other_user_id).values('conversation_id')
    return Conversation.objects.filter(
        is_direct_message=True,
        pk__in=first,
    ).filter(
        pk__in=second,
    ).annotate(
        member_count=Count('memberships'),
    ).filter(member_count=2).order_by('-updated_at').first()


def display_name(user):
    return user.name or user.email
