import logging
from datetime import datetime, timezone as dt_timezone

from django.db import transaction
from django.db.models import Count, DateTimeField, OuterRef, Q, Subquery, Value
from django.db.models.functions import Coalesce
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bizhub.core.models import Company, User, SUPER_ADMIN, COMPANY_ADMIN
from bizhub.core.utils import (
    create_audit_log, error_response, validation_error_response, not_found, paginate, parse_bool, parse_int,
)
from .broadcast import close_room, publish, remove_from_room
from .models import Conversation, ConversationParticipant, Message
from .presence import online_users
from .realtime import conversation_room
from .serializers import (
    ConversationSerializer, ConversationCreateSerializer, ConversationUpdateSerializer,
    MessageSerializer, MessageCreateSerializer,
)
from .services import (
    ConversationAccessError, add_system_message, display_name, find_direct_conversation,
    get_conversation_for, is_participant, mark_read, post_message,
)

logger = logging.getLogger(__name__)

# Stands in for "never read" when counting unread messages
NEVER_READ = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


def _access_error(e):
    return error_response(e.message, e.status_code)


def _conversation_queryset():
    return Conversation.objects.prefetch_related('memberships__user')


def _annotate_unread(queryset, user):
    """Add ``my_last_read_at`` and ``unread_count`` (messages after it, not sent by ``user``)"""
    last_read = ConversationParticipant.objects.filter(
        conversation=OuterRef('pk'), user=user,
    ).values('last_read_at')[:1]
    unread = Message.objects.filter(
        conversation=OuterRef('pk'),
        created_at__gt=OuterRef('my_last_read_at'),
    ).exclude(sender=user).order_by().values('conversation').annotate(total=Count('id')).values('total')
    return queryset.annotate(
        my_last_read_at=Coalesce(Subquery(last_read), Value(NEVER_READ), output_field=DateTimeField()),
    ).annotate(
        unread_count=Coalesce(Subquery(unread), Value(0)),
    )


def _users_by_id(user_ids, requester, company_id):
    """Users of ``user_ids`` a conversation of ``company_id`` may hold, and the ids that are not"""
    queryset = User.objects.filter(pk__in=user_ids)
    # Only super admins bring in users from other companies
    if requester.role != SUPER_ADMIN:
        queryset = queryset.filter(company_id=company_id)
    users = {user.pk: user for user in queryset}
    missing = sorted(set(user_ids) - set(users))
    return users, missing


def _conversation_data(conversation, request):
    conversation = _annotate_unread(_conversation_queryset(), request.user).get(pk=conversation.pk)
    return ConversationSerializer(conversation, context={'request': request}).data


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def conversation_list_create(request):
    """List the user's conversations or start a new one"""
    user = request.user

    if request.method == 'GET':
        my_conversations = ConversationParticipant.objects.filter(user=user).values('conversation_id')
        queryset = _annotate_unread(_conversation_queryset().filter(pk__in=my_conversations), user)

        company_id = parse_int(request.query_params.get('company_id'))
        if company_id is not None:
            queryset = queryset.filter(company_id=company_id)
        if parse_bool(request.query_params.get('only_direct', False)):
            queryset = queryset.filter(is_direct_message=True)
        with_user_id = parse_int(request.query_params.get('with_user_id'))
        if with_user_id is not None:
            queryset = queryset.filter(
                pk__in=ConversationParticipant.objects.filter(user_id=with_user_id).values('conversation_id'))
        search = request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(messages__content__icontains=search)
            ).distinct()
        if parse_bool(request.query_params.get('only_unread', False)):
            queryset = queryset.filter(unread_count__gt=0)

        return Response(paginate(request, queryset.order_by('-updated_at', '-id'), ConversationSerializer))

    serializer = ConversationCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    data = serializer.validated_data

    # Company of the conversation
    requested_company = data.get('company_id')
    if user.role == SUPER_ADMIN:
        company_id = requested_company if requested_company is not None else user.company_id
        if requested_company is not None and not Company.objects.filter(pk=requested_company).exists():
            return not_found('Company')
    elif user.role == COMPANY_ADMIN and requested_company is not None and requested_company != user.company_id:
        return error_response('You cannot create a conversation for another company', status.HTTP_403_FORBIDDEN)
    elif not user.company_id:
        return error_response('You must belong to a company to create a conversation')
    else:
        company_id = user.company_id

    participant_ids = set(data['participants'])
    participant_ids.add(user.pk)
    users, missing = _users_by_id(participant_ids, user, company_id)
    if missing:
        return error_response('Participant not found', status.HTTP_404_NOT_FOUND, missing_ids=missing)

    others = [users[pk] for pk in sorted(participant_ids) if pk != user.pk]
    if data['is_direct_message']:
        if len(participant_ids) != 2:
            return error_response('A direct conversation needs exactly two participants')
        existing = find_direct_conversation(user.pk, others[0].pk)
        if existing is not None:
            return Response({
                'message': 'A direct conversation already exists with this user',
                'conversation': _conversation_data(existing, request),
            }, status=status.HTTP_200_OK)
        name = data.get('name') or display_name(others[0])
    else:
        name = data.get('name') or 'New conversation'

    with transaction.atomic():
        conversation = Conversation.objects.create(
            name=name,
            company_id=company_id,
            is_direct_message=data['is_direct_message'],
        )
        ConversationParticipant.objects.bulk_create([
            ConversationParticipant(
                conversation=conversation,
                user_id=pk,
                last_read_at=timezone.now() if pk == user.pk else None,
            )
            for pk in sorted(participant_ids)
        ])
        if data.get('initial_message'):
            post_message(user, conversation.pk, data['initial_message'])

    create_audit_log(request=request, action='CREATE', resource='OTHER', resource_id=conversation.pk,
                     company_id=company_id,
                     details={'conversation': conversation.name, 'participants': sorted(participant_ids),
                              'is_direct_message': conversation.is_direct_message})
    payload = _conversation_data(conversation, request)
    for other in others:
        publish('conversationCreated', {'conversation_id': conversation.pk, 'name': conversation.name},
                room=f'user:{other.pk}')
    return Response(payload, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def conversation_detail(request, pk):
    """Read a conversation with its messages, update its members, or leave/delete it"""
    user = request.user
    verb = {'GET': 'access', 'PATCH': 'modify', 'DELETE': 'delete'}[request.method]
    try:
        conversation = get_conversation_for(user, pk, verb)
    except ConversationAccessError as e:
        return _access_error(e)

    if request.method == 'GET':
        messages = Message.objects.filter(conversation=conversation).select_related('sender') \
            .order_by('-created_at', '-id')
        page = paginate(request, messages, MessageSerializer, default_page_size=50)
        # Super admins may read conversations they are not part of
        if is_participant(conversation.pk, user.pk):
            mark_read(user, conversation.pk)
        data = _conversation_data(conversation, request)
        data['messages'] = page
        return Response(data)

    elif request.method == 'PATCH':
        serializer = ConversationUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        changes = serializer.validated_data

        current_ids = set(conversation.memberships.values_list('user_id', flat=True))
        to_add = set(changes['add_participants']) - current_ids
        # The requester never removes themselves here; leaving is a DELETE
        to_remove = (set(changes['remove_participants']) & current_ids) - {user.pk}

        if conversation.is_direct_message and (to_add or to_remove):
            return error_response('Participants of a direct conversation cannot be changed')
        if to_remove and not (current_ids | to_add) - to_remove:
            return error_response('A conversation must keep at least one participant')
        users, missing = _users_by_id(to_add, user, conversation.company_id)
        if missing:
            return error_response('Participant not found', status.HTTP_404_NOT_FOUND, missing_ids=missing)

        with transaction.atomic():
            if 'name' in changes and changes['name']:
                conversation.name = changes['name']
                conversation.save(update_fields=['name', 'updated_at'])
            if to_add:
                ConversationParticipant.objects.bulk_create([
                    ConversationParticipant(conversation=conversation, user_id=pk) for pk in sorted(to_add)
                ])
                add_system_message(conversation, user,
                                   f"{display_name(user)} added {len(to_add)} participant(s) to the conversation")
            if to_remove:
                ConversationParticipant.objects.filter(conversation=conversation, user_id__in=to_remove).delete()
                add_system_message(conversation, user,
                                   f"{display_name(user)} removed {len(to_remove)} participant(s) from the conversation")

        create_audit_log(request=request, action='UPDATE', resource='OTHER', resource_id=conversation.pk,
                         details={'added': sorted(to_add), 'removed': sorted(to_remove),
                                  'renamed': bool(changes.get('name'))})
        if to_remove:
            remove_from_room(sorted(to_remove), conversation_room(conversation.pk))
        update = {'conversation_id': conversation.pk, 'added': sorted(to_add),
                  'removed': sorted(to_remove), 'name': conversation.name}
        publish('conversationUpdated', update, room=conversation_room(conversation.pk))
        for removed_id in sorted(to_remove):
            publish('conversationUpdated', update, room=f'user:{removed_id}')
        return Response(_conversation_data(conversation, request))

    else:  # DELETE
        can_delete = user.role == SUPER_ADMIN or (
            user.role == COMPANY_ADMIN and user.company_id and user.company_id == conversation.company_id)

        if not conversation.is_direct_message and can_delete:
            conversation_id = conversation.pk
            conversation.delete()
            logger.info(f"Conversation {conversation_id} deleted by user {user.pk}")
            create_audit_log(request=request, action='DELETE', resource='OTHER', resource_id=conversation_id)
            publish('conversationDeleted', {'conversation_id': conversation_id},
                    room=conversation_room(conversation_id))
            close_room(conversation_room(conversation_id))
            return Response(status=status.HTTP_204_NO_CONTENT)

        with transaction.atomic():
            ConversationParticipant.objects.filter(conversation=conversation, user=user).delete()
            if not conversation.memberships.exists():
                conversation.delete()
            elif not conversation.is_direct_message:
                add_system_message(conversation, user, f"{display_name(user)} left the conversation")

        remove_from_room([user.pk], conversation_room(pk))
        create_audit_log(request=request, action='LEAVE', resource='OTHER', resource_id=pk)
        return Response({'message': 'You left the conversation'})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def message_create(request):
    """Post a message to a conversation and push it to the room"""
    serializer = MessageCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)
    data = serializer.validated_data

    try:
        message = post_message(request.user, data['conversation_id'], data['content'],
                               attachments=data['attachments'], is_system_message=data['is_system_message'])
    except ConversationAccessError as e:
        return _access_error(e)

    payload = MessageSerializer(message).data
    create_audit_log(request=request, action='CREATE', resource='OTHER', resource_id=message.pk,
                     details={'conversation_id': message.conversation_id,
                              'is_system_message': message.is_system_message})
    publish('newMessage', payload, room=conversation_room(message.conversation_id))
    return Response(payload, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def conversation_mark_read(request, pk):
    """Mark a conversation as read and tell the other participants"""
    try:
        read_at = mark_read(request.user, pk)
    except ConversationAccessError as e:
        return _access_error(e)

    payload = {'conversation_id': pk, 'user_id': request.user.pk, 'timestamp': read_at.isoformat()}
    publish('messageRead', payload, room=conversation_room(pk))
    return Response(payload)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def presence_list(request):
    """Online flags for ``?user_ids=1,2,3`` (default: every user of the company)"""
    user = request.user
    queryset = User.objects.filter(is_active=True)
    if user.role != SUPER_ADMIN:
        if not user.company_id:
            return Response({'results': []})
        queryset = queryset.filter(company_id=user.company_id)

    raw_ids = request.query_params.get('user_ids', '')
    if raw_ids:
        requested = [parse_int(value) for value in raw_ids.split(',')]
        if any(value is None for value in requested):
            return error_response('user_ids must be a comma separated list of ids')
        queryset = queryset.filter(pk__in=requested)

    user_ids = list(queryset.order_by('pk').values_list('pk', flat=True))
    flags = online_users(user_ids)
    return Response({'results': [{'user_id': user_id, 'online': flags[user_id]} for user_id in user_ids]})
