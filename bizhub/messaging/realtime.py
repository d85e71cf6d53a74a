"""
Socket.IO server for chat events.

Clients authenticate on connect with a JWT access token (``auth.token``) or
the Django session cookie. Each socket joins ``user:<id>`` and
``company:<id>``; conversation rooms ``conversation:<id>`` are joined
explicitly and only by participants. Events on a conversation are sent on
both namespaces so a client listening on either one receives them.
"""
import logging
from http.cookies import SimpleCookie
from importlib import import_module

import socketio
from asgiref.sync import sync_to_async
from django.conf import settings
from django.contrib.auth import SESSION_KEY, HASH_SESSION_KEY, get_user_model
from django.utils.crypto import constant_time_compare
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework.exceptions import AuthenticationFailed
from socketio.exceptions import ConnectionRefusedError

from .presence import forget_socket, mark_offline, mark_online, refresh, remember_socket
from .serializers import MessageSerializer
from .services import ConversationAccessError, is_participant, mark_read, post_message

logger = logging.getLogger('bizhub.realtime')

NAMESPACES = ('/', '/messaging')


def conversation_room(conversation_id):
    return f'conversation:{conversation_id}'


def _conversation_id(data):
    """Events accept either a bare id or ``{'conversation_id': id}``"""
    if isinstance(data, dict):
        data = data.get('conversation_id')
    try:
        return int(data)
    except (TypeError, ValueError):
        return None


def _user_from_token(token):
    jwt_auth = JWTAuthentication()
    try:
        validated_token = jwt_auth.get_validated_token(token)
        return jwt_auth.get_user(validated_token)
    except (InvalidToken, TokenError, AuthenticationFailed) as e:
        logger.info(f"Socket token rejected: {str(e)}")
        return None


def _user_from_session(cookie_header):
    cookies = SimpleCookie()
    cookies.load(cookie_header)
    morsel = cookies.get(settings.SESSION_COOKIE_NAME)
    if morsel is None:
        return None

    session = import_module(settings.SESSION_ENGINE).SessionStore(session_key=morsel.value)
    user_id = session.get(SESSION_KEY)
    if user_id is None:
        return None
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        return None
    session_hash = session.get(HASH_SESSION_KEY)
    if not session_hash or not constant_time_compare(session_hash, user.get_session_auth_hash()):
        return None
    return user


def authenticate_socket(environ, auth):
    """User behind a connecting socket, or None"""
    token = auth.get('token') if isinstance(auth, dict) else None
    if token:
        user = _user_from_token(token)
    else:
        user = _user_from_session(environ.get('HTTP_COOKIE', ''))
    if user is None or not user.is_active:
        return None
    return user


def _post_and_serialize(user_id, conversation_id, content, attachments):
    user = get_user_model().objects.get(pk=user_id)
    message = post_message(user, conversation_id, content, attachments=attachments)
    return MessageSerializer(message).data


def _mark_read(user_id, conversation_id):
    user = get_user_model().objects.get(pk=user_id)
    return mark_read(user, conversation_id)


class ChatNamespace(socketio.AsyncNamespace):
    """Connection, presence, room membership and read receipts"""
    track_presence = True

    async def on_connect(self, sid, environ, auth=None):
        user = await sync_to_async(authenticate_socket)(environ, auth)
        if user is None:
            logger.info(f"Refused anonymous socket {sid} on {self.namespace}")
            raise ConnectionRefusedError('Authentication required')

        await self.save_session(sid, {
            'user_id': user.pk,
            'company_id': user.company_id,
            'role': user.role,
            'name': user.name,
            'email': user.email,
        })
        await sync_to_async(remember_socket)(user.pk, sid, self.namespace)
        await self.enter_room(sid, f'user:{user.pk}')
        if user.company_id:
            await self.enter_room(sid, f'company:{user.company_id}')

        if self.track_presence and await sync_to_async(mark_online)(user.pk) and user.company_id:
            await self.emit('presence', {'user_id': user.pk, 'online': True},
                            room=f'company:{user.company_id}', skip_sid=sid)
        logger.debug(f"Socket {sid} connected on {self.namespace} as user {user.pk}")

    async def on_disconnect(self, sid, reason=None):
        try:
            session = await self.get_session(sid)
        except KeyError:
            return
        user_id = session.get('user_id')
        company_id = session.get('company_id')
        if user_id:
            await sync_to_async(forget_socket)(user_id, sid)
        if self.track_presence and user_id and await sync_to_async(mark_offline)(user_id) and company_id:
            await self.emit('presence', {'user_id': user_id, 'online': False},
                            room=f'company:{company_id}', skip_sid=sid)
        logger.debug(f"Socket {sid} disconnected from {self.namespace} ({reason})")

    async def active_session(self, sid):
        """Session of a socket sending an event; the activity keeps its user online"""
        session = await self.get_session(sid)
        await sync_to_async(refresh)(session['user_id'], revive=self.track_presence)
        return session

    async def fail(self, sid, message):
        await self.emit('error', {'message': message}, to=sid)
        return {'ok': False, 'error': message}

    async def broadcast(self, event, data, room, sid):
        """Send to ``room`` on every namespace, skipping the sender where it lives"""
        for namespace in NAMESPACES:
            await self.server.emit(event, data, room=room, namespace=namespace,
                                   skip_sid=sid if namespace == self.namespace else None)

    async def on_joinConversation(self, sid, data):
        conversation_id = _conversation_id(data)
        if conversation_id is None:
            return await self.fail(sid, 'conversation_id is required')
        session = await self.active_session(sid)
        if not await sync_to_async(is_participant)(conversation_id, session['user_id']):
            logger.info(f"User {session['user_id']} refused from conversation {conversation_id}")
            return await self.fail(sid, 'You are not a member of this conversation')
        await self.enter_room(sid, conversation_room(conversation_id))
        return {'ok': True}

    async def on_leaveConversation(self, sid, data):
        conversation_id = _conversation_id(data)
        if conversation_id is None:
            return await self.fail(sid, 'conversation_id is required')
        await self.leave_room(sid, conversation_room(conversation_id))
        return {'ok': True}

    async def on_markAsRead(self, sid, data):
        conversation_id = _conversation_id(data)
        if conversation_id is None:
            return await self.fail(sid, 'Missing data to mark the conversation as read')
        session = await self.active_session(sid)
        try:
            read_at = await sync_to_async(_mark_read)(session['user_id'], conversation_id)
        except ConversationAccessError as e:
            return await self.fail(sid, e.message)
        payload = {
            'conversation_id': conversation_id,
            'user_id': session['user_id'],
            'timestamp': read_at.isoformat(),
        }
        await self.broadcast('messageRead', payload, conversation_room(conversation_id), sid)
        return {'ok': True}


class MessagingNamespace(ChatNamespace):
    """Sending messages and typing indicators; presence is tracked on ``/`` only"""
    track_presence = False

    async def on_sendMessage(self, sid, data):
        if not isinstance(data, dict):
            return await self.fail(sid, 'Incomplete message data')
        conversation_id = _conversation_id(data)
        content = data.get('content')
        if conversation_id is None or not content:
            return await self.fail(sid, 'Incomplete message data')

        session = await self.active_session(sid)
        try:
            message = await sync_to_async(_post_and_serialize)(
                session['user_id'], conversation_id, content, data.get('attachments') or [])
        except ConversationAccessError as e:
            return await self.fail(sid, e.message)
        await self.broadcast('newMessage', message, conversation_room(conversation_id), sid)
        return message

    async def on_typing(self, sid, data):
        conversation_id = _conversation_id(data)
        if conversation_id is None:
            return
        room = conversation_room(conversation_id)
        session = await self.active_session(sid)
        if not await sync_to_async(is_participant)(conversation_id, session['user_id']):
            await self.fail(sid, 'You are not a member of this conversation')
            return
        payload = {
            'conversation_id': conversation_id,
            'user': {'id': session['user_id'], 'name': session.get('name'), 'email': session.get('email')},
            'is_typing': bool(data.get('is_typing')) if isinstance(data, dict) else True,
        }
        await self.broadcast('userTyping', payload, room, sid)


def _client_manager():
    if settings.SOCKETIO_MESSAGE_QUEUE:
        return socketio.AsyncRedisManager(settings.SOCKETIO_MESSAGE_QUEUE)
    return None


sio = socketio.AsyncServer(
    async_mode='asgi',
    client_manager=_client_manager(),
    cors_allowed_origins=settings.CORS_ALLOWED_ORIGINS or '*',
)
sio.register_namespace(ChatNamespace('/'))
sio.register_namespace(MessagingNamespace('/messaging'))
