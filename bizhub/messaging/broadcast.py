"""Emit Socket.IO events from synchronous code such as the REST views"""
import logging
from functools import lru_cache

import socketio
from asgiref.sync import async_to_sync
from django.conf import settings

from .presence import user_sockets
from .realtime import NAMESPACES, sio

logger = logging.getLogger('bizhub.realtime')


@lru_cache(maxsize=1)
def _queue_manager(url):
    return socketio.RedisManager(url, write_only=True)


def publish(event, data, room, namespaces=NAMESPACES):
    """
    Send ``event`` to ``room`` on every namespace.

    Goes through the Redis message queue when one is configured so that
    sockets held by other server processes get the event too. Failures are
    logged and swallowed: a broadcast never fails the HTTP request.
    """
    for namespace in namespaces:
        try:
            if settings.SOCKETIO_MESSAGE_QUEUE:
                _queue_manager(settings.SOCKETIO_MESSAGE_QUEUE).emit(event, data, namespace=namespace, room=room)
            else:
                async_to_sync(sio.emit)(event, data, room=room, namespace=namespace)
        except Exception as e:
            logger.error(f"Failed to publish {event} to {room} on {namespace}: {str(e)}")


def remove_from_room(user_ids, room, namespaces=NAMESPACES):
    """
    Make every socket of ``user_ids`` leave ``room``.

    Without a message queue the local server knows all sockets. With one, the
    sockets recorded in the presence cache are asked to leave through the
    queue so the process holding each of them applies it.
    """
    for user_id in user_ids:
        try:
            if settings.SOCKETIO_MESSAGE_QUEUE:
                manager = _queue_manager(settings.SOCKETIO_MESSAGE_QUEUE)
                for sid, namespace in user_sockets(user_id).items():
                    manager.leave_room(sid, namespace, room)
            else:
                for namespace in namespaces:
                    for sid, _ in list(sio.manager.get_participants(namespace, f'user:{user_id}')):
                        async_to_sync(sio.leave_room)(sid, room, namespace=namespace)
        except Exception as e:
            logger.error(f"Failed to remove user {user_id} from {room}: {str(e)}")


def close_room(room, namespaces=NAMESPACES):
    """Empty ``room`` on every namespace"""
    for namespace in namespaces:
        try:
            if settings.SOCKETIO_MESSAGE_QUEUE:
                _queue_manager(settings.SOCKETIO_MESSAGE_QUEUE).close_room(room, namespace=namespace)
            else:
                async_to_sync(sio.close_room)(room, namespace=namespace)
        except Exception as e:
            logger.error(f"Failed to close {room} on {namespace}: {str(e)}")
