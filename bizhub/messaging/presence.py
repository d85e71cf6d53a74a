"""
Online presence kept in the Django cache.

Each user has a counter of open sockets; a user is online while it is
positive. The first socket of a user and the last one to go report the
transition so callers can broadcast it. Counters expire after
``PRESENCE_TTL`` seconds without socket activity.

The cache also remembers which sockets (sid and namespace) a user holds, so
any server process can make them leave a room.
"""
from django.conf import settings
from django.core.cache import cache


def _key(user_id):
    return f'presence:{user_id}'


def _sockets_key(user_id):
    return f'presence:sockets:{user_id}'


def mark_online(user_id):
    """Count a new socket; True when it is the user's first"""
    key = _key(user_id)
    if cache.add(key, 1, timeout=settings.PRESENCE_TTL):
        return True
    try:
        count = cache.incr(key)
    except ValueError:
        # Expired between add() and incr()
        cache.set(key, 1, timeout=settings.PRESENCE_TTL)
        return True
    cache.touch(key, timeout=settings.PRESENCE_TTL)
    return count == 1


def mark_offline(user_id):
    """
    Forget a socket; True when it was the user's last.

    A counter that already expired counts as the last socket so the offline
    transition is still reported.
    """
    key = _key(user_id)
    try:
        count = cache.decr(key)
    except ValueError:
        return True
    if count <= 0:
        cache.delete(key)
        return True
    return False


def refresh(user_id, revive=True):
    """
    Keep a connected user's counter and socket list alive.

    With ``revive`` a counter that already expired is recreated.
    """
    if not cache.touch(_key(user_id), timeout=settings.PRESENCE_TTL) and revive:
        cache.add(_key(user_id), 1, timeout=settings.PRESENCE_TTL)
    cache.touch(_sockets_key(user_id), timeout=settings.PRESENCE_TTL)


def is_online(user_id):
    return (cache.get(_key(user_id)) or 0) > 0


def online_users(user_ids):
    """Map each id of ``user_ids`` to its online flag"""
    values = cache.get_many([_key(user_id) for user_id in user_ids])
    return {user_id: (values.get(_key(user_id)) or 0) > 0 for user_id in user_ids}


def remember_socket(user_id, sid, namespace):
    key = _sockets_key(user_id)
    sockets = cache.get(key) or {}
    sockets[sid] = namespace
    cache.set(key, sockets, timeout=settings.PRESENCE_TTL)


def forget_socket(user_id, sid):
    key = _sockets_key(user_id)
    sockets = cache.get(key) or {}
    if sockets.pop(sid, None) is None:
        return
    if sockets:
        cache.set(key, sockets, timeout=settings.PRESENCE_TTL)
    else:
        cache.delete(key)


def user_sockets(user_id):
    """``{sid: namespace}`` of the sockets ``user_id`` holds"""
    return cache.get(_sockets_key(user_id)) or {}
