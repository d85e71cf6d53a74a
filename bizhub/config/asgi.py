"""
ASGI config for the bizhub project.

Requests under ``settings.SOCKETIO_PATH`` go to the Socket.IO server, every
other request to Django.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'bizhub.config.settings')

# Django must be set up before the realtime module imports any model
django_application = get_asgi_application()

import socketio  # noqa: E402
from django.conf import settings  # noqa: E402

from bizhub.messaging.realtime import sio  # noqa: E402

application = socketio.ASGIApp(
    sio,
    other_asgi_app=django_application,
    socketio_path=settings.SOCKETIO_PATH,
)
