"""
WSGI config for the bizhub project.

Plain HTTP only; the real-time layer needs the ASGI application.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'bizhub.config.settings')

application = get_wsgi_application()
