"""
ASGI entry point. The views are async, serve with an ASGI server, e.g.:

    uvicorn walletdrive.asgi:application
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'walletdrive.settings')

application = get_asgi_application()
