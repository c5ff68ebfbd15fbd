import logging
from functools import wraps

from django.conf import settings
from django.core.cache import cache

from apps.files.exceptions import RateLimitedError
from apps.files.middleware import get_client_ip

logger = logging.getLogger(__name__)


def rate_limit(group, limit=None, window=None, message=None):
    """
    Fixed-window limiter for async views, keyed by client IP and stored in the
    Django cache. Runs before any other check on the request.

    Usage:
        @rate_limit("audio")
        async def generate_audio(request):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        async def wrapper(request, *args, **kwargs):
            config = getattr(settings, "AUDIO_RATE_LIMIT", {})
            max_requests = limit or config.get("requests", 10)
            window_seconds = window or config.get("window", 900)

            key = f"ratelimit:{group}:{get_client_ip(request)}"
            await cache.aadd(key, 0, timeout=window_seconds)
            try:
                count = await cache.aincr(key)
            except ValueError:
                # Window expired between add and incr
                await cache.aset(key, 1, timeout=window_seconds)
                count = 1

            if count > max_requests:
                logger.warning(f"Rate limit hit for {key} ({count}/{max_requests})")
                raise RateLimitedError(message)
            return await view_func(request, *args, **kwargs)
        return wrapper
    return decorator
