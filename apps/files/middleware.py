"""
Error rendering and request logging for the JSON API.
"""
import logging
import time

from asgiref.sync import iscoroutinefunction, markcoroutinefunction
from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from .exceptions import WalletDriveError

logger = logging.getLogger(__name__)


class ApiErrorMiddleware(MiddlewareMixin):
    """
    Turns exceptions raised by views into JSON error bodies.

    WalletDriveError subclasses carry their own status and message; anything
    else is logged with its traceback and answered with a generic 500.
    """

    def process_exception(self, request, exception):
        if isinstance(exception, WalletDriveError):
            if exception.status_code >= 500:
                logger.error(f"{request.method} {request.path} failed: {exception.message} ({exception.details})")
            else:
                logger.info(f"{request.method} {request.path} rejected ({exception.status_code}): {exception.message}")
            return JsonResponse(exception.to_dict(), status=exception.status_code)

        logger.error(f"Unhandled error on {request.method} {request.path}: {exception}", exc_info=True)
        body = {"error": "Internal server error"}
        if settings.DEBUG:
            body["details"] = str(exception)
        return JsonResponse(body, status=500)


class RequestLoggingMiddleware:
    """
    Logs method, path, status and duration of each request.
    Warns on requests slower than SLOW_REQUEST_MS.
    """
    sync_capable = True
    async_capable = True

    SLOW_REQUEST_MS = 2000
    EXCLUDED_PATHS = ['/health']

    def __init__(self, get_response):
        self.get_response = get_response
        if iscoroutinefunction(self.get_response):
            markcoroutinefunction(self)

    def __call__(self, request):
        if iscoroutinefunction(self):
            return self.__acall__(request)
        start_time = time.monotonic()
        response = self.get_response(request)
        self._log(request, response, start_time)
        return response

    async def __acall__(self, request):
        start_time = time.monotonic()
        response = await self.get_response(request)
        self._log(request, response, start_time)
        return response

    def should_log(self, path):
        return not any(path.startswith(p) for p in self.EXCLUDED_PATHS)

    def _log(self, request, response, start_time):
        if not self.should_log(request.path):
            return
        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"{request.method} {request.path} {response.status_code} {duration_ms}ms ({get_client_ip(request)})")
        if duration_ms > self.SLOW_REQUEST_MS:
            logger.warning(f"Very slow request detected: {request.method} {request.path} took {duration_ms}ms")


def get_client_ip(request):
    """
    Client IP address, honouring the first hop of X-Forwarded-For.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


