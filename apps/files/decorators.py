import json
import logging
from functools import wraps

from .exceptions import ValidationError
from .services.signature_service import SignatureVerifier

logger = logging.getLogger(__name__)


def require_wallet_signature(scope):
    """
    Decorator for async views that must be signed by a wallet.

    The request must carry x-evm-address, x-evm-signature and x-evm-message,
    with the message equal to scope. The verified address is set on
    request.wallet; failures raise AuthError, rendered by ApiErrorMiddleware.

    Usage:
        @require_wallet_signature("upload")
        async def upload(request):
            ...
    """
    verifier = SignatureVerifier(scope)

    def decorator(view_func):
        @wraps(view_func)
        async def wrapper(request, *args, **kwargs):
            request.wallet = verifier.verify_headers(request.headers)
            logger.debug(f"Verified '{scope}' signature from {request.wallet}")
            return await view_func(request, *args, **kwargs)
        return wrapper
    return decorator


def parse_json_body(request) -> dict:
    """
    Returns the request's JSON object body, {} when the body is empty.
    """
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Invalid JSON body", details=str(e)) from e
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON body", details="Expected a JSON object")
    return data
