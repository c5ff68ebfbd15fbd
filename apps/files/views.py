import logging
import platform
import time

from django.http import JsonResponse, StreamingHttpResponse
from django.utils import timezone
from django.views.decorators.http import require_GET, require_POST

from . import dependencies
from .decorators import parse_json_body, require_wallet_signature
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


def _timestamp():
    return timezone.now().isoformat()


def _file_response(stream, filename, disposition="attachment", extra_headers=None):
    """
    Wraps an open ContentStream into a StreamingHttpResponse.
    """
    response = StreamingHttpResponse(stream.chunks, content_type=stream.content_type)
    if stream.content_length is not None:
        response['Content-Length'] = str(stream.content_length)
    response['Content-Disposition'] = f'{disposition}; filename="{filename}"'
    for header, value in (extra_headers or {}).items():
        response[header] = value
    return response


@require_POST
@require_wallet_signature("upload")
async def upload(request):
    """
    Stores a base64 encoded file for the signing wallet.
    """
    body = parse_json_body(request)
    file_service = dependencies.build_file_service()
    record = await file_service.upload(
        wallet=request.wallet,
        filename=body.get('filename'),
        data=body.get('base64'),
        size=body.get('size'),
        project=body.get('project'),
    )
    return JsonResponse({"status": "uploaded", "file": record.public_dict()})


# Kept for clients built against the streaming upload route, same contract as /Upload
stream_upload = upload


@require_POST
@require_wallet_signature("list")
async def list_files(request):
    body = parse_json_body(request)
    file_service = dependencies.build_file_service()
    files, total = await file_service.list_files(request.wallet, project=body.get('project'))
    return JsonResponse({
        "files": [f.public_dict() for f in files],
        "count": len(files),
        "totalFiles": total,
        "timestamp": _timestamp(),
    })


@require_POST
@require_wallet_signature("list_deleted")
async def list_deleted(request):
    file_service = dependencies.build_file_service()
    files = await file_service.list_deleted(request.wallet)
    return JsonResponse({
        "files": [f.public_dict() for f in files],
        "count": len(files),
        "timestamp": _timestamp(),
    })


@require_POST
@require_wallet_signature("delete")
async def delete_file(request):
    body = parse_json_body(request)
    file_service = dependencies.build_file_service()
    record = await file_service.delete(request.wallet, body.get('id'))
    return JsonResponse({"status": "deleted", "id": record.id, "filename": record.filename})


@require_POST
@require_wallet_signature("restore")
async def restore_file(request):
    body = parse_json_body(request)
    file_service = dependencies.build_file_service()
    record = await file_service.restore(request.wallet, body.get('id'))
    return JsonResponse({"restored": record.public_dict()})


@require_POST
@require_wallet_signature("empty_recycle_bin")
async def empty_recycle_bin(request):
    body = parse_json_body(request)
    file_service = dependencies.build_file_service()
    result = await file_service.purge(request.wallet, body.get('id'))
    return JsonResponse(result)


@require_POST
@require_wallet_signature("analyze")
async def analyze(request):
    body = parse_json_body(request)
    file_service = dependencies.build_file_service()
    result = await file_service.analyze(request.wallet, body.get('fileId'))
    return JsonResponse(result)


@require_POST
@require_wallet_signature("export_summary")
async def export_summary(request):
    body = parse_json_body(request)
    file_service = dependencies.build_file_service()
    cid = await file_service.export_summary(request.wallet, body.get('fileId'), body.get('summary'))
    return JsonResponse({"status": "exported", "cid": cid})


@require_POST
@require_wallet_signature("download")
async def download(request):
    """
    Hands out a short-lived stream URL for an owned file. The URL carries an
    access token, never the content identifier.
    """
    body = parse_json_body(request)
    file_id = body.get('fileId')
    if not file_id:
        raise ValidationError("Missing required parameters")

    file_service = dependencies.build_file_service()
    record = await file_service.ownership_verifier.require(file_id, request.wallet)
    token = dependencies.build_token_broker(file_service).grant(record, request.wallet)

    logger.info(f"Prepared download of {record.filename} for wallet: {request.wallet}")
    return JsonResponse({
        "downloadUrl": f"/stream-file/{token.token}",
        "filename": record.filename,
        "size": record.size,
        "created_at": record.created_at,
        "expires": token.expires_ms,
    })


@require_POST
@require_wallet_signature("debug")
async def debug(request):
    file_service = dependencies.build_file_service()
    return JsonResponse(await file_service.debug(request.wallet))


@require_GET
@require_wallet_signature("access")
async def secure_file(request, file_id):
    """
    Issues an access token for one owned file.
    """
    file_service = dependencies.build_file_service()
    token = await dependencies.build_token_broker(file_service).issue(file_id, request.wallet)
    return JsonResponse({
        "accessToken": token.token,
        "expires": token.expires_ms,
        "filename": token.filename,
        "size": token.size,
    })


@require_GET
@require_wallet_signature("download")
async def stream_file(request, access_token):
    """
    Streams a file for a token, re-checking the token's wallet binding and the
    file's ownership first.
    """
    file_service = dependencies.build_file_service()
    token = await dependencies.build_token_broker(file_service).consume(access_token, request.wallet)
    stream = await file_service.open_content(token)
    logger.info(f"Streaming file via secure token: {token.filename} for verified owner: {request.wallet}")
    return _file_response(stream, token.filename)


@require_GET
async def stream_file_simple(request, access_token):
    """
    Streams a file for a token without a second signature.
    """
    file_service = dependencies.build_file_service()
    token = dependencies.build_token_broker(file_service).consume_simple(access_token)
    stream = await file_service.open_content(token)
    logger.info(f"File downloaded with simple token: {token.filename}")
    return _file_response(stream, token.filename)


@require_GET
async def health(request):
    store = dependencies.get_token_store()
    return JsonResponse({
        "status": "healthy",
        "timestamp": _timestamp(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "pythonVersion": platform.python_version(),
        "activeTokens": len(store) if store is not None else 0,
    })


def not_found(request, exception=None):
    return JsonResponse({
        "error": "Endpoint not found",
        "path": request.path,
        "method": request.method,
    }, status=404)
