import logging
import platform
import socket

import aiofiles.os
from django.http import JsonResponse, StreamingHttpResponse
from django.views.decorators.http import require_GET, require_POST

from apps.files import dependencies
from apps.files.decorators import parse_json_body, require_wallet_signature
from apps.files.exceptions import UpstreamError
from apps.files.repository import IPFSMetadataRepository

from . import storage
from .ratelimit import rate_limit
from .services.audio_service import AudioService
from .services.tts_service import TextToSpeechService

logger = logging.getLogger(__name__)


def build_audio_service():
    repository = IPFSMetadataRepository(dependencies.build_storage_service())
    return AudioService(repository)


def _audio_response(path, size, content_type, disposition, extra_headers=None):
    response = StreamingHttpResponse(storage.read_chunks(path), content_type=content_type)
    response['Content-Length'] = str(size)
    response['Content-Disposition'] = disposition
    for header, value in (extra_headers or {}).items():
        response[header] = value
    return response


@require_POST
@rate_limit("audio", message="Too many audio generation requests from this IP, please try again after 15 minutes")
@require_wallet_signature("tts_audio")
async def generate_audio(request):
    """
    Generates a spoken version of text for one of the wallet's files.
    """
    body = parse_json_body(request)
    audio_service = build_audio_service()
    result = await audio_service.generate(request.wallet, body.get('fileId'), body.get('text'))
    return JsonResponse(result)


@require_GET
@require_wallet_signature("serve_audio")
async def serve_audio(request, filename):
    audio_service = build_audio_service()
    record, path, extension = await audio_service.locate(request.wallet, filename)

    stats = await aiofiles.os.stat(path)
    logger.info(f"Serving audio: {filename} to owner {request.wallet}")
    return _audio_response(
        path,
        stats.st_size,
        storage.AUDIO_TYPES[extension],
        f'inline; filename="{record.filename}_audio.{extension}"',
        {
            'Accept-Ranges': 'bytes',
            'Cache-Control': 'public, max-age=86400',
            'ETag': f'"{stats.st_size}-{int(stats.st_mtime * 1000)}"',
        },
    )


@require_GET
@require_wallet_signature("download_audio")
async def download_audio(request, filename):
    audio_service = build_audio_service()
    record, path, _ = await audio_service.locate(request.wallet, filename)
    stats = await aiofiles.os.stat(path)

    logger.info(f"Download request: {filename} by owner {request.wallet}")
    return _audio_response(
        path,
        stats.st_size,
        'audio/mpeg',
        f'attachment; filename="{record.filename}_audio_summary.mp3"',
    )


@require_GET
@require_wallet_signature("list_audio")
async def my_files(request):
    audio_service = build_audio_service()
    records = await audio_service.list_audio_records(request.wallet)
    return JsonResponse({
        "files": [r.public_dict() for r in records],
        "count": len(records),
    })


@require_GET
@require_wallet_signature("debug")
async def debug_info(request):
    audio_service = build_audio_service()
    records = await audio_service.metadata_repository.read(request.wallet)
    audio_dir = storage.audio_dir()
    tts_service = audio_service.tts_service

    return JsonResponse({
        "wallet": request.wallet,
        "metadataExists": len(records) > 0,
        "audioDir": str(audio_dir),
        "audioDirExists": audio_dir.is_dir(),
        "audioFiles": storage.list_audio_files(prefix=f"{request.wallet}_"),
        "totalFiles": len(records),
        "userFiles": [r.public_dict() for r in records],
        "hasElevenlabsKey": bool(tts_service.api_key),
        "environment": {
            "pythonVersion": platform.python_version(),
            "platform": platform.system().lower(),
            "hostname": socket.gethostname(),
        },
    })


@require_GET
@require_wallet_signature("debug")
async def debug_test_api_key(request):
    tts_service = TextToSpeechService()
    if not tts_service.has_valid_key_format():
        return JsonResponse({"valid": False, "error": "Invalid API key format"})

    try:
        user = await tts_service.fetch_user()
    except UpstreamError as e:
        logger.error(f"API key test failed: {e.message}")
        return JsonResponse({"valid": False, "error": e.details or e.message, "status": e.status_code})

    return JsonResponse({"valid": True, "user": user, "keyPreview": tts_service.key_preview})
