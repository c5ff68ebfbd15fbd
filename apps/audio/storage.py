"""
Helpers for the generated audio files kept on local disk.

Audio files are named <wallet>_<fileId>_<stem>_audio_<ms>.<ext>, so the owning
file id can be read back from the name and checked against the wallet's
metadata before anything is served.
"""
import os
import re
from pathlib import Path

import aiofiles
from django.conf import settings

from apps.files.exceptions import ValidationError

AUDIO_TYPES = {
    'mp3': 'audio/mpeg',
    'wav': 'audio/wav',
    'ogg': 'audio/ogg',
    'm4a': 'audio/mp4',
}

FILE_ID_PATTERN = re.compile(r"file_\d{13}_[0-9a-f]{8}")
SAFE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")

READ_CHUNK_SIZE = 64 * 1024


def audio_dir() -> Path:
    path = Path(getattr(settings, "AUDIO_DIR", Path(settings.BASE_DIR) / "audio"))
    path.mkdir(parents=True, exist_ok=True)
    return path


def build_audio_filename(wallet, file_id, original_filename, timestamp_ms, extension="mp3") -> str:
    stem = original_filename.rsplit(".", 1)[0] if "." in original_filename else original_filename
    name = f"{wallet}_{file_id}_{stem}_audio_{timestamp_ms}.{extension}"
    name = re.sub(r"[^a-zA-Z0-9_.\-]", "_", name)
    return re.sub(r"_+", "_", name)


def audio_extension(filename) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def is_audio_filename(filename) -> bool:
    return audio_extension(filename or "") in AUDIO_TYPES


def extract_file_id(filename) -> str:
    match = FILE_ID_PATTERN.search(filename or "")
    if not match:
        raise ValidationError("Invalid audio filename", details=f"Could not extract fileId from filename: {filename}")
    return match.group(0)


def resolve_audio_path(filename) -> Path:
    """
    Maps a client supplied name to a path inside the audio directory.
    Raises ValidationError for names that could escape it.
    """
    if not filename or not SAFE_NAME_PATTERN.match(filename) or filename.startswith("."):
        raise ValidationError("Invalid audio filename")
    base = audio_dir().resolve()
    path = (base / filename).resolve()
    if path.parent != base:
        raise ValidationError("Invalid audio filename")
    return path


def list_audio_files(prefix=None):
    base = audio_dir()
    names = sorted(name for name in os.listdir(base) if (base / name).is_file())
    if prefix:
        names = [name for name in names if name.lower().startswith(prefix.lower())]
    return names


async def read_chunks(path, chunk_size=READ_CHUNK_SIZE):
    async with aiofiles.open(path, "rb") as fh:
        while True:
            chunk = await fh.read(chunk_size)
            if not chunk:
                break
            yield chunk


def remove_quietly(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
