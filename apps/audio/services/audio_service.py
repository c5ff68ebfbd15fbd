import logging
import time

import aiofiles.os

from apps.files.exceptions import ValidationError
from apps.files.repository import BaseMetadataRepository
from apps.files.services.ownership_service import OwnershipVerifier
from apps.audio import storage
from apps.audio.exceptions import AudioNotFoundError
from apps.audio.services.tts_service import TextToSpeechService, prepare_text

logger = logging.getLogger(__name__)


class AudioService:
    """
    Generates spoken summaries of a wallet's files and resolves the generated
    audio files back to the file they belong to.
    """

    def __init__(self, metadata_repository: BaseMetadataRepository, tts_service=None, ownership_verifier=None):
        if not isinstance(metadata_repository, BaseMetadataRepository):
            raise TypeError("metadata_repository must be an instance of BaseMetadataRepository")
        self.metadata_repository = metadata_repository
        self.tts_service = tts_service or TextToSpeechService()
        self.ownership_verifier = ownership_verifier or OwnershipVerifier(metadata_repository)

    async def generate(self, wallet, file_id, text) -> dict:
        """
        Orchestrates: validate -> check TTS key -> ownership -> synthesize to disk
        """
        if not text or not isinstance(text, str) or not text.strip():
            raise ValidationError("Missing or invalid 'text' field", details="Text must be a non-empty string")
        if not wallet or len(wallet) != 42:
            raise ValidationError(
                "Invalid wallet address",
                details="x-evm-address header must be a valid 42-character wallet address",
            )
        if not isinstance(file_id, str) or not storage.FILE_ID_PATTERN.match(file_id):
            raise ValidationError(
                "Invalid fileId",
                details="fileId is required and must be in the format file_XXXXXXXXXXXXX_xxxxxxxx",
            )

        await self.tts_service.ensure_key()

        record = await self.ownership_verifier.require(file_id, wallet)
        logger.info(f"Verified ownership: {wallet} owns file {file_id} ({record.filename})")

        audio_name = storage.build_audio_filename(wallet, file_id, record.filename, int(time.time() * 1000))
        path = storage.audio_dir() / audio_name
        size = await self.tts_service.synthesize_to_file(prepare_text(text), path)

        return {
            "url": f"/audio/serve/{audio_name}",
            "filename": audio_name,
            "originalFile": record.filename,
            "fileId": file_id,
            "size": size,
        }

    async def locate(self, wallet, filename, require_known_type=True):
        """
        Returns (record, path, extension) for an audio file the wallet owns.
        """
        extension = storage.audio_extension(filename or "")
        if require_known_type and extension not in storage.AUDIO_TYPES:
            raise ValidationError("Invalid audio file type")

        path = storage.resolve_audio_path(filename)
        file_id = storage.extract_file_id(filename)
        record = await self.ownership_verifier.require(file_id, wallet)

        if not await aiofiles.os.path.isfile(path):
            logger.error(f"Audio file not found at: {path}")
            raise AudioNotFoundError()
        return record, path, extension

    async def list_audio_records(self, wallet):
        records = await self.metadata_repository.read(wallet)
        return [
            r for r in records
            if r.is_active and r.is_owned_by(wallet) and storage.is_audio_filename(r.filename)
        ]
