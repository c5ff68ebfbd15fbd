import logging
from typing import Optional

from apps.files.exceptions import NotFoundOrUnauthorizedError
from apps.files.models import FileRecord
from apps.files.repository import BaseMetadataRepository

logger = logging.getLogger(__name__)


class OwnershipVerifier:
    """
    Gate in front of every operation on a single live file.

    A file passes when it is in the wallet's metadata, owned by that wallet
    (case-insensitive) and not soft-deleted. Reads are strict: if the metadata
    store cannot be reached, MetadataUnavailableError propagates instead of the
    file looking absent.
    """

    def __init__(self, metadata_repository: BaseMetadataRepository):
        if not isinstance(metadata_repository, BaseMetadataRepository):
            raise TypeError("metadata_repository must be an instance of BaseMetadataRepository")
        self.metadata_repository = metadata_repository

    async def verify(self, file_id, wallet) -> Optional[FileRecord]:
        if not file_id or not wallet:
            return None

        snapshot = await self.metadata_repository.load(wallet)
        record = snapshot.find(file_id)

        if record is None:
            logger.debug(f"File {file_id} not found for {wallet}")
            return None
        if not record.is_owned_by(wallet):
            logger.warning(f"Ownership check failed: {wallet} does not own {file_id}")
            return None
        if record.is_deleted:
            logger.debug(f"File {file_id} is deleted")
            return None
        return record

    async def require(self, file_id, wallet) -> FileRecord:
        record = await self.verify(file_id, wallet)
        if record is None:
            raise NotFoundOrUnauthorizedError()
        return record
