import base64
import binascii
import hashlib
import logging
import re

from django.conf import settings

from apps.files.exceptions import (
    AlreadyActiveError,
    MetadataConflictError,
    NotFoundOrUnauthorizedError,
    OwnershipConflictError,
    UnsupportedTypeError,
    ValidationError,
)
from apps.files.models import FileRecord, generate_file_id, now_iso, sanitize_filename
from apps.files.repository import BaseMetadataRepository
from apps.files.services.encryption_service import EncryptionService
from apps.files.services.ownership_service import OwnershipVerifier
from apps.files.services.storage_service import StorageService
from apps.files.services.summary_service import SummaryService, is_supported

logger = logging.getLogger(__name__)

WALLET_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

ANALYZE_MAX_BYTES = 10 * 1024 * 1024


class FileService:
    """
    Orchestrates the file lifecycle (upload, list, soft delete, restore, purge,
    analysis) by coordinating the storage service, the CID cipher and the
    wallet's metadata document. Primary service layer for file management.

    Every change to a wallet's metadata goes through _mutate, a
    read-modify-write that is retried when another writer got there first.
    """

    def __init__(self, metadata_repository: BaseMetadataRepository, storage_service=None,
                 encryption_service=None, summary_service=None, ownership_verifier=None):
        if not metadata_repository:
            raise ValueError("metadata_repository is required")
        if not isinstance(metadata_repository, BaseMetadataRepository):
            raise TypeError("metadata_repository must be an instance of BaseMetadataRepository")
        self.metadata_repository = metadata_repository

        if not storage_service:
            logger.info("No StorageService provided, using the configured provider")
            storage_service = StorageService()
        self._storage_service = storage_service

        if not encryption_service:
            logger.debug("No EncryptionService provided, creating default instance")
            encryption_service = EncryptionService()
        self._encryption_service = encryption_service

        if not summary_service:
            summary_service = SummaryService()
        self._summary_service = summary_service

        if not ownership_verifier:
            ownership_verifier = OwnershipVerifier(metadata_repository)
        self.ownership_verifier = ownership_verifier

        self.write_attempts = getattr(settings, "METADATA_WRITE_ATTEMPTS", 3)
        timeouts = getattr(settings, "UPSTREAM_TIMEOUTS", {})
        self.content_timeout = timeouts.get("content", 30.0)

    async def _mutate(self, wallet, change):
        """
        Loads the wallet's records, applies change(records) and writes the result
        with the loaded version as precondition.

        change returns (records_to_write, result); records_to_write None means
        nothing changed and no write happens. Exceptions raised by change
        propagate without writing.
        """
        for attempt in range(1, self.write_attempts + 1):
            snapshot = await self.metadata_repository.load(wallet)
            records, result = change(snapshot.records)
            if records is None:
                return result
            try:
                await self.metadata_repository.write(wallet, records, expected_version=snapshot.version)
                return result
            except MetadataConflictError:
                if attempt == self.write_attempts:
                    logger.error(f"Giving up on metadata update for {wallet} after {attempt} conflicting writes")
                    raise
                logger.warning(f"Concurrent metadata update for {wallet}, retrying ({attempt}/{self.write_attempts})")

    @staticmethod
    def _find_owned(records, file_id, wallet):
        for record in records:
            if record.id == file_id and record.is_owned_by(wallet):
                return record
        return None

    async def upload(self, wallet, filename, data, size, project=None) -> FileRecord:
        """
        Orchestrates: decode -> hash -> pin plaintext -> encrypt CID -> append record
        """
        if not wallet or not WALLET_PATTERN.match(wallet):
            raise ValidationError("Invalid input - missing required fields", details="Invalid wallet address")
        if not filename or not isinstance(filename, str):
            raise ValidationError("Invalid input - missing required fields", details="filename is required")
        if not data or not isinstance(data, str):
            raise ValidationError("Invalid input - missing required fields", details="base64 is required")
        if size in (None, "", 0) or isinstance(size, bool):
            raise ValidationError("Invalid input - missing required fields", details="size is required")
        try:
            size = int(size)
        except (TypeError, ValueError):
            raise ValidationError("Invalid file size", details=f"size must be an integer, got {size!r}")
        if size < 0:
            raise ValidationError("Invalid file size", details="size cannot be negative")

        try:
            content = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Invalid base64 content") from e
        if not content:
            raise ValidationError("Invalid base64 content", details="decoded content is empty")

        final_filename = sanitize_filename(filename)
        logger.info(f"Uploading file: {final_filename} for wallet: {wallet}")

        cid = await self._storage_service.pin_file(content, final_filename)
        logger.debug(f"Pinned {final_filename}, encrypting CID")

        record = FileRecord(
            id=generate_file_id(),
            filename=final_filename,
            size=size,
            owner=wallet,
            hash=hashlib.sha256(content).hexdigest(),
            project=project or "default",
            created_at=now_iso(),
            ipfs_cid=self._encryption_service.encrypt_cid(cid),
        )

        def append(records):
            return records + [record], record

        await self._mutate(wallet, append)
        logger.info(f"File uploaded successfully: {record.id} ({final_filename})")
        return record

    async def list_files(self, wallet, project=None):
        """
        Returns (active records owned by wallet, size of the whole document).
        A metadata store that cannot be read lists as empty.
        """
        records = await self.metadata_repository.read(wallet)
        active = [r for r in records if r.is_owned_by(wallet) and r.is_active]
        if project:
            active = [r for r in active if r.project == project]
            logger.debug(f"Filtered by project '{project}': {len(active)} files")
        logger.info(f"Found {len(active)} active files for {wallet} ({len(records)} total)")
        return active, len(records)

    async def list_deleted(self, wallet):
        records = await self.metadata_repository.read(wallet)
        deleted = [r for r in records if r.is_owned_by(wallet) and r.is_deleted]
        logger.info(f"Found {len(deleted)} deleted files for {wallet}")
        return deleted

    async def delete(self, wallet, file_id) -> FileRecord:
        """
        Soft delete. Deleting a file that is already in the recycle bin returns
        it unchanged, without a write.
        """
        if not file_id:
            raise ValidationError("Missing file ID")

        def mark_deleted(records):
            record = self._find_owned(records, file_id, wallet)
            if record is None:
                raise NotFoundOrUnauthorizedError()
            if record.is_deleted:
                logger.info(f"File {file_id} already deleted, nothing to do")
                return None, record
            record.mark_deleted()
            return records, record

        record = await self._mutate(wallet, mark_deleted)
        logger.info(f"File deleted: {file_id} by {wallet}")
        return record

    async def restore(self, wallet, file_id) -> FileRecord:
        """
        Brings a soft-deleted file back and waits until the new metadata is
        visible. Looks at every record, not only live ones.
        """
        if not file_id:
            raise ValidationError("Missing file ID")

        def mark_restored(records):
            record = self._find_owned(records, file_id, wallet)
            if record is None:
                raise NotFoundOrUnauthorizedError()
            if record.is_active:
                logger.warning(f"File {file_id} is already active (not deleted)")
                raise AlreadyActiveError(details={
                    "file": {"id": record.id, "filename": record.filename, "is_deleted": record.is_deleted}
                })
            logger.info(f"Restoring {record.filename} (was deleted at: {record.deleted_at})")
            record.mark_restored()
            return records, record

        await self._mutate(wallet, mark_restored)

        def is_restored(snapshot):
            record = snapshot.find(file_id)
            return record is not None and record.is_active

        snapshot = await self.metadata_repository.wait_for(wallet, is_restored)
        restored = snapshot.find(file_id)
        logger.info(f"File restored successfully: {restored.filename} ({restored.id})")
        return restored

    async def purge(self, wallet, file_id=None) -> dict:
        """
        Permanently removes one recycled file, or every recycled file of the
        wallet when file_id is not given. The pinned content is left alone.
        """
        def remove(records):
            if file_id:
                record = self._find_owned(records, file_id, wallet)
                if record is None:
                    raise NotFoundOrUnauthorizedError()
                if record.is_active:
                    raise OwnershipConflictError(
                        "File must be deleted before it can be permanently removed",
                        details={"id": record.id, "is_deleted": False},
                    )
                removed = [record]
            else:
                removed = [r for r in records if r.is_deleted and r.is_owned_by(wallet)]

            removed_ids = {r.id for r in removed}
            remaining = [r for r in records if r.id not in removed_ids]
            result = {
                "status": "recycle_bin_cleared",
                "deletedCount": len(removed),
                "remainingFiles": len(remaining),
                "deletedIds": [r.id for r in removed],
            }
            if not removed:
                return None, result
            return remaining, result

        result = await self._mutate(wallet, remove)
        logger.info(f"Cleared recycle bin for {wallet}: removed {result['deletedCount']} files")
        return result

    async def analyze(self, wallet, file_id) -> dict:
        """
        Summarizes a text file once and caches the summary on its record.
        """
        if not file_id:
            raise ValidationError("Missing required parameters")

        record = await self.ownership_verifier.require(file_id, wallet)
        if record.analysis:
            logger.info(f"Returning cached analysis for {file_id}")
            return {"summary": record.analysis, "cached": True}

        if not is_supported(record.extension):
            raise UnsupportedTypeError(f"File type .{record.extension} is not supported for analysis")
        if not record.ipfs_cid:
            raise ValidationError("No IPFS CID available for this file")

        cid = self._encryption_service.decrypt_cid(record.ipfs_cid)
        raw = await self._storage_service.fetch(cid, max_bytes=ANALYZE_MAX_BYTES, timeout=self.content_timeout)
        content = raw.decode("utf-8", errors="replace")

        summary = await self._summary_service.summarize(record.extension, content)

        def store_analysis(records):
            current = self._find_owned(records, file_id, wallet)
            if current is None or current.is_deleted:
                raise NotFoundOrUnauthorizedError()
            current.analysis = summary
            return records, current

        await self._mutate(wallet, store_analysis)
        logger.info(f"Analysis completed and saved for {file_id}")
        return {"summary": summary, "cached": False}

    async def export_summary(self, wallet, file_id, summary) -> str:
        """
        Pins a summary as its own JSON document and returns that document's CID.
        """
        if not file_id or not summary or not isinstance(summary, str):
            raise ValidationError("Missing fileId, summary, or wallet address")

        await self.ownership_verifier.require(file_id, wallet)

        document = {
            "summary": summary,
            "fileId": file_id,
            "owner": wallet,
            "exportedAt": now_iso(),
        }
        keyvalues = {"fileId": file_id, "owner": wallet, "type": "summary"}
        cid = await self._storage_service.pin_json(document, f"summary_{file_id}_{wallet}", keyvalues)
        logger.info(f"Summary exported to IPFS: {cid}")
        return cid

    async def open_content(self, record_or_token):
        """
        Decrypts the stored CID of a record (or access token) and opens a
        streaming download of the content.
        """
        cid = self._encryption_service.decrypt_cid(record_or_token.ipfs_cid)
        return await self._storage_service.open_stream(cid)

    async def debug(self, wallet) -> dict:
        records = await self.metadata_repository.read(wallet)
        active = [r for r in records if r.is_active]
        return {
            "wallet": wallet,
            "safeWallet": wallet.lower(),
            "totalFiles": len(records),
            "activeFiles": len(active),
            "deletedFiles": len(records) - len(active),
        }
