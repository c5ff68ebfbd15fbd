import asyncio
import json
import logging
from abc import ABC, abstractmethod

from django.conf import settings

from .exceptions import (
    MetadataConflictError,
    MetadataUnavailableError,
    UpstreamError,
    VerificationFailedError,
    WriteError,
)
from .models import FileRecord, MetadataSnapshot, now_iso

logger = logging.getLogger(__name__)

# Sentinel: write() without an optimistic concurrency precondition
ANY_VERSION = object()


class BaseMetadataRepository(ABC):
    """
    Abstract base class for per-wallet metadata repositories.
    Defines the contract for reading and replacing a wallet's list of FileRecords.
    """

    @abstractmethod
    async def read(self, wallet):
        """
        Returns the wallet's records. Never raises for store failures: an
        unreachable or corrupt store reads as an empty list.
        """
        pass

    @abstractmethod
    async def load(self, wallet) -> MetadataSnapshot:
        """
        Returns the wallet's records and the version they were read from.
        Raises MetadataUnavailableError when the store cannot be read.
        """
        pass

    @abstractmethod
    async def write(self, wallet, records, expected_version=ANY_VERSION) -> str:
        """
        Replaces the wallet's records and returns the new version.
        If expected_version is given and the latest version differs, raises
        MetadataConflictError without writing.
        """
        pass

    async def wait_for(self, wallet, predicate, attempts=None, delay=None, backoff=None) -> MetadataSnapshot:
        """
        Re-reads the wallet's metadata until predicate(snapshot) is true, to ride
        out the lag between a write and the index returning it.
        Raises VerificationFailedError once the attempts are used up.
        """
        attempts = attempts or getattr(settings, "METADATA_VERIFY_ATTEMPTS", 15)
        delay = getattr(settings, "METADATA_VERIFY_DELAY", 0.5) if delay is None else delay
        backoff = getattr(settings, "METADATA_VERIFY_BACKOFF", 1.0) if backoff is None else backoff

        for attempt in range(1, attempts + 1):
            try:
                snapshot = await self.load(wallet)
                if predicate(snapshot):
                    logger.debug(f"Metadata for {wallet} verified after {attempt} attempt(s)")
                    return snapshot
            except MetadataUnavailableError as e:
                logger.warning(f"Metadata read failed while verifying {wallet} (attempt {attempt}): {e.details}")

            if attempt < attempts:
                await self._sleep(delay)
                delay *= backoff

        logger.error(f"Metadata for {wallet} not in expected state after {attempts} attempt(s)")
        raise VerificationFailedError()

    async def _sleep(self, seconds):
        await asyncio.sleep(seconds)


class IPFSMetadataRepository(BaseMetadataRepository):
    """
    Keeps each wallet's metadata as a JSON array pinned through the storage
    service, tagged {wallet, type=metadata, timestamp}. The latest document is
    found by querying the provider's index; older documents are left behind.
    """

    DOCUMENT_TYPE = "metadata"

    def __init__(self, storage_service, sleep=None):
        if storage_service is None:
            raise ValueError("storage_service is required")
        self.storage_service = storage_service
        self._sleep_func = sleep
        timeouts = getattr(settings, "UPSTREAM_TIMEOUTS", {})
        self.fetch_timeout = timeouts.get("metadata", 15.0)

    async def _sleep(self, seconds):
        if self._sleep_func is not None:
            await self._sleep_func(seconds)
        else:
            await asyncio.sleep(seconds)

    @staticmethod
    def _normalize(wallet):
        if not wallet:
            raise ValueError("Wallet is required")
        return wallet.lower()

    def _keyvalues(self, safe_wallet):
        return {"wallet": safe_wallet, "type": self.DOCUMENT_TYPE}

    async def read(self, wallet):
        safe_wallet = self._normalize(wallet)
        try:
            snapshot = await self.load(safe_wallet)
        except MetadataUnavailableError as e:
            logger.error(f"Failed to read metadata for {safe_wallet}: {e.details}")
            return []
        return snapshot.records

    async def load(self, wallet) -> MetadataSnapshot:
        safe_wallet = self._normalize(wallet)

        try:
            cid = await self.storage_service.find_latest(self._keyvalues(safe_wallet))
        except UpstreamError as e:
            raise MetadataUnavailableError(details=f"Metadata index query failed: {e.message}") from e

        if not cid:
            logger.info(f"No metadata found for wallet: {safe_wallet}")
            return MetadataSnapshot(records=[], version=None)

        try:
            raw = await self.storage_service.fetch(cid, timeout=self.fetch_timeout)
        except UpstreamError as e:
            raise MetadataUnavailableError(details=f"Metadata fetch failed: {e.message}") from e

        records = self._parse(raw, safe_wallet)
        logger.debug(f"Read {len(records)} files for {safe_wallet}")
        return MetadataSnapshot(records=records, version=cid)

    def _parse(self, raw, safe_wallet):
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MetadataUnavailableError(details="Failed to parse metadata as JSON") from e

        if not isinstance(document, list):
            raise MetadataUnavailableError(details="Invalid metadata format - expected array")

        records = []
        for entry in document:
            if not isinstance(entry, dict):
                logger.warning(f"Skipping invalid file entry in metadata for {safe_wallet}: {entry!r}")
                continue
            records.append(FileRecord.from_dict(entry))
        return records

    async def write(self, wallet, records, expected_version=ANY_VERSION) -> str:
        safe_wallet = self._normalize(wallet)
        if not isinstance(records, list):
            raise ValueError("Files must be a list")

        if expected_version is not ANY_VERSION:
            try:
                current = await self.storage_service.find_latest(self._keyvalues(safe_wallet))
            except UpstreamError as e:
                raise MetadataUnavailableError(details=f"Metadata index query failed: {e.message}") from e
            if current != expected_version:
                logger.warning(f"Metadata for {safe_wallet} changed since it was read, refusing to overwrite")
                raise MetadataConflictError()

        document = [r.to_dict() if isinstance(r, FileRecord) else r for r in records]
        keyvalues = {
            **self._keyvalues(safe_wallet),
            "timestamp": now_iso(),
        }

        try:
            cid = await self.storage_service.pin_json(document, f"metadata_{safe_wallet}.json", keyvalues)
        except UpstreamError as e:
            logger.error(f"Failed to write metadata for {safe_wallet}: {e.message}")
            raise WriteError(f"Failed to write metadata: {e.message}") from e

        logger.info(f"Metadata uploaded for {safe_wallet}: {cid} ({len(document)} files)")
        return cid
