"""
Tests for the IPFS metadata repository.
"""
import asyncio
import json

import pytest

from apps.files.exceptions import (
    MetadataConflictError,
    MetadataUnavailableError,
    VerificationFailedError,
    WriteError,
)
from apps.files.repository import IPFSMetadataRepository
from apps.files.tests.factories import FileRecordFactory

WALLET = "0xAbC0000000000000000000000000000000000001"


@pytest.mark.unit
class TestMetadataRead:
    """Test read (fail-open) and load (strict)."""

    def test_empty_wallet(self, metadata_repository):
        """Test that a wallet without metadata reads as an empty list with no version."""
        snapshot = asyncio.run(metadata_repository.load(WALLET))

        assert snapshot.records == []
        assert snapshot.version is None
        assert asyncio.run(metadata_repository.read(WALLET)) == []

    def test_write_then_read(self, metadata_repository):
        """Test that written records come back from the next read."""
        records = FileRecordFactory.build_batch(2, owner=WALLET)

        cid = asyncio.run(metadata_repository.write(WALLET, records))
        snapshot = asyncio.run(metadata_repository.load(WALLET))

        assert snapshot.version == cid
        assert [r.id for r in snapshot.records] == [r.id for r in records]

    def test_wallet_is_lower_cased(self, metadata_repository, memory_provider):
        """Test that documents are keyed by the lower-cased wallet."""
        asyncio.run(metadata_repository.write(WALLET, [FileRecordFactory(owner=WALLET)]))

        pin = memory_provider.pins[-1]
        assert pin["name"] == f"metadata_{WALLET.lower()}.json"
        assert pin["keyvalues"]["wallet"] == WALLET.lower()
        assert pin["keyvalues"]["type"] == "metadata"
        assert pin["keyvalues"]["timestamp"]
        assert len(asyncio.run(metadata_repository.read(WALLET.upper().replace("0X", "0x")))) == 1

    def test_latest_document_wins(self, metadata_repository):
        """Test that after two writes the second one is read."""
        first = FileRecordFactory(owner=WALLET)
        second = FileRecordFactory(owner=WALLET)

        asyncio.run(metadata_repository.write(WALLET, [first]))
        asyncio.run(metadata_repository.write(WALLET, [first, second]))

        assert len(asyncio.run(metadata_repository.read(WALLET))) == 2

    def test_index_outage(self, metadata_repository, memory_provider):
        """Test that read fails open while load raises MetadataUnavailableError."""
        asyncio.run(metadata_repository.write(WALLET, [FileRecordFactory(owner=WALLET)]))
        memory_provider.fail_index = True

        assert asyncio.run(metadata_repository.read(WALLET)) == []
        with pytest.raises(MetadataUnavailableError) as exc_info:
            asyncio.run(metadata_repository.load(WALLET))
        assert exc_info.value.status_code == 503

    def test_gateway_outage(self, metadata_repository, memory_provider):
        """Test that a fetch failure is reported as unavailable, not empty."""
        asyncio.run(metadata_repository.write(WALLET, [FileRecordFactory(owner=WALLET)]))
        memory_provider.fail_fetch = True

        with pytest.raises(MetadataUnavailableError):
            asyncio.run(metadata_repository.load(WALLET))

    def test_corrupt_document(self, metadata_repository, memory_provider):
        """Test that a document that is not a JSON array is unavailable."""
        asyncio.run(memory_provider.pin_json({"not": "a list"}, "x.json", {"wallet": WALLET.lower(), "type": "metadata"}))

        with pytest.raises(MetadataUnavailableError):
            asyncio.run(metadata_repository.load(WALLET))
        assert asyncio.run(metadata_repository.read(WALLET)) == []

    def test_invalid_entries_are_skipped(self, metadata_repository, memory_provider):
        """Test that non-object entries in the array are dropped."""
        record = FileRecordFactory(owner=WALLET)
        document = [record.to_dict(), "garbage", 42]
        asyncio.run(memory_provider.pin_json(document, "x.json", {"wallet": WALLET.lower(), "type": "metadata"}))

        records = asyncio.run(metadata_repository.read(WALLET))

        assert [r.id for r in records] == [record.id]

    def test_empty_wallet_is_rejected(self, metadata_repository):
        """Test that a missing wallet is a programming error."""
        with pytest.raises(ValueError):
            asyncio.run(metadata_repository.load(""))

    def test_requires_storage_service(self):
        """Test that the repository cannot be built without storage."""
        with pytest.raises(ValueError):
            IPFSMetadataRepository(None)


@pytest.mark.unit
class TestMetadataWrite:
    """Test optimistic concurrency and write failures."""

    def test_write_with_matching_version(self, metadata_repository):
        """Test that a write based on the latest version succeeds."""
        version = asyncio.run(metadata_repository.write(WALLET, []))

        new_version = asyncio.run(
            metadata_repository.write(WALLET, [FileRecordFactory(owner=WALLET)], expected_version=version)
        )

        assert new_version != version

    def test_write_on_empty_wallet_with_none_version(self, metadata_repository):
        """Test that None is the expected version of a wallet with no document."""
        asyncio.run(metadata_repository.write(WALLET, [FileRecordFactory(owner=WALLET)], expected_version=None))

        assert len(asyncio.run(metadata_repository.read(WALLET))) == 1

    def test_stale_version_conflicts(self, metadata_repository, memory_provider):
        """Test that a write based on an outdated snapshot is refused."""
        stale = asyncio.run(metadata_repository.write(WALLET, []))
        asyncio.run(metadata_repository.write(WALLET, [FileRecordFactory(owner=WALLET)]))
        pins_before = len(memory_provider.pins)

        with pytest.raises(MetadataConflictError) as exc_info:
            asyncio.run(metadata_repository.write(WALLET, [], expected_version=stale))

        assert exc_info.value.status_code == 409
        assert len(memory_provider.pins) == pins_before

    def test_pin_failure(self, metadata_repository, memory_provider):
        """Test that a failed pin raises WriteError."""
        memory_provider.fail_pins = True

        with pytest.raises(WriteError) as exc_info:
            asyncio.run(metadata_repository.write(WALLET, []))

        assert exc_info.value.message.startswith("Failed to write metadata")

    def test_records_must_be_a_list(self, metadata_repository):
        """Test that write rejects anything but a list."""
        with pytest.raises(ValueError):
            asyncio.run(metadata_repository.write(WALLET, {"id": "x"}))

    def test_written_document_is_json_array(self, metadata_repository, memory_provider):
        """Test the pinned bytes are a JSON array of record objects."""
        record = FileRecordFactory(owner=WALLET)

        cid = asyncio.run(metadata_repository.write(WALLET, [record]))

        document = json.loads(memory_provider.blobs[cid])
        assert document == [record.to_dict()]


@pytest.mark.unit
class TestWaitFor:
    """Test polling until the metadata reaches an expected state."""

    def test_returns_first_matching_snapshot(self, metadata_repository):
        """Test that wait_for returns as soon as the predicate holds."""
        record = FileRecordFactory(owner=WALLET)
        asyncio.run(metadata_repository.write(WALLET, [record]))

        snapshot = asyncio.run(metadata_repository.wait_for(WALLET, lambda s: s.find(record.id) is not None))

        assert snapshot.find(record.id) is not None

    def test_gives_up_after_attempts(self, memory_provider, storage_service):
        """Test that VerificationFailedError is raised once attempts are used up."""
        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)

        repository = IPFSMetadataRepository(storage_service, sleep=record_sleep)

        with pytest.raises(VerificationFailedError) as exc_info:
            asyncio.run(repository.wait_for(WALLET, lambda s: False, attempts=4, delay=0.5, backoff=2.0))

        assert exc_info.value.code == "verification_failed"
        assert sleeps == [0.5, 1.0, 2.0]

    def test_tolerates_unavailable_reads(self, metadata_repository, memory_provider):
        """Test that a read failure during polling counts as a failed attempt, not an error."""
        record = FileRecordFactory(owner=WALLET)
        asyncio.run(metadata_repository.write(WALLET, [record]))
        original_load = metadata_repository.load
        calls = []

        async def flaky_load(wallet):
            calls.append(wallet)
            if len(calls) == 1:
                raise MetadataUnavailableError(details="index lagging")
            return await original_load(wallet)

        metadata_repository.load = flaky_load

        snapshot = asyncio.run(metadata_repository.wait_for(WALLET, lambda s: s.find(record.id) is not None))

        assert len(calls) == 2
        assert snapshot.find(record.id) is not None

    def test_default_attempts_from_settings(self, metadata_repository, settings):
        """Test that the attempt count defaults to METADATA_VERIFY_ATTEMPTS."""
        settings.METADATA_VERIFY_ATTEMPTS = 2
        calls = []
        original_load = metadata_repository.load

        async def counting_load(wallet):
            calls.append(wallet)
            return await original_load(wallet)

        metadata_repository.load = counting_load

        with pytest.raises(VerificationFailedError):
            asyncio.run(metadata_repository.wait_for(WALLET, lambda s: False))

        assert len(calls) == 2
