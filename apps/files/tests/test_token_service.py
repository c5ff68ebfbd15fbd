"""
Tests for the access token store, broker and sweeper.
"""
import asyncio
import threading
import time

import pytest

from apps.files.exceptions import ForbiddenTokenUseError, NotFoundOrUnauthorizedError, TokenInvalidError
from apps.files.models import AccessToken
from apps.files.services.token_service import AccessTokenStore, TokenSweeper
from apps.files.tests.factories import FileRecordFactory


def make_token(token, expires, file_id="file_1"):
    return AccessToken(
        token=token, file_id=file_id, owner_wallet="0xabc", ipfs_cid="enc",
        filename="a.txt", size=1, expires=expires, created_at=0.0,
    )


@pytest.mark.unit
class TestAccessTokenStore:
    """Test cases for AccessTokenStore."""

    def test_check_unknown_token(self, token_store):
        """Test that an unknown token is rejected with invalid_or_expired."""
        with pytest.raises(TokenInvalidError) as exc_info:
            token_store.check("nope")

        assert exc_info.value.code == "invalid_or_expired"
        assert exc_info.value.status_code == 401

    def test_check_empty_token(self, token_store):
        """Test that an empty token is rejected."""
        with pytest.raises(TokenInvalidError):
            token_store.check("")

    def test_expiry_boundary(self, token_store, fake_clock):
        """Test that a token is accepted just before expiry and removed just after."""
        token_store.add(make_token("t", expires=fake_clock() + 300))

        fake_clock.advance(300 - 0.001)
        assert token_store.check("t").token == "t"

        fake_clock.advance(0.002)
        with pytest.raises(TokenInvalidError) as exc_info:
            token_store.check("t")

        assert exc_info.value.code == "expired"
        assert "t" not in token_store

    def test_sweep_removes_only_expired(self, token_store, fake_clock):
        """Test that sweep removes entries with expires < now and keeps the rest."""
        now = fake_clock()
        token_store.add(make_token("old", expires=now - 1))
        token_store.add(make_token("edge", expires=now))
        token_store.add(make_token("live", expires=now + 10))

        removed = token_store.sweep()

        assert removed == 1
        assert "old" not in token_store
        assert "edge" in token_store
        assert "live" in token_store

    def test_sweep_with_explicit_time(self, token_store, fake_clock):
        """Test sweep(now) uses the given instant."""
        token_store.add(make_token("t", expires=fake_clock() + 10))

        assert token_store.sweep(fake_clock() + 20) == 1
        assert len(token_store) == 0

    def test_bounded_table_sweeps_first(self, fake_clock):
        """Test that a full table makes room by sweeping expired entries."""
        store = AccessTokenStore(max_entries=2, clock=fake_clock)
        store.add(make_token("expired", expires=fake_clock() - 1))
        store.add(make_token("live", expires=fake_clock() + 100))

        store.add(make_token("new", expires=fake_clock() + 200))

        assert len(store) == 2
        assert "live" in store and "new" in store

    def test_bounded_table_evicts_closest_to_expiry(self, fake_clock):
        """Test that, without expired entries, the one expiring first is evicted."""
        store = AccessTokenStore(max_entries=2, clock=fake_clock)
        store.add(make_token("soon", expires=fake_clock() + 10))
        store.add(make_token("later", expires=fake_clock() + 100))

        store.add(make_token("new", expires=fake_clock() + 300))

        assert "soon" not in store
        assert "later" in store and "new" in store

    def test_max_entries_must_be_positive(self):
        """Test that an empty table size is rejected."""
        with pytest.raises(ValueError):
            AccessTokenStore(max_entries=0)

    def test_discard(self, token_store, fake_clock):
        """Test discard reports whether the token existed."""
        token_store.add(make_token("t", expires=fake_clock() + 10))

        assert token_store.discard("t") is True
        assert token_store.discard("t") is False

    def test_concurrent_checks_and_sweeps(self, fake_clock):
        """Test that concurrent checks never see a token another thread has deleted."""
        store = AccessTokenStore(max_entries=1000, clock=fake_clock)
        for i in range(200):
            store.add(make_token(f"t{i}", expires=fake_clock() + (i % 2)))
        fake_clock.advance(0.5)
        errors = []

        def checker():
            for i in range(0, 200, 2):
                try:
                    store.check(f"t{i}")
                except TokenInvalidError:
                    pass
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=checker) for _ in range(4)]
        threads.append(threading.Thread(target=store.sweep))
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(store) == 100


@pytest.mark.unit
class TestAccessTokenBroker:
    """Test cases for AccessTokenBroker."""

    def _store_record(self, metadata_repository, wallet, **kwargs):
        record = FileRecordFactory(owner=wallet, **kwargs)
        asyncio.run(metadata_repository.write(wallet, [record]))
        return record

    def test_issue(self, token_broker, token_store, metadata_repository, owner_account, fake_clock):
        """Test that the owner gets a 64-hex token valid for the TTL."""
        record = self._store_record(metadata_repository, owner_account.address)

        entry = asyncio.run(token_broker.issue(record.id, owner_account.address))

        assert len(entry.token) == 64
        int(entry.token, 16)
        assert entry.expires == fake_clock() + 300
        assert entry.owner_wallet == owner_account.address.lower()
        assert entry.ipfs_cid == record.ipfs_cid
        assert entry.token in token_store

    def test_issue_for_non_owner(self, token_broker, metadata_repository, owner_account, other_account):
        """Test that a wallet cannot get a token for someone else's file."""
        record = self._store_record(metadata_repository, owner_account.address)

        with pytest.raises(NotFoundOrUnauthorizedError):
            asyncio.run(token_broker.issue(record.id, other_account.address))

    def test_issue_for_deleted_file(self, token_broker, metadata_repository, owner_account):
        """Test that a deleted file cannot get a token."""
        record = self._store_record(metadata_repository, owner_account.address, is_deleted=True)

        with pytest.raises(NotFoundOrUnauthorizedError):
            asyncio.run(token_broker.issue(record.id, owner_account.address))

    def test_tokens_are_unique(self, token_broker, metadata_repository, owner_account):
        """Test that every grant gets a fresh token."""
        record = self._store_record(metadata_repository, owner_account.address)

        tokens = {token_broker.grant(record, owner_account.address).token for _ in range(20)}

        assert len(tokens) == 20

    def test_consume_by_owner_is_reusable(self, token_broker, metadata_repository, owner_account):
        """Test that the owner can use a token repeatedly until it expires."""
        record = self._store_record(metadata_repository, owner_account.address)
        entry = asyncio.run(token_broker.issue(record.id, owner_account.address))

        for _ in range(2):
            assert asyncio.run(token_broker.consume(entry.token, owner_account.address)).file_id == record.id

    def test_consume_by_other_wallet(self, token_broker, token_store, metadata_repository, owner_account, other_account):
        """Test that a token presented by another wallet is forbidden but kept."""
        record = self._store_record(metadata_repository, owner_account.address)
        entry = asyncio.run(token_broker.issue(record.id, owner_account.address))

        with pytest.raises(ForbiddenTokenUseError) as exc_info:
            asyncio.run(token_broker.consume(entry.token, other_account.address))

        assert exc_info.value.code == "wallet_mismatch"
        assert exc_info.value.status_code == 403
        assert entry.token in token_store

    def test_consume_after_delete(self, token_broker, token_store, metadata_repository, owner_account):
        """Test that deleting the file revokes its tokens on next use."""
        record = self._store_record(metadata_repository, owner_account.address)
        entry = asyncio.run(token_broker.issue(record.id, owner_account.address))
        record.mark_deleted()
        asyncio.run(metadata_repository.write(owner_account.address, [record]))

        with pytest.raises(ForbiddenTokenUseError) as exc_info:
            asyncio.run(token_broker.consume(entry.token, owner_account.address))

        assert exc_info.value.code == "ownership_changed"
        assert entry.token not in token_store

    def test_consume_expired(self, token_broker, metadata_repository, owner_account, fake_clock):
        """Test that an expired token is rejected before any wallet check."""
        record = self._store_record(metadata_repository, owner_account.address)
        entry = asyncio.run(token_broker.issue(record.id, owner_account.address))
        fake_clock.advance(301)

        with pytest.raises(TokenInvalidError) as exc_info:
            asyncio.run(token_broker.consume(entry.token, "0x0000000000000000000000000000000000000000"))

        assert exc_info.value.code == "expired"

    def test_consume_simple(self, token_broker, metadata_repository, owner_account, fake_clock):
        """Test that the unsigned path only checks membership and expiry."""
        record = self._store_record(metadata_repository, owner_account.address)
        entry = asyncio.run(token_broker.issue(record.id, owner_account.address))

        assert token_broker.consume_simple(entry.token).file_id == record.id

        fake_clock.advance(300)
        with pytest.raises(TokenInvalidError):
            token_broker.consume_simple(entry.token)

    def test_grant_sweeps_expired_tokens(self, token_broker, token_store, metadata_repository, owner_account, fake_clock):
        """Test that issuing a token also removes expired ones."""
        token_store.add(make_token("stale", expires=fake_clock() - 5))
        record = self._store_record(metadata_repository, owner_account.address)

        token_broker.grant(record, owner_account.address)

        assert "stale" not in token_store


@pytest.mark.unit
class TestTokenSweeper:
    """Test the background sweeper thread."""

    def test_sweeper_removes_expired_tokens(self, fake_clock):
        """Test that a running sweeper empties expired entries."""
        store = AccessTokenStore(max_entries=10, clock=fake_clock)
        store.add(make_token("old", expires=fake_clock() - 1))
        sweeper = TokenSweeper(store, interval=0.01)

        sweeper.start()
        try:
            deadline = time.time() + 2
            while "old" in store and time.time() < deadline:
                time.sleep(0.01)
        finally:
            sweeper.stop()

        assert "old" not in store
        assert not sweeper.is_running

    def test_start_is_idempotent(self, token_store):
        """Test that starting twice keeps a single thread."""
        sweeper = TokenSweeper(token_store, interval=60)

        sweeper.start()
        first = sweeper._thread
        sweeper.start()
        try:
            assert sweeper._thread is first
            assert sweeper.is_running
        finally:
            sweeper.stop()

    def test_sweep_errors_do_not_kill_thread(self, token_store):
        """Test that a failing sweep is logged and the thread keeps running."""
        calls = []

        def broken_sweep(now=None):
            calls.append(now)
            raise RuntimeError("boom")

        token_store.sweep = broken_sweep
        sweeper = TokenSweeper(token_store, interval=0.01)

        sweeper.start()
        try:
            deadline = time.time() + 2
            while len(calls) < 2 and time.time() < deadline:
                time.sleep(0.01)
            assert sweeper.is_running
        finally:
            sweeper.stop()

        assert len(calls) >= 2
