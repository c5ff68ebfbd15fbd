import logging
import secrets
import threading
import time

from django.conf import settings

from apps.files.exceptions import ForbiddenTokenUseError, TokenInvalidError
from apps.files.models import AccessToken
from apps.files.services.ownership_service import OwnershipVerifier

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


class AccessTokenStore:
    """
    In-memory table of issued access tokens.

    Every check-and-mutate happens under one lock, so a token cannot be read as
    valid by one request while another request is deleting it. The table is
    bounded: when full, expired entries are swept and, if that is not enough,
    the entry closest to expiry is evicted.
    """

    def __init__(self, max_entries=None, clock=None):
        if max_entries is None:
            max_entries = getattr(settings, "ACCESS_TOKEN_MAX_ENTRIES", 10000)
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.clock = clock or time.time
        self._tokens = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self.clock()

    def add(self, entry: AccessToken):
        with self._lock:
            if len(self._tokens) >= self.max_entries:
                self._sweep_locked(self.now())
            if len(self._tokens) >= self.max_entries:
                oldest = min(self._tokens.values(), key=lambda t: t.expires)
                del self._tokens[oldest.token]
                logger.warning(f"Access token table full, evicted token for file {oldest.file_id}")
            self._tokens[entry.token] = entry

    def get(self, token):
        with self._lock:
            return self._tokens.get(token)

    def discard(self, token) -> bool:
        with self._lock:
            return self._tokens.pop(token, None) is not None

    def check(self, token) -> AccessToken:
        """
        Returns the live entry for token. An expired entry is deleted.
        Raises TokenInvalidError for unknown or expired tokens.
        """
        with self._lock:
            entry = self._tokens.get(token) if token else None
            if entry is None:
                raise TokenInvalidError()
            if entry.is_expired(self.now()):
                del self._tokens[token]
                raise TokenInvalidError("Access token expired", code="expired")
            return entry

    def sweep(self, now=None) -> int:
        with self._lock:
            return self._sweep_locked(self.now() if now is None else now)

    def _sweep_locked(self, now) -> int:
        expired = [token for token, entry in self._tokens.items() if entry.expires < now]
        for token in expired:
            del self._tokens[token]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired access tokens")
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._tokens)

    def __contains__(self, token):
        with self._lock:
            return token in self._tokens


class AccessTokenBroker:
    """
    Issues short-lived, wallet-bound tokens that let a verified owner stream a
    file, and checks them again when they are presented.
    """

    def __init__(self, store: AccessTokenStore, ownership_verifier: OwnershipVerifier, ttl=None):
        if store is None:
            raise ValueError("store is required")
        if ownership_verifier is None:
            raise ValueError("ownership_verifier is required")
        self.store = store
        self.ownership_verifier = ownership_verifier
        self.ttl = ttl if ttl is not None else getattr(settings, "ACCESS_TOKEN_TTL_SECONDS", 300)

    async def issue(self, file_id, wallet) -> AccessToken:
        record = await self.ownership_verifier.require(file_id, wallet)
        return self.grant(record, wallet)

    def grant(self, record, wallet) -> AccessToken:
        """
        Issues a token for a record whose ownership was already verified.
        The stored CID stays encrypted until the token is used.
        """
        now = self.store.now()
        entry = AccessToken(
            token=secrets.token_hex(TOKEN_BYTES),
            file_id=record.id,
            owner_wallet=wallet.lower(),
            ipfs_cid=record.ipfs_cid,
            filename=record.filename,
            size=record.size,
            expires=now + self.ttl,
            created_at=now,
        )
        self.store.sweep(now)
        self.store.add(entry)

        logger.info(f"Generated secure access token for file: {record.id} by {wallet}")
        return entry

    async def consume(self, token, wallet) -> AccessToken:
        """
        Validates a token presented by a signed request. The checks run in a
        fixed order: known, not expired, same wallet, still owned.
        The token stays valid after a successful use until it expires.
        """
        entry = self.store.check(token)

        if not wallet or wallet.lower() != entry.owner_wallet:
            logger.warning(
                f"Security violation: wallet {wallet} tried to use token owned by {entry.owner_wallet}"
            )
            raise ForbiddenTokenUseError("Token belongs to different wallet address", code="wallet_mismatch")

        record = await self.ownership_verifier.verify(entry.file_id, wallet)
        if record is None:
            logger.warning(f"Security violation: file ownership changed for {entry.file_id}")
            self.store.discard(token)
            raise ForbiddenTokenUseError("File ownership verification failed", code="ownership_changed")

        return entry

    def consume_simple(self, token) -> AccessToken:
        """
        Membership and expiry only, for clients that cannot sign a second request.
        """
        return self.store.check(token)


class TokenSweeper:
    """
    Background thread that sweeps expired tokens from a store at a fixed interval.
    """

    def __init__(self, store: AccessTokenStore, interval=None):
        self.store = store
        self.interval = interval if interval is not None else getattr(settings, "ACCESS_TOKEN_SWEEP_INTERVAL", 300)
        self._stop_event = threading.Event()
        self._thread = None

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="access-token-sweeper", daemon=True)
        self._thread.start()
        logger.debug(f"Access token sweeper started (every {self.interval}s)")

    def stop(self, timeout=5.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.store.sweep()
            except Exception as e:
                logger.error(f"Access token sweep failed: {e}", exc_info=True)
