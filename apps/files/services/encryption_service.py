import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.files.exceptions import DecryptError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
ASSOCIATED_DATA = b"cid"


def load_key(key_hex) -> bytes:
    """
    Parses the process-wide key (64 hex characters).
    Raises ImproperlyConfigured, the service must not start without it.
    """
    if not key_hex:
        raise ImproperlyConfigured("ENCRYPTION_KEY must be set and be 64 hex characters long (32 bytes)")
    if len(key_hex) != KEY_SIZE * 2:
        raise ImproperlyConfigured(
            f"ENCRYPTION_KEY must be 64 hex characters long (32 bytes), got {len(key_hex)} characters"
        )
    try:
        return bytes.fromhex(key_hex)
    except ValueError as e:
        raise ImproperlyConfigured("ENCRYPTION_KEY must be hex encoded") from e


class EncryptionService:
    """
    Encrypts the content identifiers returned by the pinning service before they
    are written to a wallet's metadata document.

    Output format is "nonce:tag:ciphertext", each part hex encoded.
    """

    def __init__(self, key=None):
        if key is None:
            key = load_key(getattr(settings, "CID_ENCRYPTION_KEY", None))
        elif isinstance(key, str):
            key = load_key(key)
        if len(key) != KEY_SIZE:
            raise ImproperlyConfigured(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self.key = key
        self._aesgcm = AESGCM(key)

    @staticmethod
    def generate_key() -> bytes:
        return secrets.token_bytes(KEY_SIZE)

    def encrypt_cid(self, cid: str) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aesgcm.encrypt(nonce, cid.encode("utf-8"), ASSOCIATED_DATA)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt_cid(self, blob: str) -> str:
        if not isinstance(blob, str):
            raise DecryptError(details="Invalid encrypted CID format")
        parts = blob.split(":")
        if len(parts) != 3:
            raise DecryptError(details="Invalid encrypted CID format")

        nonce_hex, tag_hex, ciphertext_hex = parts
        try:
            nonce = bytes.fromhex(nonce_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as e:
            raise DecryptError(details="Encrypted CID is not valid hex") from e

        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise DecryptError(details="Invalid nonce or tag length")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, ASSOCIATED_DATA)
        except InvalidTag as e:
            logger.error("CID decryption failed: authentication tag mismatch")
            raise DecryptError(details="Integrity check failed") from e
        return plaintext.decode("utf-8")
