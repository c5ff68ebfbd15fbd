import logging

from eth_account import Account
from eth_account.messages import encode_defunct

from apps.files.exceptions import AuthError

logger = logging.getLogger(__name__)

ADDRESS_HEADER = "x-evm-address"
SIGNATURE_HEADER = "x-evm-signature"
MESSAGE_HEADER = "x-evm-message"

# Each scope is also the exact message the wallet signs
SCOPES = frozenset({
    "upload",
    "list",
    "list_deleted",
    "delete",
    "restore",
    "empty_recycle_bin",
    "analyze",
    "export_summary",
    "access",
    "download",
    "debug",
    "tts_audio",
    "serve_audio",
    "download_audio",
    "list_audio",
})


def recover_signer(message: str, signature: str) -> str:
    """
    Recovers the address that produced an EIP-191 personal_sign signature.
    """
    return Account.recover_message(encode_defunct(text=message), signature=signature)


class SignatureVerifier:
    """
    Checks that a request carries a personal-message signature over the fixed
    message of one scope, made by the wallet it claims to come from.

    There is no nonce or session: a valid (address, signature, message) triple
    can be replayed for as long as the client keeps it.
    """

    def __init__(self, scope: str):
        if scope not in SCOPES:
            raise ValueError(f"Unknown signature scope: {scope}")
        self.scope = scope
        self.expected_message = scope

    def verify(self, address, signature, message) -> str:
        """
        Returns the verified address (as sent by the client) or raises AuthError.
        """
        if not address or not signature or not message:
            raise AuthError("Missing authentication headers")

        if message != self.expected_message:
            logger.warning(f"Invalid signed message for scope '{self.scope}' from {address}")
            raise AuthError("Invalid signed message")

        try:
            recovered = recover_signer(message, signature)
        except Exception as e:
            logger.warning(f"Signature verification failed for {address}: {e}")
            raise AuthError("Signature verification failed", details=str(e)) from e

        if recovered.lower() != address.lower():
            logger.warning(f"Signature mismatch: recovered {recovered}, claimed {address}")
            raise AuthError("Invalid signature")

        return address

    def verify_headers(self, headers) -> str:
        return self.verify(
            headers.get(ADDRESS_HEADER),
            headers.get(SIGNATURE_HEADER),
            headers.get(MESSAGE_HEADER),
        )
