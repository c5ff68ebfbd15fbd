class WalletDriveError(Exception):
    """
    Base exception for every error that should reach the client as JSON.
    Subclasses set the HTTP status code and, optionally, a machine readable code.
    """
    status_code = 500
    code = None

    def __init__(self, message=None, details=None, code=None, status_code=None):
        self.message = message or self.default_message()
        super().__init__(self.message)
        self.details = details
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    @classmethod
    def default_message(cls):
        return cls.__doc__.strip().splitlines()[0] if cls.__doc__ else "Request failed"

    def to_dict(self):
        body = {"error": self.message}
        if self.code:
            body["code"] = self.code
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthError(WalletDriveError):
    """Authentication failed"""
    status_code = 401


class ValidationError(WalletDriveError):
    """Invalid input"""
    status_code = 400


class UnsupportedTypeError(ValidationError):
    """File type is not supported for analysis"""
    code = "unsupported_type"


class NotFoundOrUnauthorizedError(WalletDriveError):
    """File not found or unauthorized"""
    status_code = 404


class OwnershipConflictError(WalletDriveError):
    """File is not in a state that allows this operation"""
    status_code = 400


class AlreadyActiveError(OwnershipConflictError):
    """File is already active"""
    code = "already_active"


class TokenInvalidError(WalletDriveError):
    """Invalid or expired access token"""
    status_code = 401
    code = "invalid_or_expired"


class ForbiddenTokenUseError(WalletDriveError):
    """Access token cannot be used by this wallet"""
    status_code = 403


class DecryptError(WalletDriveError):
    """Failed to decrypt file reference"""
    status_code = 500


class VerificationFailedError(WalletDriveError):
    """Metadata change could not be verified"""
    status_code = 500
    code = "verification_failed"


class MetadataUnavailableError(WalletDriveError):
    """File metadata is temporarily unavailable"""
    status_code = 503
    code = "metadata_unavailable"


class MetadataConflictError(WalletDriveError):
    """File metadata was modified concurrently, please retry"""
    status_code = 409
    code = "metadata_conflict"


class RateLimitedError(WalletDriveError):
    """Too many requests, please try again later"""
    status_code = 429
    code = "rate_limited"


class ServiceNotConfiguredError(WalletDriveError):
    """Service not configured"""
    status_code = 500


class UpstreamError(WalletDriveError):
    """Upstream service request failed"""
    status_code = 502


class UpstreamTimeoutError(UpstreamError):
    """Upstream service timed out"""
    status_code = 504
    code = "timeout"


class StorageServiceError(UpstreamError):
    """Base exception for storage service errors"""
    pass


class StorageUploadError(StorageServiceError):
    """Raised when pinning content fails"""
    pass


class StorageDownloadError(StorageServiceError):
    """Raised when fetching content fails"""
    pass


class WriteError(StorageUploadError):
    """Raised when a metadata document cannot be pinned"""
    pass
