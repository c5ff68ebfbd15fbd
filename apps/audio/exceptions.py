from apps.files.exceptions import WalletDriveError


class AudioTooLargeError(WalletDriveError):
    """Audio file too large"""
    status_code = 413


class AudioGenerationError(WalletDriveError):
    """Audio generation failed"""
    status_code = 500


class AudioNotFoundError(WalletDriveError):
    """Audio file not found"""
    status_code = 404
