from django.conf import settings

from apps.storage_providers.providers import PROVIDER_REGISTRY, BaseStorageProvider, ContentStream
from apps.files.exceptions import (
    StorageUploadError,
    StorageDownloadError,
    UpstreamError,
)


class StorageService:
    """
    A service that abstracts the interaction with different storage providers.
    It delegates the actual pin/fetch operations to the specific provider's implementation.
    """

    def __init__(self, provider_settings=None, provider=None, skip_validation=False):
        """
        Initializes the service with the configured provider.

        Args:
            provider_settings: Optional {"platform": ..., "config": {...}} dict,
                               defaults to settings.STORAGE_PROVIDER
            provider: Optional ready-made provider instance (takes precedence)
            skip_validation: If True, skip provider configuration validation (useful for testing)
        """
        if provider is not None:
            if not isinstance(provider, BaseStorageProvider):
                raise TypeError("provider must be an instance of BaseStorageProvider")
            self.provider = provider
            self.platform = type(provider).__name__
            return

        if provider_settings is None:
            provider_settings = getattr(settings, "STORAGE_PROVIDER", None)
        if not provider_settings:
            raise ValueError("No storage provider configured.")

        platform = provider_settings.get("platform")
        provider_class = PROVIDER_REGISTRY.get(platform)
        if not provider_class:
            raise ValueError(f"Unsupported storage provider platform: {platform}")

        self.provider = provider_class(provider_settings.get("config", {}), skip_validation=skip_validation)
        self.platform = platform

    async def pin_file(self, content: bytes, name: str) -> str:
        """
        Pins file content and returns its CID.
        """
        if not content:
            raise ValueError("content cannot be empty")
        if not name:
            raise ValueError("name cannot be empty")

        try:
            cid = await self.provider.pin_file(content, name)
        except UpstreamError:
            raise
        except Exception as e:
            raise StorageUploadError(f"Failed to pin file: {str(e)}") from e

        if not cid or not isinstance(cid, str):
            raise StorageUploadError("IPFS upload failed - no hash returned")
        return cid

    async def pin_json(self, content, name: str, keyvalues: dict) -> str:
        """
        Pins a JSON document tagged with keyvalues and returns its CID.
        """
        if not isinstance(keyvalues, dict):
            raise ValueError("keyvalues must be a dictionary")

        try:
            cid = await self.provider.pin_json(content, name, keyvalues)
        except UpstreamError:
            raise
        except Exception as e:
            raise StorageUploadError(f"Failed to pin JSON: {str(e)}") from e

        if not cid or not isinstance(cid, str):
            raise StorageUploadError("Provider returned no CID")
        return cid

    async def find_latest(self, keyvalues: dict):
        """
        Returns the CID of the most recent pin tagged with keyvalues, or None.
        """
        if not keyvalues:
            raise ValueError("keyvalues cannot be empty")

        try:
            return await self.provider.find_latest(keyvalues)
        except UpstreamError:
            raise
        except Exception as e:
            raise StorageDownloadError(f"Failed to query pin index: {str(e)}") from e

    async def fetch(self, cid: str, max_bytes=None, timeout=None) -> bytes:
        """
        Downloads the content behind a CID.
        """
        if not cid:
            raise ValueError("cid cannot be empty")

        try:
            result = await self.provider.fetch(cid, max_bytes=max_bytes, timeout=timeout)
        except UpstreamError:
            raise
        except Exception as e:
            raise StorageDownloadError(f"Failed to fetch content: {str(e)}") from e

        if not isinstance(result, bytes):
            raise StorageDownloadError(f"Provider returned invalid type: {type(result)}, expected bytes")
        return result

    async def open_stream(self, cid: str) -> ContentStream:
        """
        Opens a streaming download of the content behind a CID.
        """
        if not cid:
            raise ValueError("cid cannot be empty")

        try:
            return await self.provider.open_stream(cid)
        except UpstreamError:
            raise
        except Exception as e:
            raise StorageDownloadError(f"Failed to open content stream: {str(e)}") from e
