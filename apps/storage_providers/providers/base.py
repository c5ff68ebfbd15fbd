from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional


@dataclass
class ContentStream:
    """
    An open download from the provider. The underlying connection is
    released once chunks is exhausted or closed.
    """
    chunks: AsyncIterator[bytes]
    content_type: str = "application/octet-stream"
    content_length: Optional[int] = None


class BaseStorageProvider(ABC):
    """
    An abstract base class that all storage providers must implement.
    This defines the contract for how the StorageService will interact with them.

    Providers are content addressed: everything stored gets back an opaque
    content identifier (CID), and JSON documents can be tagged with key/values
    so they can be found again through the provider's own index.
    """

    def __init__(self, config):
        """
        Initializes the provider with its configuration.
        """
        self.config = config

    @abstractmethod
    async def pin_file(self, content: bytes, name: str) -> str:
        """
        Stores raw bytes and returns their CID.

        Args:
            content: The bytes to store.
            name: Human readable name attached to the pin.
        Returns:
            The CID of the stored content.
        """
        pass

    @abstractmethod
    async def pin_json(self, content, name: str, keyvalues: dict) -> str:
        """
        Stores a JSON serializable value, tagged with keyvalues, and returns its CID.
        """
        pass

    @abstractmethod
    async def find_latest(self, keyvalues: dict) -> Optional[str]:
        """
        Queries the provider's index for pins tagged with all of keyvalues and
        returns the CID of the most recent one, or None when nothing matches.
        """
        pass

    @abstractmethod
    async def fetch(self, cid: str, max_bytes: Optional[int] = None, timeout: Optional[float] = None) -> bytes:
        """
        Downloads the whole content behind a CID.

        Args:
            cid: Content identifier.
            max_bytes: Fail instead of reading more than this many bytes.
            timeout: Overrides the provider's default timeout for this call.
        """
        pass

    @abstractmethod
    async def open_stream(self, cid: str) -> ContentStream:
        """
        Opens a streaming download of the content behind a CID.
        """
        pass
