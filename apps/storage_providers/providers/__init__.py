from .base import BaseStorageProvider, ContentStream
from .pinata.pinata_provider import PinataStorageProvider
# Add more providers as needed

# Platform constants
PLATFORM_PINATA = "Pinata"

# Centralized provider registry
PROVIDER_REGISTRY = {
    PLATFORM_PINATA: PinataStorageProvider,
    # Add more providers as needed
}

__all__ = [
    'PROVIDER_REGISTRY',
    'PLATFORM_PINATA',
    'BaseStorageProvider',
    'ContentStream',
    'PinataStorageProvider',
]
