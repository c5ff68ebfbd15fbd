"""
Builds the service graph used by the views. Services are cheap to build and
hold no per-request state, the only long lived object is the token store
owned by the files app config.
"""
from django.apps import apps

from .repository import IPFSMetadataRepository
from .services.file_service import FileService
from .services.storage_service import StorageService
from .services.token_service import AccessTokenBroker


def build_storage_service():
    return StorageService()


def build_file_service(storage_service=None):
    storage_service = storage_service or build_storage_service()
    repository = IPFSMetadataRepository(storage_service)
    return FileService(repository, storage_service=storage_service)


def get_token_store():
    return apps.get_app_config("files").token_store


def build_token_broker(file_service):
    return AccessTokenBroker(get_token_store(), file_service.ownership_verifier)
