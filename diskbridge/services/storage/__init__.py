# Storage backends behind one contract
from diskbridge.services.storage.base import (
    FileStorage,
    ResourcePage,
    ResourceType,
    StorageResource,
)
from diskbridge.services.storage.factory import (
    FileStorageFactory,
    FileStorageTokenFactory,
    GoogleDriveBackend,
    LocalBackend,
    YandexDiskBackend,
    create_file_storage,
)
from diskbridge.services.storage.google import GoogleDriveFileStorage
from diskbridge.services.storage.local import LocalFileStorage
from diskbridge.services.storage.yandex import YandexDiskFileStorage

__all__ = [
    "FileStorage",
    "FileStorageFactory",
    "FileStorageTokenFactory",
    "GoogleDriveBackend",
    "GoogleDriveFileStorage",
    "LocalBackend",
    "LocalFileStorage",
    "ResourcePage",
    "ResourceType",
    "StorageResource",
    "YandexDiskBackend",
    "YandexDiskFileStorage",
    "create_file_storage",
]
