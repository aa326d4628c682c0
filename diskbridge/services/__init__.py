# Storage, credential and export services
from diskbridge.services.export import LinkDownloader, ZipFileStorageArchiver
from diskbridge.services.storage import (
    FileStorage,
    StorageResource,
    create_file_storage,
)

__all__ = [
    "FileStorage",
    "LinkDownloader",
    "StorageResource",
    "ZipFileStorageArchiver",
    "create_file_storage",
]
