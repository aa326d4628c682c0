"""Archive export of a whole storage tree, and archive import by link."""

from diskbridge.services.export.archive import ZipFileStorageArchiver
from diskbridge.services.export.download import LinkDownloader

__all__ = ["LinkDownloader", "ZipFileStorageArchiver"]
