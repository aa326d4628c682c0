"""Export a whole storage tree into one ZIP archive."""

import asyncio
import logging
import shutil
import tempfile
import uuid
import zipfile
from collections import deque
from pathlib import Path, PurePosixPath

from diskbridge.core.config import settings
from diskbridge.core.errors import InvalidArchiveState, InvalidPath
from diskbridge.core.logging import operation_scope
from diskbridge.services.storage.base import LOOKUP_PAGE_SIZE, FileStorage, StorageResource

logger = logging.getLogger(__name__)

ARCHIVE_DIR_NAME = "diskbridge_archives"


def _dedupe_name(name: str, used: set[str]) -> str:
    """Return ``name`` or ``name (n).ext`` so that it is not in ``used``."""
    if name not in used:
        return name
    pure = PurePosixPath(name)
    stem = str(pure.with_suffix("")) if pure.suffix else name
    counter = 1
    while True:
        candidate = f"{stem} ({counter}){pure.suffix}"
        if candidate not in used:
            return candidate
        counter += 1


class _ArchiveWriter:
    """Single-writer wrapper around an open ZipFile."""

    def __init__(self, zf: zipfile.ZipFile):
        self.zf = zf
        self._lock = asyncio.Lock()

    async def add(self, entry_name: str, data: bytes) -> None:
        async with self._lock:
            await asyncio.to_thread(self.zf.writestr, entry_name, data)


class ZipFileStorageArchiver:
    """Walks a FileStorage depth-first and zips every file it finds.

    Downloads overlap up to ``max_concurrent_downloads``; entries are still
    written one at a time in walk order. Entries are named by the file's leaf
    name unless ``preserve_paths`` is set. The archive lives in its own
    temporary directory until ``cleanup_archive`` removes it.
    """

    def __init__(
        self,
        temp_root: str | Path | None = None,
        max_concurrent_downloads: int | None = None,
        page_size: int = LOOKUP_PAGE_SIZE,
        preserve_paths: bool = False,
    ):
        if max_concurrent_downloads is None:
            max_concurrent_downloads = settings.ARCHIVE_DOWNLOAD_CONCURRENCY
        if max_concurrent_downloads < 1:
            raise ValueError("max_concurrent_downloads must be >= 1")
        base = Path(temp_root) if temp_root is not None else Path(tempfile.gettempdir())
        self.temp_root = (base / ARCHIVE_DIR_NAME).resolve()
        self.max_concurrent_downloads = max_concurrent_downloads
        self.page_size = page_size
        self.preserve_paths = preserve_paths

    async def create_archive(self, source: FileStorage, archive_name: str) -> Path:
        """Build ``<archive_name>.zip`` from every file in ``source``.

        Any failure removes the temporary directory and is re-raised.
        """
        if not archive_name or "/" in archive_name or "\\" in archive_name:
            raise InvalidPath(archive_name)

        with operation_scope():
            logger.info(f"Creating archive '{archive_name}'")
            archive_dir = self.temp_root / uuid.uuid4().hex
            archive_dir.mkdir(parents=True)
            archive_path = archive_dir / f"{archive_name}.zip"

            try:
                files = await self._collect_files(source)
                logger.info(f"Found {len(files)} files to archive")
                await self._write_archive(source, files, archive_path)
            except BaseException:
                logger.error(f"Archive '{archive_name}' failed, removing {archive_dir}")
                shutil.rmtree(archive_dir, ignore_errors=True)
                raise

            logger.info(f"Archive created successfully: {archive_path}")
            return archive_path

    async def _collect_files(self, source: FileStorage) -> list[StorageResource]:
        """Depth-first walk from the root using an explicit folder stack."""
        files: list[StorageResource] = []
        folders: list[StorageResource | None] = [None]

        while folders:
            folder = folders.pop()
            async for resource in source.iter_resources(folder, page_size=self.page_size):
                if resource.is_directory:
                    folders.append(resource)
                else:
                    files.append(resource)

        return files

    def _entry_names(self, files: list[StorageResource]) -> list[str]:
        used: set[str] = set()
        names = []
        for resource in files:
            wanted = resource.path.strip("/") if self.preserve_paths else resource.name
            name = _dedupe_name(wanted or resource.name, used)
            if name != wanted:
                logger.warning(f"Duplicate archive entry {wanted}, storing {resource.path} as {name}")
            used.add(name)
            names.append(name)
        return names

    async def _write_archive(
        self,
        source: FileStorage,
        files: list[StorageResource],
        archive_path: Path,
    ) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrent_downloads)

        async def download(resource: StorageResource) -> bytes:
            async with semaphore:
                return await source.read_data(resource)

        pending: deque[tuple[str, asyncio.Task[bytes]]] = deque()
        try:
            with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED) as zf:
                writer = _ArchiveWriter(zf)
                for entry_name, resource in zip(self._entry_names(files), files, strict=True):
                    pending.append((entry_name, asyncio.create_task(download(resource))))
                    if len(pending) > self.max_concurrent_downloads:
                        await self._write_next(writer, pending)
                while pending:
                    await self._write_next(writer, pending)
        finally:
            for _, task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*(task for _, task in pending), return_exceptions=True)

    async def _write_next(
        self,
        writer: _ArchiveWriter,
        pending: deque[tuple[str, asyncio.Task[bytes]]],
    ) -> None:
        entry_name, task = pending[0]
        data = await task
        pending.popleft()
        await writer.add(entry_name, data)
        logger.debug(f"Added file to archive: {entry_name}")

    async def cleanup_archive(self, archive_path: str | Path) -> None:
        """Remove the temporary directory that holds ``archive_path``."""
        path = Path(archive_path).resolve()
        archive_dir = path.parent
        if archive_dir.parent != self.temp_root or not archive_dir.is_dir():
            raise InvalidArchiveState(f"{archive_path} is not an archive created by this archiver")

        await asyncio.to_thread(shutil.rmtree, archive_dir)
        logger.info(f"Cleaned up archive directory {archive_dir}")
