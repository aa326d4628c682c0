"""Local filesystem storage backend, sandboxed under one root directory."""

import asyncio
import logging
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

from diskbridge.core.errors import (
    AlreadyExists,
    InvalidPath,
    NotFound,
    TransportFailure,
)
from diskbridge.services.storage.base import (
    DEFAULT_PAGE_SIZE,
    FileStorage,
    ResourcePage,
    StorageResource,
    join_path,
    parent_path,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _validate_name(name: str) -> None:
    """Reject names that would address something other than a direct child."""
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise InvalidPath(name)


class LocalFileStorage(FileStorage):
    """Storage backed by a directory tree on disk.

    Paths are always resolved under ``root``; anything resolving outside
    of it is rejected with InvalidPath. Listings are a single page.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        logger.debug(f"Local storage root: {self.root}")

    def _resolve(self, path: str) -> Path:
        """Convert a relative storage path to an absolute filesystem path."""
        clean = path.replace("\\", "/").strip("/")
        full = (self.root / clean).resolve() if clean else self.root
        if full != self.root and self.root not in full.parents:
            raise InvalidPath(path)
        return full

    def _relative(self, full: Path) -> str:
        return full.relative_to(self.root).as_posix()

    def _error_name(self, filename: str | None, fallback: str) -> str:
        """Storage-relative form of an OSError filename, never a host path."""
        if not filename:
            return fallback
        try:
            return self._relative(Path(filename))
        except ValueError:
            return fallback

    def _to_resource(self, full: Path) -> StorageResource:
        stat = full.stat()
        modified = datetime.fromtimestamp(stat.st_mtime, UTC).isoformat()
        path = self._relative(full)
        if full.is_dir():
            return StorageResource.directory(name=full.name, path=path, modified=modified)
        uri = full.as_uri()
        return StorageResource.file(
            name=full.name,
            path=path,
            url=uri,
            preview_url=uri,
            modified=modified,
        )

    async def _run(self, func: Callable[[], T], description: str) -> T:
        """Run a blocking filesystem call off the event loop.

        OSErrors not already mapped by ``func`` become TransportFailure.
        """
        try:
            return await asyncio.to_thread(func)
        except FileNotFoundError as e:
            logger.error(f"{description} failed: {e}")
            raise NotFound(self._error_name(e.filename, description)) from e
        except FileExistsError as e:
            logger.error(f"{description} failed: {e}")
            raise AlreadyExists(self._error_name(e.filename, description)) from e
        except OSError as e:
            logger.error(f"{description} failed: {e}")
            raise TransportFailure(f"{description} failed: {e.strerror or type(e).__name__}") from e

    def _child_path(self, parent: StorageResource | None, name: str) -> str:
        _validate_name(name)
        return join_path(parent.path if parent else None, name)

    async def resource_by_file_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        full = self._resolve(self._child_path(parent, name))

        def lookup() -> StorageResource:
            if not full.is_file():
                raise NotFound(name)
            return self._to_resource(full)

        return await self._run(lookup, f"Lookup of file {name}")

    async def resource_by_folder_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        full = self._resolve(self._child_path(parent, name))

        def lookup() -> StorageResource:
            if not full.is_dir():
                raise NotFound(name)
            return self._to_resource(full)

        return await self._run(lookup, f"Lookup of folder {name}")

    async def read_data(self, resource: StorageResource) -> bytes:
        logger.debug(f"Loading data for {resource.path}")
        full = self._resolve(resource.path)
        return await self._run(full.read_bytes, f"Read of {resource.path}")

    async def get_folder(self, name: str) -> StorageResource:
        full = self._resolve(name)

        def lookup() -> StorageResource:
            if not full.is_dir():
                raise NotFound(name)
            if full == self.root:
                return StorageResource.directory(name="", path="")
            return self._to_resource(full)

        return await self._run(lookup, f"Lookup of folder {name}")

    async def list_resources(
        self,
        parent: StorageResource | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> ResourcePage:
        path = parent.path if parent else ""
        full = self._resolve(path)
        logger.debug(f"Fetching resources at: {full}")

        def scan() -> list[StorageResource]:
            if not full.is_dir():
                raise NotFound(path)
            resources = []
            for child in sorted(full.iterdir(), key=lambda p: p.name):
                if child.name.startswith("."):
                    continue
                try:
                    resources.append(self._to_resource(child))
                except FileNotFoundError:
                    # Dangling symlink, or removed while listing
                    logger.warning(f"Skipping unreadable entry: {self._relative(child)}")
            return resources

        resources = await self._run(scan, f"Listing of {path or 'root'}")
        logger.info(f"Found {len(resources)} resources at: {full}")
        return ResourcePage(resources=resources, next_cursor=None)

    async def create_folder(
        self,
        parent: StorageResource | None,
        name: str,
    ) -> StorageResource:
        path = self._child_path(parent, name)
        full = self._resolve(path)
        logger.info(f"Creating folder at: {path}")

        def make() -> StorageResource:
            if full.exists():
                raise AlreadyExists(name)
            full.mkdir(parents=True)
            return self._to_resource(full)

        return await self._run(make, f"Creation of folder {path}")

    async def create_file(
        self,
        parent: StorageResource | None,
        name: str,
        data: bytes | None = None,
    ) -> StorageResource:
        path = self._child_path(parent, name)
        full = self._resolve(path)
        logger.info(f"Creating file at: {path}")

        def make() -> StorageResource:
            if full.exists():
                raise AlreadyExists(name)
            with open(full, "xb") as f:
                f.write(data or b"")
            return self._to_resource(full)

        return await self._run(make, f"Creation of file {path}")

    async def update_file(self, resource: StorageResource, data: bytes) -> None:
        full = self._resolve(resource.path)
        logger.info(f"Updating file at: {resource.path}")

        def write() -> None:
            if not full.exists():
                logger.debug(f"File doesn't exist, creating new: {resource.path}")
                full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)

        await self._run(write, f"Update of {resource.path}")

    async def _rename(self, resource: StorageResource, new_name: str, is_dir: bool) -> None:
        source = self._resolve(resource.path)
        _validate_name(new_name)
        target = self._resolve(join_path(parent_path(resource.path), new_name))

        def move() -> None:
            exists = source.is_dir() if is_dir else source.is_file()
            if not exists:
                raise NotFound(resource.name)
            if target.exists():
                raise AlreadyExists(new_name)
            source.rename(target)

        await self._run(move, f"Rename of {resource.path} to {new_name}")
        logger.debug(f"Successfully renamed {resource.name} to {new_name}")

    async def rename_file(self, resource: StorageResource, new_name: str) -> None:
        await self._rename(resource, new_name, is_dir=False)

    async def rename_folder(self, resource: StorageResource, new_name: str) -> None:
        await self._rename(resource, new_name, is_dir=True)

    async def move_file(self, from_path: str, to_path: str) -> None:
        logger.info(f"Moving file from: {from_path} to: {to_path}")
        source = self._resolve(from_path)
        target = self._resolve(to_path)

        def move() -> None:
            if not source.exists():
                raise NotFound(from_path)
            if target.exists():
                raise AlreadyExists(to_path)
            if not target.parent.is_dir():
                raise NotFound(parent_path(to_path))
            shutil.move(source, target)

        await self._run(move, f"Move of {from_path} to {to_path}")

    async def delete(self, resource: StorageResource) -> None:
        full = self._resolve(resource.path)
        if full == self.root:
            raise InvalidPath(resource.path)
        logger.info(f"Deleting item at: {resource.path}")

        def remove() -> None:
            if full.is_dir():
                shutil.rmtree(full)
            else:
                full.unlink()

        await self._run(remove, f"Delete of {resource.path}")

    async def delete_all(self) -> None:
        logger.warning(f"Deleting ALL items at root {self.root}")

        def remove() -> None:
            if self.root.exists():
                shutil.rmtree(self.root)

        await self._run(remove, "Delete of storage root")
        logger.info("All items deleted successfully")
