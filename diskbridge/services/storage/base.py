"""Base classes and interfaces for storage backends."""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from pydantic import TypeAdapter

from diskbridge.core.errors import NotFound, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
LOOKUP_PAGE_SIZE = 100


class ResourceType(str, Enum):
    """Kind of a storage resource."""

    DIRECTORY = "dir"
    FILE = "file"


def _generate_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class StorageResource:
    """Snapshot of a file or folder in a storage backend.

    ``path`` is backend-relative and slash-separated, without backend
    prefixes. ``id`` is authoritative on ID-based backends and random on
    path-based ones. ``modified`` is passed through in the backend's own
    format.
    """

    name: str
    path: str
    type: ResourceType
    modified: str = ""
    url: str = ""
    preview_url: str | None = None
    id: str = field(default_factory=_generate_id)

    @property
    def is_file(self) -> bool:
        return self.type == ResourceType.FILE

    @property
    def is_directory(self) -> bool:
        return self.type == ResourceType.DIRECTORY

    @classmethod
    def directory(
        cls,
        name: str,
        path: str,
        modified: str = "",
        id: str | None = None,
    ) -> "StorageResource":
        """Build a directory resource."""
        return cls(
            name=name,
            path=path,
            type=ResourceType.DIRECTORY,
            modified=modified,
            id=id or _generate_id(),
        )

    @classmethod
    def file(
        cls,
        name: str,
        path: str,
        url: str = "",
        preview_url: str | None = None,
        modified: str = "",
        id: str | None = None,
    ) -> "StorageResource":
        """Build a file resource."""
        return cls(
            name=name,
            path=path,
            type=ResourceType.FILE,
            modified=modified,
            url=url,
            preview_url=preview_url,
            id=id or _generate_id(),
        )


@dataclass
class ResourcePage:
    """One page of a listing. ``next_cursor`` is None on the last page."""

    resources: list[StorageResource]
    next_cursor: str | None = None

    def __iter__(self) -> Iterator[Any]:
        # Allows ``resources, cursor = await storage.list_resources(...)``
        return iter((self.resources, self.next_cursor))


def join_path(*parts: str | None) -> str:
    """Join non-empty path parts with a single slash."""
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def parent_path(path: str) -> str:
    """Return the directory part of a slash-separated path."""
    head, _, _ = path.strip("/").rpartition("/")
    return head


class FileStorage(ABC):
    """Uniform contract over every storage backend.

    All operations may suspend on network or disk I/O. None of them retry
    internally; remote backends retry once on an expired credential through
    the authorized client.
    """

    @abstractmethod
    async def resource_by_file_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        """Find a non-directory child by exact name. Raises NotFound."""
        pass

    @abstractmethod
    async def resource_by_folder_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        """Find a directory child by exact name. Raises NotFound."""
        pass

    @abstractmethod
    async def read_data(self, resource: StorageResource) -> bytes:
        """Fetch the full content of a file."""
        pass

    @abstractmethod
    async def get_folder(self, name: str) -> StorageResource:
        """Resolve a root-level folder by name. Never creates it."""
        pass

    @abstractmethod
    async def list_resources(
        self,
        parent: StorageResource | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> ResourcePage:
        """List one page of the children of ``parent`` (root when None).

        ``limit`` is an upper bound. Cursors are only valid for the same
        parent and limit they were issued for.
        """
        pass

    @abstractmethod
    async def create_folder(
        self,
        parent: StorageResource | None,
        name: str,
    ) -> StorageResource:
        """Create a folder. Raises AlreadyExists if the name is taken."""
        pass

    @abstractmethod
    async def create_file(
        self,
        parent: StorageResource | None,
        name: str,
        data: bytes | None = None,
    ) -> StorageResource:
        """Create a file. Raises AlreadyExists if the name is taken."""
        pass

    @abstractmethod
    async def update_file(self, resource: StorageResource, data: bytes) -> None:
        """Overwrite the full content of a file."""
        pass

    @abstractmethod
    async def rename_file(self, resource: StorageResource, new_name: str) -> None:
        """Rename a file within its directory."""
        pass

    @abstractmethod
    async def rename_folder(self, resource: StorageResource, new_name: str) -> None:
        """Rename a folder within its parent."""
        pass

    @abstractmethod
    async def move_file(self, from_path: str, to_path: str) -> None:
        """Move a resource between directories by relative path."""
        pass

    @abstractmethod
    async def delete(self, resource: StorageResource) -> None:
        """Delete a resource, recursively for directories."""
        pass

    @abstractmethod
    async def delete_all(self) -> None:
        """Reset the backend.

        The local backend removes its whole root tree. Remote backends sign
        the user out and leave the remote content untouched.
        """
        pass

    async def iter_resources(
        self,
        parent: StorageResource | None = None,
        page_size: int = LOOKUP_PAGE_SIZE,
    ) -> AsyncIterator[StorageResource]:
        """Yield every child of ``parent``, following cursors to the end."""
        cursor: str | None = None
        while True:
            page = await self.list_resources(parent, limit=page_size, cursor=cursor)
            for resource in page.resources:
                yield resource
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def create_folder_if_needed(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        """Return the named folder, creating it when the lookup fails.

        Any lookup failure leads to a create attempt, so a transient error
        during the lookup can produce a spurious create.
        """
        try:
            return await self.resource_by_folder_name(name, parent)
        except NotFound:
            pass
        except StorageError as e:
            logger.warning(f"Folder lookup for {name} failed ({e}), creating it")
        return await self.create_folder(parent, name)

    async def load_json(self, resource: StorageResource, type_: type[T]) -> T:
        """Read a JSON file and validate it into ``type_``."""
        data = await self.read_data(resource)
        return TypeAdapter(type_).validate_json(data)

    async def save_json(self, resource: StorageResource, value: Any) -> None:
        """Serialize ``value`` as indented JSON and overwrite the file."""
        data = TypeAdapter(type(value)).dump_json(value, indent=2)
        await self.update_file(resource, data)
