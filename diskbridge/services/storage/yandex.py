"""Yandex Disk storage backend (Disk REST API v1)."""

import asyncio
import logging
import re
from collections.abc import Callable
from typing import Any

import httpx

from diskbridge.core.errors import NotFound, TransportFailure, error_for_status
from diskbridge.services.auth.client import AuthorizedClient
from diskbridge.services.storage.base import (
    DEFAULT_PAGE_SIZE,
    LOOKUP_PAGE_SIZE,
    FileStorage,
    ResourcePage,
    ResourceType,
    StorageResource,
    join_path,
    parent_path,
)

logger = logging.getLogger(__name__)

DISK_PREFIX = "disk:"
PATH_MISSING_ERROR = "DiskPathDoesntExistsError"
OPERATION_POLL_INTERVAL = 0.5
OPERATION_POLL_ATTEMPTS = 120


def normalize_path(path: str) -> str:
    """Collapse duplicate slashes, drop the disk: prefix and make the path absolute."""
    if path.startswith(DISK_PREFIX):
        path = path[len(DISK_PREFIX):]
    return "/" + re.sub(r"/+", "/", path).strip("/")


def _disk_error(response: httpx.Response) -> str:
    """Return the error code from a Disk error body, or an empty string."""
    try:
        body = response.json()
    except ValueError:
        return ""
    return body.get("error", "") if isinstance(body, dict) else ""


class YandexDiskFileStorage(FileStorage):
    """Disk storage where identity is the path and listing uses offsets.

    Every relative path is placed under ``root_path``. Returned resources
    carry paths relative to that root, without the ``disk:`` prefix.
    """

    BASE_URL = "https://cloud-api.yandex.net/v1/disk"

    def __init__(
        self,
        client: AuthorizedClient,
        root_path: str = "/",
        on_sign_out: Callable[[], None] | None = None,
        operation_poll_interval: float = OPERATION_POLL_INTERVAL,
    ):
        self.client = client
        self.root_path = normalize_path(root_path)
        self.on_sign_out = on_sign_out
        self.operation_poll_interval = operation_poll_interval

    def _full_path(self, path: str) -> str:
        return normalize_path(f"{self.root_path}/{normalize_path(path)}")

    def _relative_path(self, api_path: str) -> str:
        path = normalize_path(api_path)
        if self.root_path != "/" and (path == self.root_path or path.startswith(self.root_path + "/")):
            path = path[len(self.root_path):]
        return path.strip("/")

    def _check(self, response: httpx.Response, name: str) -> httpx.Response:
        if response.is_error:
            logger.error(f"Disk request for {name} failed with {response.status_code}")
            # Disk also answers 409 when a parent folder on the path is missing
            if response.status_code == 409 and _disk_error(response) == PATH_MISSING_ERROR:
                raise NotFound(name)
            raise error_for_status(response, name)
        return response

    def _to_resource(self, item: dict[str, Any]) -> StorageResource:
        path = self._relative_path(item["path"])
        modified = item.get("modified", "")
        if item.get("type") == ResourceType.DIRECTORY.value:
            return StorageResource.directory(name=item["name"], path=path, modified=modified, id=path)
        return StorageResource.file(
            name=item["name"],
            path=path,
            url=item.get("file") or "",
            preview_url=item.get("preview"),
            modified=modified,
            id=path,
        )

    async def _find_child(
        self,
        name: str,
        parent: StorageResource | None,
        kind: ResourceType,
    ) -> StorageResource:
        async for resource in self.iter_resources(parent, page_size=LOOKUP_PAGE_SIZE):
            if resource.name == name and resource.type == kind:
                return resource
        raise NotFound(name)

    async def resource_by_file_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        return await self._find_child(name, parent, ResourceType.FILE)

    async def resource_by_folder_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        return await self._find_child(name, parent, ResourceType.DIRECTORY)

    async def _signed_href(self, endpoint: str, params: dict[str, Any], name: str) -> dict[str, Any]:
        response = await self.client.request("GET", f"{self.BASE_URL}/{endpoint}", params=params)
        data = self._check(response, name).json()
        if not data.get("href"):
            raise TransportFailure(f"Disk returned no signed URL for {name}")
        return data

    async def read_data(self, resource: StorageResource) -> bytes:
        logger.debug(f"Loading data for {resource.path}")
        link = await self._signed_href(
            "resources/download",
            {"path": self._full_path(resource.path)},
            resource.name,
        )
        # Signed URLs point at a storage host and must not carry the token
        response = await self.client.request("GET", link["href"], authorized=False)
        return self._check(response, resource.name).content

    async def get_folder(self, name: str) -> StorageResource:
        if not name.strip("/"):
            return StorageResource.directory(name="", path="", id="")

        data = await self.client.get_json(
            f"{self.BASE_URL}/resources",
            params={"path": self._full_path(name), "limit": 0},
            name=name,
        )
        resource = self._to_resource(data)
        if not resource.is_directory:
            raise NotFound(name)
        return resource

    async def list_resources(
        self,
        parent: StorageResource | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> ResourcePage:
        path = self._full_path(parent.path if parent else "")
        offset = int(cursor) if cursor else 0
        logger.debug(f"Fetching resources at: {path}, limit: {limit}, offset: {offset}")

        data = await self.client.get_json(
            f"{self.BASE_URL}/resources",
            params={"path": path, "limit": limit, "offset": offset, "sort": "name"},
            name=parent.name if parent else path,
        )

        items = data.get("_embedded", {}).get("items", [])
        logger.info(f"Fetched {len(items)} resources")
        resources = [self._to_resource(item) for item in items]
        next_cursor = None if len(resources) < limit else str(offset + limit)
        return ResourcePage(resources=resources, next_cursor=next_cursor)

    async def create_folder(
        self,
        parent: StorageResource | None,
        name: str,
    ) -> StorageResource:
        path = join_path(parent.path if parent else None, name)
        logger.info(f"Creating folder at: {path}")

        # Disk answers 409 when the folder already exists
        response = await self.client.request(
            "PUT",
            f"{self.BASE_URL}/resources",
            params={"path": self._full_path(path)},
        )
        self._check(response, name)
        logger.info(f"Folder created successfully: {path}")
        return StorageResource.directory(name=name, path=path, id=path)

    async def _upload(self, path: str, data: bytes, overwrite: bool) -> None:
        link = await self._signed_href(
            "resources/upload",
            {"path": self._full_path(path), "overwrite": str(overwrite).lower()},
            path,
        )
        response = await self.client.request(
            link.get("method", "PUT"),
            link["href"],
            content=data,
            authorized=False,
        )
        self._check(response, path)

    async def create_file(
        self,
        parent: StorageResource | None,
        name: str,
        data: bytes | None = None,
    ) -> StorageResource:
        path = join_path(parent.path if parent else None, name)
        logger.info(f"Creating file at: {path}")
        await self._upload(path, data or b"", overwrite=False)
        logger.info(f"File created successfully: {path}")
        return StorageResource.file(name=name, path=path, id=path)

    async def update_file(self, resource: StorageResource, data: bytes) -> None:
        logger.info(f"Updating file at: {resource.path}")
        tmp_path = f"{resource.path}_tmp"
        await self._upload(tmp_path, data, overwrite=True)
        await self._move(tmp_path, resource.path, overwrite=True)
        logger.info(f"File updated successfully: {resource.path}")

    async def _move(self, from_path: str, to_path: str, overwrite: bool) -> None:
        response = await self.client.request(
            "POST",
            f"{self.BASE_URL}/resources/move",
            params={
                "from": self._full_path(from_path),
                "path": self._full_path(to_path),
                "overwrite": str(overwrite).lower(),
                "force_async": "false",
            },
        )
        self._check(response, from_path)
        await self._wait_for_operation(response, from_path)

    async def _wait_for_operation(self, response: httpx.Response, name: str) -> None:
        """Poll the operation behind a 202 answer until Disk reports an outcome.

        Disk may accept a move or delete and finish it later; the answer then
        carries the operation status URL instead of a final result.
        """
        if response.status_code != 202:
            return
        try:
            href = response.json().get("href")
        except ValueError:
            href = None
        if not href:
            raise TransportFailure(f"Disk returned no operation URL for {name}")

        for _ in range(OPERATION_POLL_ATTEMPTS):
            status = (await self.client.get_json(href, name=name)).get("status")
            if status == "success":
                return
            if status == "failed":
                raise TransportFailure(f"Disk operation for {name} failed")
            logger.debug(f"Disk operation for {name} is {status}, polling again")
            await asyncio.sleep(self.operation_poll_interval)
        raise TransportFailure(f"Disk operation for {name} did not finish")

    async def rename_file(self, resource: StorageResource, new_name: str) -> None:
        new_path = join_path(parent_path(resource.path), new_name)
        await self._move(resource.path, new_path, overwrite=False)
        logger.debug(f"Successfully renamed file from {resource.name} to {new_name}")

    async def rename_folder(self, resource: StorageResource, new_name: str) -> None:
        logger.info(f"Renaming folder from: {resource.name} to: {new_name}")
        new_path = join_path(parent_path(resource.path), new_name)
        await self._move(resource.path, new_path, overwrite=False)

    async def move_file(self, from_path: str, to_path: str) -> None:
        logger.info(f"Moving file from: {from_path} to: {to_path}")
        await self._move(from_path, to_path, overwrite=False)
        logger.info("File moved successfully")

    async def delete(self, resource: StorageResource) -> None:
        logger.warning(f"Deleting item at: {resource.path}")
        params: dict[str, Any] = {"path": self._full_path(resource.path), "permanently": "false"}
        if resource.is_directory:
            params["recursive"] = "true"
        response = await self.client.request("DELETE", f"{self.BASE_URL}/resources", params=params)
        self._check(response, resource.name)
        await self._wait_for_operation(response, resource.name)

    async def delete_all(self) -> None:
        logger.warning("Signing out of Yandex Disk, remote content is kept")
        self.client.token_storage.remove_token()
        if self.on_sign_out is not None:
            self.on_sign_out()
        logger.info("Logout successful")
