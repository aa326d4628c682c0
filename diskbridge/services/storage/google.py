"""Google Drive storage backend (Drive v3 REST API)."""

import json
import logging
import uuid
from collections.abc import Callable
from typing import Any

import httpx

from diskbridge.core.errors import AlreadyExists, NotFound, error_for_status
from diskbridge.services.auth.client import AuthorizedClient
from diskbridge.services.storage.base import (
    DEFAULT_PAGE_SIZE,
    FileStorage,
    ResourcePage,
    StorageResource,
    join_path,
    parent_path,
)

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
NATIVE_MIME_PREFIX = "application/vnd.google-apps."

FILE_FIELDS = "id,name,mimeType,modifiedTime,webContentLink,exportLinks,thumbnailLink"
LIST_FIELDS = f"nextPageToken,files({FILE_FIELDS})"


def quote_query_value(value: str) -> str:
    """Escape a value for a single-quoted Drive query literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveFileStorage(FileStorage):
    """Drive storage where identity is the file ID and listing uses page tokens.

    The storage root is a configured folder ID. Listing the root also
    returns items shared with the user.
    """

    DRIVE_BASE_URL = "https://www.googleapis.com/drive/v3"
    UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"

    def __init__(
        self,
        client: AuthorizedClient,
        root_id: str = "root",
        on_sign_out: Callable[[], None] | None = None,
    ):
        self.client = client
        self.root_id = root_id
        self.on_sign_out = on_sign_out

    def _folder_id(self, resource: StorageResource | None) -> str:
        if resource is None or not resource.path:
            return self.root_id
        return resource.id

    def _check(self, response: httpx.Response, name: str) -> httpx.Response:
        if response.is_error:
            logger.error(f"Drive request for {name} failed with {response.status_code}")
            raise error_for_status(response, name)
        return response

    def _to_resource(self, item: dict[str, Any], parent: StorageResource | None) -> StorageResource:
        """Convert a Drive file JSON object to a StorageResource."""
        file_id = item["id"]
        name = item["name"]
        mime_type = item.get("mimeType", "")
        path = join_path(parent.path if parent else None, name)
        modified = item.get("modifiedTime", "")

        if mime_type == FOLDER_MIME_TYPE:
            return StorageResource.directory(name=name, path=path, modified=modified, id=file_id)

        if mime_type.startswith(NATIVE_MIME_PREFIX):
            # Docs/Sheets/Slides have no binary content, only exports
            url = (item.get("exportLinks") or {}).get("application/pdf") or (
                f"https://docs.google.com/document/d/{file_id}/edit"
            )
        else:
            url = item.get("webContentLink") or f"https://drive.google.com/file/d/{file_id}/view"

        return StorageResource.file(
            name=name,
            path=path,
            url=url,
            preview_url=item.get("thumbnailLink"),
            modified=modified,
            id=file_id,
        )

    async def _query(self, query: str, page_size: int = 1) -> list[dict[str, Any]]:
        data = await self.client.get_json(
            f"{self.DRIVE_BASE_URL}/files",
            params={
                "q": query,
                "pageSize": page_size,
                "orderBy": "name",
                "fields": LIST_FIELDS,
            },
            name=query,
        )
        return data.get("files", [])

    async def _find_child(
        self,
        name: str,
        parent_id: str,
        is_folder: bool | None,
    ) -> dict[str, Any] | None:
        query = f"'{quote_query_value(parent_id)}' in parents and name = '{quote_query_value(name)}'"
        if is_folder is True:
            query += f" and mimeType = '{FOLDER_MIME_TYPE}'"
        elif is_folder is False:
            query += f" and mimeType != '{FOLDER_MIME_TYPE}'"
        query += " and trashed = false"
        files = await self._query(query)
        return files[0] if files else None

    async def resource_by_file_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        item = await self._find_child(name, self._folder_id(parent), is_folder=False)
        if item is None:
            raise NotFound(name)
        return self._to_resource(item, parent)

    async def resource_by_folder_name(
        self,
        name: str,
        parent: StorageResource | None = None,
    ) -> StorageResource:
        item = await self._find_child(name, self._folder_id(parent), is_folder=True)
        if item is None:
            raise NotFound(name)
        return self._to_resource(item, parent)

    async def read_data(self, resource: StorageResource) -> bytes:
        logger.debug(f"Loading data for file {resource.id}")
        response = await self.client.request(
            "GET",
            f"{self.DRIVE_BASE_URL}/files/{resource.id}",
            params={"alt": "media"},
        )
        return self._check(response, resource.name).content

    async def get_folder(self, name: str) -> StorageResource:
        if not name.strip("/"):
            return StorageResource.directory(name="", path="", id=self.root_id)
        return await self.resource_by_folder_name(name.strip("/"))

    async def list_resources(
        self,
        parent: StorageResource | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> ResourcePage:
        logger.debug(
            f"Fetching resources at: {parent.path if parent else 'root'}, "
            f"limit: {limit}, cursor: {cursor or 'empty'}"
        )
        folder_id = quote_query_value(self._folder_id(parent))
        if parent is None or not parent.path:
            query = f"(('{folder_id}' in parents) or (sharedWithMe = true)) and trashed = false"
        else:
            query = f"'{folder_id}' in parents and trashed = false"

        params: dict[str, Any] = {
            "q": query,
            "pageSize": limit,
            "orderBy": "name",
            "fields": LIST_FIELDS,
        }
        if cursor:
            params["pageToken"] = cursor

        data = await self.client.get_json(
            f"{self.DRIVE_BASE_URL}/files",
            params=params,
            name=parent.path if parent else "root",
        )

        resources = [self._to_resource(item, parent) for item in data.get("files", [])]
        return ResourcePage(resources=resources, next_cursor=data.get("nextPageToken") or None)

    async def create_folder(
        self,
        parent: StorageResource | None,
        name: str,
    ) -> StorageResource:
        logger.info(f"Creating folder at: {parent.path if parent else 'root'} folderName: {name}")
        folder_id = self._folder_id(parent)
        if await self._find_child(name, folder_id, is_folder=True) is not None:
            raise AlreadyExists(name)

        response = await self.client.request(
            "POST",
            f"{self.DRIVE_BASE_URL}/files",
            params={"fields": FILE_FIELDS},
            json={
                "name": name,
                "mimeType": FOLDER_MIME_TYPE,
                "parents": [folder_id],
            },
        )
        return self._to_resource(self._check(response, name).json(), parent)

    async def create_file(
        self,
        parent: StorageResource | None,
        name: str,
        data: bytes | None = None,
    ) -> StorageResource:
        logger.info(f"Creating file at: {parent.path if parent else 'root'} fileName: {name}")
        folder_id = self._folder_id(parent)
        if await self._find_child(name, folder_id, is_folder=False) is not None:
            raise AlreadyExists(name)

        metadata = {"name": name, "parents": [folder_id]}
        boundary = f"diskbridge_{uuid.uuid4().hex}"
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            "Content-Type: application/octet-stream\r\n\r\n"
        ).encode() + (data or b"") + f"\r\n--{boundary}--\r\n".encode()

        response = await self.client.request(
            "POST",
            f"{self.UPLOAD_URL}/files",
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            content=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        return self._to_resource(self._check(response, name).json(), parent)

    async def update_file(self, resource: StorageResource, data: bytes) -> None:
        logger.info(f"Updating file at: {resource.path}")
        response = await self.client.request(
            "PATCH",
            f"{self.UPLOAD_URL}/files/{resource.id}",
            params={"uploadType": "media"},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._check(response, resource.name)
        logger.info(f"File {resource.id} updated successfully")

    async def _rename(self, resource: StorageResource, new_name: str) -> None:
        response = await self.client.request(
            "PATCH",
            f"{self.DRIVE_BASE_URL}/files/{resource.id}",
            params={"fields": "id,name"},
            json={"name": new_name},
        )
        self._check(response, resource.name)
        logger.debug(f"Successfully renamed {resource.name} to {new_name}")

    async def rename_file(self, resource: StorageResource, new_name: str) -> None:
        await self._rename(resource, new_name)

    async def rename_folder(self, resource: StorageResource, new_name: str) -> None:
        logger.info(f"Renaming folder from: {resource.name} to: {new_name}")
        await self._rename(resource, new_name)

    async def _resolve_folder_id(self, path: str) -> str:
        """Walk a slash-separated folder path from the root to its ID."""
        folder_id = self.root_id
        for segment in [s for s in path.split("/") if s]:
            item = await self._find_child(segment, folder_id, is_folder=True)
            if item is None:
                raise NotFound(path)
            folder_id = item["id"]
        return folder_id

    async def move_file(self, from_path: str, to_path: str) -> None:
        logger.info(f"Moving file from: {from_path} to: {to_path}")
        from_path = from_path.strip("/")
        to_path = to_path.strip("/")

        source_parent_id = await self._resolve_folder_id(parent_path(from_path))
        source_name = from_path.rpartition("/")[2]
        item = await self._find_child(source_name, source_parent_id, is_folder=None)
        if item is None:
            raise NotFound(from_path)

        target_parent_id = await self._resolve_folder_id(parent_path(to_path))
        target_name = to_path.rpartition("/")[2]
        if await self._find_child(target_name, target_parent_id, is_folder=None) is not None:
            raise AlreadyExists(to_path)

        params: dict[str, Any] = {"fields": "id,name,parents"}
        if target_parent_id != source_parent_id:
            params["addParents"] = target_parent_id
            params["removeParents"] = source_parent_id

        response = await self.client.request(
            "PATCH",
            f"{self.DRIVE_BASE_URL}/files/{item['id']}",
            params=params,
            json={"name": target_name},
        )
        self._check(response, from_path)

    async def delete(self, resource: StorageResource) -> None:
        logger.info(f"Deleting item at: {resource.path} ({resource.id})")
        # Drive deletes folder contents along with the folder
        response = await self.client.request("DELETE", f"{self.DRIVE_BASE_URL}/files/{resource.id}")
        self._check(response, resource.name)

    async def delete_all(self) -> None:
        logger.info("Signing out of Google Drive, remote content is kept")
        self.client.token_storage.remove_token()
        if self.on_sign_out is not None:
            self.on_sign_out()
