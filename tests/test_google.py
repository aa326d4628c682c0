"""Tests for the Google Drive backend."""

import json
import re
from unittest.mock import MagicMock

import httpx
import pytest

from diskbridge.core.errors import AlreadyExists, NotFound, TransportFailure
from diskbridge.services.auth.client import AuthorizedClient, bearer_header
from diskbridge.services.storage.base import StorageResource
from diskbridge.services.storage.google import (
    FOLDER_MIME_TYPE,
    GoogleDriveFileStorage,
    quote_query_value,
)

FOLDER = {"id": "fold-1", "name": "Projects", "mimeType": FOLDER_MIME_TYPE, "modifiedTime": "2025-01-01T00:00:00Z"}
BINARY = {
    "id": "file-1",
    "name": "photo.jpg",
    "mimeType": "image/jpeg",
    "webContentLink": "https://drive.google.com/uc?id=file-1",
    "thumbnailLink": "https://lh3.googleusercontent.com/thumb",
}
NATIVE_DOC = {
    "id": "doc-1",
    "name": "Plan",
    "mimeType": "application/vnd.google-apps.document",
    "exportLinks": {"application/pdf": "https://docs.google.com/export?id=doc-1&format=pdf"},
}


def make_storage(mock_http, token_storage, handler, **kwargs):
    http, transport = mock_http(handler)
    client = AuthorizedClient(http, bearer_header, token_storage, default_params={"key": "api-key"})
    return GoogleDriveFileStorage(client, **kwargs), transport


def files_response(*items, next_token=None):
    body = {"files": list(items)}
    if next_token:
        body["nextPageToken"] = next_token
    return httpx.Response(200, json=body)


class FakeDrive:
    """Single Drive folder that answers list, name lookup and rename requests."""

    def __init__(self, names):
        self.files = {
            f"id-{i}": {"id": f"id-{i}", "name": name, "mimeType": "text/plain"}
            for i, name in enumerate(names)
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "PATCH":
            file_id = request.url.path.rsplit("/", 1)[1]
            self.files[file_id]["name"] = json.loads(request.content)["name"]
            return httpx.Response(200, json=self.files[file_id])

        params = request.url.params
        items = sorted(self.files.values(), key=lambda f: f["name"])
        match = re.search(r"name = '([^']*)'", params["q"])
        if match:
            items = [f for f in items if f["name"] == match.group(1)]
        start = int(params.get("pageToken", "0"))
        end = start + int(params["pageSize"])
        return files_response(*items[start:end], next_token=str(end) if end < len(items) else None)


class TestQueryEscaping:
    """Tests for Drive query literal escaping."""

    def test_escapes_quote_and_backslash(self):
        assert quote_query_value("it's") == "it\\'s"
        assert quote_query_value("a\\b") == "a\\\\b"

    def test_plain_value_unchanged(self):
        assert quote_query_value("report 2025.pdf") == "report 2025.pdf"


class TestGoogleListing:
    """Tests for paginated listing."""

    @pytest.mark.asyncio
    async def test_root_listing_includes_shared_items(self, mock_http, token_storage):
        storage, transport = make_storage(
            mock_http,
            token_storage,
            lambda request: files_response(FOLDER, BINARY, NATIVE_DOC, next_token="page-2"),
        )

        resources, cursor = await storage.list_resources(limit=3)

        request = transport.requests[0]
        assert request.url.path == "/drive/v3/files"
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.url.params["key"] == "api-key"
        assert request.url.params["pageSize"] == "3"
        assert "sharedWithMe = true" in request.url.params["q"]
        assert "'root' in parents" in request.url.params["q"]
        assert "pageToken" not in request.url.params
        assert cursor == "page-2"

        folder, photo, doc = resources
        assert folder.is_directory
        assert folder.id == "fold-1"
        assert folder.path == "Projects"
        assert photo.is_file
        assert photo.url == "https://drive.google.com/uc?id=file-1"
        assert photo.preview_url == "https://lh3.googleusercontent.com/thumb"
        assert doc.url == "https://docs.google.com/export?id=doc-1&format=pdf"

    @pytest.mark.asyncio
    async def test_listing_child_folder_with_cursor(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: files_response(BINARY))
        parent = StorageResource.directory(name="Projects", path="Projects", id="fold-1")

        page = await storage.list_resources(parent, limit=20, cursor="page-2")

        params = transport.requests[0].url.params
        assert params["pageToken"] == "page-2"
        assert params["q"] == "'fold-1' in parents and trashed = false"
        assert page.resources[0].path == "Projects/photo.jpg"
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_fallback_urls(self, mock_http, token_storage):
        bare_file = {"id": "f2", "name": "raw.bin", "mimeType": "application/octet-stream"}
        bare_doc = {"id": "d2", "name": "Sheet", "mimeType": "application/vnd.google-apps.spreadsheet"}
        storage, _ = make_storage(mock_http, token_storage, lambda request: files_response(bare_file, bare_doc))

        resources, _ = await storage.list_resources()

        assert resources[0].url == "https://drive.google.com/file/d/f2/view"
        assert resources[1].url == "https://docs.google.com/document/d/d2/edit"

    @pytest.mark.asyncio
    async def test_configured_root(self, mock_http, token_storage):
        storage, transport = make_storage(
            mock_http, token_storage, lambda request: files_response(), root_id="parent-9"
        )

        await storage.list_resources()

        assert "'parent-9' in parents" in transport.requests[0].url.params["q"]


    @pytest.mark.asyncio
    async def test_pages_cover_every_item_once(self, mock_http, token_storage):
        names = [f"doc-{i}.txt" for i in range(5)]
        storage, transport = make_storage(mock_http, token_storage, FakeDrive(names))

        listed = [r.name async for r in storage.iter_resources(page_size=2)]

        assert listed == names
        assert [r.url.params.get("pageToken") for r in transport.requests] == [None, "2", "4"]

    @pytest.mark.asyncio
    async def test_same_cursor_returns_same_page(self, mock_http, token_storage):
        storage, _ = make_storage(mock_http, token_storage, FakeDrive(["a", "b", "c"]))

        first = await storage.list_resources(limit=2, cursor="2")
        second = await storage.list_resources(limit=2, cursor="2")

        assert [r.id for r in first.resources] == [r.id for r in second.resources] == ["id-2"]
        assert first.next_cursor is second.next_cursor is None


class TestGoogleLookup:
    """Tests for exact-name lookups."""

    @pytest.mark.asyncio
    async def test_file_lookup_escapes_name(self, mock_http, token_storage):
        item = dict(BINARY, name="it's.jpg")
        storage, transport = make_storage(mock_http, token_storage, lambda request: files_response(item))

        resource = await storage.resource_by_file_name("it's.jpg")

        q = transport.requests[0].url.params["q"]
        assert "name = 'it\\'s.jpg'" in q
        assert f"mimeType != '{FOLDER_MIME_TYPE}'" in q
        assert resource.id == "file-1"

    @pytest.mark.asyncio
    async def test_folder_lookup_missing(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: files_response())

        with pytest.raises(NotFound):
            await storage.resource_by_folder_name("Missing")
        assert f"mimeType = '{FOLDER_MIME_TYPE}'" in transport.requests[0].url.params["q"]

    @pytest.mark.asyncio
    async def test_get_folder_root_needs_no_request(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: files_response())

        root = await storage.get_folder("")

        assert root.id == "root"
        assert root.path == ""
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_get_folder_by_name(self, mock_http, token_storage):
        storage, _ = make_storage(mock_http, token_storage, lambda request: files_response(FOLDER))

        folder = await storage.get_folder("Projects")

        assert folder.id == "fold-1"


class TestGoogleWrites:
    """Tests for create, update, rename and delete."""

    @pytest.mark.asyncio
    async def test_create_file_multipart(self, mock_http, token_storage):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return files_response()
            return httpx.Response(200, json={"id": "new-1", "name": "a.txt", "mimeType": "text/plain"})

        storage, transport = make_storage(mock_http, token_storage, handler)

        created = await storage.create_file(None, "a.txt", b"payload")

        upload = transport.requests[1]
        assert upload.method == "POST"
        assert upload.url.path == "/upload/drive/v3/files"
        assert upload.url.params["uploadType"] == "multipart"
        assert upload.headers["Content-Type"].startswith("multipart/related; boundary=")
        assert b'"name": "a.txt"' in upload.content
        assert b'"parents": ["root"]' in upload.content
        assert b"payload" in upload.content
        assert created.id == "new-1"

    @pytest.mark.asyncio
    async def test_create_file_existing(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: files_response(BINARY))

        with pytest.raises(AlreadyExists):
            await storage.create_file(None, "photo.jpg", b"")
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_create_folder(self, mock_http, token_storage):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return files_response()
            return httpx.Response(200, json=FOLDER)

        storage, transport = make_storage(mock_http, token_storage, handler)
        parent = StorageResource.directory(name="Top", path="Top", id="top-1")

        folder = await storage.create_folder(parent, "Projects")

        body = json.loads(transport.requests[1].content)
        assert body == {"name": "Projects", "mimeType": FOLDER_MIME_TYPE, "parents": ["top-1"]}
        assert folder.path == "Top/Projects"

    @pytest.mark.asyncio
    async def test_update_file_media_upload(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: httpx.Response(200, json={}))
        resource = StorageResource.file(name="a.txt", path="a.txt", id="file-7")

        await storage.update_file(resource, b"new content")

        request = transport.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/upload/drive/v3/files/file-7"
        assert request.url.params["uploadType"] == "media"
        assert request.content == b"new content"

    @pytest.mark.asyncio
    async def test_rename_patches_name(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: httpx.Response(200, json={}))
        resource = StorageResource.directory(name="Old", path="Old", id="fold-3")

        await storage.rename_folder(resource, "New")

        request = transport.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/drive/v3/files/fold-3"
        assert json.loads(request.content) == {"name": "New"}

    @pytest.mark.asyncio
    async def test_move_between_folders(self, mock_http, token_storage):
        by_name = {
            "a": {"id": "A", "name": "a", "mimeType": FOLDER_MIME_TYPE},
            "b": {"id": "B", "name": "b", "mimeType": FOLDER_MIME_TYPE},
            "f.txt": {"id": "F", "name": "f.txt", "mimeType": "text/plain"},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "PATCH":
                return httpx.Response(200, json={})
            q = request.url.params["q"]
            for name, item in by_name.items():
                if f"name = '{name}'" in q:
                    return files_response(item)
            return files_response()

        storage, transport = make_storage(mock_http, token_storage, handler)

        await storage.move_file("a/f.txt", "b/g.txt")

        patch = transport.requests[-1]
        assert patch.url.path == "/drive/v3/files/F"
        assert patch.url.params["addParents"] == "B"
        assert patch.url.params["removeParents"] == "A"
        assert json.loads(patch.content) == {"name": "g.txt"}

    @pytest.mark.asyncio
    async def test_move_missing_source(self, mock_http, token_storage):
        storage, _ = make_storage(mock_http, token_storage, lambda request: files_response())

        with pytest.raises(NotFound):
            await storage.move_file("f.txt", "g.txt")

    @pytest.mark.asyncio
    async def test_delete(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: httpx.Response(204))
        resource = StorageResource.file(name="a.txt", path="a.txt", id="file-8")

        await storage.delete(resource)

        assert transport.requests[0].method == "DELETE"
        assert transport.requests[0].url.path == "/drive/v3/files/file-8"

    @pytest.mark.asyncio
    async def test_delete_all_signs_out(self, mock_http, token_storage):
        on_sign_out = MagicMock()
        storage, transport = make_storage(
            mock_http, token_storage, lambda request: httpx.Response(200), on_sign_out=on_sign_out
        )

        await storage.delete_all()

        assert token_storage.get_token() is None
        on_sign_out.assert_called_once()
        assert transport.requests == []


    @pytest.mark.asyncio
    async def test_rename_then_old_name_is_gone(self, mock_http, token_storage):
        storage, _ = make_storage(mock_http, token_storage, FakeDrive(["a.txt", "other.txt"]))
        original = await storage.resource_by_file_name("a.txt")

        await storage.rename_file(original, "b.txt")

        with pytest.raises(NotFound):
            await storage.resource_by_file_name("a.txt")
        renamed = await storage.resource_by_file_name("b.txt")
        assert renamed.id == original.id


class TestGoogleErrors:
    """Tests for status code mapping."""

    @pytest.mark.asyncio
    async def test_read_data(self, mock_http, token_storage):
        storage, transport = make_storage(mock_http, token_storage, lambda request: httpx.Response(200, content=b"bytes"))
        resource = StorageResource.file(name="a.bin", path="a.bin", id="file-1")

        assert await storage.read_data(resource) == b"bytes"
        assert transport.requests[0].url.params["alt"] == "media"

    @pytest.mark.asyncio
    async def test_read_missing(self, mock_http, token_storage):
        storage, _ = make_storage(mock_http, token_storage, lambda request: httpx.Response(404))
        resource = StorageResource.file(name="gone.bin", path="gone.bin", id="gone")

        with pytest.raises(NotFound):
            await storage.read_data(resource)

    @pytest.mark.asyncio
    async def test_server_error(self, mock_http, token_storage):
        storage, _ = make_storage(mock_http, token_storage, lambda request: httpx.Response(503))

        with pytest.raises(TransportFailure) as exc_info:
            await storage.list_resources()
        assert exc_info.value.status_code == 503
