"""Tests for downloading and unpacking archives by link."""

import io
import zipfile

import httpx
import pytest

from diskbridge.core.errors import InvalidArchiveState, InvalidPath, NotFound, TransportFailure
from diskbridge.services.export.download import DOWNLOAD_DIR_NAME, LinkDownloader, validate_link

LINK = "https://files.example.com/share/backup.zip"


def zip_bytes(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def make_downloader(tmp_path, mock_http):
    def build(handler):
        http, transport = mock_http(handler)
        return LinkDownloader(http, target_root=tmp_path), transport

    return build


class TestValidateLink:
    """Tests for link parsing."""

    def test_accepts_https(self):
        assert validate_link(LINK).host == "files.example.com"

    @pytest.mark.parametrize("url", ["", "not a link", "ftp://files.example.com/a.zip", "https://"])
    def test_rejects_bad_links(self, url):
        with pytest.raises(InvalidPath):
            validate_link(url)


class TestLinkDownload:
    """Tests for download and extraction."""

    @pytest.mark.asyncio
    async def test_extracts_into_fresh_directory(self, make_downloader):
        body = zip_bytes({"notes.txt": b"hello", "docs/plan.txt": b"plan"})
        downloader, transport = make_downloader(lambda request: httpx.Response(200, content=body))

        destination = await downloader.download(LINK)

        assert destination.parent == downloader.target_root
        assert (destination / "notes.txt").read_bytes() == b"hello"
        assert (destination / "docs" / "plan.txt").read_bytes() == b"plan"
        assert list(downloader.target_root.iterdir()) == [destination]
        assert str(transport.requests[0].url) == LINK

    @pytest.mark.asyncio
    async def test_each_download_gets_own_directory(self, make_downloader):
        body = zip_bytes({"a.txt": b"a"})
        downloader, _ = make_downloader(lambda request: httpx.Response(200, content=body))

        first = await downloader.download(LINK)
        second = await downloader.download(LINK)

        assert first != second
        assert (first / "a.txt").exists() and (second / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_reports_progress(self, make_downloader):
        body = zip_bytes({"a.txt": b"a" * 100})
        downloader, _ = make_downloader(lambda request: httpx.Response(200, content=body))
        updates = []

        await downloader.download(LINK, on_progress=lambda received, total: updates.append((received, total)))

        assert updates[-1] == (len(body), len(body))

    @pytest.mark.asyncio
    async def test_member_cannot_escape_destination(self, make_downloader):
        body = zip_bytes({"../escape.txt": b"x"})
        downloader, _ = make_downloader(lambda request: httpx.Response(200, content=body))

        destination = await downloader.download(LINK)

        assert (destination / "escape.txt").read_bytes() == b"x"
        assert not (downloader.target_root / "escape.txt").exists()

    @pytest.mark.asyncio
    async def test_missing_link(self, make_downloader):
        downloader, _ = make_downloader(lambda request: httpx.Response(404))

        with pytest.raises(NotFound):
            await downloader.download(LINK)
        assert list(downloader.target_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_not_a_zip_leaves_nothing_behind(self, make_downloader):
        downloader, _ = make_downloader(lambda request: httpx.Response(200, content=b"<html>login</html>"))

        with pytest.raises(InvalidArchiveState):
            await downloader.download(LINK)
        assert list(downloader.target_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_network_error(self, make_downloader):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        downloader, _ = make_downloader(handler)

        with pytest.raises(TransportFailure):
            await downloader.download(LINK)

    @pytest.mark.asyncio
    async def test_bad_link_sends_nothing(self, make_downloader):
        downloader, transport = make_downloader(lambda request: httpx.Response(200))

        with pytest.raises(InvalidPath):
            await downloader.download("file:///etc/passwd")
        assert transport.requests == []


class TestCleanupDownload:
    """Tests for removing extracted downloads."""

    @pytest.mark.asyncio
    async def test_cleanup_removes_directory(self, make_downloader):
        body = zip_bytes({"a.txt": b"a"})
        downloader, _ = make_downloader(lambda request: httpx.Response(200, content=body))
        destination = await downloader.download(LINK)

        await downloader.cleanup_download(destination)

        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_cleanup_foreign_directory(self, make_downloader, tmp_path):
        downloader, _ = make_downloader(lambda request: httpx.Response(200))
        foreign = tmp_path / "elsewhere"
        foreign.mkdir()

        with pytest.raises(InvalidArchiveState):
            await downloader.cleanup_download(foreign)
        assert foreign.exists()

    def test_default_target_root(self, mock_http):
        http, _ = mock_http(lambda request: httpx.Response(200))

        assert LinkDownloader(http).target_root.name == DOWNLOAD_DIR_NAME
