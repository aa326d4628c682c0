"""Download a ZIP archive by link and unpack it into a fresh directory."""

import asyncio
import logging
import shutil
import tempfile
import uuid
import zipfile
from collections.abc import Callable
from pathlib import Path

import httpx

from diskbridge.core.errors import InvalidArchiveState, InvalidPath, TransportFailure, error_for_status
from diskbridge.core.logging import operation_scope

logger = logging.getLogger(__name__)

DOWNLOAD_DIR_NAME = "diskbridge_downloads"

ProgressCallback = Callable[[int, int | None], None]


def validate_link(url: str) -> httpx.URL:
    """Parse ``url``, accepting only absolute http(s) links."""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise InvalidPath(url) from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidPath(url)
    return parsed


class LinkDownloader:
    """Fetches an archive from a link and extracts it.

    Each download gets its own directory under ``target_root``; the
    downloaded ZIP is removed once it has been unpacked. ``on_progress``
    receives the bytes received so far and the announced total, if any.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        target_root: str | Path | None = None,
    ):
        self.http = http
        base = Path(target_root) if target_root is not None else Path(tempfile.gettempdir())
        self.target_root = (base / DOWNLOAD_DIR_NAME).resolve()

    async def download(self, url: str, on_progress: ProgressCallback | None = None) -> Path:
        """Download the archive at ``url`` and return the extracted directory."""
        link = validate_link(url)

        with operation_scope():
            unique = uuid.uuid4().hex
            self.target_root.mkdir(parents=True, exist_ok=True)
            zip_path = self.target_root / f"{unique}_archive.zip"
            destination = self.target_root / unique
            logger.info(f"Downloading archive from {link.host}")

            try:
                await self._fetch(link, zip_path, on_progress)
                destination.mkdir()
                await asyncio.to_thread(self._extract, zip_path, destination)
            except BaseException:
                logger.error(f"Download from {link.host} failed, removing {destination}")
                shutil.rmtree(destination, ignore_errors=True)
                raise
            finally:
                zip_path.unlink(missing_ok=True)

            logger.info(f"Archive extracted to {destination}")
            return destination

    async def _fetch(self, link: httpx.URL, zip_path: Path, on_progress: ProgressCallback | None) -> None:
        try:
            async with self.http.stream("GET", link) as response:
                if response.is_error:
                    raise error_for_status(response, str(link))

                length = response.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None
                received = 0
                with open(zip_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                        received += len(chunk)
                        if on_progress is not None:
                            on_progress(received, total)
        except httpx.HTTPError as e:
            raise TransportFailure(f"GET {link} failed: {e}") from e

        logger.debug(f"Downloaded {received} bytes to {zip_path}")

    @staticmethod
    def _extract(zip_path: Path, destination: Path) -> None:
        # extractall drops absolute prefixes and ".." components from member names
        try:
            with zipfile.ZipFile(zip_path) as zf:
                zf.extractall(destination)
        except zipfile.BadZipFile as e:
            raise InvalidArchiveState(f"Downloaded file is not a ZIP archive: {e}") from e

    async def cleanup_download(self, directory: str | Path) -> None:
        """Remove a directory previously returned by ``download``."""
        path = Path(directory).resolve()
        if path.parent != self.target_root or not path.is_dir():
            raise InvalidArchiveState(f"{directory} is not a download created by this downloader")

        await asyncio.to_thread(shutil.rmtree, path)
        logger.info(f"Cleaned up download directory {path}")
