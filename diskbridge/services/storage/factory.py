"""Build storage adapters from backend configurations."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

import httpx

from diskbridge.core.config import BackendKind, Settings
from diskbridge.services.auth.client import AuthorizedClient, bearer_header, oauth_header
from diskbridge.services.auth.encryption import TokenEncryption
from diskbridge.services.auth.refresh import GoogleTokenRefresher, TokenRefresher
from diskbridge.services.auth.tokens import (
    GOOGLE_DRIVE_REFRESH_TOKEN_KEY,
    GOOGLE_DRIVE_TOKEN_KEY,
    YANDEX_DISK_TOKEN_KEY,
    EncryptedFileKeyValueStorage,
    InMemoryKeyValueStorage,
    KeyValueStorage,
    TokenStorage,
)
from diskbridge.services.storage.base import FileStorage
from diskbridge.services.storage.google import GoogleDriveFileStorage
from diskbridge.services.storage.local import LocalFileStorage
from diskbridge.services.storage.yandex import YandexDiskFileStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalBackend:
    root: str | Path

    kind: ClassVar[BackendKind] = BackendKind.LOCAL


@dataclass(frozen=True)
class GoogleDriveBackend:
    api_key: str
    parent_id: str | None = None

    kind: ClassVar[BackendKind] = BackendKind.GOOGLE_DRIVE


@dataclass(frozen=True)
class YandexDiskBackend:
    root_path: str | None = None

    kind: ClassVar[BackendKind] = BackendKind.YANDEX_DISK


BackendConfig = LocalBackend | GoogleDriveBackend | YandexDiskBackend

TOKEN_KEYS: dict[BackendKind, str] = {
    BackendKind.GOOGLE_DRIVE: GOOGLE_DRIVE_TOKEN_KEY,
    BackendKind.YANDEX_DISK: YANDEX_DISK_TOKEN_KEY,
}


class FileStorageTokenFactory:
    """Hands out the credential slot for each remote backend."""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def make(self, kind: BackendKind) -> TokenStorage:
        key = TOKEN_KEYS.get(kind)
        if key is None:
            raise ValueError(f"Backend {kind.value} does not use a credential")
        return TokenStorage(key, self.storage)

    def make_google_refresh(self) -> TokenStorage:
        return TokenStorage(GOOGLE_DRIVE_REFRESH_TOKEN_KEY, self.storage)


class FileStorageFactory:
    """Creates the adapter, authorized client and token slot for a backend."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        token_factory: FileStorageTokenFactory,
        google_refresher: TokenRefresher | None = None,
    ):
        self.http = http
        self.token_factory = token_factory
        self.google_refresher = google_refresher
        self._builders: dict[BackendKind, Callable[..., FileStorage]] = {
            BackendKind.LOCAL: self._make_local,
            BackendKind.GOOGLE_DRIVE: self._make_google_drive,
            BackendKind.YANDEX_DISK: self._make_yandex_disk,
        }

    def make(self, config: BackendConfig) -> FileStorage:
        builder = self._builders.get(config.kind)
        if builder is None:
            raise ValueError(f"Unsupported storage backend: {config.kind}")
        logger.info(f"Creating {config.kind.value} storage")
        return builder(config)

    def _make_local(self, config: LocalBackend) -> FileStorage:
        return LocalFileStorage(config.root)

    def _make_google_drive(self, config: GoogleDriveBackend) -> FileStorage:
        client = AuthorizedClient(
            self.http,
            bearer_header,
            self.token_factory.make(BackendKind.GOOGLE_DRIVE),
            refresher=self.google_refresher,
            default_params={"key": config.api_key} if config.api_key else None,
        )
        refresh_storage = self.token_factory.make_google_refresh()
        return GoogleDriveFileStorage(
            client,
            root_id=config.parent_id or "root",
            on_sign_out=refresh_storage.remove_token,
        )

    def _make_yandex_disk(self, config: YandexDiskBackend) -> FileStorage:
        # Yandex tokens are long-lived; an expired one means signing in again
        client = AuthorizedClient(
            self.http,
            oauth_header,
            self.token_factory.make(BackendKind.YANDEX_DISK),
        )
        return YandexDiskFileStorage(client, root_path=config.root_path or "/")


def backend_config_from_settings(settings: Settings) -> BackendConfig:
    """Translate settings into the configuration of the selected backend."""
    if settings.STORAGE_BACKEND == BackendKind.GOOGLE_DRIVE:
        return GoogleDriveBackend(
            api_key=settings.GOOGLE_API_KEY,
            parent_id=settings.google_parent_id,
        )
    if settings.STORAGE_BACKEND == BackendKind.YANDEX_DISK:
        return YandexDiskBackend(root_path=settings.YANDEX_ROOT_PATH)
    return LocalBackend(root=settings.LOCAL_STORAGE_ROOT)


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client shared by the remote adapters and the token refresher."""
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True)


def create_file_storage(
    settings: Settings,
    http: httpx.AsyncClient,
    key_value_storage: KeyValueStorage | None = None,
) -> FileStorage:
    """Build the storage selected by ``settings``.

    Remote backends persist credentials in an encrypted token file unless a
    key-value store is passed in.
    """
    config = backend_config_from_settings(settings)

    if key_value_storage is None:
        if settings.is_local:
            key_value_storage = InMemoryKeyValueStorage()
        else:
            key_value_storage = EncryptedFileKeyValueStorage(
                settings.TOKEN_STORE_PATH,
                TokenEncryption(settings.TOKEN_ENCRYPTION_KEY),
            )

    token_factory = FileStorageTokenFactory(key_value_storage)

    google_refresher = None
    if settings.GOOGLE_CLIENT_ID:
        google_refresher = GoogleTokenRefresher(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            refresh_token_storage=token_factory.make_google_refresh(),
            http=http,
            token_url=settings.google_token_url,
        )

    return FileStorageFactory(http, token_factory, google_refresher).make(config)
