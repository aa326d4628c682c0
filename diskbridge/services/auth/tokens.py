"""Key-value persistence for backend credentials."""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from diskbridge.services.auth.encryption import TokenEncryption

logger = logging.getLogger(__name__)

GOOGLE_DRIVE_TOKEN_KEY = "GoogleDriveTokenKey"
GOOGLE_DRIVE_REFRESH_TOKEN_KEY = "GoogleDriveRefreshTokenKey"
YANDEX_DISK_TOKEN_KEY = "YandexDiskTokenKey"


class KeyValueStorage(ABC):
    """Opaque string key-value store. Last write wins."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryKeyValueStorage(KeyValueStorage):
    """Process-local store, for tests and short-lived sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class EncryptedFileKeyValueStorage(KeyValueStorage):
    """JSON file whose values are Fernet-encrypted.

    The file is rewritten atomically on every change. Concurrent writers in
    different processes are not coordinated.
    """

    def __init__(self, path: str | Path, encryption: TokenEncryption):
        self.path = Path(path)
        self.encryption = encryption
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error(f"Token store {self.path} is corrupted, ignoring its content")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, values: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(values), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> str | None:
        with self._lock:
            encrypted = self._read().get(key)
        if encrypted is None:
            return None
        try:
            return self.encryption.decrypt(encrypted)
        except ValueError:
            logger.warning(f"Stored value for {key} cannot be decrypted")
            return None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            values = self._read()
            values[key] = self.encryption.encrypt(value)
            self._write(values)

    def remove(self, key: str) -> None:
        with self._lock:
            values = self._read()
            if values.pop(key, None) is not None:
                self._write(values)


class TokenStorage:
    """One backend's credential slot in a key-value store."""

    def __init__(self, key: str, storage: KeyValueStorage):
        self.key = key
        self.storage = storage

    def get_token(self) -> str | None:
        return self.storage.get(self.key)

    def save_token(self, token: str) -> None:
        self.storage.set(self.key, token)

    def remove_token(self) -> None:
        self.storage.remove(self.key)
