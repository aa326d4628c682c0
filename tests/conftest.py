"""Pytest configuration and fixtures."""

import os

# Set TESTING environment variable before any imports to skip backend settings validation
os.environ["TESTING"] = "true"

from collections.abc import Callable  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from cryptography.fernet import Fernet  # noqa: E402

from diskbridge.services.auth.tokens import InMemoryKeyValueStorage, TokenStorage  # noqa: E402
from diskbridge.services.storage.local import LocalFileStorage  # noqa: E402

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Handler):
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


@pytest.fixture
def fernet_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStorage:
    return InMemoryKeyValueStorage()


@pytest.fixture
def token_storage(kv_store) -> TokenStorage:
    storage = TokenStorage("TestTokenKey", kv_store)
    storage.save_token("token-1")
    return storage


@pytest.fixture
def local_storage(tmp_path) -> LocalFileStorage:
    root = tmp_path / "root"
    root.mkdir()
    return LocalFileStorage(root)


@pytest.fixture
def mock_http() -> Callable[[Handler], tuple[httpx.AsyncClient, RecordingTransport]]:
    """Build an AsyncClient whose requests are answered by ``handler``."""

    def build(handler: Handler) -> tuple[httpx.AsyncClient, RecordingTransport]:
        transport = RecordingTransport(handler)
        return httpx.AsyncClient(transport=transport), transport

    return build
