# Credential handling for remote backends
from diskbridge.services.auth.client import (
    AuthorizedClient,
    bearer_header,
    oauth_header,
)
from diskbridge.services.auth.encryption import TokenEncryption
from diskbridge.services.auth.refresh import (
    GoogleTokenRefresher,
    OAuthTokens,
    TokenRefresher,
)
from diskbridge.services.auth.signin import Authorizer, await_callback, sign_in
from diskbridge.services.auth.tokens import (
    GOOGLE_DRIVE_REFRESH_TOKEN_KEY,
    GOOGLE_DRIVE_TOKEN_KEY,
    YANDEX_DISK_TOKEN_KEY,
    EncryptedFileKeyValueStorage,
    InMemoryKeyValueStorage,
    KeyValueStorage,
    TokenStorage,
)

__all__ = [
    "GOOGLE_DRIVE_REFRESH_TOKEN_KEY",
    "GOOGLE_DRIVE_TOKEN_KEY",
    "YANDEX_DISK_TOKEN_KEY",
    "AuthorizedClient",
    "Authorizer",
    "EncryptedFileKeyValueStorage",
    "GoogleTokenRefresher",
    "InMemoryKeyValueStorage",
    "KeyValueStorage",
    "OAuthTokens",
    "TokenEncryption",
    "TokenRefresher",
    "TokenStorage",
    "await_callback",
    "bearer_header",
    "oauth_header",
    "sign_in",
]
