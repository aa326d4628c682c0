import os
from enum import Enum
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendKind(str, Enum):
    """Supported storage backends."""

    LOCAL = "local"
    GOOGLE_DRIVE = "google_drive"
    YANDEX_DISK = "yandex_disk"


class Settings(BaseSettings):
    # Backend selection
    STORAGE_BACKEND: BackendKind = BackendKind.LOCAL

    # Local filesystem backend
    LOCAL_STORAGE_ROOT: str = "./storage"

    # Google Drive backend
    GOOGLE_API_KEY: str = ""
    GOOGLE_PARENT_ID: str = ""  # Empty means "root"
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Yandex Disk backend
    YANDEX_ROOT_PATH: str = "/"

    # Token persistence
    TOKEN_STORE_PATH: str = "./.diskbridge/tokens.json"
    TOKEN_ENCRYPTION_KEY: str = ""  # Generate with: Fernet.generate_key().decode()

    # HTTP
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Archive export
    ARCHIVE_DOWNLOAD_CONCURRENCY: int = 4

    # Logging Configuration
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON_FORMAT: bool = False  # Use JSON format for logs

    @property
    def is_local(self) -> bool:
        """Check if the local filesystem backend is selected."""
        return self.STORAGE_BACKEND == BackendKind.LOCAL

    @property
    def google_token_url(self) -> str:
        """Google OAuth2 token endpoint."""
        return "https://oauth2.googleapis.com/token"

    @property
    def google_parent_id(self) -> str:
        """Drive folder ID used as the storage root."""
        return self.GOOGLE_PARENT_ID or "root"

    @model_validator(mode="after")
    def validate_backend_settings(self) -> Self:
        """Validate that the selected backend is fully configured.

        Skipped during testing (when TESTING=true environment variable is set).
        """
        if os.environ.get("TESTING", "").lower() == "true":
            return self

        if self.STORAGE_BACKEND == BackendKind.GOOGLE_DRIVE and not self.GOOGLE_API_KEY:
            raise ValueError("GOOGLE_API_KEY must be set when STORAGE_BACKEND=google_drive")

        if self.GOOGLE_CLIENT_ID and not self.GOOGLE_CLIENT_SECRET:
            raise ValueError("GOOGLE_CLIENT_SECRET must be set together with GOOGLE_CLIENT_ID")

        if self.ARCHIVE_DOWNLOAD_CONCURRENCY < 1:
            raise ValueError("ARCHIVE_DOWNLOAD_CONCURRENCY must be >= 1")

        return self

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
