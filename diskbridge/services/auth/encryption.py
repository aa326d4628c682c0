"""Token encryption for persisted storage credentials."""

from cryptography.fernet import Fernet, InvalidToken

from diskbridge.core.config import settings


class TokenEncryption:
    """Encrypt and decrypt tokens using Fernet symmetric encryption."""

    def __init__(self, key: str | None = None):
        key = key if key is not None else settings.TOKEN_ENCRYPTION_KEY
        if not key:
            raise ValueError(
                "TOKEN_ENCRYPTION_KEY must be set. "
                "Generate one with: python -c "
                "'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
            )
        self._fernet = Fernet(key.encode())

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token string."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt an encrypted token string."""
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            raise ValueError("Invalid or corrupted token")

    @classmethod
    def generate_key(cls) -> str:
        """Generate a new encryption key."""
        return Fernet.generate_key().decode()
