"""Credential refresh handlers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from diskbridge.core.errors import NotAuthorized, TransportFailure
from diskbridge.services.auth.tokens import TokenStorage

logger = logging.getLogger(__name__)


@dataclass
class OAuthTokens:
    """OAuth tokens returned by a token endpoint."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"
    scope: str = ""


class TokenRefresher(ABC):
    """Turns the current (rejected) credential into a new one.

    Implementations must not persist the access token themselves; the
    authorized client does that.
    """

    @abstractmethod
    async def refresh(self, current: str | None) -> str:
        """Return a fresh access token. Raises NotAuthorized if impossible."""
        pass


class GoogleTokenRefresher(TokenRefresher):
    """Refresh Google access tokens with the OAuth2 refresh_token grant."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token_storage: TokenStorage,
        http: httpx.AsyncClient,
        token_url: str = "https://oauth2.googleapis.com/token",
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token_storage = refresh_token_storage
        self.http = http
        self.token_url = token_url

    async def refresh(self, current: str | None) -> str:
        refresh_token = self.refresh_token_storage.get_token()
        if not refresh_token:
            raise NotAuthorized("No Google refresh token stored; sign in again")

        tokens = await self.refresh_tokens(refresh_token)
        if tokens.refresh_token != refresh_token:
            # Google may rotate the refresh token
            self.refresh_token_storage.save_token(tokens.refresh_token)
        return tokens.access_token

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token for a new access token."""
        try:
            response = await self.http.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise TransportFailure(f"Google token refresh failed: {e}") from e

        if response.status_code in (400, 401):
            logger.warning("Google refresh token was rejected")
            raise NotAuthorized("Google refresh token was rejected")
        if response.is_error:
            raise TransportFailure(
                f"Google token refresh failed with {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        logger.info("Google access token refreshed")
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", refresh_token),
            expires_in=data.get("expires_in", 0),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )
