"""HTTP client wrapper that attaches backend credentials and refreshes them."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from diskbridge.core.errors import (
    NotAuthorized,
    StorageError,
    TransportFailure,
    error_for_status,
)
from diskbridge.services.auth.refresh import TokenRefresher
from diskbridge.services.auth.tokens import TokenStorage

logger = logging.getLogger(__name__)

HeaderProvider = Callable[[str], dict[str, str]]


def bearer_header(token: str) -> dict[str, str]:
    """Authorization header for bearer-token APIs (Google)."""
    return {"Authorization": f"Bearer {token}"}


def oauth_header(token: str) -> dict[str, str]:
    """Authorization header for the OAuth scheme (Yandex)."""
    return {"Authorization": f"OAuth {token}"}


class AuthorizedClient:
    """Wraps an httpx.AsyncClient with a credential and one refresh-and-retry.

    On a 401 the refresher is invoked at most once, the new token is stored,
    and the original request is retried exactly once. Concurrent callers
    that hit a 401 together share one refresh.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        header_provider: HeaderProvider,
        token_storage: TokenStorage,
        refresher: TokenRefresher | None = None,
        default_params: dict[str, str] | None = None,
    ):
        self.http = http
        self.header_provider = header_provider
        self.token_storage = token_storage
        self.refresher = refresher
        self.default_params = dict(default_params or {})
        self._refresh_lock = asyncio.Lock()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        authorized: bool = True,
    ) -> httpx.Response:
        """Send a request and return the response, whatever its status.

        Only authorization failures are handled here; callers map other
        statuses. With ``authorized=False`` the request goes out bare (for
        pre-signed URLs) and is never retried.
        """
        if not authorized:
            return await self._send(method, url, None, params, json, content, headers, False)

        token = self.token_storage.get_token()
        refreshed = False
        if not token:
            token = await self._refresh(None, NotAuthorized("No stored credential"))
            refreshed = True

        response = await self._send(method, url, token, params, json, content, headers, True)
        if response.status_code != 401:
            return response

        if refreshed:
            raise NotAuthorized(f"{method} {url} rejected a freshly issued credential")

        logger.info(f"{method} {url} returned 401, refreshing credential")
        token = await self._refresh(token, NotAuthorized(f"{method} {url} returned 401"))

        response = await self._send(method, url, token, params, json, content, headers, True)
        if response.status_code == 401:
            raise NotAuthorized(f"{method} {url} returned 401 after credential refresh")
        return response

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        name: str | None = None,
    ) -> Any:
        """GET a JSON document, mapping a non-2xx status to a StorageError.

        ``name`` is the resource the request is about and ends up in the
        raised error; it defaults to the URL.
        """
        response = await self.request("GET", url, params=params)
        if response.is_error:
            logger.error(f"GET {url} failed with {response.status_code}")
            raise error_for_status(response, name or url)
        return response.json()

    async def _send(
        self,
        method: str,
        url: str,
        token: str | None,
        params: dict[str, Any] | None,
        json: Any,
        content: bytes | None,
        headers: dict[str, str] | None,
        with_defaults: bool,
    ) -> httpx.Response:
        merged_headers = dict(headers or {})
        if token is not None:
            merged_headers.update(self.header_provider(token))

        merged_params: dict[str, Any] = dict(self.default_params) if with_defaults else {}
        if params:
            merged_params.update(params)

        try:
            return await self.http.request(
                method,
                url,
                params=merged_params or None,
                json=json,
                content=content,
                headers=merged_headers,
            )
        except httpx.HTTPError as e:
            raise TransportFailure(f"{method} {url} failed: {e}") from e

    async def _refresh(self, stale: str | None, original: NotAuthorized) -> str:
        """Obtain a new token, sharing an in-flight refresh with other callers."""
        if self.refresher is None:
            raise original

        async with self._refresh_lock:
            current = self.token_storage.get_token()
            if current and current != stale:
                # Another caller refreshed while we waited
                return current

            try:
                token = await self.refresher.refresh(stale)
            except NotAuthorized as e:
                logger.warning("Credential refresh was rejected, removing stored token")
                self.token_storage.remove_token()
                raise original from e
            except StorageError as e:
                logger.error(f"Credential refresh failed: {e}")
                raise original from e

            self.token_storage.save_token(token)
            return token
