"""Bridge between interactive sign-in flows and stored credentials.

The interactive part (browser consent, native SDK) lives outside this
package. It is seen here as one awaitable that yields an access token.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from diskbridge.core.errors import NotAuthorized
from diskbridge.services.auth.tokens import TokenStorage

logger = logging.getLogger(__name__)

# Callback signature handed to a callback-style SDK: (token, error).
Completion = Callable[[str | None, BaseException | None], None]
# Registers a completion with the SDK and returns a function that releases it.
Register = Callable[[Completion], Callable[[], None]]


class Authorizer(ABC):
    """Obtains a bearer/OAuth access token from a sign-in flow."""

    @abstractmethod
    async def authorize(self) -> str:
        """Return an access token. Raises NotAuthorized on refusal."""
        pass


async def sign_in(authorizer: Authorizer, token_storage: TokenStorage) -> str:
    """Run the sign-in flow and persist the resulting token."""
    token = await authorizer.authorize()
    token_storage.save_token(token)
    logger.info(f"Signed in, credential stored under {token_storage.key}")
    return token


async def await_callback(register: Register) -> str:
    """Await a callback-style sign-in as a single suspend point.

    The completion may be invoked from any thread. If the awaiting task is
    cancelled, the registration is released so the SDK does not keep a
    dangling completion.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def resolve(token: str | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        elif token:
            future.set_result(token)
        else:
            future.set_exception(NotAuthorized("Sign-in completed without a token"))

    def completion(token: str | None, error: BaseException | None) -> None:
        loop.call_soon_threadsafe(resolve, token, error)

    release = register(completion)
    try:
        return await future
    except asyncio.CancelledError:
        release()
        raise
