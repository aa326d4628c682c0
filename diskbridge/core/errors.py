"""Errors raised by storage adapters, the authorized client and the archiver."""

import httpx


class StorageError(Exception):
    """Base exception for every storage failure."""

    pass


class NotFound(StorageError):
    """Resource does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Resource not found: {name}")


class AlreadyExists(StorageError):
    """A resource with the same name already exists at the destination."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Resource already exists: {name}")


class InvalidPath(StorageError):
    """Path is malformed or escapes the storage root."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Invalid path: {path}")


class NotAuthorized(StorageError):
    """No credential is available, or the backend rejected it."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class TransportFailure(StorageError):
    """Network, HTTP or disk I/O failure not further classified."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidArchiveState(StorageError):
    """Archive operation used on a path or in a state it does not support."""

    pass


def error_for_status(response: httpx.Response, name: str) -> StorageError:
    """Map a failed HTTP response to the storage error taxonomy.

    Args:
        response: The non-2xx response.
        name: Resource name or path the request was about, for messages.
    """
    status = response.status_code
    if status == 404:
        return NotFound(name)
    if status == 409:
        return AlreadyExists(name)
    if status == 401:
        return NotAuthorized(f"Request for {name} was rejected with 401")
    return TransportFailure(
        f"{response.request.method} {response.request.url.path} failed with {status}",
        status_code=status,
    )
