"""
Error taxonomy for the synchronization engine.

Network errors (FetchTimeout, HttpError, TransportError) reach callers only
when no fresh cached value exists. StorageError and ConsumerCallbackError are
always handled inside the engine and only logged.
"""
from typing import Optional


class SyncError(RuntimeError):
    """Base class for engine errors."""


class FetchError(SyncError):
    """A network fetch for a token failed."""

    def __init__(self, message: str, token: Optional[str] = None):
        super().__init__(message)
        self.token = token


class FetchTimeout(FetchError, TimeoutError):
    """The request did not complete within the configured timeout."""


class HttpError(FetchError):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, status: int, token: Optional[str] = None):
        super().__init__(f"HTTP {status}", token=token)
        self.status = status


class TransportError(FetchError):
    """Connection failure or an unreadable response body."""


class StorageError(SyncError):
    """The persistent store could not be read or written."""


class ConsumerCallbackError(SyncError):
    """A consumer callback raised while a payload was being delivered."""

    def __init__(self, token: str, original: BaseException):
        super().__init__(f"consumer callback failed for {token}: {original!r}")
        self.token = token
        self.original = original
