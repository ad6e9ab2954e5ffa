"""Error taxonomy shared by every storage adapter.

Missing tickets, comments and API keys are not errors: read and mutate
operations report them as ``None``/``False`` so the caller decides how to
respond. Driver and I/O failures are not wrapped either; the native
``SQLAlchemyError`` or ``OSError`` reaches the caller unchanged.
"""
from datetime import datetime
from typing import Optional


class StorageError(Exception):
    """Base class for errors raised by the storage layer."""


class StorageUnavailable(StorageError):
    """A required driver or connection setting is missing.

    Raised while constructing or initializing an adapter so that a
    misconfigured process fails at startup.
    """


class InvalidApiKey(StorageError):
    """The supplied API key does not exist or has been revoked."""

    def __init__(self, message: str = "Invalid API key"):
        super().__init__(message)


class RateLimitExceeded(StorageError):
    """The identifier has used up its quota for the current window."""

    def __init__(
        self,
        identifier: str,
        limit: int,
        window_start: datetime,
        retry_after: int,
        message: Optional[str] = None,
    ):
        super().__init__(message or "Rate limit exceeded. Please try again later.")
        self.identifier = identifier
        self.limit = limit
        self.window_start = window_start
        self.retry_after = retry_after


class DuplicateTicket(StorageError):
    """An explicit ticket ID was supplied that already exists in the store."""

    def __init__(self, ticket_id: str):
        super().__init__(f"Ticket {ticket_id} already exists")
        self.ticket_id = ticket_id


class UnsupportedOperation(StorageError):
    """The active adapter does not implement this operation."""
