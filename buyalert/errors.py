"""Exception taxonomy shared across the bot."""

from __future__ import annotations

from typing import Optional

MAX_PAYLOAD_PREVIEW = 500
# 4xx statuses that clear up on their own.
RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})


class BuyAlertError(Exception):
    """Base class for every error raised by this package."""


class LedgerError(BuyAlertError):
    """A call to the explorer or price API failed."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class NetworkError(LedgerError):
    """The remote endpoint was unreachable, timed out or answered non-2xx."""

    def __init__(
        self, message: str, url: str = "", status_code: Optional[int] = None
    ) -> None:
        super().__init__(message, url)
        self.status_code = status_code

    @property
    def is_permanent(self) -> bool:
        """Client errors (bad address, delisted token) will not heal on retry."""
        if self.status_code is None or self.status_code in RETRYABLE_CLIENT_STATUSES:
            return False
        return 400 <= self.status_code < 500


class DecodeError(LedgerError):
    """The response body did not match the expected shape."""

    def __init__(self, message: str, url: str = "", payload: str = "") -> None:
        super().__init__(message, url)
        self.payload = payload

    @property
    def payload_preview(self) -> str:
        if len(self.payload) <= MAX_PAYLOAD_PREVIEW:
            return self.payload
        return self.payload[:MAX_PAYLOAD_PREVIEW] + "..."


class ValidationError(BuyAlertError):
    """User-supplied input failed a format check."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(BuyAlertError):
    """A record the caller requires does not exist."""


class PersistenceError(BuyAlertError):
    """Loading or saving the settings collection failed."""


__all__ = [
    "BuyAlertError",
    "LedgerError",
    "NetworkError",
    "DecodeError",
    "ValidationError",
    "NotFoundError",
    "PersistenceError",
]
