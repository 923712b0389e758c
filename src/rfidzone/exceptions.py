"""Custom exception hierarchy for rfidzone."""

from __future__ import annotations


class RfidError(Exception):
    """Base exception for all rfidzone errors."""


class RfidConfigError(RfidError):
    """Invalid or missing configuration."""


class RfidReaderError(RfidError):
    """Reader connection could not be opened or was lost (TCP or serial)."""

    def __init__(self, message: str, *, reader_id: str = "") -> None:
        self.reader_id = reader_id
        super().__init__(message)


class RfidTransportError(RfidError):
    """Backend HTTP failure (network, timeout, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class RfidLockError(RfidError):
    """Instance lock is held by a live process.

    This is the only error the gateway treats as fatal: the caller must
    abort startup instead of retrying.
    """

    def __init__(
        self,
        message: str,
        *,
        pid: int | None = None,
        path: str = "",
    ) -> None:
        self.pid = pid
        self.path = path
        super().__init__(message)
