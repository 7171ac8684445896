"""Exceptions raised by the endpoint resolution and download machinery."""
from __future__ import annotations

from collections.abc import Sequence


class InvalidArgument(ValueError):
    """Raised when a caller supplies unusable input (e.g. no hostnames)."""


class ResolutionError(RuntimeError):
    """Raised when a hostname cannot be resolved to any address."""

    def __init__(self, hostname: str, message: str) -> None:
        """Record the hostname that failed to resolve."""
        super().__init__(f"Failed to resolve {hostname}: {message}")
        self.hostname = hostname


class TransferError(RuntimeError):
    """Base class for failures of a single transfer attempt."""


class FatalTransferError(TransferError):
    """A failure that no other endpoint can fix; aborts the download."""


class RetryableTransferError(TransferError):
    """A failure local to one endpoint; the next endpoint is tried."""


class TransferHTTPError(TransferError):
    """An endpoint answered with an HTTP error status."""

    def __init__(self, http_code: int, message: str = "") -> None:
        """Store the HTTP status so the failure classifier can inspect it."""
        detail = f": {message}" if message else ""
        super().__init__(f"HTTP {http_code}{detail}")
        self.http_code = http_code


class AllEndpointsFailed(RuntimeError):
    """Raised once every candidate endpoint failed with a retryable error."""

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        """Keep each ``(endpoint, error)`` pair for diagnostics."""
        self.failures = list(failures)
        summary = ", ".join(
            f"{endpoint}: {type(error).__name__}: {error}" for endpoint, error in self.failures
        )
        super().__init__(
            f"Request failed after {len(self.failures)} endpoint(s). Exceptions: {summary}"
        )

    def exception_names(self) -> list[str]:
        """Return the class names of the underlying errors, in attempt order."""
        return [type(error).__name__ for _endpoint, error in self.failures]


__all__ = [
    "AllEndpointsFailed",
    "FatalTransferError",
    "InvalidArgument",
    "ResolutionError",
    "RetryableTransferError",
    "TransferError",
    "TransferHTTPError",
]
