"""Fatal-versus-retryable classification of transfer failures."""
from __future__ import annotations

import urllib.error

from .errors import FatalTransferError

# Errors meaning the client itself is broken; another endpoint cannot help.
DEFAULT_FATAL_EXCEPTIONS: tuple[type[BaseException], ...] = (
    FatalTransferError,
    AttributeError,
    IndexError,
    LookupError,
    NameError,
    NotImplementedError,
    RecursionError,
    SyntaxError,
    TypeError,
    ZeroDivisionError,
)

# Client-error statuses that are nevertheless worth retrying elsewhere.
RETRYABLE_HTTP_CODES = frozenset({408, 500})


def http_status(error: BaseException) -> int | None:
    """Return the HTTP status carried by *error*, if any."""
    for attribute in ("http_code", "status_code"):
        value = getattr(error, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    if isinstance(error, urllib.error.HTTPError):
        return error.code
    return None


def is_fatal(error: BaseException) -> bool:
    """Return ``True`` when *error* should abort the whole request.

    Statuses 400-499 are fatal except 408 (request timeout); 500 is listed
    with 408 as explicitly retryable. Errors without a status, including
    plain network failures, fail over to the next endpoint.
    """
    if isinstance(error, DEFAULT_FATAL_EXCEPTIONS):
        return True
    code = http_status(error)
    if code is None:
        return False
    return 400 <= code < 500 and code not in RETRYABLE_HTTP_CODES


__all__ = ["DEFAULT_FATAL_EXCEPTIONS", "RETRYABLE_HTTP_CODES", "http_status", "is_fatal"]
