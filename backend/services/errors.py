"""Error taxonomy for the sync engine.

ValidationError     bad caller input, rejected before any write, never retried
ProviderError       a provider fetch failed (optionally with an HTTP-like status)
  ProviderTransientError   timeout / rate limit, worth one retry
  ProviderPermanentError   not found / invalid id, only identifier re-resolution
StorageError        the database rejected or lost a write or read
"""

import re
from typing import Optional

NOT_FOUND = "not_found"
RATE_LIMITED = "rate_limited"
INVALID_ID = "invalid_id"
UNKNOWN = "unknown"

_NOT_FOUND_RE = re.compile(r"not found", re.IGNORECASE)
_RATE_LIMIT_RE = re.compile(r"rate limit", re.IGNORECASE)
_INVALID_ID_RE = re.compile(r"invalid.*id", re.IGNORECASE)


class SyncError(Exception):
    """Base class for engine errors."""


class ValidationError(SyncError):
    """Caller passed input the engine refuses to store."""


class AccountNotFoundError(SyncError):
    """No tracked account with the given id."""


class StorageError(SyncError):
    """A database operation failed."""


class ProviderError(SyncError):
    """A provider fetch failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderTransientError(ProviderError):
    """Timeout or rate limit - may succeed on a later attempt."""


class ProviderPermanentError(ProviderError):
    """Not found / invalid identifier - retrying the same call won't help."""


class UnsupportedPlatformError(ProviderError):
    """No fetcher is registered for the platform."""


def classify_error(error: BaseException) -> str:
    """Classify a fetch failure from its status code and message text.

    Priority: not_found, rate_limited, invalid_id, unknown.
    """
    status_code = getattr(error, "status_code", None)
    message = str(error) or ""

    if status_code == 404 or _NOT_FOUND_RE.search(message):
        return NOT_FOUND
    if status_code == 429 or _RATE_LIMIT_RE.search(message):
        return RATE_LIMITED
    if _INVALID_ID_RE.search(message):
        return INVALID_ID
    return UNKNOWN
