"""Translate sync engine errors into HTTP responses."""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from services.errors import (
    AccountNotFoundError,
    ProviderError,
    StorageError,
    SyncError,
    UnsupportedPlatformError,
    ValidationError,
    classify_error,
)

logger = logging.getLogger(__name__)


def status_for(exc: SyncError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, AccountNotFoundError):
        return 404
    if isinstance(exc, UnsupportedPlatformError):
        return 501
    if isinstance(exc, ProviderError):
        return 502
    return 500


async def sync_error_handler(request: Request, exc: SyncError):
    """Handler for errors raised by the sync engine."""
    status_code = status_for(exc)
    content = {"detail": str(exc)}

    if isinstance(exc, ProviderError) and not isinstance(exc, UnsupportedPlatformError):
        content["error_type"] = classify_error(exc)
        content["provider_status"] = exc.status_code
    if isinstance(exc, StorageError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")

    return JSONResponse(status_code=status_code, content=content)
