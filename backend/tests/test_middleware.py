"""Tests for error translation and rate-limit keys."""

import json

import pytest
from starlette.requests import Request

from middleware.errors import status_for, sync_error_handler
from middleware.rate_limit import client_key
from services.errors import (
    AccountNotFoundError,
    ProviderError,
    ProviderTransientError,
    StorageError,
    UnsupportedPlatformError,
    ValidationError,
)


def _request(headers=None, path="/accounts/refresh"):
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": path,
            "query_string": b"",
            "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
            "client": ("10.0.0.1", 5555),
            "server": ("test", 80),
            "scheme": "http",
        }
    )


def test_status_for_each_error():
    assert status_for(ValidationError("bad")) == 400
    assert status_for(AccountNotFoundError("gone")) == 404
    assert status_for(UnsupportedPlatformError("tiktok", status_code=501)) == 501
    assert status_for(ProviderTransientError("slow", status_code=429)) == 502
    assert status_for(StorageError("db")) == 500


@pytest.mark.asyncio
async def test_provider_error_body_carries_classification():
    response = await sync_error_handler(_request(), ProviderError("Rate limit hit", status_code=429))

    assert response.status_code == 502
    assert json.loads(response.body) == {
        "detail": "Rate limit hit",
        "error_type": "rate_limited",
        "provider_status": 429,
    }


@pytest.mark.asyncio
async def test_unsupported_platform_body_is_plain():
    response = await sync_error_handler(_request(), UnsupportedPlatformError("No fetcher", status_code=501))

    assert json.loads(response.body) == {"detail": "No fetcher"}


def test_client_key_prefers_forwarded_for():
    assert client_key(_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})) == "203.0.113.7"
    assert client_key(_request()) == "10.0.0.1"
