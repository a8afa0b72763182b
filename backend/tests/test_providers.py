"""Tests for the YouTube and Instagram providers and the registry."""

import httpx
import pytest

from config import Settings
from services.errors import (
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    UnsupportedPlatformError,
    classify_error,
)
from services.providers import ProviderRegistry, build_default_registry
from services.providers import instagram, youtube

CHANNEL = {
    "id": "UC-1",
    "snippet": {"title": "Tuber", "customUrl": "@tuber", "description": "videos"},
    "statistics": {"subscriberCount": "1200", "viewCount": "50000", "videoCount": "2"},
    "contentDetails": {"relatedPlaylists": {"uploads": "UU-1"}},
}

PLAYLIST = {
    "items": [
        {"snippet": {"title": "Short", "publishedAt": "2024-01-01T10:00:00Z",
                     "resourceId": {"videoId": "v1"}}},
        {"snippet": {"title": "Long", "publishedAt": "2024-01-02T10:00:00Z",
                     "resourceId": {"videoId": "v2"}}},
    ]
}

VIDEOS = {
    "items": [
        {"id": "v1", "statistics": {"viewCount": "100", "likeCount": "10", "commentCount": "1"},
         "contentDetails": {"duration": "PT45S"}, "snippet": {"tags": ["a"]}},
        {"id": "v2", "statistics": {"viewCount": "300", "likeCount": "20", "commentCount": "3"},
         "contentDetails": {"duration": "PT1H2M3S"}, "snippet": {}},
    ]
}


def _youtube_api(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/channels"):
        if request.url.params.get("forHandle") == "@ghost":
            return httpx.Response(200, json={"items": []})
        return httpx.Response(200, json={"items": [CHANNEL]})
    if path.endswith("/playlistItems"):
        return httpx.Response(200, json=PLAYLIST)
    if path.endswith("/videos"):
        return httpx.Response(200, json=VIDEOS)
    return httpx.Response(404)


def test_youtube_status_mapping():
    youtube._raise_for_status(httpx.Response(200), "lookup")

    with pytest.raises(ProviderPermanentError) as excinfo:
        youtube._raise_for_status(httpx.Response(404), "channel lookup")
    assert classify_error(excinfo.value) == "not_found"

    with pytest.raises(ProviderTransientError) as excinfo:
        youtube._raise_for_status(httpx.Response(403, text="quotaExceeded"), "channel lookup")
    assert classify_error(excinfo.value) == "rate_limited"

    with pytest.raises(ProviderError) as excinfo:
        youtube._raise_for_status(httpx.Response(500, text="boom"), "channel lookup")
    assert excinfo.value.status_code == 500


def test_parse_duration():
    assert youtube._parse_duration("PT1H2M3S") == 3723
    assert youtube._parse_duration("PT45S") == 45
    assert youtube._parse_duration("") is None


@pytest.mark.asyncio
async def test_resolve_channel_by_handle_and_missing():
    async with httpx.AsyncClient(transport=httpx.MockTransport(_youtube_api)) as client:
        channel = await youtube.resolve_channel(client, "key", {"username": "tuber"})
        assert channel["id"] == "UC-1"

        with pytest.raises(ProviderPermanentError) as excinfo:
            await youtube.resolve_channel(client, "key", {"handle": "@ghost"})
        assert excinfo.value.status_code == 404

        with pytest.raises(ProviderPermanentError) as excinfo:
            await youtube.resolve_channel(client, "key", {})
        assert classify_error(excinfo.value) == "invalid_id"


@pytest.mark.asyncio
async def test_fetch_youtube_data(monkeypatch):
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        youtube.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(_youtube_api), **kwargs),
    )
    monkeypatch.setattr(youtube.settings, "youtube_api_key", "key")

    data = await youtube.fetch_youtube_data({"channel_id": "UC-1"})

    assert data.account.account_id == "UC-1"
    assert data.account.username == "tuber"
    assert data.account.stats.followers == 1200
    assert data.account.stats.total_likes == 30
    assert data.account.metadata["channelId"] == "UC-1"
    assert [m.external_id for m in data.media] == ["v1", "v2"]
    short, long = data.media
    assert short.metrics.views == 100
    assert short.metadata["is_short"] is True
    assert long.metadata["is_short"] is False
    assert short.tags == ["a"]


@pytest.mark.asyncio
async def test_fetch_youtube_data_requires_key(monkeypatch):
    monkeypatch.setattr(youtube.settings, "youtube_api_key", "")

    with pytest.raises(ProviderError):
        await youtube.fetch_youtube_data({"channel_id": "UC-1"})


def test_instagram_error_mapping():
    throttled = httpx.Response(400, json={"error": {"message": "Application request limit reached", "code": 4}})
    with pytest.raises(ProviderTransientError) as excinfo:
        instagram._raise_for_error(throttled)
    assert classify_error(excinfo.value) == "rate_limited"

    missing = httpx.Response(
        400,
        json={"error": {"message": "Cannot find User", "code": 110, "error_subcode": 2207013}},
    )
    with pytest.raises(ProviderPermanentError) as excinfo:
        instagram._raise_for_error(missing)
    assert excinfo.value.status_code == 404

    other = httpx.Response(500, text="upstream exploded")
    with pytest.raises(ProviderError) as excinfo:
        instagram._raise_for_error(other)
    assert classify_error(excinfo.value) == "unknown"


def test_instagram_payload_mapping():
    media = [
        instagram._media_payload(
            {"id": "m1", "caption": "hello", "media_type": "IMAGE", "permalink": "https://instagram.com/p/m1",
             "timestamp": "2024-01-01T10:00:00+0000", "like_count": 7, "comments_count": 2}
        )
    ]
    account = instagram._account_payload(
        {"id": "1784", "username": "gram", "name": "Gram", "followers_count": 900}, media
    )

    assert media[0].title == "hello"
    assert media[0].metrics.likes == 7
    assert media[0].metadata == {"mediaType": "IMAGE"}
    assert account.account_id == "1784"
    assert account.profile_url == "https://www.instagram.com/gram/"
    assert account.stats.followers == 900
    assert account.stats.total_likes == 7
    assert account.metadata["instagramUserId"] == "1784"


def test_default_registry_follows_credentials():
    assert build_default_registry(Settings(youtube_api_key="", instagram_access_token="")).platforms == []

    registry = build_default_registry(
        Settings(
            youtube_api_key="key",
            instagram_access_token="token",
            instagram_business_account_id="1784",
        )
    )
    assert sorted(registry.platforms) == ["instagram", "youtube"]
    assert not registry.supports("tiktok")


@pytest.mark.asyncio
async def test_registry_fetch_validates_dict_payloads():
    async def fetch(options):
        return {"account": {"account_id": 42, "stats": {"followers": "12"}}, "media": []}

    registry = ProviderRegistry({"youtube": fetch})

    data = await registry.fetch("youtube", {"channel_id": "42"})
    assert data.account.account_id == "42"
    assert data.account.stats.followers == 12

    with pytest.raises(UnsupportedPlatformError):
        await registry.fetch("tiktok")
