"""YouTube Data API v3 provider.

Resolves a channel by id or handle, then reads its uploads playlist and
batch-fetches video statistics. Read-only, API key auth.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

import httpx

from config import get_settings
from services.errors import ProviderError, ProviderPermanentError, ProviderTransientError
from services.providers.base import AccountPayload, PostPayload, ProviderData

logger = logging.getLogger(__name__)
settings = get_settings()

YT_API_BASE = "https://www.googleapis.com/youtube/v3"
MAX_PLAYLIST_PAGES = 2


def _raise_for_status(response: httpx.Response, context: str) -> None:
    """Map a non-200 YouTube response onto the provider error taxonomy."""
    if response.status_code == 200:
        return
    if response.status_code == 404:
        raise ProviderPermanentError(f"YouTube {context} not found", status_code=404)
    if response.status_code == 429 or (
        response.status_code == 403 and "quota" in response.text.lower()
    ):
        raise ProviderTransientError(
            f"YouTube rate limit reached during {context}", status_code=429
        )
    raise ProviderError(
        f"YouTube {context} failed: {response.status_code} - {response.text[:200]}",
        status_code=response.status_code,
    )


def _parse_duration(iso_duration: str) -> Optional[int]:
    """Parse ISO 8601 duration (PT1H2M3S) to seconds."""
    if not iso_duration:
        return None
    match = re.match(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?", iso_duration)
    if not match:
        return None
    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = int(match.group(3) or 0)
    return hours * 3600 + minutes * 60 + seconds


async def resolve_channel(
    client: httpx.AsyncClient, api_key: str, options: dict
) -> dict:
    """Look up a channel by id, falling back to its @handle."""
    params = {"part": "snippet,statistics,contentDetails", "key": api_key}
    channel_id = options.get("channel_id")
    handle = options.get("handle") or options.get("identifier") or options.get("username")

    if channel_id:
        params["id"] = channel_id
    elif handle:
        params["forHandle"] = handle if handle.startswith("@") else f"@{handle}"
    else:
        raise ProviderPermanentError("Invalid YouTube channel id: no identifier given")

    response = await client.get(f"{YT_API_BASE}/channels", params=params)
    _raise_for_status(response, "channel lookup")

    items = response.json().get("items", [])
    if not items:
        raise ProviderPermanentError(
            f"YouTube channel not found for {channel_id or handle}", status_code=404
        )
    return items[0]


async def fetch_video_stats(
    client: httpx.AsyncClient, api_key: str, video_ids: list[str]
) -> dict[str, dict]:
    """Batch fetch statistics and metadata for known video IDs (50 per call)."""
    result: dict[str, dict] = {}

    for i in range(0, len(video_ids), 50):
        chunk = video_ids[i : i + 50]
        response = await client.get(
            f"{YT_API_BASE}/videos",
            params={
                "part": "statistics,contentDetails,snippet",
                "id": ",".join(chunk),
                "key": api_key,
            },
        )
        _raise_for_status(response, "video statistics")

        for item in response.json().get("items", []):
            stats = item.get("statistics", {})
            content = item.get("contentDetails", {})
            snippet = item.get("snippet", {})
            duration_sec = _parse_duration(content.get("duration", ""))

            thumbnails = snippet.get("thumbnails", {})
            result[item["id"]] = {
                "views": stats.get("viewCount", 0),
                "likes": stats.get("likeCount", 0),
                "comments": stats.get("commentCount", 0),
                "thumbnail_url": (
                    thumbnails.get("maxres", {}).get("url")
                    or thumbnails.get("high", {}).get("url")
                    or thumbnails.get("medium", {}).get("url")
                ),
                "tags": (snippet.get("tags") or [])[:30],
                "duration_seconds": duration_sec,
                "is_short": duration_sec is not None and duration_sec <= 60,
                "definition": content.get("definition"),
            }

    return result


async def fetch_channel_videos(
    client: httpx.AsyncClient,
    api_key: str,
    uploads_playlist_id: str,
    max_pages: int = MAX_PLAYLIST_PAGES,
) -> list[PostPayload]:
    """Read the uploads playlist page by page and attach video statistics."""
    videos: list[PostPayload] = []
    page_token: Optional[str] = None

    for page_num in range(max_pages):
        params: dict = {
            "part": "snippet",
            "playlistId": uploads_playlist_id,
            "maxResults": 50,
            "key": api_key,
        }
        if page_token:
            params["pageToken"] = page_token

        response = await client.get(f"{YT_API_BASE}/playlistItems", params=params)
        _raise_for_status(response, "uploads playlist")
        data = response.json()

        snippets: dict[str, dict] = {}
        for item in data.get("items", []):
            snippet = item.get("snippet", {})
            vid_id = snippet.get("resourceId", {}).get("videoId")
            if vid_id:
                snippets[vid_id] = snippet

        stats = await fetch_video_stats(client, api_key, list(snippets)) if snippets else {}

        for vid_id, snippet in snippets.items():
            vid_stats = stats.get(vid_id, {})
            videos.append(
                PostPayload(
                    external_id=vid_id,
                    title=snippet.get("title"),
                    caption=snippet.get("description"),
                    url=f"https://www.youtube.com/watch?v={vid_id}",
                    thumbnail_url=vid_stats.get("thumbnail_url")
                    or snippet.get("thumbnails", {}).get("medium", {}).get("url"),
                    published_at=snippet.get("publishedAt"),
                    metrics={
                        "views": vid_stats.get("views", 0),
                        "likes": vid_stats.get("likes", 0),
                        "comments": vid_stats.get("comments", 0),
                    },
                    tags=vid_stats.get("tags", []),
                    metadata={
                        k: vid_stats[k]
                        for k in ("duration_seconds", "is_short", "definition")
                        if vid_stats.get(k) is not None
                    },
                )
            )

        logger.info(
            f"YouTube playlist page {page_num + 1}: {len(snippets)} videos (total: {len(videos)})"
        )
        page_token = data.get("nextPageToken")
        if not page_token:
            break

    return videos


async def fetch_youtube_data(options: Optional[dict] = None) -> ProviderData:
    """Fetch a channel and its recent uploads.

    Without options the configured default channel is used.
    """
    if not settings.youtube_api_key:
        raise ProviderError("YouTube API key is not configured")

    options = options or {"channel_id": settings.youtube_channel_id}
    api_key = settings.youtube_api_key

    async with httpx.AsyncClient(timeout=20) as client:
        channel = await resolve_channel(client, api_key, options)
        snippet = channel.get("snippet", {})
        statistics = channel.get("statistics", {})
        uploads = channel.get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")

        media = await fetch_channel_videos(client, api_key, uploads) if uploads else []

    custom_url = snippet.get("customUrl")
    account = AccountPayload(
        account_id=channel["id"],
        username=(custom_url or "").lstrip("@") or None,
        display_name=snippet.get("title"),
        profile_url=(
            f"https://www.youtube.com/{custom_url}"
            if custom_url
            else f"https://www.youtube.com/channel/{channel['id']}"
        ),
        stats={
            "followers": statistics.get("subscriberCount", 0),
            "total_views": statistics.get("viewCount", 0),
            "total_likes": sum(item.metrics.likes for item in media),
            "total_comments": sum(item.metrics.comments for item in media),
        },
        metadata={
            "channelId": channel["id"],
            "handle": custom_url,
            "description": snippet.get("description"),
            "videoCount": statistics.get("videoCount"),
            "thumbnailUrl": snippet.get("thumbnails", {}).get("high", {}).get("url"),
        },
        last_synced_at=datetime.now(timezone.utc),
    )

    logger.info(
        f"YouTube data fetched for {account.display_name}: "
        f"{account.stats.followers} subscribers, {len(media)} videos"
    )
    return ProviderData(account=account, media=media)
