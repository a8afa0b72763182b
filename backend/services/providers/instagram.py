"""Instagram Graph API provider.

Tracked creator accounts are read through ``business_discovery`` on the
configured Instagram Business account, so only public Business/Creator
profiles can be refreshed. Without options the business account itself is read.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from config import get_settings
from services.errors import ProviderError, ProviderPermanentError, ProviderTransientError
from services.providers.base import AccountPayload, PostPayload, ProviderData

logger = logging.getLogger(__name__)
settings = get_settings()

FB_GRAPH_BASE = "https://graph.facebook.com/v22.0"
MEDIA_LIMIT = 25

PROFILE_FIELDS = "id,username,name,biography,followers_count,media_count,profile_picture_url"
MEDIA_FIELDS = (
    "id,caption,media_type,media_url,thumbnail_url,permalink,timestamp,"
    "like_count,comments_count"
)

# Graph API error codes for throttling (app, user, page and custom-rate limits)
RATE_LIMIT_CODES = {4, 17, 32, 613}
# "Cannot find User" subcode from business_discovery
USER_NOT_FOUND_SUBCODE = 2207013


def _raise_for_error(response: httpx.Response) -> None:
    """Translate a Graph API error body into a provider error."""
    if response.status_code == 200:
        return

    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}
    message = error.get("message") or response.text[:200]
    code = error.get("code")
    subcode = error.get("error_subcode")

    if code in RATE_LIMIT_CODES or response.status_code == 429:
        raise ProviderTransientError(f"Instagram rate limit: {message}", status_code=429)
    if (
        subcode == USER_NOT_FOUND_SUBCODE
        or response.status_code == 404
        or "does not exist" in message.lower()
    ):
        raise ProviderPermanentError(f"Instagram user not found: {message}", status_code=404)
    if code == 100 and "id" in message.lower():
        raise ProviderPermanentError(f"Invalid Instagram user id: {message}")
    raise ProviderError(f"Instagram request failed: {message}", status_code=response.status_code)


def _media_payload(item: dict) -> PostPayload:
    media_type = item.get("media_type")
    return PostPayload(
        external_id=item.get("id"),
        title=(item.get("caption") or "")[:120] or None,
        caption=item.get("caption"),
        url=item.get("permalink"),
        thumbnail_url=item.get("thumbnail_url") or item.get("media_url"),
        published_at=item.get("timestamp"),
        metrics={
            "views": item.get("view_count", 0),
            "likes": item.get("like_count", 0),
            "comments": item.get("comments_count", 0),
        },
        metadata={"mediaType": media_type} if media_type else {},
    )


def _account_payload(profile: dict, media: list[PostPayload]) -> AccountPayload:
    username = profile.get("username")
    return AccountPayload(
        account_id=profile.get("id"),
        username=username,
        display_name=profile.get("name"),
        profile_url=f"https://www.instagram.com/{username}/" if username else None,
        stats={
            "followers": profile.get("followers_count", 0),
            "total_views": sum(item.metrics.views for item in media),
            "total_likes": sum(item.metrics.likes for item in media),
            "total_comments": sum(item.metrics.comments for item in media),
        },
        metadata={
            "instagramUserId": profile.get("id"),
            "username": username,
            "biography": profile.get("biography"),
            "mediaCount": profile.get("media_count"),
            "profilePictureUrl": profile.get("profile_picture_url"),
        },
        last_synced_at=datetime.now(timezone.utc),
    )


async def fetch_instagram_data(options: Optional[dict] = None) -> ProviderData:
    """Fetch a profile and its recent media."""
    if not settings.instagram_access_token or not settings.instagram_business_account_id:
        raise ProviderError("Instagram Graph API credentials are not configured")

    options = options or {}
    username = options.get("username")
    user_id = options.get("user_id")
    business_id = settings.instagram_business_account_id
    media_fields = f"media.limit({MEDIA_LIMIT}){{{MEDIA_FIELDS}}}"

    async with httpx.AsyncClient(timeout=30) as client:
        if username:
            url = f"{FB_GRAPH_BASE}/{business_id}"
            fields = f"business_discovery.username({username}){{{PROFILE_FIELDS},{media_fields}}}"
        elif user_id and user_id != business_id:
            # Direct node read - only works for ids the token can see
            url = f"{FB_GRAPH_BASE}/{user_id}"
            fields = f"{PROFILE_FIELDS},{media_fields}"
        else:
            url = f"{FB_GRAPH_BASE}/{business_id}"
            fields = f"{PROFILE_FIELDS},{media_fields}"

        response = await client.get(
            url,
            params={"fields": fields, "access_token": settings.instagram_access_token},
        )
        _raise_for_error(response)
        data = response.json()

    profile = data.get("business_discovery", data)
    media = [
        _media_payload(item)
        for item in profile.get("media", {}).get("data", [])
        if item.get("id")
    ]
    account = _account_payload(profile, media)

    logger.info(
        f"Instagram data fetched for @{account.username}: "
        f"{account.stats.followers} followers, {len(media)} media"
    )
    return ProviderData(account=account, media=media)
