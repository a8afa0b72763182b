"""Overview aggregation - global and per-platform totals over accounts and posts."""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from services.metrics import median, parse_datetime, to_number
from services.store import find_accounts, find_posts

RECENT_POSTS_WINDOW = 10

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)

# account column -> platform breakdown key
_BREAKDOWN_FIELDS = {
    "followers": "followers",
    "total_views": "views",
    "total_likes": "likes",
    "total_comments": "comments",
    "total_shares": "shares",
    "total_impressions": "impressions",
}


def _value(obj: Any, name: str) -> float:
    if isinstance(obj, dict):
        return to_number(obj.get(name))
    return to_number(getattr(obj, name, None))


def _empty_overview() -> dict:
    return {
        "total_followers": 0,
        "total_views": 0,
        "total_likes": 0,
        "total_comments": 0,
        "total_shares": 0,
        "total_impressions": 0,
        "average_engagement_rate": 0,
        "platform_breakdown": {},
    }


def build_overview_metrics(accounts: Iterable[Any], posts: Iterable[Any] = ()) -> dict:
    """Fold accounts and posts into global totals and a per-platform breakdown.

    The global average engagement is the mean of each platform's account-level
    average, so a platform with many accounts does not outweigh the others.
    A platform's own engagement rate is the mean over its posts, falling back
    to the account-level average when it has none.
    """
    accounts = list(accounts)
    overview = _empty_overview()
    if not accounts:
        return overview

    breakdown: dict[str, dict] = {}
    rate_totals: dict[str, float] = defaultdict(float)
    account_counts: dict[str, int] = defaultdict(int)

    for account in accounts:
        platform = account["platform"] if isinstance(account, dict) else account.platform
        entry = breakdown.setdefault(
            platform,
            {key: 0 for key in (*_BREAKDOWN_FIELDS.values(), "engagement_rate", "media_count")},
        )
        for field, key in _BREAKDOWN_FIELDS.items():
            value = _value(account, field)
            overview[f"total_{key}"] += value
            entry[key] += value

        rate_totals[platform] += _value(account, "engagement_rate")
        account_counts[platform] += 1

    account_averages = {
        platform: rate_totals[platform] / account_counts[platform] for platform in breakdown
    }
    overview["average_engagement_rate"] = round(
        sum(account_averages.values()) / len(account_averages), 2
    )

    posts_by_platform: dict[str, list] = defaultdict(list)
    for post in posts:
        platform = post["platform"] if isinstance(post, dict) else post.platform
        posts_by_platform[platform].append(post)

    for platform, entry in breakdown.items():
        items = posts_by_platform.get(platform, [])
        entry["media_count"] = len(items)
        if items:
            entry["engagement_rate"] = round(
                sum(_value(item, "engagement_rate") for item in items) / len(items), 2
            )
        else:
            entry["engagement_rate"] = round(account_averages[platform], 2)

    overview["platform_breakdown"] = breakdown
    return overview


def _published(post: Any) -> datetime:
    raw = post.get("published_at") if isinstance(post, dict) else post.published_at
    return parse_datetime(raw) or _EPOCH


def build_account_media_stats(posts: Iterable[Any]) -> dict:
    """Summary of one account's posts, including the median views of its
    ten most recently published posts."""
    posts = list(posts)
    count = len(posts)
    total_views = sum(_value(p, "views") for p in posts)

    recent = sorted(posts, key=_published, reverse=True)[:RECENT_POSTS_WINDOW]

    return {
        "total_views": total_views,
        "total_likes": sum(_value(p, "likes") for p in posts),
        "total_comments": sum(_value(p, "comments") for p in posts),
        "total_shares": sum(_value(p, "shares") for p in posts),
        "average_engagement": (
            round(sum(_value(p, "engagement_rate") for p in posts) / count, 2) if count else 0
        ),
        "post_count": count,
        "average_views_per_post": round(total_views / count, 2) if count else 0,
        "median_views_last_10": median([_value(p, "views") for p in recent]),
    }


async def get_overview_analytics(
    session: AsyncSession,
    platform: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Load accounts (most recently updated first) and posts (newest first)
    and build the overview over them."""
    accounts = await find_accounts(session, platform=platform, order="recently_updated")
    posts = await find_posts(session, platform=platform, start=start, end=end)

    return {
        "overview": build_overview_metrics(accounts, posts),
        "accounts": accounts,
        "media": posts,
    }
