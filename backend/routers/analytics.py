"""Analytics router - overview totals, daily leaderboards and view trends."""

from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.daily_performance import build_daily_performance, build_rolling_median_series
from services.overview import build_account_media_stats, get_overview_analytics
from services.providers import SUPPORTED_PLATFORMS
from services.store import find_posts, get_account

router = APIRouter(prefix="/analytics", tags=["analytics"])


# ============== Response Models ==============

class AccountResponse(BaseModel):
    """Tracked account with its latest stats."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: Optional[str] = None
    platform: str
    provider_account_id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    profile_url: Optional[str] = None
    stats: dict[str, float]
    platform_metadata: Optional[dict[str, Any]] = None
    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AccountSnapshotResponse(BaseModel):
    """One entry of an account's stats history."""
    model_config = ConfigDict(from_attributes=True)

    date: datetime
    followers: int
    total_views: int
    total_likes: int
    total_comments: int
    total_shares: int
    total_impressions: int
    engagement_rate: float


class AccountDetailResponse(AccountResponse):
    history: list[AccountSnapshotResponse] = []


class PostResponse(BaseModel):
    """Post with its latest engagement metrics."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    platform: str
    external_id: str
    title: Optional[str] = None
    caption: Optional[str] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    published_at: Optional[datetime] = None
    tags: Optional[list[str]] = None
    platform_metadata: Optional[dict[str, Any]] = None
    metrics: dict[str, float]
    last_synced_at: Optional[datetime] = None


class PlatformBreakdown(BaseModel):
    followers: float
    views: float
    likes: float
    comments: float
    shares: float
    impressions: float
    engagement_rate: float
    media_count: int


class OverviewMetrics(BaseModel):
    """Global totals across all tracked accounts."""
    total_followers: float
    total_views: float
    total_likes: float
    total_comments: float
    total_shares: float
    total_impressions: float
    average_engagement_rate: float
    platform_breakdown: dict[str, PlatformBreakdown]


class OverviewResponse(BaseModel):
    overview: OverviewMetrics
    accounts: list[AccountResponse]
    media: list[PostResponse]


class PlatformOverviewResponse(OverviewResponse):
    platform: str


class MediaStatsResponse(BaseModel):
    account_id: str
    total_views: float
    total_likes: float
    total_comments: float
    total_shares: float
    average_engagement: float
    post_count: int
    average_views_per_post: float
    median_views_last_10: float


class RollingMedianPoint(BaseModel):
    date: str
    median_views: float
    sample_size: int


class RollingMedianResponse(BaseModel):
    account_id: str
    series: list[RollingMedianPoint]


# ============== Endpoints ==============

@router.get("/overview", response_model=OverviewResponse)
async def get_overview(
    db: Annotated[AsyncSession, Depends(get_db)],
    platform: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    """Totals across all tracked accounts, with the posts in the date range."""
    return await get_overview_analytics(db, platform=platform, start=start, end=end)


@router.get("/platform/{platform}", response_model=PlatformOverviewResponse)
async def get_platform_overview(
    platform: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Overview restricted to one platform."""
    if platform not in SUPPORTED_PLATFORMS:
        raise HTTPException(status_code=400, detail=f"Unsupported platform: {platform}")

    data = await get_overview_analytics(db, platform=platform)
    if not data["accounts"]:
        raise HTTPException(status_code=404, detail=f"No data found for platform: {platform}")

    return {"platform": platform, **data}


@router.get("/daily")
async def get_daily_performance(
    db: Annotated[AsyncSession, Depends(get_db)],
    platform: Optional[str] = None,
    account_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Posts grouped by publish day, ranked by views, with day-over-day deltas."""
    posts = await find_posts(db, platform=platform, account_id=account_id, start=start, end=end)
    return build_daily_performance(posts)


@router.get("/accounts/{account_id}/rolling-median", response_model=RollingMedianResponse)
async def get_rolling_median(
    account_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    reference_dates: Annotated[list[str], Query()] = [],
):
    """Median views of the account's latest 10 posts, per day."""
    if await get_account(db, account_id) is None:
        raise HTTPException(status_code=404, detail="Account not found.")

    posts = await find_posts(db, account_id=account_id)
    return {
        "account_id": account_id,
        "series": build_rolling_median_series(posts, reference_dates),
    }


@router.get("/accounts/{account_id}/media-stats", response_model=MediaStatsResponse)
async def get_media_stats(
    account_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Post totals for one account, including median views of its last 10 posts."""
    if await get_account(db, account_id) is None:
        raise HTTPException(status_code=404, detail="Account not found.")

    posts = await find_posts(db, account_id=account_id)
    return {"account_id": account_id, **build_account_media_stats(posts)}
