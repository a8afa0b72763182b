"""Provider payload models and fetcher registry.

A provider fetcher is an async callable ``fetch(options) -> ProviderData``.
``options`` is None for a provider-level fetch (the provider's configured
default account) or a dict of identifiers for one tracked account.
"""

import logging
from datetime import datetime
from typing import Annotated, Any, Awaitable, Callable, Optional

from pydantic import BaseModel, BeforeValidator, Field, field_validator

from services.errors import UnsupportedPlatformError
from services.metrics import parse_datetime, to_count

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("instagram", "tiktok", "youtube")


# Missing or non-numeric counts become 0
Count = Annotated[int, BeforeValidator(to_count)]


class AccountStats(BaseModel):
    followers: Count = 0
    total_views: Count = 0
    total_likes: Count = 0
    total_comments: Count = 0
    total_shares: Count = 0
    total_impressions: Count = 0
    engagement_rate: Optional[float] = None


class AccountPayload(BaseModel):
    """Account data as returned by a provider."""
    account_id: str = ""
    username: Optional[str] = None
    display_name: Optional[str] = None
    profile_url: Optional[str] = None
    stats: AccountStats = Field(default_factory=AccountStats)
    metadata: dict[str, Any] = Field(default_factory=dict)
    last_synced_at: Optional[datetime] = None

    @field_validator("account_id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("last_synced_at", mode="before")
    @classmethod
    def _parse_synced_at(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)


class PostMetrics(BaseModel):
    views: Count = 0
    likes: Count = 0
    comments: Count = 0
    shares: Count = 0
    saves: Count = 0
    impressions: Count = 0
    engagement_rate: Optional[float] = None


class PostPayload(BaseModel):
    """One media item as returned by a provider."""
    external_id: str
    title: Optional[str] = None
    caption: Optional[str] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    published_at: Optional[datetime] = None
    metrics: PostMetrics = Field(default_factory=PostMetrics)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("external_id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("published_at", mode="before")
    @classmethod
    def _parse_published_at(cls, v: Any) -> Optional[datetime]:
        # Unparsable dates are dropped rather than failing the whole payload
        return parse_datetime(v)


class ProviderData(BaseModel):
    account: AccountPayload
    media: list[PostPayload] = Field(default_factory=list)


Fetcher = Callable[[Optional[dict]], Awaitable[ProviderData]]


class ProviderRegistry:
    """Maps platform name -> fetcher."""

    def __init__(self, fetchers: Optional[dict[str, Fetcher]] = None):
        self._fetchers: dict[str, Fetcher] = dict(fetchers or {})

    def register(self, platform: str, fetcher: Fetcher) -> None:
        self._fetchers[platform] = fetcher

    def supports(self, platform: str) -> bool:
        return platform in self._fetchers

    @property
    def platforms(self) -> list[str]:
        return list(self._fetchers)

    async def fetch(self, platform: str, options: Optional[dict] = None) -> ProviderData:
        fetcher = self._fetchers.get(platform)
        if fetcher is None:
            raise UnsupportedPlatformError(f"Unsupported platform: {platform}")
        data = await fetcher(options)
        if isinstance(data, dict):
            data = ProviderData.model_validate(data)
        return data
