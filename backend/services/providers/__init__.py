"""Provider fetchers for the supported platforms."""

from typing import Optional

from config import Settings, get_settings
from services.providers.base import (
    SUPPORTED_PLATFORMS,
    AccountPayload,
    AccountStats,
    PostMetrics,
    PostPayload,
    ProviderData,
    ProviderRegistry,
)


def build_default_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    """Register every provider whose credentials are configured.

    TikTok has no official read API for third-party profiles, so tracked
    TikTok accounts are left without a fetcher and get skipped on refresh.
    """
    settings = settings or get_settings()
    registry = ProviderRegistry()

    if settings.youtube_api_key:
        from services.providers.youtube import fetch_youtube_data
        registry.register("youtube", fetch_youtube_data)

    if settings.instagram_access_token and settings.instagram_business_account_id:
        from services.providers.instagram import fetch_instagram_data
        registry.register("instagram", fetch_instagram_data)

    return registry


def get_registry() -> ProviderRegistry:
    """FastAPI dependency - provider registry for the configured credentials."""
    return build_default_registry()


__all__ = [
    "SUPPORTED_PLATFORMS",
    "AccountPayload",
    "AccountStats",
    "PostMetrics",
    "PostPayload",
    "ProviderData",
    "ProviderRegistry",
    "build_default_registry",
    "get_registry",
]
