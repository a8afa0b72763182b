"""Refresh jobs for tracked accounts.

Accounts are refreshed one at a time, oldest sync first. Calls to the same
provider are spaced by a per-platform minimum interval; a rate-limited fetch
is retried once after a backoff, and a not-found fetch is retried once by
username only, in case the provider rotated the account's id. Every account
ends up in the run report as a success, a skip or a failure.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from models.account import Account
from services.errors import (
    NOT_FOUND,
    RATE_LIMITED,
    AccountNotFoundError,
    ProviderTransientError,
    StorageError,
    SyncError,
    UnsupportedPlatformError,
    ValidationError,
    classify_error,
)
from services.metrics import merge_metadata
from services.platform_sync import upsert_platform_data
from services.providers import SUPPORTED_PLATFORMS, build_default_registry
from services.providers.base import AccountPayload, ProviderData, ProviderRegistry
from services.store import find_accounts, find_posts, get_account

logger = logging.getLogger(__name__)

# Provider-assigned ids dropped when re-resolving an account by username
PROVIDER_ID_KEYS = ("user_id", "sec_uid", "channel_id", "account_id")

STORAGE_ERROR = "storage"
VALIDATION_ERROR = "validation"


@dataclass
class TrackedAccount:
    """Plain copy of an account row, safe to use after a session rollback."""

    id: str
    platform: str
    provider_account_id: str
    owner_id: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    profile_url: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_model(cls, account: Account) -> "TrackedAccount":
        return cls(
            id=account.id,
            platform=account.platform,
            provider_account_id=account.provider_account_id,
            owner_id=account.owner_id,
            username=account.username,
            display_name=account.display_name,
            profile_url=account.profile_url,
            metadata=dict(account.platform_metadata or {}),
        )


def _string_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple, set)):
        return None
    return str(value).strip() or None


def build_fetcher_options(account: TrackedAccount) -> Optional[dict]:
    """Identifiers a provider needs to fetch this account.

    Identifiers kept in metadata win over the account columns. Returns None
    for platforms without an identifier scheme.
    """
    metadata = account.metadata or {}
    stored_id = _string_or_none(account.provider_account_id)
    base_username = _string_or_none(metadata.get("username")) or _string_or_none(account.username)
    username = (base_username or "").lstrip("@").strip() or None

    if account.platform == "instagram":
        return {
            "username": username,
            "user_id": _string_or_none(metadata.get("instagramUserId")) or stored_id,
            "account_id": stored_id,
        }

    if account.platform == "tiktok":
        return {
            "username": username,
            "sec_uid": _string_or_none(metadata.get("secUid")) or stored_id,
            "account_id": stored_id,
        }

    if account.platform == "youtube":
        stored_handle = _string_or_none(metadata.get("handle")) or base_username
        handle = None
        if stored_handle:
            handle = stored_handle if stored_handle.startswith("@") else f"@{stored_handle}"
        return {
            "username": username,
            "channel_id": _string_or_none(metadata.get("channelId")) or stored_id,
            "identifier": _string_or_none(metadata.get("identifierUsed")) or handle or username,
            "handle": handle,
            "url": _string_or_none(metadata.get("sourceUrl")) or _string_or_none(account.profile_url),
            "account_id": stored_id,
        }

    return None


def identifiers_used(options: Optional[dict]) -> dict:
    options = options or {}
    return {
        "account_id": (
            options.get("user_id")
            or options.get("sec_uid")
            or options.get("channel_id")
            or options.get("account_id")
        ),
        "username": options.get("username") or options.get("handle") or options.get("identifier"),
    }


def stored_identifiers(platform: str, options: dict) -> dict:
    """Metadata entries recording which identifiers a refresh used."""
    identifiers: dict[str, Any] = {}
    if platform == "instagram":
        identifiers["instagramUserId"] = options.get("user_id")
    elif platform == "tiktok":
        identifiers["secUid"] = options.get("sec_uid")
    elif platform == "youtube":
        identifiers["channelId"] = options.get("channel_id")
        identifiers["handle"] = options.get("handle")
        identifiers["identifierUsed"] = options.get("identifier")
    identifiers["username"] = options.get("username")
    return {key: value for key, value in identifiers.items() if value}


def merge_account_payload(
    existing: TrackedAccount,
    incoming: AccountPayload,
    overrides: Optional[dict] = None,
) -> AccountPayload:
    """Fill display fields the provider left out from the stored account and
    merge metadata (stored < provider < overrides)."""

    def pick(new, old):
        return new if new is not None else old

    return incoming.model_copy(
        update={
            "account_id": incoming.account_id or existing.provider_account_id,
            "username": pick(incoming.username, existing.username),
            "display_name": pick(incoming.display_name, existing.display_name),
            "profile_url": pick(incoming.profile_url, existing.profile_url),
            "metadata": merge_metadata(existing.metadata, incoming.metadata, overrides),
        }
    )


def _error_type(error: BaseException) -> str:
    if isinstance(error, (StorageError, SQLAlchemyError)):
        return STORAGE_ERROR
    if isinstance(error, ValidationError):
        return VALIDATION_ERROR
    return classify_error(error)


class AccountRefresher:
    """Runs refresh passes over tracked accounts.

    Per-platform last-call times live on the instance and are reset at the
    start of every run, so runs never share spacing state. ``sleep`` and
    ``clock`` are injectable for tests.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        spacing_ms: Optional[dict[str, int]] = None,
        backoff_ms: Optional[dict[str, int]] = None,
        default_spacing_ms: int = 100,
        default_backoff_ms: int = 1000,
        fetch_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.spacing_ms = dict(spacing_ms or {})
        self.backoff_ms = dict(backoff_ms or {})
        self.default_spacing_ms = default_spacing_ms
        self.default_backoff_ms = default_backoff_ms
        self.fetch_timeout = fetch_timeout
        self._sleep = sleep
        self._clock = clock
        self._last_call: dict[str, float] = {}
        self._delay_ms: Optional[int] = None

    @classmethod
    def from_settings(
        cls,
        registry: ProviderRegistry,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> "AccountRefresher":
        settings = settings or get_settings()
        return cls(
            registry,
            spacing_ms=settings.platform_spacing_ms(),
            backoff_ms=settings.platform_backoff_ms(),
            default_spacing_ms=settings.default_spacing_ms,
            default_backoff_ms=settings.rate_limit_backoff_ms,
            fetch_timeout=settings.fetch_timeout_seconds,
            **kwargs,
        )

    async def run(
        self,
        session: AsyncSession,
        owner_id: Optional[str] = None,
        delay_ms: Optional[int] = None,
    ) -> dict:
        """Refresh every tracked account (or one owner's) once.

        Only a failure to load the account list raises; per-account failures
        are recorded in the results.
        """
        self._last_call = {}
        self._delay_ms = delay_ms

        try:
            accounts = [
                TrackedAccount.from_model(a) for a in await find_accounts(session, owner_id=owner_id)
            ]
        except StorageError as e:
            logger.error(f"Refresh run aborted: {e}")
            raise

        logger.info(f"Refreshing {len(accounts)} tracked accounts")
        results = []
        for account in accounts:
            results.append(await self._refresh_one(session, account, owner_id))

        failed = sum(1 for r in results if r.get("error"))
        logger.info(f"Refresh run complete: {len(results)} accounts, {failed} failed")
        return {
            "total": len(accounts),
            "results": results,
            "completed_at": datetime.now(timezone.utc),
        }

    async def _wait_for_slot(self, platform: str) -> None:
        """Block until the platform's minimum spacing since its last call has passed."""
        if self._delay_ms is not None:
            spacing = self._delay_ms
        else:
            spacing = self.spacing_ms.get(platform, self.default_spacing_ms)

        last = self._last_call.get(platform)
        if last is not None:
            elapsed_ms = (self._clock() - last) * 1000
            if elapsed_ms < spacing:
                wait_ms = spacing - elapsed_ms
                logger.debug(f"Waiting {wait_ms:.0f}ms to respect {platform} spacing")
                await self._sleep(wait_ms / 1000)

        self._last_call[platform] = self._clock()

    async def _fetch(self, platform: str, options: dict) -> ProviderData:
        try:
            return await asyncio.wait_for(
                self.registry.fetch(platform, options), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            raise ProviderTransientError(
                f"Request timeout after {self.fetch_timeout:g} seconds"
            ) from None

    async def _refresh_one(
        self,
        session: AsyncSession,
        account: TrackedAccount,
        owner_id: Optional[str],
    ) -> dict:
        platform = account.platform
        if not self.registry.supports(platform):
            return {
                "account_id": account.id,
                "platform": platform,
                "skipped": True,
                "reason": f"Platform refresh not implemented for {platform}.",
            }

        options = build_fetcher_options(account) or {}
        owner = account.owner_id or owner_id

        await self._wait_for_slot(platform)
        try:
            data = await self._fetch(platform, options)
        except Exception as error:
            return await self._recover(session, account, owner, options, error)

        return await self._store(session, account, owner, options, data)

    async def _recover(
        self,
        session: AsyncSession,
        account: TrackedAccount,
        owner: Optional[str],
        options: dict,
        error: Exception,
    ) -> dict:
        platform = account.platform
        error_type = classify_error(error)
        logger.warning(f"Refresh failed for {platform} {account.username} ({error_type}): {error}")

        if error_type == RATE_LIMITED:
            backoff = self.backoff_ms.get(platform, self.default_backoff_ms)
            logger.info(f"Rate limited by {platform}, retrying {account.username} in {backoff}ms")
            await self._sleep(backoff / 1000)
            self._last_call[platform] = self._clock()
            try:
                data = await self._fetch(platform, options)
            except Exception as retry_error:
                logger.warning(f"Retry failed for {platform} {account.username}: {retry_error}")
            else:
                return await self._store(session, account, owner, options, data, retry=True)

        if error_type == NOT_FOUND and options.get("username"):
            refreshed = {k: v for k, v in options.items() if k not in PROVIDER_ID_KEYS}
            logger.info(f"Re-resolving {platform} {account.username} by username")
            await self._wait_for_slot(platform)
            try:
                data = await self._fetch(platform, refreshed)
            except Exception as refresh_error:
                logger.warning(
                    f"Identifier refresh failed for {platform} {account.username}: {refresh_error}"
                )
            else:
                return await self._store(
                    session, account, owner, refreshed, data, identifier_refreshed=True
                )

        return self._failure(account, options, error, error_type)

    async def _store(
        self,
        session: AsyncSession,
        account: TrackedAccount,
        owner: Optional[str],
        options: dict,
        data: ProviderData,
        **flags,
    ) -> dict:
        payload = merge_account_payload(account, data.account)
        try:
            result = await upsert_platform_data(session, owner, account.platform, payload, data.media)
            stored_id = result.account.id
            await session.commit()
        except (SyncError, SQLAlchemyError) as error:
            await session.rollback()
            logger.warning(f"Could not store {account.platform} {account.username}: {error}")
            return self._failure(account, options, error, _error_type(error))

        return {
            "account_id": stored_id,
            "platform": account.platform,
            "media_count": len(result.post_ids),
            "synced_at": datetime.now(timezone.utc),
            "identifiers_used": identifiers_used(options),
            **flags,
        }

    @staticmethod
    def _failure(account: TrackedAccount, options: dict, error: BaseException, error_type: str) -> dict:
        return {
            "account_id": account.id,
            "platform": account.platform,
            "username": account.username,
            "error": str(error) or "Failed to refresh account.",
            "error_type": error_type,
            "status_code": getattr(error, "status_code", None),
            "identifiers_used": identifiers_used(options),
        }


async def refresh_tracked_accounts(
    session: AsyncSession,
    registry: Optional[ProviderRegistry] = None,
    owner_id: Optional[str] = None,
    delay_ms: Optional[int] = None,
) -> dict:
    """One refresh pass with settings-derived spacing and backoff."""
    refresher = AccountRefresher.from_settings(registry or build_default_registry())
    return await refresher.run(session, owner_id=owner_id, delay_ms=delay_ms)


async def sync_all_platforms(
    session: AsyncSession,
    registry: Optional[ProviderRegistry] = None,
    owner_id: Optional[str] = None,
) -> list[dict]:
    """Fetch each platform's configured default account once. No retries."""
    registry = registry or build_default_registry()
    results = []

    for platform in SUPPORTED_PLATFORMS:
        try:
            data = await registry.fetch(platform)
            result = await upsert_platform_data(session, owner_id, platform, data.account, data.media)
            provider_account_id = result.account.provider_account_id
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(f"Full sync failed for {platform}: {e}")
            results.append({"platform": platform, "error": str(e)})
            continue

        results.append(
            {
                "platform": platform,
                "account_id": provider_account_id,
                "media_count": len(result.post_ids),
                "synced_at": datetime.now(timezone.utc),
            }
        )

    return results


async def refresh_account(
    session: AsyncSession,
    account_id: str,
    registry: Optional[ProviderRegistry] = None,
    settings: Optional[Settings] = None,
) -> dict:
    """Refresh a single tracked account right away. No retries.

    Records the identifiers used in the account metadata. The caller owns the
    commit.
    """
    registry = registry or build_default_registry()
    settings = settings or get_settings()

    stored = await get_account(session, account_id)
    if stored is None:
        raise AccountNotFoundError(f"Account not found: {account_id}")
    account = TrackedAccount.from_model(stored)

    options = build_fetcher_options(account)
    if options is None or not registry.supports(account.platform):
        raise UnsupportedPlatformError(
            f"Platform '{account.platform}' is not supported for refresh yet.",
            status_code=501,
        )
    if not any(options.get(key) for key in ("user_id", "sec_uid", "channel_id")):
        raise ValidationError(
            "Stored platform identifier is missing. Re-add the account to capture the required ID."
        )

    try:
        data = await asyncio.wait_for(
            registry.fetch(account.platform, options), timeout=settings.fetch_timeout_seconds
        )
    except asyncio.TimeoutError:
        raise ProviderTransientError(
            f"Request timeout after {settings.fetch_timeout_seconds:g} seconds"
        ) from None

    payload = merge_account_payload(
        account, data.account, stored_identifiers(account.platform, options)
    )
    result = await upsert_platform_data(
        session, account.owner_id, account.platform, payload, data.media
    )
    media = await find_posts(session, account_id=result.account.id)

    logger.info(f"Refreshed {account.platform} account {account.provider_account_id}")
    return {"platform": account.platform, "account": result.account, "media": media}


def _lookup_options(platform: str, identifier: str) -> dict:
    username = identifier.strip().lstrip("@").strip()
    if not username:
        raise ValidationError("A username or handle must be provided.")
    if platform == "youtube":
        return {"username": username, "handle": f"@{username}", "identifier": f"@{username}"}
    return {"username": username}


async def track_account(
    session: AsyncSession,
    platform: str,
    identifier: str,
    owner_id: Optional[str] = None,
    registry: Optional[ProviderRegistry] = None,
) -> dict:
    """Start tracking an account by username or handle.

    The account is fetched once and stored with the identifiers it resolved
    to, so later refreshes can address it by provider id. The caller owns the
    commit.
    """
    registry = registry or build_default_registry()
    if platform not in SUPPORTED_PLATFORMS:
        raise ValidationError(f"Unsupported platform: {platform}")
    if not registry.supports(platform):
        raise UnsupportedPlatformError(
            f"Platform '{platform}' is not configured for tracking.", status_code=501
        )

    options = _lookup_options(platform, identifier)
    data = await registry.fetch(platform, options)

    resolved = TrackedAccount(
        id="",
        platform=platform,
        provider_account_id=data.account.account_id,
        owner_id=owner_id,
        username=options["username"],
    )
    payload = merge_account_payload(
        resolved, data.account, stored_identifiers(platform, options)
    )
    result = await upsert_platform_data(session, owner_id, platform, payload, data.media)
    media = await find_posts(session, account_id=result.account.id)

    logger.info(f"Tracking {platform} account @{options['username']} ({payload.account_id})")
    return {"platform": platform, "account": result.account, "media": media}
