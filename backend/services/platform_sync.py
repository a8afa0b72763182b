"""Platform sync - idempotent create-or-update of accounts and their posts.

Each call upserts one account and its posts and appends one history snapshot
per entity. Calling it twice with identical input records two snapshots:
every refresh leaves a trace in history, even when nothing changed.

Upserts are single INSERT ... ON CONFLICT DO UPDATE statements so concurrent
refreshes of the same account serialize in the database, and metadata is
merged inside the UPDATE rather than read back into Python first.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import uuid4

from sqlalchemy import func, insert, literal_column, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.account import Account, AccountSnapshot
from models.post import Post, PostSnapshot
from services.errors import StorageError, ValidationError
from services.metrics import engagement_rate
from services.providers.base import SUPPORTED_PLATFORMS, AccountPayload, PostPayload

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    account: Account
    post_ids: list[str] = field(default_factory=list)


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def _insert(dialect: str):
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise StorageError(f"Upserts are not supported on the {dialect} dialect")


def _merged_metadata(dialect: str, existing, excluded, incoming: dict):
    """Shallow-merge the stored metadata with the incoming one, in SQL.

    Top-level keys of ``incoming`` replace stored ones whole, nested values
    included. Stored keys absent from ``incoming`` are kept.
    """
    if dialect == "postgresql":
        return func.coalesce(existing, literal_column("'{}'::jsonb")).op(
            "||", return_type=postgresql.JSONB
        )(excluded)

    # json_patch would deep-merge nested objects, so set each key instead
    merged = func.coalesce(existing, literal_column("'{}'"))
    for key, value in incoming.items():
        path = f'$."{key}"'
        merged = func.json_set(merged, path, func.json(json.dumps(value)))
    return merged


def _clean_metadata(metadata: Optional[dict]) -> dict:
    # Absent provider values are skipped so they never erase stored ones
    return {k: v for k, v in (metadata or {}).items() if v is not None}


def _resolve_rate(provided: Optional[float], views: float, *interactions: float) -> float:
    if views <= 0:
        return 0
    if provided is not None:
        return round(provided, 2)
    return engagement_rate(views, *interactions)


def _validate(
    platform: str,
    account: Union[AccountPayload, dict],
    media: Optional[list],
) -> tuple[AccountPayload, list[PostPayload]]:
    if platform not in SUPPORTED_PLATFORMS:
        raise ValidationError(f"Unsupported platform: {platform}")

    if not isinstance(account, AccountPayload):
        account = AccountPayload.model_validate(account or {})
    if not account.account_id:
        raise ValidationError("Account payload is missing its provider account id")

    posts = [
        item if isinstance(item, PostPayload) else PostPayload.model_validate(item)
        for item in media or []
    ]
    for post in posts:
        if not post.external_id:
            raise ValidationError(
                f"Post payload for account {account.account_id} is missing its external id"
            )
    return account, posts


async def _upsert_account(
    session: AsyncSession,
    dialect: str,
    owner_id: Optional[str],
    platform: str,
    payload: AccountPayload,
    synced_at: datetime,
) -> str:
    stats = payload.stats
    rate = _resolve_rate(
        stats.engagement_rate,
        stats.total_views,
        stats.total_likes,
        stats.total_comments,
        stats.total_shares,
    )
    metadata = _clean_metadata(payload.metadata)
    now = datetime.now(timezone.utc)

    stmt = _insert(dialect)(Account).values(
        id=str(uuid4()),
        owner_id=owner_id,
        platform=platform,
        provider_account_id=payload.account_id,
        username=payload.username,
        display_name=payload.display_name,
        profile_url=payload.profile_url,
        followers=stats.followers,
        total_views=stats.total_views,
        total_likes=stats.total_likes,
        total_comments=stats.total_comments,
        total_shares=stats.total_shares,
        total_impressions=stats.total_impressions,
        engagement_rate=rate,
        platform_metadata=metadata,
        last_synced_at=synced_at,
        created_at=now,
        updated_at=now,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["platform", "provider_account_id"],
        set_={
            "owner_id": func.coalesce(excluded.owner_id, Account.owner_id),
            "username": func.coalesce(excluded.username, Account.username),
            "display_name": func.coalesce(excluded.display_name, Account.display_name),
            "profile_url": func.coalesce(excluded.profile_url, Account.profile_url),
            "followers": excluded.followers,
            "total_views": excluded.total_views,
            "total_likes": excluded.total_likes,
            "total_comments": excluded.total_comments,
            "total_shares": excluded.total_shares,
            "total_impressions": excluded.total_impressions,
            "engagement_rate": excluded.engagement_rate,
            "platform_metadata": _merged_metadata(
                dialect, Account.platform_metadata, excluded.platform_metadata, metadata
            ),
            "last_synced_at": excluded.last_synced_at,
            "updated_at": excluded.updated_at,
        },
    ).returning(Account.id)

    account_id = (await session.execute(stmt)).scalar_one()

    await session.execute(
        insert(AccountSnapshot).values(
            account_id=account_id,
            date=synced_at,
            followers=stats.followers,
            total_views=stats.total_views,
            total_likes=stats.total_likes,
            total_comments=stats.total_comments,
            total_shares=stats.total_shares,
            total_impressions=stats.total_impressions,
            engagement_rate=rate,
        )
    )
    return account_id


async def _upsert_post(
    session: AsyncSession,
    dialect: str,
    account_id: str,
    platform: str,
    payload: PostPayload,
    synced_at: datetime,
) -> str:
    metrics = payload.metrics
    rate = _resolve_rate(
        metrics.engagement_rate,
        metrics.views,
        metrics.likes,
        metrics.comments,
        metrics.shares,
        metrics.saves,
    )
    metadata = _clean_metadata(payload.metadata)
    now = datetime.now(timezone.utc)

    stmt = _insert(dialect)(Post).values(
        id=str(uuid4()),
        account_id=account_id,
        platform=platform,
        external_id=payload.external_id,
        title=payload.title,
        caption=payload.caption,
        url=payload.url,
        thumbnail_url=payload.thumbnail_url,
        published_at=payload.published_at,
        tags=list(payload.tags),
        platform_metadata=metadata,
        views=metrics.views,
        likes=metrics.likes,
        comments=metrics.comments,
        shares=metrics.shares,
        saves=metrics.saves,
        impressions=metrics.impressions,
        engagement_rate=rate,
        last_synced_at=synced_at,
        created_at=now,
        updated_at=now,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["account_id", "external_id"],
        set_={
            "platform": excluded.platform,
            "title": excluded.title,
            "caption": excluded.caption,
            "url": excluded.url,
            "thumbnail_url": excluded.thumbnail_url,
            # A publish date never changes once recorded
            "published_at": func.coalesce(Post.published_at, excluded.published_at),
            "tags": excluded.tags,
            "platform_metadata": _merged_metadata(
                dialect, Post.platform_metadata, excluded.platform_metadata, metadata
            ),
            "views": excluded.views,
            "likes": excluded.likes,
            "comments": excluded.comments,
            "shares": excluded.shares,
            "saves": excluded.saves,
            "impressions": excluded.impressions,
            "engagement_rate": excluded.engagement_rate,
            "last_synced_at": excluded.last_synced_at,
            "updated_at": excluded.updated_at,
        },
    ).returning(Post.id)

    post_id = (await session.execute(stmt)).scalar_one()

    await session.execute(
        insert(PostSnapshot).values(
            post_id=post_id,
            date=synced_at,
            views=metrics.views,
            likes=metrics.likes,
            comments=metrics.comments,
            shares=metrics.shares,
            saves=metrics.saves,
            impressions=metrics.impressions,
            engagement_rate=rate,
        )
    )
    return post_id


async def upsert_platform_data(
    session: AsyncSession,
    owner_id: Optional[str],
    platform: str,
    account: Union[AccountPayload, dict[str, Any]],
    media: Optional[list[Union[PostPayload, dict[str, Any]]]] = None,
) -> UpsertResult:
    """Create or update an account and its posts, appending history to each.

    Raises ValidationError before touching the database when the payload is
    unusable, StorageError when a write fails. The caller owns the commit.
    """
    account_payload, posts = _validate(platform, account, media)
    synced_at = account_payload.last_synced_at or datetime.now(timezone.utc)

    try:
        dialect = _dialect_name(session)
        account_id = await _upsert_account(
            session, dialect, owner_id, platform, account_payload, synced_at
        )

        post_ids = []
        for post in posts:
            post_ids.append(
                await _upsert_post(session, dialect, account_id, platform, post, synced_at)
            )

        result = await session.execute(
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        stored = result.scalar_one()
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to store {platform} account {account_payload.account_id}: {e}") from e

    logger.info(
        f"Upserted {platform} account {account_payload.account_id} "
        f"with {len(post_ids)} posts"
    )
    return UpsertResult(account=stored, post_ids=post_ids)
