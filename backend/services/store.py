"""Read side of account/post storage, plus account deletion."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.account import Account, AccountSnapshot
from models.post import Post, PostSnapshot
from services.errors import AccountNotFoundError, StorageError

logger = logging.getLogger(__name__)

ACCOUNT_ORDERS = {
    # Refresh order: never-synced accounts first, then the stalest
    "oldest_synced": (Account.last_synced_at.asc().nulls_first(), Account.created_at.asc()),
    "recently_updated": (Account.updated_at.desc(),),
}


async def find_accounts(
    session: AsyncSession,
    owner_id: Optional[str] = None,
    platform: Optional[str] = None,
    order: str = "oldest_synced",
) -> list[Account]:
    """List tracked accounts, optionally scoped to one owner or platform."""
    if order not in ACCOUNT_ORDERS:
        raise ValueError(f"Unknown account order: {order}")

    query = select(Account)
    if owner_id:
        query = query.where(Account.owner_id == owner_id)
    if platform:
        query = query.where(Account.platform == platform)
    query = query.order_by(*ACCOUNT_ORDERS[order])

    try:
        result = await session.execute(query)
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to load accounts: {e}") from e
    return list(result.scalars().all())


async def find_posts(
    session: AsyncSession,
    platform: Optional[str] = None,
    account_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[Post]:
    """List posts, most recently published first.

    start/end bound published_at inclusively; posts without a publish date
    are excluded once either bound is given.
    """
    query = select(Post)
    if platform:
        query = query.where(Post.platform == platform)
    if account_id:
        query = query.where(Post.account_id == account_id)
    if start:
        query = query.where(Post.published_at >= start)
    if end:
        query = query.where(Post.published_at <= end)
    query = query.order_by(Post.published_at.desc().nulls_last(), Post.created_at.desc())

    try:
        result = await session.execute(query)
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to load posts: {e}") from e
    return list(result.scalars().all())


async def get_account(session: AsyncSession, account_id: str) -> Optional[Account]:
    try:
        return await session.get(Account, account_id)
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to load account {account_id}: {e}") from e


async def account_history(session: AsyncSession, account_id: str) -> list[AccountSnapshot]:
    result = await session.execute(
        select(AccountSnapshot)
        .where(AccountSnapshot.account_id == account_id)
        .order_by(AccountSnapshot.id)
    )
    return list(result.scalars().all())


async def post_history(session: AsyncSession, post_id: str) -> list[PostSnapshot]:
    result = await session.execute(
        select(PostSnapshot)
        .where(PostSnapshot.post_id == post_id)
        .order_by(PostSnapshot.id)
    )
    return list(result.scalars().all())


async def delete_account(session: AsyncSession, account_id: str) -> int:
    """Delete an account with its posts and all their history.

    Rows are removed explicitly rather than through ON DELETE CASCADE so the
    delete also holds on SQLite connections without foreign keys enabled.
    Returns the number of posts removed. The caller owns the commit.
    """
    account = await get_account(session, account_id)
    if account is None:
        raise AccountNotFoundError(f"Account not found: {account_id}")

    label = f"{account.platform} account {account.provider_account_id}"
    post_ids = select(Post.id).where(Post.account_id == account_id)
    try:
        post_count = (
            await session.execute(
                select(func.count()).select_from(Post).where(Post.account_id == account_id)
            )
        ).scalar_one()

        await session.execute(
            delete(PostSnapshot)
            .where(PostSnapshot.post_id.in_(post_ids))
            .execution_options(synchronize_session=False)
        )
        await session.execute(delete(Post).where(Post.account_id == account_id))
        await session.execute(delete(AccountSnapshot).where(AccountSnapshot.account_id == account_id))
        await session.execute(delete(Account).where(Account.id == account_id))
    except SQLAlchemyError as e:
        raise StorageError(f"Failed to delete account {account_id}: {e}") from e

    logger.info(f"Deleted {label} with {post_count} posts")
    return post_count
