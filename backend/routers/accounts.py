"""Accounts router - track, list, refresh and delete creator accounts."""

import asyncio
import logging
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import get_settings
from database import get_db, get_session_factory
from middleware.rate_limit import REFRESH_RATE_LIMIT, SINGLE_REFRESH_RATE_LIMIT, limiter
from models.post import Post
from routers.analytics import AccountDetailResponse, AccountResponse, PostResponse
from services.account_refresh import refresh_account, refresh_tracked_accounts, track_account
from services.providers import ProviderRegistry, get_registry
from services.run_store import RunStore
from services.store import delete_account, find_accounts, get_account

router = APIRouter(prefix="/accounts", tags=["accounts"])
settings = get_settings()
logger = logging.getLogger(__name__)

# Refresh runs that outlived their request; kept referenced until they finish
_background_runs: set[asyncio.Task] = set()


class TrackAccountRequest(BaseModel):
    """Start tracking a creator account."""
    platform: str
    username: str
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class RefreshRequest(BaseModel):
    """Refresh all tracked accounts, optionally only one user's."""
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class AccountListItem(AccountResponse):
    media_count: int = 0


class AccountListResponse(BaseModel):
    success: bool = True
    accounts: list[AccountListItem]
    total: int


class AccountWithMediaResponse(BaseModel):
    success: bool = True
    platform: str
    account: AccountDetailResponse
    media: list[PostResponse]


class RefreshRunResponse(BaseModel):
    success: bool = True
    run_id: Optional[str] = None
    total: int
    results: list[dict[str, Any]]
    completed_at: datetime


class DeleteAccountResponse(BaseModel):
    success: bool = True
    deleted_account_id: str
    media_deleted: int


async def _refresh_and_store(
    session_factory: async_sessionmaker,
    registry: ProviderRegistry,
    owner_id: Optional[str],
) -> tuple[dict, Optional[str]]:
    """Run one refresh pass on its own session and keep the report in Redis."""
    async with session_factory() as db:
        report = await refresh_tracked_accounts(db, registry, owner_id=owner_id)

    run_id = None
    if await RunStore.health_check():
        run_id = await RunStore.save_run(report)
    else:
        logger.warning("Redis not available - refresh run report not stored")
    return report, run_id


def _log_run_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Refresh run failed: {exc}", exc_info=exc)


@router.get("", response_model=AccountListResponse)
async def list_accounts(
    db: Annotated[AsyncSession, Depends(get_db)],
    user_id: Optional[str] = None,
):
    """List tracked accounts, newest first, with their post counts."""
    accounts = await find_accounts(db, owner_id=user_id, order="recently_updated")

    result = await db.execute(
        select(Post.account_id, func.count(Post.id)).group_by(Post.account_id)
    )
    counts = dict(result.all())

    items = [
        AccountListItem.model_validate(account).model_copy(
            update={"media_count": counts.get(account.id, 0)}
        )
        for account in accounts
    ]
    return AccountListResponse(accounts=items, total=len(items))


@router.post("", response_model=AccountWithMediaResponse, status_code=201)
async def add_account(
    body: TrackAccountRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    registry: Annotated[ProviderRegistry, Depends(get_registry)],
):
    """Track a new account by username (YouTube: handle)."""
    return await track_account(
        db, body.platform, body.username, owner_id=body.user_id, registry=registry
    )


@router.post("/refresh", response_model=RefreshRunResponse)
@limiter.limit(REFRESH_RATE_LIMIT)
async def refresh_all(
    request: Request,  # Required for rate limiting - must be named 'request'
    session_factory: Annotated[async_sessionmaker, Depends(get_session_factory)],
    registry: Annotated[ProviderRegistry, Depends(get_registry)],
    body: Optional[RefreshRequest] = None,
):
    """
    Refresh every tracked account.

    Waits up to the refresh timeout. A run still going by then keeps running
    in the background; its report is available from /accounts/refresh/latest.
    """
    owner_id = body.user_id if body else None
    task = asyncio.create_task(_refresh_and_store(session_factory, registry, owner_id))
    _background_runs.add(task)
    task.add_done_callback(_background_runs.discard)
    task.add_done_callback(_log_run_failure)

    try:
        report, run_id = await asyncio.wait_for(
            asyncio.shield(task), timeout=settings.refresh_timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.warning("Refresh still running after the request deadline")
        raise HTTPException(
            status_code=504,
            detail=f"Refresh operation timeout after {settings.refresh_timeout_seconds:g} seconds",
        )

    return RefreshRunResponse(run_id=run_id, **report)


@router.get("/refresh/latest")
async def get_latest_refresh():
    """Report of the most recent refresh run."""
    if not await RunStore.health_check():
        raise HTTPException(status_code=503, detail="Run report storage unavailable")

    run = await RunStore.get_latest_run()
    if run is None:
        raise HTTPException(status_code=404, detail="No refresh run recorded yet")
    return run


@router.get("/refresh/runs")
async def list_refresh_runs(limit: int = Query(default=20, ge=1, le=100)):
    """Recent refresh run reports, newest first."""
    if not await RunStore.health_check():
        raise HTTPException(status_code=503, detail="Run report storage unavailable")

    runs = await RunStore.list_runs(limit=limit)
    return {"runs": runs, "total": len(runs)}


@router.get("/{account_id}", response_model=AccountDetailResponse)
async def get_account_detail(
    account_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Account with its full stats history."""
    account = await get_account(db, account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found.")
    return account


@router.post("/{account_id}/refresh", response_model=AccountWithMediaResponse)
@limiter.limit(SINGLE_REFRESH_RATE_LIMIT)
async def refresh_single(
    request: Request,  # Required for rate limiting - must be named 'request'
    account_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    registry: Annotated[ProviderRegistry, Depends(get_registry)],
):
    """Refresh one account now and return it with its posts."""
    return await refresh_account(db, account_id, registry)


@router.delete("/{account_id}", response_model=DeleteAccountResponse)
async def remove_account(
    account_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Stop tracking an account. Its posts and history are deleted with it."""
    deleted = await delete_account(db, account_id)
    return DeleteAccountResponse(deleted_account_id=account_id, media_deleted=deleted)
