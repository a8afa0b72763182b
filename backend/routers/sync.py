"""Sync router - operator-triggered full resync of every platform."""

import logging
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from middleware.auth import verify_sync_secret
from services.account_refresh import sync_all_platforms
from services.providers import ProviderRegistry, get_registry

router = APIRouter(tags=["sync"])
logger = logging.getLogger(__name__)


class SyncAllRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class PlatformSyncResult(BaseModel):
    """Outcome of one platform's sync: either the stored account or an error."""
    platform: str
    account_id: Optional[str] = None
    media_count: Optional[int] = None
    synced_at: Optional[datetime] = None
    error: Optional[str] = None


class SyncAllResponse(BaseModel):
    success: bool
    results: list[PlatformSyncResult]


@router.post(
    "/sync-all",
    response_model=SyncAllResponse,
    dependencies=[Depends(verify_sync_secret)],
)
async def sync_all(
    db: Annotated[AsyncSession, Depends(get_db)],
    registry: Annotated[ProviderRegistry, Depends(get_registry)],
    body: Optional[SyncAllRequest] = None,
):
    """
    Fetch each platform's configured default account once and store it.

    Per-platform failures are reported in the results, not raised.
    """
    results = await sync_all_platforms(db, registry, owner_id=body.user_id if body else None)
    failed = [r["platform"] for r in results if r.get("error")]
    if failed:
        logger.warning(f"Full sync finished with failures: {', '.join(failed)}")
    return SyncAllResponse(success=len(failed) < len(results), results=results)
