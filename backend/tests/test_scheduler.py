"""Tests for the scheduled refresh job."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from services import scheduler
from services.errors import StorageError
from services.run_store import RunStore


@pytest.mark.asyncio
async def test_scheduled_refresh_stores_report(session_factory, fake_redis):
    report = {
        "total": 1,
        "results": [{"account_id": "a1", "platform": "youtube", "media_count": 0}],
        "completed_at": datetime.now(timezone.utc),
    }

    with patch.object(scheduler, "async_session", session_factory), patch.object(
        scheduler, "refresh_tracked_accounts", AsyncMock(return_value=report)
    ) as refresh:
        await scheduler.refresh_all_accounts()

    refresh.assert_awaited_once()
    latest = await RunStore.get_latest_run()
    assert latest["trigger"] == "scheduled"
    assert latest["total"] == 1


@pytest.mark.asyncio
async def test_scheduled_refresh_survives_storage_failure(session_factory, fake_redis):
    with patch.object(scheduler, "async_session", session_factory), patch.object(
        scheduler, "refresh_tracked_accounts", AsyncMock(side_effect=StorageError("db down"))
    ):
        await scheduler.refresh_all_accounts()

    assert await RunStore.get_latest_run() is None


def test_disabled_scheduler_does_not_start(monkeypatch):
    monkeypatch.setattr(scheduler.settings, "scheduler_enabled", False)

    scheduler.start_scheduler()

    assert not scheduler.scheduler.running
    assert scheduler.scheduler.get_job("tracked_accounts_refresh") is None
