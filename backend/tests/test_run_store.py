"""Tests for refresh run report storage."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as redis

from services.run_store import RUNS_LIST, RUNS_PREFIX, RunStore


def _report(completed_at, total=1):
    return {
        "total": total,
        "results": [{"account_id": "a1", "platform": "youtube", "media_count": 3, "synced_at": completed_at}],
        "completed_at": completed_at,
    }


@pytest.mark.asyncio
async def test_save_and_get_run(fake_redis):
    completed_at = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    run_id = await RunStore.save_run(_report(completed_at), trigger="scheduled")
    run = await RunStore.get_run(run_id)

    assert run["run_id"] == run_id
    assert run["trigger"] == "scheduled"
    assert run["total"] == 1
    assert run["completed_at"] == completed_at
    assert isinstance(run["saved_at"], datetime)
    # nested datetimes come back as ISO strings
    assert run["results"][0]["synced_at"] == completed_at.isoformat()
    assert await fake_redis.ttl(f"{RUNS_PREFIX}{run_id}") > 0


@pytest.mark.asyncio
async def test_latest_run_and_listing(fake_redis):
    start = datetime(2024, 5, 1, tzinfo=timezone.utc)
    older = await RunStore.save_run(_report(start))
    newer = await RunStore.save_run(_report(start + timedelta(hours=6), total=2))

    latest = await RunStore.get_latest_run()
    assert latest["run_id"] == newer

    runs = await RunStore.list_runs()
    assert [r["run_id"] for r in runs] == [newer, older]


@pytest.mark.asyncio
async def test_list_runs_prunes_expired_reports(fake_redis):
    run_id = await RunStore.save_run(_report(datetime.now(timezone.utc)))
    await fake_redis.delete(f"{RUNS_PREFIX}{run_id}")

    assert await RunStore.list_runs() == []
    assert await fake_redis.zcard(RUNS_LIST) == 0


@pytest.mark.asyncio
async def test_missing_runs(fake_redis):
    assert await RunStore.get_run("nope") is None
    assert await RunStore.get_latest_run() is None


@pytest.mark.asyncio
async def test_health_check(fake_redis):
    assert await RunStore.health_check() is True

    with patch.object(fake_redis, "ping", AsyncMock(side_effect=redis.ConnectionError("down"))):
        assert await RunStore.health_check() is False
