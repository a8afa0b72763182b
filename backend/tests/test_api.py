"""HTTP tests for the accounts, analytics and sync routers."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from config import get_settings
from routers import accounts as accounts_routes
from services.errors import ProviderError
from services.platform_sync import upsert_platform_data
from services.run_store import RunStore


async def _seed(session_factory, provider_data, platform="youtube", **kwargs):
    async with session_factory() as session:
        data = provider_data(**kwargs)
        result = await upsert_platform_data(session, None, platform, data.account, data.media)
        await session.commit()
        return result.account.id


def _posts():
    return [
        {"external_id": "v1", "title": "Day one", "published_at": "2024-01-01T09:00:00Z",
         "metrics": {"views": 400, "likes": 40}},
        {"external_id": "v2", "title": "Day two", "published_at": "2024-01-02T09:00:00Z",
         "metrics": {"views": 100, "likes": 10}},
    ]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "creator-metrics-hub", "redis": True}


@pytest.mark.asyncio
async def test_overview_empty(client):
    response = await client.get("/analytics/overview")

    assert response.status_code == 200
    data = response.json()
    assert data["overview"]["total_followers"] == 0
    assert data["overview"]["platform_breakdown"] == {}
    assert data["accounts"] == []
    assert data["media"] == []


@pytest.mark.asyncio
async def test_overview_with_data(client, session_factory, provider_data):
    await _seed(session_factory, provider_data, media=_posts())

    response = await client.get("/analytics/overview")

    data = response.json()
    assert data["overview"]["total_followers"] == 1000
    assert data["overview"]["platform_breakdown"]["youtube"]["media_count"] == 2
    assert [m["external_id"] for m in data["media"]] == ["v2", "v1"]
    assert data["accounts"][0]["stats"]["followers"] == 1000


@pytest.mark.asyncio
async def test_overview_date_range(client, session_factory, provider_data):
    await _seed(session_factory, provider_data, media=_posts())

    response = await client.get(
        "/analytics/overview", params={"start": "2024-01-02T00:00:00Z"}
    )

    assert [m["external_id"] for m in response.json()["media"]] == ["v2"]


@pytest.mark.asyncio
async def test_platform_overview(client, session_factory, provider_data):
    assert (await client.get("/analytics/platform/myspace")).status_code == 400
    assert (await client.get("/analytics/platform/youtube")).status_code == 404

    await _seed(session_factory, provider_data)
    response = await client.get("/analytics/platform/youtube")

    assert response.status_code == 200
    assert response.json()["platform"] == "youtube"


@pytest.mark.asyncio
async def test_daily_performance(client, session_factory, provider_data):
    await _seed(session_factory, provider_data, media=_posts())

    response = await client.get("/analytics/daily")

    data = response.json()
    assert [g["date"] for g in data["groups"]] == ["2024-01-02", "2024-01-01"]
    assert data["trend_series"][1]["views_delta"] == -300
    assert data["trend_series"][1]["views_delta_pct"] == -75.0


@pytest.mark.asyncio
async def test_account_trend_endpoints(client, session_factory, provider_data):
    assert (await client.get("/analytics/accounts/missing/rolling-median")).status_code == 404
    assert (await client.get("/analytics/accounts/missing/media-stats")).status_code == 404

    account_id = await _seed(session_factory, provider_data, media=_posts())

    response = await client.get(
        f"/analytics/accounts/{account_id}/rolling-median",
        params={"reference_dates": ["2024-01-03"]},
    )
    series = response.json()["series"]
    assert [p["median_views"] for p in series] == [400, 250, 250]

    stats = (await client.get(f"/analytics/accounts/{account_id}/media-stats")).json()
    assert stats["post_count"] == 2
    assert stats["total_views"] == 500
    assert stats["median_views_last_10"] == 250


@pytest.mark.asyncio
async def test_track_list_and_get_account(client, registry, provider_data):
    async def youtube(options):
        return provider_data(account_id="UC-new", username=options["username"], media=_posts())

    registry.register("youtube", youtube)

    response = await client.post("/accounts", json={"platform": "youtube", "username": "@newbie", "userId": "u1"})

    assert response.status_code == 201
    body = response.json()
    assert body["account"]["provider_account_id"] == "UC-new"
    assert body["account"]["owner_id"] == "u1"
    assert len(body["account"]["history"]) == 1
    assert len(body["media"]) == 2
    account_id = body["account"]["id"]

    listing = (await client.get("/accounts")).json()
    assert listing["total"] == 1
    assert listing["accounts"][0]["media_count"] == 2

    detail = await client.get(f"/accounts/{account_id}")
    assert detail.status_code == 200
    assert detail.json()["username"] == "newbie"
    assert (await client.get("/accounts/missing")).status_code == 404


@pytest.mark.asyncio
async def test_track_account_errors(client, registry):
    async def youtube(options):
        raise ProviderError("Channel not found", status_code=404)

    registry.register("youtube", youtube)

    blank = await client.post("/accounts", json={"platform": "youtube", "username": "  "})
    assert blank.status_code == 400

    missing = await client.post("/accounts", json={"platform": "youtube", "username": "ghost"})
    assert missing.status_code == 502
    assert missing.json()["error_type"] == "not_found"
    assert missing.json()["provider_status"] == 404

    unsupported = await client.post("/accounts", json={"platform": "tiktok", "username": "tok"})
    assert unsupported.status_code == 501


@pytest.mark.asyncio
async def test_delete_account(client, session_factory, provider_data):
    account_id = await _seed(session_factory, provider_data, media=_posts())

    response = await client.delete(f"/accounts/{account_id}")

    assert response.status_code == 200
    assert response.json() == {"success": True, "deleted_account_id": account_id, "media_deleted": 2}
    assert (await client.delete(f"/accounts/{account_id}")).status_code == 404


@pytest.mark.asyncio
async def test_refresh_single_account(client, session_factory, registry, provider_data):
    async def youtube(options):
        return provider_data(account_id=options["channel_id"], followers=2500)

    registry.register("youtube", youtube)
    account_id = await _seed(session_factory, provider_data)
    tiktok_id = await _seed(session_factory, provider_data, platform="tiktok", account_id="MS4w")

    response = await client.post(f"/accounts/{account_id}/refresh")
    assert response.status_code == 200
    assert response.json()["account"]["stats"]["followers"] == 2500

    assert (await client.post("/accounts/missing/refresh")).status_code == 404
    assert (await client.post(f"/accounts/{tiktok_id}/refresh")).status_code == 501


@pytest.mark.asyncio
async def test_refresh_all_stores_report(client, session_factory, registry, provider_data):
    async def youtube(options):
        return provider_data(account_id=options["channel_id"])

    registry.register("youtube", youtube)
    await _seed(session_factory, provider_data)
    await _seed(session_factory, provider_data, platform="tiktok", account_id="MS4w")

    assert (await client.get("/accounts/refresh/latest")).status_code == 404

    response = await client.post("/accounts/refresh")

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["run_id"]
    assert sum(1 for r in body["results"] if r.get("skipped")) == 1

    latest = (await client.get("/accounts/refresh/latest")).json()
    assert latest["run_id"] == body["run_id"]
    assert latest["trigger"] == "manual"


@pytest.mark.asyncio
async def test_refresh_all_timeout_keeps_running(client, session_factory, registry, provider_data, monkeypatch):
    release = asyncio.Event()

    async def youtube(options):
        await release.wait()
        return provider_data(account_id=options["channel_id"])

    registry.register("youtube", youtube)
    await _seed(session_factory, provider_data)
    monkeypatch.setattr(accounts_routes.settings, "refresh_timeout_seconds", 0.05)

    response = await client.post("/accounts/refresh")

    assert response.status_code == 504
    assert "timeout" in response.json()["detail"]

    release.set()
    await asyncio.gather(*accounts_routes._background_runs)
    latest = await RunStore.get_latest_run()
    assert latest["total"] == 1


@pytest.mark.asyncio
async def test_background_run_failure_is_logged(
    client, session_factory, registry, provider_data, monkeypatch, caplog
):
    release = asyncio.Event()

    async def youtube(options):
        await release.wait()
        return provider_data(account_id=options["channel_id"])

    registry.register("youtube", youtube)
    await _seed(session_factory, provider_data)
    monkeypatch.setattr(accounts_routes.settings, "refresh_timeout_seconds", 0.05)
    monkeypatch.setattr(RunStore, "save_run", AsyncMock(side_effect=RedisError("connection lost")))

    response = await client.post("/accounts/refresh")
    assert response.status_code == 504

    with caplog.at_level(logging.ERROR, logger="routers.accounts"):
        release.set()
        await asyncio.wait(set(accounts_routes._background_runs))

    failures = [r for r in caplog.records if r.name == "routers.accounts" and r.levelno == logging.ERROR]
    assert len(failures) == 1
    assert "connection lost" in failures[0].getMessage()
    assert await RunStore.get_latest_run() is None


@pytest.mark.asyncio
async def test_list_refresh_runs(client):
    for total in (1, 2, 3):
        await RunStore.save_run({"total": total, "results": [], "completed_at": f"2024-01-0{total}T00:00:00+00:00"})

    response = await client.get("/accounts/refresh/runs", params={"limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert [run["total"] for run in body["runs"]] == [3, 2]
    assert (await client.get("/accounts/refresh/runs", params={"limit": 0})).status_code == 422


@pytest.mark.asyncio
async def test_sync_all_requires_secret(client, registry, provider_data, monkeypatch):
    async def youtube(options):
        return provider_data(account_id="UC-default")

    registry.register("youtube", youtube)
    monkeypatch.setattr(get_settings(), "sync_webhook_secret", "s3cret")

    assert (await client.post("/sync-all")).status_code == 401
    wrong = await client.post("/sync-all", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401

    response = await client.post("/sync-all", headers={"Authorization": "Bearer s3cret"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    by_platform = {r["platform"]: r for r in body["results"]}
    assert by_platform["youtube"]["account_id"] == "UC-default"
    assert by_platform["instagram"]["error"]
    assert by_platform["tiktok"]["error"]
