"""Redis-based storage for refresh run reports.

An interactive refresh can outlive the request that started it, so every
finished run is saved here and the latest one can be fetched afterwards.
Reports expire after a week.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import redis.asyncio as redis

from config import get_settings

settings = get_settings()

# Redis key prefixes
RUNS_PREFIX = "creatorhub:runs:"
RUNS_LIST = "creatorhub:runs_list"
LATEST_RUN = "creatorhub:runs_latest"

# TTL for run reports (7 days)
RUN_TTL = 60 * 60 * 24 * 7


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO format datetime string."""
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None


class RunStore:
    """Async Redis store for refresh run reports."""

    _pool: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """Get or create Redis connection pool."""
        if cls._pool is None:
            cls._pool = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection pool."""
        if cls._pool is not None:
            await cls._pool.aclose()
            cls._pool = None

    @classmethod
    async def save_run(cls, run: dict, trigger: str = "manual") -> str:
        """Save a run report and mark it as the latest. Returns the run id."""
        client = await cls.get_client()
        run_id = uuid4().hex
        saved_at = datetime.now(timezone.utc)

        record = {**run, "run_id": run_id, "trigger": trigger, "saved_at": saved_at}
        await client.set(f"{RUNS_PREFIX}{run_id}", json.dumps(record, cls=DateTimeEncoder), ex=RUN_TTL)

        completed_at = run.get("completed_at")
        if isinstance(completed_at, str):
            completed_at = parse_datetime(completed_at)
        score = (completed_at or saved_at).timestamp()

        await client.zadd(RUNS_LIST, {run_id: score})
        await client.set(LATEST_RUN, run_id, ex=RUN_TTL)
        return run_id

    @classmethod
    async def get_run(cls, run_id: str) -> Optional[dict]:
        """Get a run report by id."""
        client = await cls.get_client()
        data = await client.get(f"{RUNS_PREFIX}{run_id}")

        if data is None:
            return None

        run = json.loads(data)
        for field in ("completed_at", "saved_at"):
            if run.get(field):
                run[field] = parse_datetime(run[field])
        return run

    @classmethod
    async def get_latest_run(cls) -> Optional[dict]:
        """Get the most recently saved run report."""
        client = await cls.get_client()
        run_id = await client.get(LATEST_RUN)
        if run_id is None:
            return None
        return await cls.get_run(run_id)

    @classmethod
    async def list_runs(cls, limit: int = 20) -> list[dict]:
        """List run reports, newest first. Expired reports are pruned."""
        client = await cls.get_client()
        run_ids = await client.zrevrange(RUNS_LIST, 0, limit - 1)

        runs = []
        for run_id in run_ids:
            run = await cls.get_run(run_id)
            if run:
                runs.append(run)
            else:
                await client.zrem(RUNS_LIST, run_id)

        return runs

    # --- Health Check ---

    @classmethod
    async def health_check(cls) -> bool:
        """Check if Redis is available."""
        try:
            client = await cls.get_client()
            await client.ping()
            return True
        except (redis.RedisError, OSError):
            return False
