"""Metric normalization helpers shared by the sync and analytics services."""

import math
from datetime import datetime, timezone
from typing import Any, Optional


def to_number(value: Any, fallback: float = 0) -> float:
    """Coerce a provider value to a finite number, or return fallback."""
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else fallback
    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return int(parsed) if parsed.is_integer() else parsed


def to_count(value: Any) -> int:
    """Coerce a provider count to a non-negative int."""
    return max(int(to_number(value)), 0)


def engagement_rate(views: Any, likes: Any = 0, comments: Any = 0, shares: Any = 0, saves: Any = 0) -> float:
    """Interactions per view as a percentage, rounded to 2 decimals.

    Returns 0 when there are no views. Never raises.
    """
    views = to_number(views)
    if views <= 0:
        return 0
    interactions = to_number(likes) + to_number(comments) + to_number(shares) + to_number(saves)
    return round(interactions / views * 100, 2)


def merge_metadata(
    existing: Optional[dict] = None,
    incoming: Optional[dict] = None,
    overrides: Optional[dict] = None,
) -> dict:
    """Shallow key-level merge: overrides win over incoming, incoming over existing.

    Nested values are replaced, not merged. Keys are never removed.
    """
    return {**(existing or {}), **(incoming or {}), **(overrides or {})}


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string, epoch milliseconds or datetime. None on failure."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    try:
        # Providers send a trailing Z
        return as_utc(datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")))
    except (ValueError, TypeError):
        return None


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def median(values: list[float]) -> float:
    """Median of values; an even count averages the middle pair (2 decimals)."""
    if not values:
        return 0
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return round((ordered[middle - 1] + ordered[middle]) / 2, 2)
