"""Daily performance leaderboards and rolling median view trends.

Both builders are pure folds over post collections (ORM rows or dicts) and
key every post by the UTC calendar day it was published. Posts without a
usable publish date are left out.
"""

from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from services.metrics import median, parse_datetime, to_number

ROLLING_WINDOW = 10


def _get(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def _published_at(item: Any) -> Optional[datetime]:
    return parse_datetime(_get(item, "published_at"))


def _post_entry(item: Any, published_at: datetime) -> dict:
    return {
        "id": _get(item, "id") or _get(item, "external_id"),
        "external_id": _get(item, "external_id"),
        "title": _get(item, "title") or "",
        "url": _get(item, "url"),
        "thumbnail_url": _get(item, "thumbnail_url"),
        "published_at": published_at.isoformat(),
        "metrics": {
            "views": to_number(_get(item, "views")),
            "likes": to_number(_get(item, "likes")),
            "comments": to_number(_get(item, "comments")),
            "shares": to_number(_get(item, "shares")),
            "saves": to_number(_get(item, "saves")),
            "engagement_rate": to_number(_get(item, "engagement_rate")),
        },
    }


def _summarise_day(day: str, posts: list[dict]) -> dict:
    totals = {"views": 0, "likes": 0, "comments": 0, "shares": 0, "saves": 0}
    engagement_total = 0
    for post in posts:
        for key in totals:
            totals[key] += post["metrics"][key]
        engagement_total += post["metrics"]["engagement_rate"]

    # sorted() is stable, so equal view counts keep their encounter order
    ranked = []
    for rank, post in enumerate(
        sorted(posts, key=lambda p: p["metrics"]["views"], reverse=True), start=1
    ):
        share = round(post["metrics"]["views"] / totals["views"] * 100, 2) if totals["views"] else 0
        ranked.append({**post, "rank": rank, "view_share": share})

    return {
        "date": day,
        "posts": ranked,
        "totals": {
            **totals,
            "average_engagement": round(engagement_total / len(ranked), 2) if ranked else 0,
            "post_count": len(ranked),
        },
        "top_post": ranked[0] if ranked else None,
    }


def _trend_point(group: dict, previous: Optional[dict]) -> dict:
    totals = group["totals"]
    top = group["top_post"] or {}
    views_delta = totals["views"] - previous["totals"]["views"] if previous else None
    views_delta_pct = (
        round(views_delta / previous["totals"]["views"] * 100, 2)
        if previous and previous["totals"]["views"]
        else None
    )
    return {
        "date": group["date"],
        "views": totals["views"],
        "likes": totals["likes"],
        "comments": totals["comments"],
        "shares": totals["shares"],
        "saves": totals["saves"],
        "post_count": totals["post_count"],
        "top_driver_title": top.get("title") or top.get("external_id"),
        "top_driver_views": top.get("metrics", {}).get("views", 0),
        "top_driver_share": top.get("view_share", 0),
        "top_driver_url": top.get("url"),
        "views_delta": views_delta,
        "views_delta_pct": views_delta_pct,
    }


def build_daily_performance(posts: Iterable[Any]) -> dict:
    """Group posts by publish day and rank them within each day.

    ``groups`` runs newest day first; ``trend_series`` holds the same days
    oldest first, each with its view delta against the previous day.
    """
    by_day: dict[str, list[dict]] = {}
    for item in posts or []:
        published_at = _published_at(item)
        if published_at is None:
            continue
        by_day.setdefault(published_at.date().isoformat(), []).append(
            _post_entry(item, published_at)
        )

    if not by_day:
        return {"groups": [], "trend_series": []}

    chronological = [_summarise_day(day, by_day[day]) for day in sorted(by_day)]

    trend_series = []
    previous = None
    for group in chronological:
        trend_series.append(_trend_point(group, previous))
        previous = group

    return {"groups": list(reversed(chronological)), "trend_series": trend_series}


def _as_day(value: Any) -> Optional[date]:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def build_rolling_median_series(
    posts: Iterable[Any],
    reference_dates: Iterable[Any] = (),
    window: int = ROLLING_WINDOW,
) -> list[dict]:
    """Median views of the latest ``window`` posts as of each calendar day.

    One point per day from the first to the last publish day, plus any
    reference day; days before the first post are skipped.
    """
    dated = []
    for item in posts or []:
        published_at = _published_at(item)
        if published_at is not None:
            dated.append((published_at, to_number(_get(item, "views"))))
    if not dated:
        return []

    dated.sort(key=lambda entry: entry[0])

    days = {published_at.date() for published_at, _ in dated}
    for value in reference_dates or ():
        day = _as_day(value)
        if day is not None:
            days.add(day)

    first, last = dated[0][0].date(), dated[-1][0].date()
    days.update(first + timedelta(days=offset) for offset in range((last - first).days + 1))

    series = []
    buffer: list[float] = []
    cursor = 0
    for day in sorted(days):
        while cursor < len(dated) and dated[cursor][0].date() <= day:
            buffer.append(dated[cursor][1])
            cursor += 1
        if not buffer:
            continue

        sample = buffer[-window:]
        series.append(
            {
                "date": day.isoformat(),
                "median_views": median(sample),
                "sample_size": len(sample),
            }
        )

    return series
