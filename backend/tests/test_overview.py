"""Tests for overview and per-account media aggregation."""

from services.overview import build_account_media_stats, build_overview_metrics


def test_empty_overview_is_all_zero():
    overview = build_overview_metrics([], [])

    assert overview == {
        "total_followers": 0,
        "total_views": 0,
        "total_likes": 0,
        "total_comments": 0,
        "total_shares": 0,
        "total_impressions": 0,
        "average_engagement_rate": 0,
        "platform_breakdown": {},
    }


def test_overview_totals_and_breakdown():
    accounts = [
        {"platform": "youtube", "followers": 1000, "total_views": 5000, "total_likes": 100, "engagement_rate": 4.0},
        {"platform": "youtube", "followers": 500, "total_views": 1000, "total_likes": 50, "engagement_rate": 2.0},
        {"platform": "instagram", "followers": 200, "total_views": 0, "total_likes": 20, "engagement_rate": 9.0},
    ]
    posts = [
        {"platform": "youtube", "engagement_rate": 5.0},
        {"platform": "youtube", "engagement_rate": 6.0},
    ]

    overview = build_overview_metrics(accounts, posts)

    assert overview["total_followers"] == 1700
    assert overview["total_views"] == 6000
    assert overview["total_likes"] == 170
    # mean of per-platform averages: youtube 3.0, instagram 9.0
    assert overview["average_engagement_rate"] == 6.0

    youtube = overview["platform_breakdown"]["youtube"]
    assert youtube["followers"] == 1500
    assert youtube["views"] == 6000
    assert youtube["media_count"] == 2
    assert youtube["engagement_rate"] == 5.5

    # no posts: falls back to the account-level average
    instagram = overview["platform_breakdown"]["instagram"]
    assert instagram["media_count"] == 0
    assert instagram["engagement_rate"] == 9.0


def test_overview_ignores_posts_of_platforms_without_accounts():
    overview = build_overview_metrics(
        [{"platform": "youtube", "followers": 10, "engagement_rate": 1.0}],
        [{"platform": "tiktok", "engagement_rate": 50.0}],
    )

    assert list(overview["platform_breakdown"]) == ["youtube"]


def test_media_stats_for_account_posts():
    posts = [
        {"views": 100 * i, "likes": i, "comments": 1, "shares": 0, "engagement_rate": 2.0,
         "published_at": f"2024-01-{i:02d}T10:00:00Z"}
        for i in range(1, 13)
    ]

    stats = build_account_media_stats(posts)

    assert stats["post_count"] == 12
    assert stats["total_views"] == 7800
    assert stats["total_likes"] == 78
    assert stats["total_comments"] == 12
    assert stats["average_engagement"] == 2.0
    assert stats["average_views_per_post"] == 650
    # latest ten posts are days 3..12 -> views 300..1200
    assert stats["median_views_last_10"] == 750


def test_media_stats_without_posts():
    stats = build_account_media_stats([])

    assert stats["post_count"] == 0
    assert stats["average_engagement"] == 0
    assert stats["average_views_per_post"] == 0
    assert stats["median_views_last_10"] == 0
