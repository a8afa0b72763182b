"""Post model - one content item of a tracked account, with metric history.

Posts are never deleted when a provider stops returning them; they only go
away together with their account.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base, JSONDocument


class Post(Base):
    """Platform post with its latest engagement metrics."""

    __tablename__ = "posts"
    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uix_posts_account_external"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        index=True,
    )
    platform: Mapped[str] = mapped_column(String(50), index=True)
    external_id: Mapped[str] = mapped_column(String(255))

    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    tags: Mapped[Optional[list]] = mapped_column(JSONDocument, nullable=True)
    platform_metadata: Mapped[Optional[dict]] = mapped_column(JSONDocument, nullable=True)

    # Engagement metrics
    views: Mapped[int] = mapped_column(BigInteger, default=0)
    likes: Mapped[int] = mapped_column(BigInteger, default=0)
    comments: Mapped[int] = mapped_column(BigInteger, default=0)
    shares: Mapped[int] = mapped_column(BigInteger, default=0)
    saves: Mapped[int] = mapped_column(BigInteger, default=0)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    engagement_rate: Mapped[float] = mapped_column(Float, default=0)

    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    history: Mapped[list["PostSnapshot"]] = relationship(
        back_populates="post",
        order_by="PostSnapshot.id",
        lazy="selectin",
        passive_deletes=True,
    )

    @property
    def metrics(self) -> dict:
        return {
            "views": self.views or 0,
            "likes": self.likes or 0,
            "comments": self.comments or 0,
            "shares": self.shares or 0,
            "saves": self.saves or 0,
            "impressions": self.impressions or 0,
            "engagement_rate": self.engagement_rate or 0,
        }

    def __repr__(self) -> str:
        return f"<Post {self.id}: {self.platform} - {self.views} views>"


class PostSnapshot(Base):
    """Metric snapshot of a post, appended on every refresh that surfaces it."""

    __tablename__ = "post_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("posts.id", ondelete="CASCADE"),
        index=True,
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    views: Mapped[int] = mapped_column(BigInteger, default=0)
    likes: Mapped[int] = mapped_column(BigInteger, default=0)
    comments: Mapped[int] = mapped_column(BigInteger, default=0)
    shares: Mapped[int] = mapped_column(BigInteger, default=0)
    saves: Mapped[int] = mapped_column(BigInteger, default=0)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    engagement_rate: Mapped[float] = mapped_column(Float, default=0)

    post: Mapped[Post] = relationship(back_populates="history")

    def __repr__(self) -> str:
        return f"<PostSnapshot {self.post_id} @ {self.date}: {self.views} views>"
