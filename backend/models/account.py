"""Tracked creator account and its append-only stats history."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base, JSONDocument


class Account(Base):
    """One creator profile on one platform.

    Identified by (platform, provider_account_id). The stats columns hold the
    latest snapshot; every refresh also appends one AccountSnapshot row.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("platform", "provider_account_id", name="uix_accounts_platform_provider"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    platform: Mapped[str] = mapped_column(String(50), index=True)
    provider_account_id: Mapped[str] = mapped_column(String(255))
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    profile_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Current stats snapshot
    followers: Mapped[int] = mapped_column(BigInteger, default=0)
    total_views: Mapped[int] = mapped_column(BigInteger, default=0)
    total_likes: Mapped[int] = mapped_column(BigInteger, default=0)
    total_comments: Mapped[int] = mapped_column(BigInteger, default=0)
    total_shares: Mapped[int] = mapped_column(BigInteger, default=0)
    total_impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    engagement_rate: Mapped[float] = mapped_column(Float, default=0)

    # Provider-specific extras (bio, verification, stored identifiers)
    platform_metadata: Mapped[Optional[dict]] = mapped_column(JSONDocument, nullable=True)

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

    history: Mapped[list["AccountSnapshot"]] = relationship(
        back_populates="account",
        order_by="AccountSnapshot.id",
        lazy="selectin",
        passive_deletes=True,
    )

    @property
    def stats(self) -> dict:
        return {
            "followers": self.followers or 0,
            "total_views": self.total_views or 0,
            "total_likes": self.total_likes or 0,
            "total_comments": self.total_comments or 0,
            "total_shares": self.total_shares or 0,
            "total_impressions": self.total_impressions or 0,
            "engagement_rate": self.engagement_rate or 0,
        }

    def __repr__(self) -> str:
        return f"<Account {self.platform}:{self.provider_account_id} @{self.username}>"


class AccountSnapshot(Base):
    """Point-in-time copy of an account's stats.

    Append-only. One row per refresh, never updated or reordered.
    """

    __tablename__ = "account_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        index=True,
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    followers: Mapped[int] = mapped_column(BigInteger, default=0)
    total_views: Mapped[int] = mapped_column(BigInteger, default=0)
    total_likes: Mapped[int] = mapped_column(BigInteger, default=0)
    total_comments: Mapped[int] = mapped_column(BigInteger, default=0)
    total_shares: Mapped[int] = mapped_column(BigInteger, default=0)
    total_impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    engagement_rate: Mapped[float] = mapped_column(Float, default=0)

    account: Mapped[Account] = relationship(back_populates="history")

    def __repr__(self) -> str:
        return f"<AccountSnapshot {self.account_id} @ {self.date}: {self.followers} followers>"
