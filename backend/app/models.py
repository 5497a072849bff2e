from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class SocialPlatform(str, Enum):
    instagram = "instagram"
    tiktok = "tiktok"
    youtube = "youtube"
    facebook = "facebook"
    twitter = "twitter"
    linkedin = "linkedin"

    @property
    def display_name(self) -> str:
        return _PLATFORM_DISPLAY_NAMES[self]


_PLATFORM_DISPLAY_NAMES = {
    SocialPlatform.instagram: "Instagram",
    SocialPlatform.tiktok: "TikTok",
    SocialPlatform.youtube: "YouTube",
    SocialPlatform.facebook: "Facebook",
    SocialPlatform.twitter: "Twitter",
    SocialPlatform.linkedin: "LinkedIn",
}


class MediaKind(str, Enum):
    image = "image"
    video = "video"


class ContentType(str, Enum):
    feed = "feed"
    reel = "reel"
    story = "story"
    short = "short"
    standard = "standard"
    video = "video"
    tweet = "tweet"
    post = "post"


class PublicationStatus(str, Enum):
    draft = "draft"
    scheduled = "scheduled"
    publishing = "publishing"
    published = "published"
    partially_published = "partially_published"
    failed = "failed"


class PublishStatus(str, Enum):
    pending = "pending"
    published = "published"
    failed = "failed"
    cancelled = "cancelled"


class SocialAccount(Base):
    __tablename__ = "social_accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(sa.Integer(), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    account_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    access_token: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    post_logs: Mapped[list["SocialPostLog"]] = relationship(
        back_populates="social_account", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def platform_enum(self) -> SocialPlatform:
        from app.services.capabilities import parse_platform

        return parse_platform(self.platform)

    @property
    def display_name(self) -> str:
        return self.account_name or self.platform_enum.display_name


class Publication(Base):
    __tablename__ = "publications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(sa.Integer(), nullable=False, index=True)
    title: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    hashtags: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=PublicationStatus.draft.value)
    scheduled_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)
    published_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    # account id (as string) -> {"type": ..., "settings": {...}, "updated_at": iso}
    platform_settings: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    media_files: Mapped[list["MediaFile"]] = relationship(
        back_populates="publication",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MediaFile.position",
    )
    post_logs: Mapped[list["SocialPostLog"]] = relationship(
        back_populates="publication", cascade="all, delete-orphan", passive_deletes=True
    )

    def account_settings(self, account_id: int) -> dict[str, Any] | None:
        return (self.platform_settings or {}).get(str(account_id))

    def merge_account_settings(self, account_id: int, patch: dict[str, Any]) -> dict[str, Any]:
        """Replace the stored entry for one account, leaving every other account as-is.

        A fresh dict is assigned so the JSON column is flagged dirty.
        """
        merged = dict(self.platform_settings or {})
        merged[str(account_id)] = {
            **patch,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self.platform_settings = merged
        return merged[str(account_id)]


class MediaFile(Base):
    __tablename__ = "media_files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    publication_id: Mapped[int] = mapped_column(
        sa.ForeignKey("publications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_path: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    file_name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    thumbnail_path: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    position: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    publication: Mapped[Publication] = relationship(back_populates="media_files")


class SocialPostLog(Base):
    """One publish attempt of one media file to one account.

    Created as ``pending`` before the provider call; retries reuse the row.
    """
    __tablename__ = "social_post_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    publication_id: Mapped[int] = mapped_column(
        sa.ForeignKey("publications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    social_account_id: Mapped[int] = mapped_column(
        sa.ForeignKey("social_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    media_file_id: Mapped[int | None] = mapped_column(
        sa.ForeignKey("media_files.id", ondelete="SET NULL"), nullable=True
    )
    platform: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=PublishStatus.pending.value)
    content: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    retry_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0", default=0)
    last_retry_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    platform_post_id: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    post_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    response_json: Mapped[dict | None] = mapped_column(sa.JSON(), nullable=True)
    error_message: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    publication: Mapped[Publication] = relationship(back_populates="post_logs")
    social_account: Mapped[SocialAccount] = relationship(back_populates="post_logs")
    media_file: Mapped[MediaFile | None] = relationship()

    def can_retry(self, max_retries: int = 3) -> bool:
        return self.status == PublishStatus.failed.value and self.retry_count < max_retries
