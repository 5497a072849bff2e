from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .models import ContentType, MediaKind, PublicationStatus, PublishStatus, SocialPlatform


class PreviewRequest(BaseModel):
    platform_ids: list[int] = Field(min_length=1)
    auto_optimize: bool = False

    @field_validator("platform_ids")
    @classmethod
    def dedupe_ids(cls, value: list[int]) -> list[int]:
        return list(dict.fromkeys(value))


class AutoOptimizeRequest(BaseModel):
    platform_ids: list[int] = Field(min_length=1)


class PlatformConfigUpdate(BaseModel):
    type: ContentType
    custom_settings: dict[str, Any] = Field(default_factory=dict)


class PublishRequest(BaseModel):
    # None publishes to every account with a saved configuration
    platform_ids: list[int] | None = None
    timeout_sec: float | None = Field(default=None, gt=0)


class MediaInfoRead(BaseModel):
    kind: MediaKind
    type: MediaKind
    width: int
    height: int
    aspect_ratio: str
    size_bytes: int
    duration_seconds: float | None = None
    extension: str | None = None
    filename: str | None = None
    mime_type: str | None = None
    fps: float | None = None
    bitrate: int | None = None


class PlatformConfigRead(BaseModel):
    account_id: int
    platform: SocialPlatform
    account_name: str
    type: ContentType | None = None
    is_compatible: bool
    incompatibility_reason: str | None = None
    warnings: list[str] = []
    recommendations: list[str] = []
    applied_settings: dict[str, Any] = {}
    thumbnail_url: str | None = None
    can_change_type: bool = False
    available_types: list[ContentType] = []
    quality: dict[str, Any] = {}
    format: dict[str, Any] = {}


class PublicationPreviewRead(BaseModel):
    publication_id: int
    media_info: MediaInfoRead | None = None
    detected_type: ContentType | None = None
    main_thumbnail: str | None = None
    platform_configurations: list[PlatformConfigRead] = []
    optimization_suggestions: list[str] = []
    global_warnings: list[str] = []


class SavedPlatformConfigRead(BaseModel):
    publication_id: int
    configurations: dict[str, Any] = {}


class SocialPostLogRead(BaseModel):
    id: int
    publication_id: int
    social_account_id: int
    media_file_id: int | None = None
    platform: SocialPlatform
    status: PublishStatus
    retry_count: int = 0
    last_retry_at: datetime | None = None
    platform_post_id: str | None = None
    post_url: str | None = None
    error_message: str | None = None
    published_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PublishSummaryRead(BaseModel):
    publication_id: int
    status: PublicationStatus
    published: int
    failed: int
    log_ids: list[int] = []
    queued: bool = False
