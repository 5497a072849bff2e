"""
Per-account publish plan (PlatformConfiguration) and the preview aggregate.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from app.models import ContentType, SocialPlatform

if TYPE_CHECKING:
    from app.services.content_validator import ValidationVerdict
    from app.services.media_analyzer import MediaDescriptor


def build_quality_info(media: MediaDescriptor | None) -> dict[str, Any]:
    if media is None:
        return {}
    return {
        "width": media.width,
        "height": media.height,
        "resolution": media.resolution_label,
        "fps": media.fps,
        "bitrate": media.bitrate,
    }


def build_format_info(media: MediaDescriptor | None) -> dict[str, Any]:
    if media is None:
        return {}
    return {
        "extension": media.extension,
        "aspect_ratio": media.aspect_ratio,
        "duration_seconds": media.duration_seconds,
        "size_bytes": media.size_bytes,
    }


@dataclass
class PlatformConfiguration:
    account_id: int
    platform: SocialPlatform
    account_name: str
    type: ContentType | None
    is_compatible: bool
    incompatibility_reason: str | None = None
    warnings: list[str] = field(default_factory=list)
    # advisory hints for a suboptimal type; never part of the verdict
    recommendations: list[str] = field(default_factory=list)
    applied_settings: dict[str, Any] = field(default_factory=dict)
    thumbnail_url: str | None = None
    available_types: list[ContentType] = field(default_factory=list)
    quality: dict[str, Any] = field(default_factory=dict)
    format: dict[str, Any] = field(default_factory=dict)

    @property
    def can_change_type(self) -> bool:
        return len(self.available_types) > 1

    @classmethod
    def from_verdict(
        cls,
        *,
        account_id: int,
        platform: SocialPlatform,
        account_name: str,
        content_type: ContentType,
        verdict: ValidationVerdict,
        media: MediaDescriptor,
        available_types: list[ContentType],
        applied_settings: dict[str, Any] | None = None,
    ) -> "PlatformConfiguration":
        return cls(
            account_id=account_id,
            platform=platform,
            account_name=account_name,
            type=content_type,
            is_compatible=verdict.is_compatible,
            incompatibility_reason="; ".join(verdict.errors) or None,
            warnings=list(verdict.warnings),
            applied_settings=dict(applied_settings or {}),
            available_types=list(available_types),
            quality=build_quality_info(media),
            format=build_format_info(media),
        )

    @classmethod
    def unavailable(
        cls,
        *,
        account_id: int,
        platform: SocialPlatform,
        account_name: str,
        reason: str,
        media: MediaDescriptor | None = None,
    ) -> "PlatformConfiguration":
        """Configuration for an account where no content type can be evaluated."""
        return cls(
            account_id=account_id,
            platform=platform,
            account_name=account_name,
            type=None,
            is_compatible=False,
            incompatibility_reason=reason,
            quality=build_quality_info(media),
            format=build_format_info(media),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "platform": self.platform.value,
            "account_name": self.account_name,
            "type": self.type.value if self.type else None,
            "is_compatible": self.is_compatible,
            "incompatibility_reason": self.incompatibility_reason,
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "applied_settings": dict(self.applied_settings),
            "thumbnail_url": self.thumbnail_url,
            "can_change_type": self.can_change_type,
            "available_types": [t.value for t in self.available_types],
            "quality": dict(self.quality),
            "format": dict(self.format),
        }


@dataclass
class PublicationPreview:
    publication_id: int
    media_info: MediaDescriptor | None
    detected_type: ContentType | None = None
    main_thumbnail: str | None = None
    platform_configurations: list[PlatformConfiguration] = field(default_factory=list)
    optimization_suggestions: list[str] = field(default_factory=list)
    global_warnings: list[str] = field(default_factory=list)

    def add_platform_configuration(self, config: PlatformConfiguration) -> None:
        self.platform_configurations.append(config)

    def to_dict(self) -> dict[str, Any]:
        return {
            "publication_id": self.publication_id,
            "media_info": self.media_info.to_dict() if self.media_info else None,
            "detected_type": self.detected_type.value if self.detected_type else None,
            "main_thumbnail": self.main_thumbnail,
            "platform_configurations": [c.to_dict() for c in self.platform_configurations],
            "optimization_suggestions": list(self.optimization_suggestions),
            "global_warnings": list(self.global_warnings),
        }
