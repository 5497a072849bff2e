"""
Auto-configuration: pick the best content type per platform and build the
platform-specific publish settings for it.

Type selection is a first-match-wins rule list per platform. Order matters:
short-form types are checked before generic ones, so a vertical 10s clip on
Instagram is a Reel, not a Story.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from app.models import ContentType, MediaKind, SocialPlatform
from app.services.capabilities import CAPABILITIES, CapabilityTable, assert_exhaustive, parse_platform
from app.services.errors import ConfigurationError
from app.services.media_analyzer import MediaDescriptor
from app.services.platform_config import PlatformConfiguration

if TYPE_CHECKING:
    from app.services.content_validator import ValidationVerdict

logger = logging.getLogger(__name__)

VERTICAL = "9:16"
HORIZONTAL = "16:9"

REEL_MAX_SECONDS = 90
STORY_MAX_SECONDS = 15
SHORT_MAX_SECONDS = 60
FEED_SWEET_SPOT_SECONDS = 60


# ── Type selection ───────────────────────────────────────────

def _reel_story_or_feed(aspect_ratio: str | None, duration: float) -> ContentType:
    if aspect_ratio == VERTICAL and duration <= REEL_MAX_SECONDS:
        return ContentType.reel
    if duration <= STORY_MAX_SECONDS:
        return ContentType.story
    return ContentType.feed


def _short_or_standard(aspect_ratio: str | None, duration: float) -> ContentType:
    if aspect_ratio == VERTICAL and duration <= SHORT_MAX_SECONDS:
        return ContentType.short
    return ContentType.standard


TypeRule = Callable[[str | None, float], ContentType]

_VIDEO_TYPE_RULES: dict[SocialPlatform, TypeRule] = {
    SocialPlatform.instagram: _reel_story_or_feed,
    SocialPlatform.facebook: _reel_story_or_feed,
    SocialPlatform.youtube: _short_or_standard,
    SocialPlatform.tiktok: lambda aspect_ratio, duration: ContentType.video,
    SocialPlatform.twitter: lambda aspect_ratio, duration: ContentType.tweet,
    SocialPlatform.linkedin: lambda aspect_ratio, duration: ContentType.post,
}
assert_exhaustive(_VIDEO_TYPE_RULES, "video type rules")


def determine_optimal_type(
    platform: SocialPlatform | str,
    aspect_ratio: str | None,
    duration: float | None,
    width: int | None = None,
    height: int | None = None,
) -> ContentType:
    """Best video content type for a platform from aspect ratio and duration.

    width/height are accepted for future resolution-aware rules; none of the
    current rules need them.
    """
    platform = parse_platform(platform)
    return _VIDEO_TYPE_RULES[platform](aspect_ratio, float(duration or 0))


def optimal_type_for(
    platform: SocialPlatform | str,
    media: MediaDescriptor,
    table: CapabilityTable = CAPABILITIES,
) -> ContentType | None:
    """Video: heuristic table. Image: the platform's single image type (None if unsupported)."""
    platform = parse_platform(platform)
    if media.kind == MediaKind.image:
        return table.image_type(platform)
    return determine_optimal_type(platform, media.aspect_ratio, media.duration, media.width, media.height)


# ── Settings builders ────────────────────────────────────────

def _instagram_settings(content_type: ContentType, media: MediaDescriptor) -> dict[str, Any]:
    if content_type == ContentType.reel:
        return {"cover_frame_time": 1, "share_to_feed": True, "enable_comments": True}
    if content_type == ContentType.story:
        return {"duration": min(media.duration, STORY_MAX_SECONDS)}
    return {}


def _facebook_settings(content_type: ContentType, media: MediaDescriptor) -> dict[str, Any]:
    if content_type == ContentType.reel:
        return {"enable_comments": True, "allow_embedding": True}
    return {}


def _youtube_settings(content_type: ContentType, media: MediaDescriptor) -> dict[str, Any]:
    settings: dict[str, Any] = {"privacy": "public", "category": "Entertainment", "made_for_kids": False}
    if content_type != ContentType.short:
        settings["enable_comments"] = True
        settings["enable_ratings"] = True
    return settings


def _tiktok_settings(content_type: ContentType, media: MediaDescriptor) -> dict[str, Any]:
    return {
        "allow_comments": True,
        "allow_duet": True,
        "allow_stitch": True,
        "privacy_level": "public",
    }


def _no_extra_settings(content_type: ContentType, media: MediaDescriptor) -> dict[str, Any]:
    return {}


SettingsBuilder = Callable[[ContentType, MediaDescriptor], dict[str, Any]]

_SETTINGS_BUILDERS: dict[SocialPlatform, SettingsBuilder] = {
    SocialPlatform.instagram: _instagram_settings,
    SocialPlatform.facebook: _facebook_settings,
    SocialPlatform.youtube: _youtube_settings,
    SocialPlatform.tiktok: _tiktok_settings,
    SocialPlatform.twitter: _no_extra_settings,
    SocialPlatform.linkedin: _no_extra_settings,
}
assert_exhaustive(_SETTINGS_BUILDERS, "settings builders")

_SCALAR_TYPES = (str, int, float, bool, type(None))


def _validated(settings: dict[str, Any], platform: SocialPlatform) -> dict[str, Any]:
    for key, value in settings.items():
        if not isinstance(key, str) or not isinstance(value, _SCALAR_TYPES):
            raise ConfigurationError(
                f"{platform.value} settings builder produced a non-scalar entry {key!r}={value!r}"
            )
    return settings


def generate_optimal_settings(
    platform: SocialPlatform,
    content_type: ContentType,
    media: MediaDescriptor,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    settings: dict[str, Any] = {
        "auto_optimized": True,
        "optimization_timestamp": now.isoformat(),
    }
    settings.update(_SETTINGS_BUILDERS[platform](content_type, media))
    return _validated(settings, platform)


# ── Optimization ─────────────────────────────────────────────

def optimize_configuration(
    config: PlatformConfiguration,
    media: MediaDescriptor | None,
    verdicts: Mapping[ContentType, "ValidationVerdict"] | None = None,
    now: datetime | None = None,
    table: CapabilityTable = CAPABILITIES,
) -> PlatformConfiguration:
    """Return an optimized copy of ``config``.

    The heuristic type is adopted only when it is in ``available_types``.
    Compatibility fields always follow the chosen type: taken from
    ``verdicts`` when given, otherwise re-validated against ``table``.
    """
    if media is None or not media.is_video or config.type is None:
        return config

    optimal = determine_optimal_type(config.platform, media.aspect_ratio, media.duration, media.width, media.height)
    chosen = optimal if optimal in config.available_types else config.type
    if chosen != optimal:
        logger.debug(
            f"[auto-config] {config.platform.value}: optimal type {optimal.value} unavailable, keeping {chosen.value}"
        )

    verdict = (verdicts or {}).get(chosen)
    if verdict is None:
        from app.services.content_validator import ContentValidator

        verdict = ContentValidator(table).validate(media, config.platform, chosen)

    return replace(
        config,
        type=chosen,
        applied_settings=generate_optimal_settings(config.platform, chosen, media, now=now),
        is_compatible=verdict.is_compatible,
        incompatibility_reason="; ".join(verdict.errors) or None,
        warnings=list(verdict.warnings),
    )


def optimize_all(
    configs: Iterable[PlatformConfiguration],
    media: MediaDescriptor | None,
    table: CapabilityTable = CAPABILITIES,
) -> list[PlatformConfiguration]:
    return [optimize_configuration(c, media, table=table) for c in configs]


# ── Recommendations ──────────────────────────────────────────

def generate_recommendations(config: PlatformConfiguration, media: MediaDescriptor | None) -> list[str]:
    """Advisory hints when the current (possibly manual) type is suboptimal."""
    if media is None or not media.is_video:
        return []

    ratio = media.aspect_ratio
    duration = media.duration
    recommendations: list[str] = []

    if config.platform == SocialPlatform.instagram:
        if config.type == ContentType.feed and ratio == VERTICAL and duration <= REEL_MAX_SECONDS:
            recommendations.append("This video is ideal as a Reel rather than a Feed post")
        if config.type == ContentType.reel and duration > FEED_SWEET_SPOT_SECONDS:
            recommendations.append("Consider trimming to 60s for better reach")
    elif config.platform == SocialPlatform.youtube:
        if config.type == ContentType.standard and ratio == VERTICAL and duration <= SHORT_MAX_SECONDS:
            recommendations.append("This video is a perfect fit for a YouTube Short")
        if config.type == ContentType.short and ratio != VERTICAL:
            recommendations.append("Shorts work best in vertical format (9:16)")
    elif config.platform == SocialPlatform.facebook:
        if config.type != ContentType.reel and ratio == VERTICAL and duration <= REEL_MAX_SECONDS:
            recommendations.append("Consider publishing as a Reel for more reach")

    return recommendations


_SHORT_FORM_PLATFORMS = (SocialPlatform.instagram, SocialPlatform.tiktok, SocialPlatform.youtube)


def optimization_suggestions(media: MediaDescriptor | None, platforms: Iterable[SocialPlatform]) -> list[str]:
    """Preview-wide hints from media attributes and the requested platform set."""
    if media is None or not media.is_video:
        return []

    requested = list(dict.fromkeys(platforms))
    ratio = media.aspect_ratio
    duration = media.duration
    suggestions: list[str] = []

    if ratio == VERTICAL and duration <= REEL_MAX_SECONDS:
        ideal = [p.display_name for p in requested if p in _SHORT_FORM_PLATFORMS]
        if ideal:
            suggestions.append("This content is ideal for: " + ", ".join(ideal))

    if ratio == HORIZONTAL and duration > REEL_MAX_SECONDS:
        suggestions.append("Horizontal format is optimal for YouTube and Facebook")

    if ratio == VERTICAL and duration <= SHORT_MAX_SECONDS:
        suggestions.append("Perfect for Reels, Shorts and TikTok")

    if FEED_SWEET_SPOT_SECONDS < duration <= REEL_MAX_SECONDS and SocialPlatform.instagram in requested:
        suggestions.append("Consider trimming to 60s for better reach in the Instagram feed")

    return suggestions
