"""
Content validator — checks a MediaDescriptor against platform capability rules.

Every hard check runs even after an earlier one failed, so callers see all
violations at once. Aspect-ratio mismatches are warnings only: platforms
crop/pad them, and they never change compatibility.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from app.models import ContentType, SocialPlatform
from app.services.auto_configuration import optimal_type_for
from app.services.capabilities import CAPABILITIES, CapabilityRule, CapabilityTable, MB, parse_platform
from app.services.media_analyzer import MediaDescriptor

logger = logging.getLogger(__name__)


@dataclass
class ValidationVerdict:
    platform: SocialPlatform
    content_type: ContentType | str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_compatible(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform.value,
            "content_type": getattr(self.content_type, "value", self.content_type),
            "is_compatible": self.is_compatible,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class ContentValidationResult:
    detected_type: ContentType | None
    platform_results: dict[SocialPlatform, dict[ContentType, ValidationVerdict]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True when every platform has at least one compatible type."""
        return all(
            any(v.is_compatible for v in verdicts.values())
            for verdicts in self.platform_results.values()
        )

    def verdicts_for(self, platform: SocialPlatform) -> dict[ContentType, ValidationVerdict]:
        return self.platform_results.get(platform, {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "detected_type": self.detected_type.value if self.detected_type else None,
            "platform_results": {
                platform.value: {ct.value: v.to_dict() for ct, v in verdicts.items()}
                for platform, verdicts in self.platform_results.items()
            },
            "warnings": list(self.warnings),
        }


def _fmt_seconds(value: float) -> str:
    return f"{value:g}s"


def _fmt_mb(size_bytes: float) -> str:
    return f"{size_bytes / MB:.2f} MB".replace(".00 MB", " MB")


class ContentValidator:
    def __init__(self, table: CapabilityTable = CAPABILITIES):
        self.table = table

    def validate(
        self,
        media: MediaDescriptor,
        platform: SocialPlatform | str,
        content_type: ContentType | str,
    ) -> ValidationVerdict:
        platform = parse_platform(platform)
        rule = self.table.find(platform, media.kind, content_type)
        if rule is None:
            label = getattr(content_type, "value", content_type)
            return ValidationVerdict(
                platform=platform,
                content_type=content_type,
                errors=[
                    f"Content type '{label}' not supported for {platform.display_name} "
                    f"{media.kind.value} media"
                ],
            )
        return self.validate_against_rule(media, rule)

    def validate_against_rule(self, media: MediaDescriptor, rule: CapabilityRule) -> ValidationVerdict:
        verdict = ValidationVerdict(platform=rule.platform, content_type=rule.content_type)
        errors = verdict.errors
        label = rule.content_type.value

        if media.extension and media.extension not in rule.formats:
            errors.append(
                f"Format '{media.extension}' not supported (allowed: {', '.join(sorted(rule.formats))})"
            )

        if rule.max_size_bytes is not None and media.size_bytes > rule.max_size_bytes:
            errors.append(
                f"File size {_fmt_mb(media.size_bytes)} exceeds the {_fmt_mb(rule.max_size_bytes)} limit"
            )

        if media.is_video:
            self._check_duration(media, rule, verdict)

        self._check_resolution(media, rule, errors)

        preferred = rule.preferred_aspect_ratio
        if preferred and media.aspect_ratio != preferred:
            if rule.aspect_ratio:
                verdict.warnings.append(
                    f"Aspect ratio {media.aspect_ratio} differs from the required {rule.aspect_ratio} "
                    f"for {label}; the platform may crop or pad it"
                )
            else:
                verdict.warnings.append(
                    f"Aspect ratio {media.aspect_ratio} is not the recommended {preferred} for {label}"
                )

        return verdict

    def _check_duration(self, media: MediaDescriptor, rule: CapabilityRule, verdict: ValidationVerdict) -> None:
        label = rule.content_type.value
        if media.duration_seconds is None:
            verdict.warnings.append("Video duration unknown; duration limits not checked")
            return
        duration = media.duration_seconds
        if rule.max_duration_seconds is not None and duration > rule.max_duration_seconds:
            verdict.errors.append(
                f"Duration {_fmt_seconds(duration)} exceeds the maximum of "
                f"{_fmt_seconds(rule.max_duration_seconds)} for {label}"
            )
        if rule.min_duration_seconds is not None and duration < rule.min_duration_seconds:
            verdict.errors.append(
                f"Duration {_fmt_seconds(duration)} is below the minimum of "
                f"{_fmt_seconds(rule.min_duration_seconds)} for {label}"
            )

    def _check_resolution(self, media: MediaDescriptor, rule: CapabilityRule, errors: list[str]) -> None:
        bounds = rule.resolution
        if bounds is None:
            return
        if bounds.min_width is not None and media.width < bounds.min_width:
            errors.append(f"Width {media.width}px is below the minimum of {bounds.min_width}px")
        if bounds.max_width is not None and media.width > bounds.max_width:
            errors.append(f"Width {media.width}px exceeds the maximum of {bounds.max_width}px")
        if bounds.min_height is not None and media.height < bounds.min_height:
            errors.append(f"Height {media.height}px is below the minimum of {bounds.min_height}px")
        if bounds.max_height is not None and media.height > bounds.max_height:
            errors.append(f"Height {media.height}px exceeds the maximum of {bounds.max_height}px")

    def validate_publication(
        self,
        media: MediaDescriptor,
        platforms: Iterable[SocialPlatform | str],
    ) -> ContentValidationResult:
        """Validate every available content type on every requested platform.

        detected_type is the first platform's heuristic pick and is only a
        display hint; per-platform selection never reads it.
        """
        requested = list(dict.fromkeys(parse_platform(p) for p in platforms))
        result = ContentValidationResult(
            detected_type=optimal_type_for(requested[0], media, self.table) if requested else None,
        )

        for platform in requested:
            if not self.table.supports(platform, media.kind):
                result.warnings.append(f"{platform.display_name} does not accept {media.kind.value} media")
            types = self.table.available_types(platform, media.kind)
            result.platform_results[platform] = {
                content_type: self.validate(media, platform, content_type) for content_type in types
            }

        logger.debug(
            f"[validator] {media.kind.value} {media.aspect_ratio} against "
            f"{[p.value for p in requested]}: valid={result.is_valid}"
        )
        return result


content_validator = ContentValidator()
