"""
Platform capability table.

Declarative per-platform limits (PLATFORM_CAPABILITIES) are compiled once at
import into a typed lookup keyed by (platform, media kind, content type).
Media-level keys act as defaults; type-level keys override them.

A media kind mapped to None means the platform does not accept that kind
(e.g. TikTok images). Missing keys are a CapabilityTableError at load time,
never a surprise at request time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from app.models import ContentType, MediaKind, SocialPlatform
from app.services.errors import CapabilityTableError, UnknownPlatformError

logger = logging.getLogger(__name__)

MB = 1024 * 1024

CANONICAL_ASPECT_RATIOS: tuple[str, ...] = ("16:9", "9:16", "4:3", "3:4", "1:1", "4:5", "5:4", "21:9")

VIDEO_FORMATS_COMMON = ["mp4", "mov"]

PLATFORM_CAPABILITIES: dict[str, dict[str, dict[str, Any] | None]] = {
    "facebook": {
        "video": {
            "formats": ["mp4", "mov", "avi"],
            "max_size_mb": 4096,
            "min_duration_seconds": 1,
            "max_duration_seconds": 14400,  # 240 min
            "resolution": {"min_width": 120, "min_height": 120, "max_width": 1920, "max_height": 1920},
            "types": {
                "feed": {
                    "aspect_ratios": ["16:9", "4:5", "1:1", "9:16"],
                    "recommended_aspect_ratio": "16:9",
                },
                "reel": {
                    "aspect_ratio": "9:16",
                    "min_duration_seconds": 3,
                    "max_duration_seconds": 90,
                    "recommended_resolution": "1080x1920",
                },
                "story": {
                    "aspect_ratio": "9:16",
                    "min_duration_seconds": 1,
                    "max_duration_seconds": 60,
                    "recommended_resolution": "1080x1920",
                },
            },
        },
        "image": {
            "formats": ["jpg", "jpeg", "png"],
            "max_size_mb": 10,
            "resolution": {"min_width": 600},
            "types": {"feed": {"recommended_resolution": "1200x630"}},
        },
    },
    "instagram": {
        "video": {
            "formats": VIDEO_FORMATS_COMMON,
            "max_size_mb": 4096,
            "types": {
                "feed": {
                    "min_duration_seconds": 3,
                    "max_duration_seconds": 60,
                    "aspect_ratios": ["4:5", "1:1", "16:9"],
                    "recommended_aspect_ratio": "4:5",
                    "recommended_resolution": "1080x1350",
                },
                "reel": {
                    "min_duration_seconds": 3,
                    "max_duration_seconds": 90,
                    "aspect_ratio": "9:16",
                    "recommended_resolution": "1080x1920",
                },
                "story": {
                    "min_duration_seconds": 1,
                    "max_duration_seconds": 60,
                    "aspect_ratio": "9:16",
                    "recommended_resolution": "1080x1920",
                },
            },
        },
        "image": {
            "formats": ["jpg", "jpeg", "png"],
            "max_size_mb": 8,
            "types": {
                "feed": {
                    "aspect_ratios": ["1:1", "4:5", "16:9"],
                    "recommended_aspect_ratio": "1:1",
                    "recommended_resolution": "1080x1080",
                },
            },
        },
    },
    "tiktok": {
        "video": {
            "formats": ["mp4", "mov", "webm"],
            "max_size_mb": 4096,
            "min_duration_seconds": 3,
            "max_duration_seconds": 600,  # 10 min
            "resolution": {"min_width": 720, "min_height": 1280, "max_width": 4096, "max_height": 4096},
            "types": {
                "video": {"aspect_ratio": "9:16", "recommended_resolution": "1080x1920"},
            },
        },
        "image": None,
    },
    "youtube": {
        "video": {
            "formats": ["mp4", "mov", "avi", "wmv", "flv", "webm"],
            "max_size_mb": 256000,  # 256 GB
            "min_duration_seconds": 1,
            "max_duration_seconds": 43200,  # 12 h
            "types": {
                "standard": {
                    "aspect_ratios": ["16:9", "4:3", "21:9"],
                    "recommended_aspect_ratio": "16:9",
                    "recommended_resolution": "1920x1080",
                },
                "short": {
                    "max_duration_seconds": 60,
                    "aspect_ratio": "9:16",
                    "recommended_resolution": "1080x1920",
                },
            },
        },
        "image": None,
    },
    "twitter": {
        "video": {
            "formats": VIDEO_FORMATS_COMMON,
            "max_size_mb": 512,
            "min_duration_seconds": 0.5,
            "max_duration_seconds": 140,
            "resolution": {"min_width": 32, "min_height": 32, "max_width": 1920, "max_height": 1920},
            "types": {
                "tweet": {
                    "aspect_ratios": ["16:9", "1:1", "9:16"],
                    "recommended_aspect_ratio": "16:9",
                },
            },
        },
        "image": {
            "formats": ["jpg", "jpeg", "png", "gif", "webp"],
            "max_size_mb": 5,
            "types": {"tweet": {"recommended_resolution": "1200x675"}},
        },
    },
    "linkedin": {
        "video": {
            "formats": ["mp4", "mov", "avi"],
            "max_size_mb": 5120,
            "min_duration_seconds": 3,
            "max_duration_seconds": 600,
            "types": {
                "post": {
                    "aspect_ratios": ["16:9", "1:1", "9:16", "4:5"],
                    "recommended_aspect_ratio": "16:9",
                    "recommended_resolution": "1920x1080",
                },
            },
        },
        "image": {
            "formats": ["jpg", "jpeg", "png", "gif"],
            "max_size_mb": 10,
            "types": {"post": {"recommended_resolution": "1200x627"}},
        },
    },
}

_RULE_KEYS = {
    "formats",
    "max_size_mb",
    "min_duration_seconds",
    "max_duration_seconds",
    "aspect_ratio",
    "aspect_ratios",
    "recommended_aspect_ratio",
    "resolution",
    "recommended_resolution",
}
_RESOLUTION_KEYS = {"min_width", "min_height", "max_width", "max_height"}


@dataclass(frozen=True)
class ResolutionBounds:
    min_width: int | None = None
    min_height: int | None = None
    max_width: int | None = None
    max_height: int | None = None


@dataclass(frozen=True)
class CapabilityRule:
    """Constraint record for one (platform, media kind, content type)."""
    platform: SocialPlatform
    media_kind: MediaKind
    content_type: ContentType
    formats: frozenset[str]
    max_size_bytes: int | None = None
    min_duration_seconds: float | None = None
    max_duration_seconds: float | None = None
    aspect_ratio: str | None = None
    aspect_ratios: tuple[str, ...] = ()
    recommended_aspect_ratio: str | None = None
    resolution: ResolutionBounds | None = None
    recommended_resolution: str | None = None

    @property
    def preferred_aspect_ratio(self) -> str | None:
        """Single required ratio if declared, else the recommended one."""
        return self.aspect_ratio or self.recommended_aspect_ratio


def parse_platform(value: str | SocialPlatform) -> SocialPlatform:
    if isinstance(value, SocialPlatform):
        return value
    try:
        return SocialPlatform((value or "").strip().lower())
    except ValueError:
        raise UnknownPlatformError(str(value)) from None


def assert_exhaustive(mapping: Mapping[SocialPlatform, Any], name: str) -> None:
    """Fail at import if a per-platform dispatch table misses a platform."""
    missing = [p.value for p in SocialPlatform if p not in mapping]
    if missing:
        raise CapabilityTableError(f"{name} has no entry for platform(s): {', '.join(missing)}")


class CapabilityTable:
    """Typed, completeness-checked view over a declarative capability config."""

    def __init__(
        self,
        rules: dict[tuple[SocialPlatform, MediaKind, ContentType], CapabilityRule],
        available: dict[tuple[SocialPlatform, MediaKind], tuple[ContentType, ...]],
    ):
        self._rules = rules
        self._available = available

    @classmethod
    def from_config(cls, config: Mapping[str, Mapping[str, Mapping[str, Any] | None]]) -> "CapabilityTable":
        problems: list[str] = []
        rules: dict[tuple[SocialPlatform, MediaKind, ContentType], CapabilityRule] = {}
        available: dict[tuple[SocialPlatform, MediaKind], tuple[ContentType, ...]] = {}

        unknown = sorted(set(config) - {p.value for p in SocialPlatform})
        if unknown:
            problems.append(f"unknown platforms: {', '.join(unknown)}")

        for platform in SocialPlatform:
            platform_cfg = config.get(platform.value)
            if platform_cfg is None:
                problems.append(f"{platform.value}: missing platform entry")
                continue
            for kind in MediaKind:
                if kind.value not in platform_cfg:
                    problems.append(f"{platform.value}.{kind.value}: missing (use None if unsupported)")
                    continue
                kind_cfg = platform_cfg[kind.value]
                if kind_cfg is None:
                    available[(platform, kind)] = ()
                    continue
                types_cfg = kind_cfg.get("types") or {}
                if not types_cfg:
                    problems.append(f"{platform.value}.{kind.value}: no content types declared")
                    continue
                if kind == MediaKind.image and len(types_cfg) != 1:
                    problems.append(f"{platform.value}.image: exactly one image type expected")
                defaults = {k: v for k, v in kind_cfg.items() if k != "types"}
                type_order: list[ContentType] = []
                for type_name, type_cfg in types_cfg.items():
                    try:
                        content_type = ContentType(type_name)
                    except ValueError:
                        problems.append(f"{platform.value}.{kind.value}: unknown content type {type_name!r}")
                        continue
                    merged = {**defaults, **(type_cfg or {})}
                    where = f"{platform.value}.{kind.value}.{type_name}"
                    rule = _build_rule(platform, kind, content_type, merged, where, problems)
                    if rule is not None:
                        rules[(platform, kind, content_type)] = rule
                        type_order.append(content_type)
                available[(platform, kind)] = tuple(type_order)

        if problems:
            raise CapabilityTableError("Invalid capability table: " + "; ".join(problems))

        logger.debug(f"[capabilities] loaded {len(rules)} rules for {len(SocialPlatform)} platforms")
        return cls(rules, available)

    def find(
        self, platform: SocialPlatform, media_kind: MediaKind, content_type: ContentType | str
    ) -> CapabilityRule | None:
        try:
            content_type = ContentType(content_type)
        except ValueError:
            return None
        return self._rules.get((platform, media_kind, content_type))

    def available_types(self, platform: SocialPlatform, media_kind: MediaKind) -> list[ContentType]:
        return list(self._available.get((platform, media_kind), ()))

    def supports(self, platform: SocialPlatform, media_kind: MediaKind) -> bool:
        return bool(self._available.get((platform, media_kind)))

    def image_type(self, platform: SocialPlatform) -> ContentType | None:
        types = self._available.get((platform, MediaKind.image), ())
        return types[0] if types else None


def _build_rule(
    platform: SocialPlatform,
    kind: MediaKind,
    content_type: ContentType,
    cfg: Mapping[str, Any],
    where: str,
    problems: list[str],
) -> CapabilityRule | None:
    extra = set(cfg) - _RULE_KEYS
    if extra:
        problems.append(f"{where}: unknown keys {sorted(extra)}")
        return None

    formats = cfg.get("formats")
    if not formats:
        problems.append(f"{where}: formats required")
        return None

    ratio = cfg.get("aspect_ratio")
    ratios = tuple(cfg.get("aspect_ratios") or ())
    recommended = cfg.get("recommended_aspect_ratio")
    if ratio and ratios:
        problems.append(f"{where}: declare aspect_ratio or aspect_ratios, not both")
    for r in [ratio, recommended, *ratios]:
        if r and r not in CANONICAL_ASPECT_RATIOS:
            problems.append(f"{where}: non-canonical aspect ratio {r!r}")
    if recommended and ratios and recommended not in ratios:
        problems.append(f"{where}: recommended_aspect_ratio {recommended!r} not among aspect_ratios")

    min_d = cfg.get("min_duration_seconds")
    max_d = cfg.get("max_duration_seconds")
    if kind == MediaKind.image and (min_d is not None or max_d is not None):
        problems.append(f"{where}: duration bounds on an image type")
    if min_d is not None and max_d is not None and min_d > max_d:
        problems.append(f"{where}: min_duration_seconds > max_duration_seconds")

    resolution = None
    res_cfg = cfg.get("resolution")
    if res_cfg:
        bad = set(res_cfg) - _RESOLUTION_KEYS
        if bad:
            problems.append(f"{where}: unknown resolution keys {sorted(bad)}")
            return None
        resolution = ResolutionBounds(**res_cfg)

    max_size_mb = cfg.get("max_size_mb")
    return CapabilityRule(
        platform=platform,
        media_kind=kind,
        content_type=content_type,
        formats=frozenset(f.lower() for f in formats),
        max_size_bytes=int(max_size_mb * MB) if max_size_mb is not None else None,
        min_duration_seconds=min_d,
        max_duration_seconds=max_d,
        aspect_ratio=ratio,
        aspect_ratios=ratios,
        recommended_aspect_ratio=recommended,
        resolution=resolution,
        recommended_resolution=cfg.get("recommended_resolution"),
    )


CAPABILITIES = CapabilityTable.from_config(PLATFORM_CAPABILITIES)
