"""
Media analyzer — turns an uploaded file into a normalized MediaDescriptor.

Probing is delegated to ffprobe (images included: ffprobe reads them through
the image2 demuxer). Any failure raises MediaAnalysisError; a partially
filled descriptor is never returned.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import mimetypes
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from app.models import MediaKind
from app.services.capabilities import CANONICAL_ASPECT_RATIOS
from app.services.errors import MediaAnalysisError
from app.settings import get_settings

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {"mp4", "mov", "avi", "wmv", "flv", "webm", "mkv"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "bmp"}


def nearest_aspect_ratio(width: int, height: int) -> str:
    """Canonical ratio label closest to width/height.

    Distance is measured on log(ratio) so 9:16 and 16:9 are symmetric.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"dimensions must be positive, got {width}x{height}")
    target = math.log(width / height)

    def distance(label: str) -> float:
        w, h = (int(x) for x in label.split(":"))
        return abs(math.log(w / h) - target)

    return min(CANONICAL_ASPECT_RATIOS, key=distance)


@dataclass(frozen=True)
class MediaDescriptor:
    kind: MediaKind
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

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"width/height must be > 0, got {self.width}x{self.height}")
        if self.size_bytes < 0:
            raise ValueError("size_bytes must be >= 0")
        if self.kind == MediaKind.image:
            object.__setattr__(self, "duration_seconds", None)
        elif self.duration_seconds is not None and self.duration_seconds < 0:
            raise ValueError("duration_seconds must be >= 0")
        if self.extension:
            object.__setattr__(self, "extension", self.extension.lower().lstrip("."))

    @classmethod
    def build(
        cls,
        kind: MediaKind | str,
        width: int,
        height: int,
        size_bytes: int = 0,
        duration_seconds: float | None = None,
        **extra: Any,
    ) -> "MediaDescriptor":
        """Construct with the aspect ratio derived from the dimensions."""
        return cls(
            kind=MediaKind(kind),
            width=int(width),
            height=int(height),
            aspect_ratio=nearest_aspect_ratio(int(width), int(height)),
            size_bytes=int(size_bytes),
            duration_seconds=duration_seconds,
            **extra,
        )

    @property
    def is_video(self) -> bool:
        return self.kind == MediaKind.video

    @property
    def duration(self) -> float:
        """Duration for rule evaluation; 0 for images and unknown durations."""
        return self.duration_seconds or 0.0

    @property
    def resolution_label(self) -> str:
        return f"{self.width}x{self.height}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["type"] = self.kind.value
        return data


def detect_media_kind(path: Path, mime_type: str | None = None) -> MediaKind:
    mime_type = mime_type or mimetypes.guess_type(path.name)[0] or ""
    if mime_type.startswith("video/"):
        return MediaKind.video
    if mime_type.startswith("image/"):
        return MediaKind.image
    ext = path.suffix.lower().lstrip(".")
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.video
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.image
    raise MediaAnalysisError(f"Unsupported media type for {path.name} (mime={mime_type or 'unknown'})")


def resolve_media_path(file_path: str) -> Path:
    """Absolute paths are used as-is; relative ones live under MEDIA_ROOT."""
    p = Path(file_path)
    if p.is_absolute():
        return p
    return Path(get_settings().media_root) / p


def _parse_fps(value: str | None) -> float | None:
    if not value:
        return None
    if "/" in value:
        num, den = value.split("/", 1)
        try:
            return float(num) / float(den) if float(den) else None
        except ValueError:
            return None
    try:
        return float(value)
    except ValueError:
        return None


def descriptor_from_probe(path: Path, probe_data: dict, size_bytes: int, kind: MediaKind) -> MediaDescriptor:
    """Extract the descriptor fields from ffprobe JSON output."""
    stream = next(
        (s for s in probe_data.get("streams", []) if s.get("codec_type") == "video"),
        None,
    )
    if not stream:
        raise MediaAnalysisError(f"No video/image stream found in {path.name}")

    width = int(stream.get("width") or 0)
    height = int(stream.get("height") or 0)
    if width <= 0 or height <= 0:
        raise MediaAnalysisError(f"Could not read dimensions of {path.name}")

    fmt = probe_data.get("format", {}) or {}
    duration = None
    bitrate = None
    fps = None
    if kind == MediaKind.video:
        raw_duration = stream.get("duration") or fmt.get("duration")
        if raw_duration is None:
            raise MediaAnalysisError(f"Could not read duration of {path.name}")
        duration = float(raw_duration)
        bitrate = int(fmt["bit_rate"]) if fmt.get("bit_rate") else None
        fps = _parse_fps(stream.get("r_frame_rate"))

    return MediaDescriptor.build(
        kind,
        width,
        height,
        size_bytes=size_bytes,
        duration_seconds=duration,
        extension=path.suffix,
        filename=path.name,
        mime_type=mimetypes.guess_type(path.name)[0],
        fps=fps,
        bitrate=bitrate,
    )


class MediaAnalyzer:
    """ffprobe-backed analyzer."""

    def __init__(self, ffprobe_bin: str | None = None, timeout_sec: int | None = None):
        settings = get_settings()
        self.ffprobe_bin = ffprobe_bin or settings.ffprobe_bin
        self.timeout_sec = timeout_sec or settings.probe_timeout_sec

    async def analyze(self, file_path: str | Path) -> MediaDescriptor:
        path = resolve_media_path(str(file_path))
        if not path.exists():
            logger.warning(f"[analyzer] media file not found: {path}")
            raise MediaAnalysisError(f"Media file not found: {path.name}")

        kind = detect_media_kind(path)
        size_bytes = path.stat().st_size
        probe_data = await self._probe(path)
        descriptor = descriptor_from_probe(path, probe_data, size_bytes, kind)
        logger.info(
            f"[analyzer] {path.name}: {descriptor.kind.value} {descriptor.resolution_label} "
            f"{descriptor.aspect_ratio} {descriptor.duration_seconds}s {size_bytes}B"
        )
        return descriptor

    async def _probe(self, path: Path) -> dict:
        cmd = [
            self.ffprobe_bin, "-v", "error",
            "-print_format", "json",
            "-show_streams", "-show_format",
            str(path),
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise MediaAnalysisError(f"ffprobe not available: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise MediaAnalysisError(f"ffprobe timed out after {self.timeout_sec}s on {path.name}") from None

        if proc.returncode != 0:
            err = stderr.decode(errors="ignore")[-400:] if stderr else ""
            logger.warning(f"[analyzer] ffprobe failed ({proc.returncode}) on {path.name}: {err}")
            raise MediaAnalysisError(f"ffprobe failed with code {proc.returncode} on {path.name}")

        try:
            return json.loads(stdout.decode(errors="ignore") or "{}")
        except json.JSONDecodeError as exc:
            raise MediaAnalysisError(f"ffprobe returned invalid JSON for {path.name}") from exc
