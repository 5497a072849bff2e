"""
Preview aggregator — one PlatformConfiguration per target account.

Flow:
  1. analyze the publication's first media file (ffprobe)
  2. validate every available content type for every requested platform
  3. pick a type per account (saved manual choice, else the heuristic)
  4. optionally auto-optimize
  5. thumbnails + global suggestions

A preview never partially fails: collaborator problems (no media, probe
failure, ffmpeg failure) end up as warnings / null fields.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models import ContentType, MediaFile, MediaKind, Publication, SocialAccount
from app.services.auto_configuration import (
    generate_recommendations,
    optimal_type_for,
    optimization_suggestions,
    optimize_configuration,
)
from app.services.capabilities import CAPABILITIES, CapabilityTable, parse_platform
from app.services.content_validator import ContentValidationResult, ContentValidator
from app.services.errors import (
    InvalidUserSelectionError,
    MediaAnalysisError,
    MediaUnavailableError,
    PublicationNotFoundError,
    ThumbnailError,
    UnknownAccountError,
)
from app.services.media_analyzer import MediaAnalyzer, MediaDescriptor, detect_media_kind, resolve_media_path
from app.services.platform_config import PlatformConfiguration, PublicationPreview
from app.settings import get_settings

logger = logging.getLogger(__name__)

NO_MEDIA_WARNING = "No media files attached"
THUMBNAIL_AT_SECOND = 1


# ── Thumbnails ───────────────────────────────────────────────

def media_url(file_path: str) -> str:
    """Public URL for a path stored relative to MEDIA_ROOT."""
    settings = get_settings()
    path = Path(file_path)
    root = Path(settings.media_root)
    if path.is_absolute():
        try:
            path = path.relative_to(root)
        except ValueError:
            return str(path)
    return f"{settings.media_base_url.rstrip('/')}/{path.as_posix()}"


class Thumbnailer:
    """Extracts a single JPEG frame with ffmpeg into MEDIA_ROOT/<thumbnails_subdir>."""

    def __init__(self, ffmpeg_bin: str | None = None, timeout_sec: int | None = None):
        settings = get_settings()
        self.ffmpeg_bin = ffmpeg_bin or settings.ffmpeg_bin
        self.timeout_sec = timeout_sec or settings.probe_timeout_sec
        self.output_dir = Path(settings.media_root) / settings.thumbnails_subdir

    async def extract_frame(self, video_path: Path, at_second: float = THUMBNAIL_AT_SECOND) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        thumb_path = self.output_dir / f"{video_path.stem}.jpg"
        cmd = [
            self.ffmpeg_bin, "-y",
            "-ss", str(at_second),
            "-i", str(video_path),
            "-frames:v", "1",
            "-q:v", "2",
            str(thumb_path),
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ThumbnailError(f"ffmpeg not available: {exc}") from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ThumbnailError(f"ffmpeg timed out on {video_path.name}") from None

        if proc.returncode != 0 or not thumb_path.exists():
            err = stderr.decode(errors="ignore")[-400:] if stderr else ""
            raise ThumbnailError(f"ffmpeg failed with code {proc.returncode} on {video_path.name}: {err}")
        return thumb_path


# ── Service ──────────────────────────────────────────────────

class PreviewService:
    def __init__(
        self,
        analyzer: MediaAnalyzer | None = None,
        thumbnailer: Thumbnailer | None = None,
        table: CapabilityTable = CAPABILITIES,
    ):
        self.analyzer = analyzer or MediaAnalyzer()
        self.thumbnailer = thumbnailer or Thumbnailer()
        self.table = table
        self.validator = ContentValidator(table)

    # -- building blocks (no I/O) --

    def build_configuration(
        self,
        account: SocialAccount,
        media: MediaDescriptor,
        validation: ContentValidationResult,
        saved: dict[str, Any] | None = None,
        auto_optimize: bool = False,
    ) -> PlatformConfiguration:
        platform = parse_platform(account.platform)
        verdicts = validation.verdicts_for(platform)
        available = self.table.available_types(platform, media.kind)
        if not available:
            return PlatformConfiguration.unavailable(
                account_id=account.id,
                platform=platform,
                account_name=account.display_name,
                reason=f"{platform.display_name} does not accept {media.kind.value} media",
                media=media,
            )

        saved = saved or {}
        saved_type = saved.get("type")
        if saved_type in {t.value for t in available}:
            content_type = ContentType(saved_type)
        else:
            content_type = optimal_type_for(platform, media, self.table)
            if content_type not in available:
                content_type = available[0]

        config = PlatformConfiguration.from_verdict(
            account_id=account.id,
            platform=platform,
            account_name=account.display_name,
            content_type=content_type,
            verdict=verdicts[content_type],
            media=media,
            available_types=available,
            applied_settings=saved.get("settings"),
        )
        if auto_optimize:
            config = optimize_configuration(config, media, verdicts)
        config.recommendations = generate_recommendations(config, media)
        return config

    def generate_preview(
        self,
        publication_id: int,
        media: MediaDescriptor | None,
        accounts: Sequence[SocialAccount],
        auto_optimize: bool = False,
        *,
        saved_settings: dict[str, Any] | None = None,
        main_thumbnail: str | None = None,
        media_error: str | None = None,
    ) -> PublicationPreview:
        """Assemble the preview from an already analyzed media descriptor.

        ``media`` is None when the publication has no media or analysis
        failed; ``media_error`` then carries the analyzer's message.
        """
        saved_settings = saved_settings or {}
        platforms = [parse_platform(a.platform) for a in accounts]

        if media is None:
            reason = media_error or NO_MEDIA_WARNING
            preview = PublicationPreview(publication_id=publication_id, media_info=None)
            preview.global_warnings.append(reason if media_error is None else f"Media analysis failed: {reason}")
            for account, platform in zip(accounts, platforms):
                preview.add_platform_configuration(
                    PlatformConfiguration.unavailable(
                        account_id=account.id,
                        platform=platform,
                        account_name=account.display_name,
                        reason=reason,
                    )
                )
            return preview

        validation = self.validator.validate_publication(media, platforms)
        preview = PublicationPreview(
            publication_id=publication_id,
            media_info=media,
            detected_type=validation.detected_type,
            main_thumbnail=main_thumbnail,
            global_warnings=list(validation.warnings),
        )
        for account in accounts:
            config = self.build_configuration(
                account,
                media,
                validation,
                saved=saved_settings.get(str(account.id)),
                auto_optimize=auto_optimize,
            )
            config.thumbnail_url = main_thumbnail
            preview.add_platform_configuration(config)

        preview.optimization_suggestions = optimization_suggestions(media, platforms)
        return preview

    # -- persistence-backed operations --

    async def preview_publication(
        self,
        session: AsyncSession,
        publication_id: int,
        account_ids: Iterable[int],
        auto_optimize: bool = False,
    ) -> PublicationPreview:
        publication = await load_publication(session, publication_id)
        accounts = await load_workspace_accounts(session, publication.workspace_id, account_ids)

        media_file = first_media_file(publication)
        media = None
        media_error = None
        main_thumbnail = None
        if media_file is not None:
            try:
                media = await self.analyzer.analyze(media_file.file_path)
            except MediaAnalysisError as exc:
                logger.warning(f"[preview] publication {publication_id}: media analysis failed: {exc}")
                media_error = str(exc)
            main_thumbnail = await self.main_thumbnail(media_file)

        preview = self.generate_preview(
            publication_id,
            media,
            accounts,
            auto_optimize,
            saved_settings=publication.platform_settings,
            main_thumbnail=main_thumbnail,
            media_error=media_error,
        )
        if media is None:
            preview.main_thumbnail = main_thumbnail
        logger.info(
            f"[preview] publication {publication_id}: {len(preview.platform_configurations)} configs, "
            f"auto_optimize={auto_optimize}, warnings={len(preview.global_warnings)}"
        )
        return preview

    async def auto_optimize_publication(
        self,
        session: AsyncSession,
        publication_id: int,
        account_ids: Iterable[int],
    ) -> PublicationPreview:
        """Optimize every account and persist the resulting type + settings."""
        preview = await self.preview_publication(session, publication_id, account_ids, auto_optimize=True)
        if preview.media_info is None:
            return preview

        publication = await load_publication(session, publication_id)
        for config in preview.platform_configurations:
            if config.type is None:
                continue
            publication.merge_account_settings(
                config.account_id,
                {"type": config.type.value, "settings": dict(config.applied_settings)},
            )
        await session.commit()
        return preview

    async def update_platform_configuration(
        self,
        session: AsyncSession,
        publication_id: int,
        account_id: int,
        requested_type: str,
        custom_settings: dict[str, Any] | None = None,
    ) -> PlatformConfiguration:
        publication = await load_publication(session, publication_id)
        (account,) = await load_workspace_accounts(session, publication.workspace_id, [account_id])
        platform = parse_platform(account.platform)

        media_file = first_media_file(publication)
        if media_file is None:
            raise MediaUnavailableError(NO_MEDIA_WARNING)
        media = await self.analyzer.analyze(media_file.file_path)

        available = self.table.available_types(platform, media.kind)
        if requested_type not in {t.value for t in available}:
            raise InvalidUserSelectionError(platform.value, requested_type, [t.value for t in available])
        content_type = ContentType(requested_type)

        verdict = self.validator.validate(media, platform, content_type)
        config = PlatformConfiguration.from_verdict(
            account_id=account.id,
            platform=platform,
            account_name=account.display_name,
            content_type=content_type,
            verdict=verdict,
            media=media,
            available_types=available,
            applied_settings=custom_settings,
        )
        config.recommendations = generate_recommendations(config, media)
        config.thumbnail_url = await self.main_thumbnail(media_file)

        publication.merge_account_settings(
            account.id,
            {"type": content_type.value, "settings": dict(custom_settings or {})},
        )
        await session.commit()
        logger.info(
            f"[preview] publication {publication_id} account {account_id}: "
            f"type={content_type.value} compatible={config.is_compatible}"
        )
        return config

    async def get_saved_configurations(self, session: AsyncSession, publication_id: int) -> dict[str, Any]:
        publication = await load_publication(session, publication_id)
        return dict(publication.platform_settings or {})

    async def main_thumbnail(self, media_file: MediaFile) -> str | None:
        """Stored thumbnail, else a frame at 1s for video, else the image itself."""
        if media_file.thumbnail_path:
            return media_url(media_file.thumbnail_path)

        path = resolve_media_path(media_file.file_path)
        try:
            kind = detect_media_kind(path)
        except MediaAnalysisError:
            return None
        if kind == MediaKind.image:
            return media_url(media_file.file_path)

        try:
            thumb_path = await self.thumbnailer.extract_frame(path)
        except ThumbnailError as exc:
            logger.warning(f"[preview] thumbnail for media {media_file.id} failed: {exc}")
            return None
        return media_url(str(thumb_path))


# ── Loaders ──────────────────────────────────────────────────

async def load_publication(session: AsyncSession, publication_id: int) -> Publication:
    publication = await session.scalar(
        select(Publication)
        .where(Publication.id == publication_id)
        .options(selectinload(Publication.media_files))
    )
    if publication is None:
        raise PublicationNotFoundError(publication_id)
    return publication


async def load_workspace_accounts(
    session: AsyncSession,
    workspace_id: int,
    account_ids: Iterable[int],
) -> list[SocialAccount]:
    """Accounts in request order; ids outside the workspace are an error."""
    requested = list(dict.fromkeys(account_ids))
    if not requested:
        return []
    rows = (
        await session.scalars(
            select(SocialAccount).where(
                SocialAccount.id.in_(requested),
                SocialAccount.workspace_id == workspace_id,
            )
        )
    ).all()
    by_id = {a.id: a for a in rows}
    missing = [i for i in requested if i not in by_id]
    if missing:
        raise UnknownAccountError(missing)
    return [by_id[i] for i in requested]


def first_media_file(publication: Publication) -> MediaFile | None:
    return publication.media_files[0] if publication.media_files else None
