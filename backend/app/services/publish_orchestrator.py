"""
Publish orchestrator — sends a publication to its target accounts.

Rules:
- every target account is independent: its log rows are committed on their
  own, a failure on one account never rolls back another
- YouTube gets only the first video; other platforms get every media file,
  one SocialPostLog row per file
- the row is committed as ``pending`` BEFORE the network call, then moved to
  ``published`` / ``failed``
- a pending row can be cancelled; the check happens right before the call,
  and a result that arrives for a row cancelled in flight is discarded
- retries reuse the failed row (retry_count < publish_max_retries)
- the publication's aggregate status is derived from its rows at the end
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models import (
    MediaFile,
    MediaKind,
    Publication,
    PublicationStatus,
    PublishStatus,
    SocialAccount,
    SocialPlatform,
    SocialPostLog,
)
from app.services.capabilities import parse_platform
from app.services.errors import (
    CancelNotAllowedError,
    LogNotFoundError,
    MediaUnavailableError,
    PublishFailure,
    RetryNotAllowedError,
)
from app.services.media_analyzer import detect_media_kind, resolve_media_path
from app.services.preview_service import load_publication, load_workspace_accounts
from app.services.publisher_adapter import PlatformPublisher, get_publisher, sanitize, sanitize_dict
from app.settings import get_settings

logger = logging.getLogger(__name__)

_HASHTAG_RE = re.compile(r"#(\w+)")


# ── Payload helpers ──────────────────────────────────────────

def extract_hashtags(hashtags: str | None) -> list[str]:
    if not hashtags:
        return []
    return _HASHTAG_RE.findall(hashtags)


def build_description(publication: Publication) -> str:
    parts = [publication.description, publication.hashtags]
    return "\n\n".join(p for p in parts if p)


def build_caption(publication: Publication) -> str:
    parts = [publication.title, publication.description, publication.hashtags]
    return "\n\n".join(p for p in parts if p)


def media_kind_of(media_file: MediaFile) -> MediaKind:
    try:
        return MediaKind(media_file.file_type)
    except ValueError:
        return detect_media_kind(resolve_media_path(media_file.file_path))


def select_media_for(platform: SocialPlatform, media_files: list[MediaFile]) -> list[MediaFile]:
    """YouTube takes the first video only; every other platform takes all files."""
    if platform == SocialPlatform.youtube:
        videos = [m for m in media_files if media_kind_of(m) == MediaKind.video]
        return videos[:1]
    return list(media_files)


def build_payload(
    publication: Publication,
    account: SocialAccount,
    media_file: MediaFile,
    log: SocialPostLog,
) -> dict[str, Any]:
    saved = publication.account_settings(account.id) or {}
    path_key = "video_path" if media_kind_of(media_file) == MediaKind.video else "image_path"
    return {
        "publication_id": publication.id,
        "log_id": log.id,
        "account_id": account.id,
        "account_name": account.display_name,
        "access_token": account.access_token,
        "media_file_id": media_file.id,
        path_key: str(resolve_media_path(media_file.file_path)),
        "caption": build_caption(publication),
        "title": publication.title,
        "description": build_description(publication),
        "tags": extract_hashtags(publication.hashtags),
        "type": saved.get("type"),
        "settings": dict(saved.get("settings") or {}),
    }


def derive_publication_status(logs: Iterable[SocialPostLog]) -> PublicationStatus:
    """Aggregate status from settled rows; cancelled rows do not count."""
    statuses = [log.status for log in logs if log.status != PublishStatus.cancelled.value]
    published = sum(1 for s in statuses if s == PublishStatus.published.value)
    if statuses and published == len(statuses):
        return PublicationStatus.published
    if published:
        return PublicationStatus.partially_published
    if any(s == PublishStatus.pending.value for s in statuses):
        return PublicationStatus.publishing
    return PublicationStatus.failed


# ── Result ───────────────────────────────────────────────────

@dataclass
class PublishSummary:
    publication_id: int
    status: PublicationStatus
    logs: list[SocialPostLog] = field(default_factory=list)

    @property
    def published_count(self) -> int:
        return sum(1 for log in self.logs if log.status == PublishStatus.published.value)

    @property
    def failed_count(self) -> int:
        return sum(1 for log in self.logs if log.status == PublishStatus.failed.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "publication_id": self.publication_id,
            "status": self.status.value,
            "published": self.published_count,
            "failed": self.failed_count,
            "log_ids": [log.id for log in self.logs],
        }


# ── Orchestrator ─────────────────────────────────────────────

PublisherFactory = Callable[[SocialPlatform], PlatformPublisher]


class PublishOrchestrator:
    def __init__(
        self,
        publisher_factory: PublisherFactory = get_publisher,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.publisher_factory = publisher_factory
        self.timeout = timeout or settings.publish_timeout_sec
        self.max_retries = settings.publish_max_retries if max_retries is None else max_retries

    async def publish_publication(
        self,
        session: AsyncSession,
        publication_id: int,
        account_ids: Iterable[int] | None = None,
        timeout: float | None = None,
    ) -> PublishSummary:
        publication = await load_publication(session, publication_id)
        if not publication.media_files:
            raise MediaUnavailableError("No media files attached")

        if account_ids is None:
            account_ids = [int(k) for k in (publication.platform_settings or {})]
        accounts = await load_workspace_accounts(session, publication.workspace_id, account_ids)

        publication.status = PublicationStatus.publishing.value
        await session.commit()
        logger.info(f"[publish] publication {publication_id} -> accounts {[a.id for a in accounts]}")

        logs: list[SocialPostLog] = []
        for account in accounts:
            logs.extend(await self._publish_account(session, publication, account, timeout))

        status = await self._settle_publication(session, publication)
        return PublishSummary(publication_id=publication.id, status=status, logs=logs)

    async def _publish_account(
        self,
        session: AsyncSession,
        publication: Publication,
        account: SocialAccount,
        timeout: float | None,
    ) -> list[SocialPostLog]:
        platform = parse_platform(account.platform)
        targets = select_media_for(platform, list(publication.media_files))
        if not targets:
            logger.warning(f"[publish] {platform.value} account {account.id}: no suitable media")

        logs = []
        caption = build_caption(publication)
        for media_file in targets:
            log = SocialPostLog(
                publication_id=publication.id,
                social_account_id=account.id,
                media_file_id=media_file.id,
                platform=platform.value,
                status=PublishStatus.pending.value,
                content=caption,
                retry_count=0,
            )
            session.add(log)
            await session.commit()

            payload = build_payload(publication, account, media_file, log)
            await self._attempt(session, log, platform, payload, timeout)
            logs.append(log)
        return logs

    async def _attempt(
        self,
        session: AsyncSession,
        log: SocialPostLog,
        platform: SocialPlatform,
        payload: dict[str, Any],
        timeout: float | None,
    ) -> None:
        """Run one publisher call for a pending row and persist the outcome."""
        await session.refresh(log, attribute_names=["status"])
        if log.status == PublishStatus.cancelled.value:
            logger.info(f"[publish] log {log.id} cancelled before the call, skipping")
            return

        timeout = timeout or self.timeout
        response: dict[str, Any] | None = None
        failure: PublishFailure | None = None
        try:
            publisher = self.publisher_factory(platform)
            response = await asyncio.wait_for(publisher.publish_post(payload), timeout=timeout)
        except asyncio.TimeoutError:
            failure = PublishFailure(f"Publish timed out after {timeout:g}s", retryable=True)
        except PublishFailure as exc:
            failure = exc
        except Exception as exc:
            logger.exception(f"[publish] unhandled publisher error for log {log.id}")
            failure = PublishFailure(f"Unhandled exception: {exc}", retryable=False)

        await session.refresh(log, attribute_names=["status"])
        if log.status == PublishStatus.cancelled.value:
            logger.warning(f"[publish] log {log.id} was cancelled in flight, discarding result")
            return

        now = datetime.now(timezone.utc)
        if failure is None:
            response = response or {}
            log.status = PublishStatus.published.value
            log.platform_post_id = _str_or_none(response.get("post_id") or response.get("id"))
            log.post_url = response.get("url")
            log.response_json = sanitize_dict(response)
            log.error_message = None
            log.published_at = now
            logger.info(f"[publish] log {log.id} {platform.value}: published {log.post_url or ''}")
        else:
            message = sanitize(str(failure)) or "Publishing failed"
            log.status = PublishStatus.failed.value
            log.error_message = message
            log.response_json = {"error": message, "retryable": failure.retryable}
            logger.error(f"[publish] log {log.id} {platform.value}: {message} (retryable={failure.retryable})")
        await session.commit()

    async def _settle_publication(self, session: AsyncSession, publication: Publication) -> PublicationStatus:
        logs = (
            await session.scalars(select(SocialPostLog).where(SocialPostLog.publication_id == publication.id))
        ).all()
        status = derive_publication_status(logs)
        publication.status = status.value
        if status in (PublicationStatus.published, PublicationStatus.partially_published):
            publication.published_at = publication.published_at or datetime.now(timezone.utc)
        await session.commit()
        logger.info(f"[publish] publication {publication.id} settled as {status.value}")
        return status

    async def retryable_log(self, session: AsyncSession, log_id: int) -> SocialPostLog:
        """Load a log row, raising RetryNotAllowedError unless it may be retried now."""
        log = await _load_log(session, log_id)
        if not log.can_retry(self.max_retries):
            raise RetryNotAllowedError(
                f"Log {log_id} cannot be retried (status={log.status}, "
                f"retries={log.retry_count}/{self.max_retries})"
            )
        return log

    async def retry_log(self, session: AsyncSession, log_id: int, timeout: float | None = None) -> SocialPostLog:
        log = await self.retryable_log(session, log_id)

        log.retry_count = (log.retry_count or 0) + 1
        log.last_retry_at = datetime.now(timezone.utc)
        log.status = PublishStatus.pending.value
        log.error_message = None
        await session.commit()
        logger.info(f"[publish] retrying log {log_id} (attempt {log.retry_count})")

        publication = await load_publication(session, log.publication_id)
        platform = parse_platform(log.platform)
        if log.media_file is None:
            log.status = PublishStatus.failed.value
            log.error_message = "Media file no longer exists"
            await session.commit()
        else:
            payload = build_payload(publication, log.social_account, log.media_file, log)
            await self._attempt(session, log, platform, payload, timeout)

        await self._settle_publication(session, publication)
        return log

    async def cancel_log(self, session: AsyncSession, log_id: int) -> SocialPostLog:
        log = await _load_log(session, log_id)
        if log.status != PublishStatus.pending.value:
            raise CancelNotAllowedError(f"Log {log_id} is {log.status}; only pending logs can be cancelled")
        log.status = PublishStatus.cancelled.value
        log.error_message = "Cancelled by user"
        await session.commit()
        logger.info(f"[publish] log {log_id} cancelled")
        return log


# ── Loaders ──────────────────────────────────────────────────

async def _load_log(session: AsyncSession, log_id: int) -> SocialPostLog:
    log = await session.scalar(
        select(SocialPostLog)
        .where(SocialPostLog.id == log_id)
        .options(selectinload(SocialPostLog.social_account), selectinload(SocialPostLog.media_file))
    )
    if log is None:
        raise LogNotFoundError(log_id)
    return log


async def list_publication_logs(session: AsyncSession, publication_id: int) -> list[SocialPostLog]:
    await load_publication(session, publication_id)
    return list(
        (
            await session.scalars(
                select(SocialPostLog)
                .where(SocialPostLog.publication_id == publication_id)
                .order_by(SocialPostLog.id)
            )
        ).all()
    )


def _str_or_none(value: Any) -> str | None:
    return None if value is None else str(value)
