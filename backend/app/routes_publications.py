"""
Publication preview / platform configuration / publishing routes.

Compatibility problems are data (200 with errors/warnings); only malformed
requests and missing resources map to HTTP errors.
"""
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .models import PublicationStatus
from .schemas import (
    AutoOptimizeRequest,
    PlatformConfigRead,
    PlatformConfigUpdate,
    PreviewRequest,
    PublicationPreviewRead,
    PublishRequest,
    PublishSummaryRead,
    SavedPlatformConfigRead,
    SocialPostLogRead,
)
from .services.errors import (
    CancelNotAllowedError,
    InvalidUserSelectionError,
    LogNotFoundError,
    MediaUnavailableError,
    PublicationNotFoundError,
    PublicationServiceError,
    RetryNotAllowedError,
    UnknownAccountError,
    UnknownPlatformError,
)
from .services.preview_service import PreviewService, load_publication
from .services.publish_orchestrator import PublishOrchestrator, list_publication_logs
from .settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["publications"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]


def get_preview_service() -> PreviewService:
    return PreviewService()


def get_publish_orchestrator() -> PublishOrchestrator:
    return PublishOrchestrator()


PreviewServiceDep = Annotated[PreviewService, Depends(get_preview_service)]
OrchestratorDep = Annotated[PublishOrchestrator, Depends(get_publish_orchestrator)]


def _http_error(exc: PublicationServiceError) -> HTTPException:
    if isinstance(exc, (PublicationNotFoundError, LogNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (RetryNotAllowedError, CancelNotAllowedError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, (InvalidUserSelectionError, UnknownAccountError, UnknownPlatformError, MediaUnavailableError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        logger.error(f"[api] unmapped service error: {exc}")
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


# ── Preview & configuration ──────────────────────────────────

@router.post("/publications/{publication_id}/preview", response_model=PublicationPreviewRead)
async def preview_publication(
    publication_id: int,
    payload: PreviewRequest,
    session: SessionDep,
    service: PreviewServiceDep,
):
    try:
        preview = await service.preview_publication(
            session, publication_id, payload.platform_ids, auto_optimize=payload.auto_optimize
        )
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc
    return preview.to_dict()


@router.patch(
    "/publications/{publication_id}/platform-config/{account_id}",
    response_model=PlatformConfigRead,
)
async def update_platform_config(
    publication_id: int,
    account_id: int,
    payload: PlatformConfigUpdate,
    session: SessionDep,
    service: PreviewServiceDep,
):
    try:
        config = await service.update_platform_configuration(
            session, publication_id, account_id, payload.type.value, payload.custom_settings
        )
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc
    return config.to_dict()


@router.post("/publications/{publication_id}/auto-optimize", response_model=PublicationPreviewRead)
async def auto_optimize(
    publication_id: int,
    payload: AutoOptimizeRequest,
    session: SessionDep,
    service: PreviewServiceDep,
):
    try:
        preview = await service.auto_optimize_publication(session, publication_id, payload.platform_ids)
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc
    return preview.to_dict()


@router.get("/publications/{publication_id}/platform-config", response_model=SavedPlatformConfigRead)
async def get_platform_config(publication_id: int, session: SessionDep, service: PreviewServiceDep):
    try:
        configurations = await service.get_saved_configurations(session, publication_id)
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc
    return SavedPlatformConfigRead(publication_id=publication_id, configurations=configurations)


# ── Publishing ───────────────────────────────────────────────

@router.post("/publications/{publication_id}/publish", response_model=PublishSummaryRead)
async def publish_publication(
    publication_id: int,
    payload: PublishRequest,
    session: SessionDep,
    orchestrator: OrchestratorDep,
):
    try:
        if get_settings().celery_enabled:
            from .worker.tasks import publish_publication_task

            await load_publication(session, publication_id)
            publish_publication_task.delay(publication_id, payload.platform_ids)
            return PublishSummaryRead(
                publication_id=publication_id,
                status=PublicationStatus.publishing,
                published=0,
                failed=0,
                queued=True,
            )
        summary = await orchestrator.publish_publication(
            session, publication_id, payload.platform_ids, timeout=payload.timeout_sec
        )
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc
    return summary.to_dict()


@router.get("/publications/{publication_id}/publish-logs", response_model=list[SocialPostLogRead])
async def get_publish_logs(publication_id: int, session: SessionDep):
    try:
        return await list_publication_logs(session, publication_id)
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc


@router.post("/publish-logs/{log_id}/retry", response_model=SocialPostLogRead)
async def retry_publish_log(log_id: int, session: SessionDep, orchestrator: OrchestratorDep):
    try:
        if get_settings().celery_enabled:
            from .worker.tasks import retry_log_task

            # 404/409 are raised here, before anything is queued
            log = await orchestrator.retryable_log(session, log_id)
            retry_log_task.delay(log_id)
            return log
        return await orchestrator.retry_log(session, log_id)
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc


@router.post("/publish-logs/{log_id}/cancel", response_model=SocialPostLogRead)
async def cancel_publish_log(log_id: int, session: SessionDep, orchestrator: OrchestratorDep):
    try:
        return await orchestrator.cancel_log(session, log_id)
    except PublicationServiceError as exc:
        raise _http_error(exc) from exc
