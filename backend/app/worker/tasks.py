"""
Celery tasks for publishing.

publish.publication — runs PublishOrchestrator.publish_publication
publish.retry_log   — runs PublishOrchestrator.retry_log

Both run the async orchestrator with asyncio.run() on a fresh engine, since
the worker has no event loop of its own.

No celery-level autoretry: a failed upload is already recorded on its
SocialPostLog row and retried explicitly, on the same row.
"""
from __future__ import annotations

import asyncio
import logging

from app.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def _get_async_db_url() -> str:
    from app.settings import get_settings
    return get_settings().async_database_url


async def _publish_publication_async(publication_id: int, account_ids: list[int] | None) -> dict:
    from app.db import create_session_factory
    from app.services.publish_orchestrator import PublishOrchestrator

    engine, session_factory = create_session_factory(_get_async_db_url())
    try:
        async with session_factory() as session:
            summary = await PublishOrchestrator().publish_publication(session, publication_id, account_ids)
            logger.info(f"[worker] publication {publication_id} finished: {summary.status.value}")
            return summary.to_dict()
    finally:
        await engine.dispose()


async def _retry_log_async(log_id: int) -> dict:
    from app.db import create_session_factory
    from app.services.publish_orchestrator import PublishOrchestrator

    engine, session_factory = create_session_factory(_get_async_db_url())
    try:
        async with session_factory() as session:
            log = await PublishOrchestrator().retry_log(session, log_id)
            logger.info(f"[worker] log {log_id} retry finished: {log.status}")
            return {"log_id": log.id, "status": log.status, "retry_count": log.retry_count}
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="publish.publication", queue="publish")
def publish_publication_task(self, publication_id: int, account_ids: list[int] | None = None) -> dict:
    logger.info(f"[worker] publishing publication {publication_id} (celery_id={self.request.id})")
    try:
        return asyncio.run(_publish_publication_async(publication_id, account_ids))
    except Exception as e:
        logger.error(f"[worker] publication {publication_id} error: {e}")
        raise


@celery_app.task(bind=True, name="publish.retry_log", queue="publish")
def retry_log_task(self, log_id: int) -> dict:
    logger.info(f"[worker] retrying log {log_id} (celery_id={self.request.id})")
    try:
        return asyncio.run(_retry_log_async(log_id))
    except Exception as e:
        logger.error(f"[worker] log {log_id} retry error: {e}")
        raise
