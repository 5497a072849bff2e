"""
Scheduler Service

Publishes scheduled publications once their time has come:
- one periodic job (every SCHEDULED_PUBLISH_INTERVAL_MINUTES)
- picks publications with status=scheduled and scheduled_at <= now
- hands each one to the celery worker, or publishes inline when
  CELERY_ENABLED=false

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import create_session_factory
from app.models import Publication, PublicationStatus
from app.services.errors import PublicationServiceError
from app.settings import get_settings

logger = logging.getLogger("scheduler")

LOCK_SCHEDULED_PUBLISH = 910_001

Dispatch = Callable[[AsyncSession, int], Awaitable[None]]


async def find_due_publications(session: AsyncSession, now: datetime | None = None) -> list[Publication]:
    now = now or datetime.now(timezone.utc)
    rows = await session.scalars(
        select(Publication)
        .where(
            Publication.status == PublicationStatus.scheduled.value,
            Publication.scheduled_at.is_not(None),
            Publication.scheduled_at <= now,
        )
        .order_by(Publication.scheduled_at, Publication.id)
    )
    return list(rows.all())


async def _publish_inline(session: AsyncSession, publication_id: int) -> None:
    from app.services.publish_orchestrator import PublishOrchestrator

    await PublishOrchestrator().publish_publication(session, publication_id)


async def _enqueue(session: AsyncSession, publication_id: int) -> None:
    from app.worker.tasks import publish_publication_task

    publish_publication_task.delay(publication_id)


def default_dispatch() -> Dispatch:
    return _enqueue if get_settings().celery_enabled else _publish_inline


async def publish_due_publications(
    session: AsyncSession,
    now: datetime | None = None,
    dispatch: Dispatch | None = None,
) -> list[int]:
    """Dispatch every due publication; one failure does not stop the others."""
    dispatch = dispatch or default_dispatch()
    due = await find_due_publications(session, now)
    handled: list[int] = []
    for publication in due:
        publication_id = publication.id
        # claim it so the next tick does not pick it up again
        publication.status = PublicationStatus.publishing.value
        await session.commit()
        try:
            await dispatch(session, publication_id)
        except PublicationServiceError as exc:
            logger.error(f"[scheduled-publish] publication {publication_id} failed: {exc}")
            publication.status = PublicationStatus.failed.value
            await session.commit()
            continue
        handled.append(publication_id)
    if handled:
        logger.info(f"[scheduled-publish] dispatched publications {handled}")
    return handled


class SchedulerService:
    """APScheduler wrapper running the scheduled-publish job.

    Uses Postgres pg_try_advisory_lock on each tick so that only
    one backend instance (the leader) executes the job while
    other instances skip silently.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._session_factory: async_sessionmaker | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, database_url: str):
        _, self._session_factory = create_session_factory(database_url)

    def _get_session(self) -> AsyncSession:
        if not self._session_factory:
            self.configure(get_settings().async_database_url)
        return self._session_factory()

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Non-blocking leader lock; databases without advisory locks always win."""
        if session.bind.dialect.name != "postgresql":
            return True
        result = await session.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if session.bind.dialect.name != "postgresql":
            return
        await session.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false — skipping start")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self._run_scheduled_publish,
            IntervalTrigger(minutes=settings.scheduled_publish_interval_minutes),
            id="scheduled_publish",
            name="Publish due scheduled publications",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started (single-leader mode via advisory locks)")

    def stop(self):
        if self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _run_scheduled_publish(self) -> list[int]:
        async with self._get_session() as session:
            acquired = await self._try_advisory_lock(session, LOCK_SCHEDULED_PUBLISH)
            if not acquired:
                logger.debug("[scheduled-publish] another instance holds the lock, skipping tick")
                return []
            try:
                return await publish_due_publications(session)
            finally:
                await self._release_advisory_lock(session, LOCK_SCHEDULED_PUBLISH)


scheduler_service = SchedulerService.get_instance()
