"""
Shared fixtures.

Environment is set before any ``app`` import so the cached Settings and the
module-level engine pick up the test values. Every test that touches the
database gets its own file-backed SQLite (aiosqlite, NullPool), so each
``asyncio.run`` opens fresh connections on its own loop.
"""
import asyncio
import os
import tempfile
from pathlib import Path

_MEDIA_ROOT = tempfile.mkdtemp(prefix="publication-studio-media-")

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(_MEDIA_ROOT, "default.db")
os.environ["MEDIA_ROOT"] = _MEDIA_ROOT
os.environ["MEDIA_BASE_URL"] = "/media"
os.environ["CELERY_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest
from sqlalchemy.pool import NullPool

from app.db import Base, create_session_factory
from app.models import MediaFile, Publication, PublicationStatus, SocialAccount


@pytest.fixture
def media_root() -> Path:
    return Path(_MEDIA_ROOT)


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = create_session_factory(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool
    )

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def run_db(session_factory):
    """Run ``fn(session)`` inside a fresh session on a fresh event loop."""

    def _run(fn):
        async def _inner():
            async with session_factory() as session:
                return await fn(session)

        return asyncio.run(_inner())

    return _run


@pytest.fixture
def seed(run_db):
    """Create a publication with media files and accounts; returns their ids.

    media: list of (file_name, kind) tuples, stored relative to MEDIA_ROOT.
    accounts: list of (platform, workspace_id) tuples.
    """

    def _seed(
        media=(("clip.mp4", "video"),),
        accounts=(("instagram", 1),),
        workspace_id=1,
        status=PublicationStatus.draft.value,
        scheduled_at=None,
        platform_settings=None,
        hashtags="#launch #spring",
    ):
        async def _inner(session):
            publication = Publication(
                workspace_id=workspace_id,
                title="Spring launch",
                description="New collection is live",
                hashtags=hashtags,
                status=status,
                scheduled_at=scheduled_at,
                platform_settings=platform_settings,
            )
            session.add(publication)
            await session.flush()
            for position, (file_name, kind) in enumerate(media):
                session.add(
                    MediaFile(
                        publication_id=publication.id,
                        file_path=f"uploads/{file_name}",
                        file_name=file_name,
                        file_type=kind,
                        position=position,
                    )
                )
            account_ids = []
            for platform, account_workspace in accounts:
                account = SocialAccount(
                    workspace_id=account_workspace,
                    platform=platform,
                    account_name=f"{platform}-brand",
                    access_token="tok-" + platform,
                )
                session.add(account)
                await session.flush()
                account_ids.append(account.id)
            await session.commit()
            return publication.id, account_ids

        return run_db(_inner)

    return _seed

