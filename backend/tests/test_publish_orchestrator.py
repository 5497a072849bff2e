"""Publishing: per-account rows, timeouts, retries and cancellation."""
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from app.models import PublicationStatus, PublishStatus, Publication, SocialPlatform, SocialPostLog
from app.services.errors import (
    CancelNotAllowedError,
    LogNotFoundError,
    MediaUnavailableError,
    PublishFailure,
    RetryNotAllowedError,
)
from app.services.publish_orchestrator import (
    PublishOrchestrator,
    build_caption,
    derive_publication_status,
    extract_hashtags,
)
from app.services.publisher_adapter import PlatformPublisher

from fakes import FakePublisher, publisher_factory


@pytest.fixture
def all_logs(run_db):
    def _logs(publication_id):
        async def _inner(session):
            rows = await session.scalars(
                select(SocialPostLog).where(SocialPostLog.publication_id == publication_id).order_by(SocialPostLog.id)
            )
            return list(rows.all())

        return run_db(_inner)

    return _logs


@pytest.fixture
def publication_status(run_db):
    def _status(publication_id):
        async def _inner(session):
            return (await session.get(Publication, publication_id)).status

        return run_db(_inner)

    return _status


def _orchestrator(publishers, timeout=5):
    return PublishOrchestrator(publisher_factory=publisher_factory(publishers), timeout=timeout, max_retries=3)


@pytest.mark.unit
class TestHelpers:
    def test_extract_hashtags(self):
        assert extract_hashtags("#launch #spring, and #new_in") == ["launch", "spring", "new_in"]
        assert extract_hashtags(None) == []

    def test_caption_skips_empty_parts(self):
        publication = SimpleNamespace(title="Title", description=None, hashtags="#a")
        assert build_caption(publication) == "Title\n\n#a"

    @pytest.mark.parametrize(
        "statuses,expected",
        [
            (["published", "published"], PublicationStatus.published),
            (["published", "failed"], PublicationStatus.partially_published),
            (["failed", "failed"], PublicationStatus.failed),
            (["published", "cancelled"], PublicationStatus.published),
            (["cancelled"], PublicationStatus.failed),
            (["pending", "failed"], PublicationStatus.publishing),
        ],
    )
    def test_derive_publication_status(self, statuses, expected):
        logs = [SimpleNamespace(status=s) for s in statuses]
        assert derive_publication_status(logs) == expected


@pytest.mark.integration
class TestPublishPublication:
    def test_accounts_are_independent(self, seed, run_db, all_logs, publication_status):
        pub_id, (ig, yt) = seed(
            media=[("clip.mp4", "video"), ("photo.jpg", "image")],
            accounts=[("instagram", 1), ("youtube", 1)],
        )
        instagram = FakePublisher(SocialPlatform.instagram)
        orchestrator = _orchestrator({SocialPlatform.instagram: instagram})

        summary = run_db(lambda s: orchestrator.publish_publication(s, pub_id, [ig, yt]))

        assert summary.status == PublicationStatus.partially_published
        logs = all_logs(pub_id)
        assert [(log.social_account_id, log.status) for log in logs] == [
            (ig, "published"),
            (ig, "published"),
            (yt, "failed"),
        ]
        assert logs[0].platform_post_id == "p1"
        assert logs[2].error_message == "No publisher configured for YouTube"
        assert publication_status(pub_id) == "partially_published"

    def test_youtube_gets_first_video_only(self, seed, run_db):
        pub_id, (yt,) = seed(
            media=[("cover.jpg", "image"), ("a.mp4", "video"), ("b.mp4", "video")],
            accounts=[("youtube", 1)],
        )
        youtube = FakePublisher(SocialPlatform.youtube)

        summary = run_db(lambda s: _orchestrator({SocialPlatform.youtube: youtube}).publish_publication(s, pub_id, [yt]))

        assert len(summary.logs) == 1
        assert len(youtube.payloads) == 1
        assert youtube.payloads[0]["video_path"].endswith("uploads/a.mp4")
        assert summary.status == PublicationStatus.published

    def test_payload(self, seed, run_db):
        pub_id, (ig,) = seed(platform_settings={})
        run_db(lambda s: _set_settings(s, pub_id, {str(ig): {"type": "reel", "settings": {"share_to_feed": True}}}))
        instagram = FakePublisher(SocialPlatform.instagram)

        run_db(lambda s: _orchestrator({SocialPlatform.instagram: instagram}).publish_publication(s, pub_id, [ig]))

        payload = instagram.payloads[0]
        assert payload["caption"] == "Spring launch\n\nNew collection is live\n\n#launch #spring"
        assert payload["description"] == "New collection is live\n\n#launch #spring"
        assert payload["tags"] == ["launch", "spring"]
        assert payload["type"] == "reel"
        assert payload["settings"] == {"share_to_feed": True}
        assert payload["access_token"] == "tok-instagram"

    def test_defaults_to_accounts_with_saved_configuration(self, seed, run_db):
        pub_id, (ig, yt) = seed(accounts=[("instagram", 1), ("youtube", 1)])
        run_db(lambda s: _set_settings(s, pub_id, {str(yt): {"type": "short", "settings": {}}}))
        publishers = {p: FakePublisher(p) for p in (SocialPlatform.instagram, SocialPlatform.youtube)}

        summary = run_db(lambda s: _orchestrator(publishers).publish_publication(s, pub_id))

        assert [log.social_account_id for log in summary.logs] == [yt]
        assert publishers[SocialPlatform.instagram].payloads == []

    def test_requires_media(self, seed, run_db):
        pub_id, (ig,) = seed(media=[])
        with pytest.raises(MediaUnavailableError):
            run_db(lambda s: _orchestrator({}).publish_publication(s, pub_id, [ig]))

    def test_timeout_is_failed_and_retryable(self, seed, run_db, all_logs, publication_status):
        pub_id, (ig,) = seed()
        instagram = FakePublisher(SocialPlatform.instagram, outcomes=["hang"])

        run_db(lambda s: _orchestrator({SocialPlatform.instagram: instagram}, timeout=0.05).publish_publication(s, pub_id, [ig]))

        (log,) = all_logs(pub_id)
        assert log.status == PublishStatus.failed.value
        assert log.error_message == "Publish timed out after 0.05s"
        assert log.response_json == {"error": "Publish timed out after 0.05s", "retryable": True}
        assert log.can_retry()
        assert publication_status(pub_id) == "failed"

    def test_error_text_is_scrubbed(self, seed, run_db, all_logs):
        pub_id, (ig,) = seed()
        instagram = FakePublisher(
            SocialPlatform.instagram,
            outcomes=[PublishFailure("401 for https://graph.example/v1?access_token=EAAB123", retryable=False)],
        )

        run_db(lambda s: _orchestrator({SocialPlatform.instagram: instagram}).publish_publication(s, pub_id, [ig]))

        (log,) = all_logs(pub_id)
        assert "EAAB123" not in log.error_message
        assert "access_token=***" in log.error_message


@pytest.mark.integration
class TestRetry:
    def test_retry_reuses_the_row(self, seed, run_db, all_logs, publication_status):
        pub_id, (ig,) = seed()
        instagram = FakePublisher(
            SocialPlatform.instagram,
            outcomes=[PublishFailure("503 service unavailable"), {"post_id": "ok-1", "url": "https://ig/p/ok-1"}],
        )
        orchestrator = _orchestrator({SocialPlatform.instagram: instagram})
        run_db(lambda s: orchestrator.publish_publication(s, pub_id, [ig]))
        (failed,) = all_logs(pub_id)

        log = run_db(lambda s: orchestrator.retry_log(s, failed.id))

        assert log.id == failed.id
        assert log.status == PublishStatus.published.value
        assert log.retry_count == 1
        assert log.last_retry_at is not None
        assert log.post_url == "https://ig/p/ok-1"
        assert len(all_logs(pub_id)) == 1
        assert publication_status(pub_id) == "published"

    def test_retry_budget_is_three(self, seed, run_db, all_logs):
        pub_id, (ig,) = seed()
        instagram = FakePublisher(SocialPlatform.instagram, outcomes=[PublishFailure("503")] * 4)
        orchestrator = _orchestrator({SocialPlatform.instagram: instagram})
        run_db(lambda s: orchestrator.publish_publication(s, pub_id, [ig]))
        (log,) = all_logs(pub_id)

        for _ in range(3):
            run_db(lambda s: orchestrator.retry_log(s, log.id))
        with pytest.raises(RetryNotAllowedError):
            run_db(lambda s: orchestrator.retry_log(s, log.id))

        (log,) = all_logs(pub_id)
        assert log.retry_count == 3
        assert log.status == PublishStatus.failed.value
        assert len(instagram.payloads) == 4

    def test_published_rows_cannot_be_retried(self, seed, run_db, all_logs):
        pub_id, (ig,) = seed()
        orchestrator = _orchestrator({SocialPlatform.instagram: FakePublisher(SocialPlatform.instagram)})
        run_db(lambda s: orchestrator.publish_publication(s, pub_id, [ig]))
        (log,) = all_logs(pub_id)

        with pytest.raises(RetryNotAllowedError):
            run_db(lambda s: orchestrator.retry_log(s, log.id))

    def test_unknown_log(self, run_db):
        with pytest.raises(LogNotFoundError):
            run_db(lambda s: _orchestrator({}).retry_log(s, 12345))


class CancellingPublisher(PlatformPublisher):
    """Simulates a user cancelling the row while the upload is running."""

    platform = SocialPlatform.instagram

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.calls = 0

    async def publish_post(self, payload):
        self.calls += 1
        async with self.session_factory() as other:
            await PublishOrchestrator().cancel_log(other, payload["log_id"])
        return {"post_id": "too-late"}


async def _set_settings(session, publication_id, settings):
    publication = await session.get(Publication, publication_id)
    publication.platform_settings = settings
    await session.commit()


async def _add_pending_log(session, publication_id, account_id):
    log = SocialPostLog(
        publication_id=publication_id,
        social_account_id=account_id,
        platform="instagram",
        status=PublishStatus.pending.value,
        retry_count=0,
    )
    session.add(log)
    await session.commit()
    return log.id


@pytest.mark.integration
class TestCancel:
    def test_cancel_pending(self, seed, run_db):
        pub_id, (ig,) = seed()
        log_id = run_db(lambda s: _add_pending_log(s, pub_id, ig))

        log = run_db(lambda s: _orchestrator({}).cancel_log(s, log_id))

        assert log.status == PublishStatus.cancelled.value
        with pytest.raises(CancelNotAllowedError):
            run_db(lambda s: _orchestrator({}).cancel_log(s, log_id))

    def test_cancelled_row_skips_the_call(self, seed, run_db):
        pub_id, (ig,) = seed()
        log_id = run_db(lambda s: _add_pending_log(s, pub_id, ig))
        run_db(lambda s: _orchestrator({}).cancel_log(s, log_id))
        instagram = FakePublisher(SocialPlatform.instagram)

        async def _attempt(session):
            log = await session.get(SocialPostLog, log_id)
            await _orchestrator({SocialPlatform.instagram: instagram})._attempt(
                session, log, SocialPlatform.instagram, {"log_id": log_id}, None
            )
            return log.status

        assert run_db(_attempt) == PublishStatus.cancelled.value
        assert instagram.payloads == []

    def test_result_for_row_cancelled_in_flight_is_discarded(self, seed, run_db, session_factory, all_logs):
        pub_id, (ig,) = seed()
        publisher = CancellingPublisher(session_factory)
        orchestrator = _orchestrator({SocialPlatform.instagram: publisher})

        summary = run_db(lambda s: orchestrator.publish_publication(s, pub_id, [ig]))

        (log,) = all_logs(pub_id)
        assert publisher.calls == 1
        assert log.status == PublishStatus.cancelled.value
        assert log.platform_post_id is None
        assert summary.status == PublicationStatus.failed
