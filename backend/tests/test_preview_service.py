"""Preview assembly and persisted platform configuration."""
import pytest

from app.models import ContentType, Publication
from app.services.errors import (
    InvalidUserSelectionError,
    MediaUnavailableError,
    PublicationNotFoundError,
    UnknownAccountError,
)
from app.services.preview_service import NO_MEDIA_WARNING, PreviewService

from fakes import FakeAnalyzer, FakeThumbnailer, make_image, make_video


@pytest.fixture
def thumb_path(media_root):
    return media_root / "thumbnails" / "clip.jpg"


@pytest.fixture
def make_service(thumb_path):
    def _make(media=None, error=None, thumbnail_fails=False):
        return PreviewService(
            analyzer=FakeAnalyzer(media if media is not None else make_video("9:16", 30), error=error),
            thumbnailer=FakeThumbnailer(path=thumb_path, fail=thumbnail_fails),
        )

    return _make


@pytest.fixture
def load_settings(run_db):
    def _load(publication_id):
        async def _inner(session):
            publication = await session.get(Publication, publication_id)
            return publication.platform_settings

        return run_db(_inner)

    return _load


@pytest.mark.integration
class TestPreviewPublication:
    def test_types_and_thumbnails(self, seed, run_db, make_service):
        pub_id, (ig, yt) = seed(accounts=[("instagram", 1), ("youtube", 1)])
        service = make_service()

        preview = run_db(lambda s: service.preview_publication(s, pub_id, [ig, yt]))

        assert preview.media_info.aspect_ratio == "9:16"
        assert preview.detected_type == ContentType.reel
        assert preview.main_thumbnail == "/media/thumbnails/clip.jpg"
        assert [c.account_id for c in preview.platform_configurations] == [ig, yt]
        instagram, youtube = preview.platform_configurations
        assert instagram.type == ContentType.reel
        assert instagram.is_compatible
        assert instagram.can_change_type
        assert instagram.thumbnail_url == "/media/thumbnails/clip.jpg"
        assert youtube.type == ContentType.short
        assert "Perfect for Reels, Shorts and TikTok" in preview.optimization_suggestions

    def test_repeated_preview_is_stable(self, seed, run_db, make_service):
        pub_id, ids = seed(accounts=[("instagram", 1), ("facebook", 1), ("youtube", 1), ("tiktok", 1)])
        service = make_service(make_video("9:16", 45))

        first = run_db(lambda s: service.preview_publication(s, pub_id, ids, auto_optimize=True))
        second = run_db(lambda s: service.preview_publication(s, pub_id, ids, auto_optimize=True))

        assert [c.type for c in first.platform_configurations] == [c.type for c in second.platform_configurations]
        assert [c.type for c in first.platform_configurations] == [
            ContentType.reel, ContentType.reel, ContentType.short, ContentType.video,
        ]

    def test_long_horizontal_on_youtube(self, seed, run_db, make_service):
        pub_id, (yt,) = seed(accounts=[("youtube", 1)])
        service = make_service(make_video("16:9", 600))

        preview = run_db(lambda s: service.preview_publication(s, pub_id, [yt], auto_optimize=True))

        (config,) = preview.platform_configurations
        assert config.type == ContentType.standard
        assert config.is_compatible
        assert config.applied_settings["enable_comments"] is True

    def test_thumbnail_failure_leaves_null(self, seed, run_db, make_service):
        pub_id, (ig,) = seed()
        service = make_service(thumbnail_fails=True)

        preview = run_db(lambda s: service.preview_publication(s, pub_id, [ig]))

        assert preview.main_thumbnail is None
        assert preview.platform_configurations[0].thumbnail_url is None
        assert preview.platform_configurations[0].is_compatible

    def test_image_is_its_own_thumbnail(self, seed, run_db, make_service):
        pub_id, (tw,) = seed(media=[("photo.jpg", "image")], accounts=[("twitter", 1)])
        service = make_service(make_image(1200, 675, size_mb=8))

        preview = run_db(lambda s: service.preview_publication(s, pub_id, [tw]))

        assert preview.main_thumbnail == "/media/uploads/photo.jpg"
        (config,) = preview.platform_configurations
        assert config.type == ContentType.tweet
        assert not config.is_compatible
        assert config.incompatibility_reason == "File size 8 MB exceeds the 5 MB limit"

    def test_platform_rejecting_media_kind(self, seed, run_db, make_service):
        pub_id, (tt,) = seed(media=[("photo.jpg", "image")], accounts=[("tiktok", 1)])
        preview = run_db(lambda s: make_service(make_image()).preview_publication(s, pub_id, [tt]))

        (config,) = preview.platform_configurations
        assert config.type is None
        assert not config.is_compatible
        assert preview.global_warnings == ["TikTok does not accept image media"]

    def test_no_media(self, seed, run_db, make_service):
        pub_id, (ig,) = seed(media=[])
        preview = run_db(lambda s: make_service().preview_publication(s, pub_id, [ig]))

        assert preview.media_info is None
        assert preview.global_warnings == [NO_MEDIA_WARNING]
        assert preview.platform_configurations[0].type is None

    def test_analysis_failure_still_returns_preview(self, seed, run_db, make_service):
        pub_id, (ig,) = seed()
        service = make_service(error="ffprobe failed with code 1 on clip.mp4")

        preview = run_db(lambda s: service.preview_publication(s, pub_id, [ig]))

        assert preview.media_info is None
        assert preview.global_warnings[0].startswith("Media analysis failed")
        assert preview.platform_configurations[0].incompatibility_reason == "ffprobe failed with code 1 on clip.mp4"

    def test_accounts_outside_workspace_rejected(self, seed, run_db, make_service):
        pub_id, (ig, foreign) = seed(accounts=[("instagram", 1), ("youtube", 2)])
        with pytest.raises(UnknownAccountError) as exc_info:
            run_db(lambda s: make_service().preview_publication(s, pub_id, [ig, foreign]))
        assert exc_info.value.account_ids == [foreign]

    def test_missing_publication(self, run_db, make_service):
        with pytest.raises(PublicationNotFoundError):
            run_db(lambda s: make_service().preview_publication(s, 404, []))


@pytest.mark.integration
class TestPlatformConfiguration:
    def test_update_persists_and_leaves_other_accounts(self, seed, run_db, make_service, load_settings):
        other = {"type": "standard", "settings": {"privacy": "unlisted"}, "updated_at": "2026-01-01T00:00:00+00:00"}
        pub_id, (ig,) = seed(platform_settings={"999": other})
        service = make_service()

        config = run_db(lambda s: service.update_platform_configuration(s, pub_id, ig, "story", {"duration": 10}))

        assert config.type == ContentType.story
        assert config.is_compatible
        assert config.applied_settings == {"duration": 10}
        saved = load_settings(pub_id)
        assert saved["999"] == other
        assert saved[str(ig)]["type"] == "story"
        assert saved[str(ig)]["settings"] == {"duration": 10}
        assert "updated_at" in saved[str(ig)]

    def test_saved_type_used_by_later_previews(self, seed, run_db, make_service):
        pub_id, (ig,) = seed()
        service = make_service()
        run_db(lambda s: service.update_platform_configuration(s, pub_id, ig, "feed", {}))

        preview = run_db(lambda s: service.preview_publication(s, pub_id, [ig]))

        config = preview.platform_configurations[0]
        assert config.type == ContentType.feed
        assert config.recommendations == ["This video is ideal as a Reel rather than a Feed post"]
        assert "This video is ideal as a Reel rather than a Feed post" not in config.warnings

    def test_warnings_match_the_chosen_type_verdict(self, seed, run_db, make_service):
        media = make_video("9:16", 45)
        pub_id, (ig,) = seed(platform_settings=None)
        service = make_service(media=media)
        updated = run_db(lambda s: service.update_platform_configuration(s, pub_id, ig, "feed", {}))
        assert updated.recommendations == ["This video is ideal as a Reel rather than a Feed post"]

        preview = run_db(lambda s: service.preview_publication(s, pub_id, [ig], auto_optimize=False))

        config = preview.platform_configurations[0]
        verdict = service.validator.validate(media, config.platform, config.type)
        assert config.type == ContentType.feed
        assert config.warnings == verdict.warnings
        assert config.is_compatible == verdict.is_compatible
        assert config.to_dict()["recommendations"] == config.recommendations

    def test_invalid_type_rejected_without_persisting(self, seed, run_db, make_service, load_settings):
        pub_id, (fb,) = seed(accounts=[("facebook", 1)], platform_settings={"5": {"type": "feed"}})

        with pytest.raises(InvalidUserSelectionError) as exc_info:
            run_db(lambda s: make_service().update_platform_configuration(s, pub_id, fb, "short", {}))

        assert exc_info.value.available_types == ["feed", "reel", "story"]
        assert str(exc_info.value) == "Type 'short' not available for facebook (available: feed, reel, story)"
        assert load_settings(pub_id) == {"5": {"type": "feed"}}

    def test_update_requires_media(self, seed, run_db, make_service):
        pub_id, (ig,) = seed(media=[])
        with pytest.raises(MediaUnavailableError):
            run_db(lambda s: make_service().update_platform_configuration(s, pub_id, ig, "reel", {}))

    def test_auto_optimize_persists_every_account(self, seed, run_db, make_service, load_settings):
        pub_id, (ig, yt) = seed(accounts=[("instagram", 1), ("youtube", 1)])
        service = make_service()

        run_db(lambda s: service.auto_optimize_publication(s, pub_id, [ig, yt]))

        saved = load_settings(pub_id)
        assert saved[str(ig)]["type"] == "reel"
        assert saved[str(ig)]["settings"]["auto_optimized"] is True
        assert saved[str(yt)]["type"] == "short"
        assert run_db(lambda s: service.get_saved_configurations(s, pub_id)) == saved
