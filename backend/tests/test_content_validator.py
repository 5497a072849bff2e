"""Per-type validation verdicts and publication-wide validation."""
import copy

import pytest

from app.models import ContentType, MediaKind, SocialPlatform
from app.services.capabilities import MB, PLATFORM_CAPABILITIES, CapabilityTable
from app.services.content_validator import ContentValidator
from app.services.media_analyzer import MediaDescriptor

from fakes import make_image, make_video


@pytest.fixture
def validator():
    return ContentValidator()


@pytest.mark.unit
class TestValidate:
    def test_vertical_short_clip_fits_instagram_reel(self, validator):
        verdict = validator.validate(make_video("9:16", 30), SocialPlatform.instagram, ContentType.reel)
        assert verdict.is_compatible
        assert verdict.errors == []
        assert verdict.warnings == []

    @pytest.mark.parametrize(
        "platform, content_type",
        [(SocialPlatform.facebook, ContentType.reel), (SocialPlatform.twitter, ContentType.tweet)],
    )
    def test_full_hd_vertical_video_passes_resolution_bounds(self, validator, platform, content_type):
        verdict = validator.validate(make_video("9:16", 30), platform, content_type)
        assert not any("Height" in e for e in verdict.errors)
        assert verdict.is_compatible

    def test_aspect_mismatch_is_only_a_warning(self, validator):
        verdict = validator.validate(make_video("9:16", 30), "instagram", "feed")
        assert verdict.is_compatible
        assert any("4:5" in w for w in verdict.warnings)

    def test_oversized_twitter_image_has_exactly_one_error(self, validator):
        image = make_image(1200, 675, size_mb=8)
        verdict = validator.validate(image, SocialPlatform.twitter, ContentType.tweet)
        assert not verdict.is_compatible
        assert verdict.errors == ["File size 8 MB exceeds the 5 MB limit"]

    def test_duration_below_minimum_is_an_error(self, validator):
        verdict = validator.validate(make_video("9:16", 2), SocialPlatform.instagram, ContentType.reel)
        assert not verdict.is_compatible
        assert "below the minimum of 3s" in verdict.errors[0]

    def test_resolution_bounds_are_errors(self, validator):
        small = MediaDescriptor.build(MediaKind.video, 540, 960, size_bytes=MB, duration_seconds=20, extension="mp4")
        verdict = validator.validate(small, SocialPlatform.tiktok, ContentType.video)
        assert len(verdict.errors) == 2
        assert "Width 540px" in verdict.errors[0]
        assert "Height 960px" in verdict.errors[1]

    def test_unsupported_format(self, validator):
        verdict = validator.validate(make_video("16:9", 30, extension="mkv"), SocialPlatform.linkedin, ContentType.post)
        assert verdict.errors == ["Format 'mkv' not supported (allowed: avi, mov, mp4)"]

    def test_unknown_duration_skips_duration_checks(self, validator):
        media = MediaDescriptor.build(MediaKind.video, 1080, 1920, size_bytes=MB, extension="mp4")
        verdict = validator.validate(media, SocialPlatform.youtube, ContentType.short)
        assert verdict.is_compatible
        assert "duration unknown" in verdict.warnings[0]

    def test_type_not_offered_by_platform(self, validator):
        verdict = validator.validate(make_video("9:16", 30), SocialPlatform.youtube, ContentType.reel)
        assert not verdict.is_compatible
        assert len(verdict.errors) == 1
        assert "not supported" in verdict.errors[0]

    def test_every_violation_reported(self):
        config = copy.deepcopy(PLATFORM_CAPABILITIES)
        config["linkedin"]["video"]["max_size_mb"] = 400
        config["linkedin"]["video"]["max_duration_seconds"] = 60
        validator = ContentValidator(CapabilityTable.from_config(config))

        verdict = validator.validate(make_video("16:9", 120, size_mb=500), SocialPlatform.linkedin, ContentType.post)

        assert len(verdict.errors) == 2
        assert "400 MB" in verdict.errors[0]
        assert "maximum of 60s" in verdict.errors[1]

    @pytest.mark.parametrize("aspect", ["9:16", "16:9", "1:1", "4:5"])
    @pytest.mark.parametrize("duration", [2, 10, 45, 89, 300, 5000])
    def test_compatible_iff_no_errors(self, validator, aspect, duration):
        media = make_video(aspect, duration)
        result = validator.validate_publication(media, list(SocialPlatform))
        for verdicts in result.platform_results.values():
            for verdict in verdicts.values():
                assert verdict.is_compatible == (not verdict.errors)


@pytest.mark.unit
class TestValidatePublication:
    def test_platforms_deduplicated_in_order(self, validator):
        result = validator.validate_publication(make_video("9:16", 30), ["instagram", "youtube", "instagram"])
        assert list(result.platform_results) == [SocialPlatform.instagram, SocialPlatform.youtube]
        assert set(result.platform_results[SocialPlatform.youtube]) == {ContentType.standard, ContentType.short}

    def test_detected_type_follows_first_platform(self, validator):
        media = make_video("9:16", 30)
        assert validator.validate_publication(media, ["instagram"]).detected_type == ContentType.reel
        assert validator.validate_publication(media, ["youtube"]).detected_type == ContentType.short

    def test_platform_without_image_support(self, validator):
        result = validator.validate_publication(make_image(), ["tiktok", "instagram"])
        assert result.platform_results[SocialPlatform.tiktok] == {}
        assert result.warnings == ["TikTok does not accept image media"]
        assert not result.is_valid

    def test_to_dict(self, validator):
        data = validator.validate_publication(make_video("16:9", 600), ["youtube"]).to_dict()
        assert data["detected_type"] == "standard"
        assert data["platform_results"]["youtube"]["standard"]["is_compatible"] is True
        assert data["platform_results"]["youtube"]["short"]["is_compatible"] is False
