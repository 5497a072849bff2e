"""
Error taxonomy for validation, preview and publishing.

Compatibility problems are never raised: they travel as verdict data
(errors[] / warnings[]). Only malformed requests, missing collaborators'
inputs and publish-time failures are exceptions.
"""
from __future__ import annotations


class PublicationServiceError(Exception):
    """Base class for all errors raised by the publication services."""


class ConfigurationError(PublicationServiceError):
    """No capability entry for a (platform, media kind, content type) triple."""


class CapabilityTableError(ConfigurationError):
    """The declarative capability table is incomplete or inconsistent."""


class UnknownPlatformError(PublicationServiceError):
    """Platform identifier is not one of the supported platforms."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Unknown platform: {platform!r}")


class UnknownAccountError(PublicationServiceError):
    """Requested social accounts do not exist in the publication's workspace."""

    def __init__(self, account_ids: list[int]):
        self.account_ids = account_ids
        super().__init__(f"Social accounts not found in workspace: {account_ids}")


class PublicationNotFoundError(PublicationServiceError):
    def __init__(self, publication_id: int):
        self.publication_id = publication_id
        super().__init__(f"Publication {publication_id} not found")


class InvalidUserSelectionError(PublicationServiceError):
    """User picked a content type the platform does not offer for this media."""

    def __init__(self, platform: str, requested_type: str, available_types: list[str]):
        self.platform = platform
        self.requested_type = requested_type
        self.available_types = available_types
        super().__init__(
            f"Type '{requested_type}' not available for {platform} "
            f"(available: {', '.join(available_types) or 'none'})"
        )


class MediaUnavailableError(PublicationServiceError):
    """The publication has no media, or its media could not be analyzed."""


class MediaAnalysisError(MediaUnavailableError):
    """ffprobe failed or returned unusable data."""


class ThumbnailError(PublicationServiceError):
    """Thumbnail extraction failed."""


class PublishFailure(PublicationServiceError):
    """Provider / network error while publishing."""

    def __init__(self, message: str, *, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class RetryNotAllowedError(PublicationServiceError):
    """Log row is not failed, or its retry budget is spent."""


class CancelNotAllowedError(PublicationServiceError):
    """Only pending log rows can be cancelled."""


class LogNotFoundError(PublicationServiceError):
    def __init__(self, log_id: int):
        self.log_id = log_id
        super().__init__(f"Publish log {log_id} not found")
