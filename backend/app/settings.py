from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "publication-studio"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "PUBLICATION_STUDIO_ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/publication_studio",
        validation_alias=AliasChoices("DATABASE_URL", "PUBLICATION_STUDIO_DATABASE_URL"),
    )
    media_root: str = Field(default="/data/media", validation_alias=AliasChoices("MEDIA_ROOT", "PUBLICATION_STUDIO_MEDIA_ROOT"))
    media_base_url: str = Field(default="/media", validation_alias=AliasChoices("MEDIA_BASE_URL", "PUBLICATION_STUDIO_MEDIA_BASE_URL"))
    thumbnails_subdir: str = Field(default="thumbnails", validation_alias=AliasChoices("THUMBNAILS_SUBDIR", "PUBLICATION_STUDIO_THUMBNAILS_SUBDIR"))
    ffprobe_bin: str = Field(default="ffprobe", validation_alias=AliasChoices("FFPROBE_BIN", "PUBLICATION_STUDIO_FFPROBE_BIN"))
    ffmpeg_bin: str = Field(default="ffmpeg", validation_alias=AliasChoices("FFMPEG_BIN", "PUBLICATION_STUDIO_FFMPEG_BIN"))
    probe_timeout_sec: int = Field(default=60, validation_alias=AliasChoices("PROBE_TIMEOUT_SEC", "PUBLICATION_STUDIO_PROBE_TIMEOUT_SEC"))
    publish_timeout_sec: int = Field(default=600, validation_alias=AliasChoices("PUBLISH_TIMEOUT_SEC", "PUBLICATION_STUDIO_PUBLISH_TIMEOUT_SEC"))
    publish_max_retries: int = Field(default=3, validation_alias=AliasChoices("PUBLISH_MAX_RETRIES", "PUBLICATION_STUDIO_PUBLISH_MAX_RETRIES"))
    # platform value -> webhook URL of the service that talks to that network
    publisher_endpoints: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("PUBLISHER_ENDPOINTS", "PUBLICATION_STUDIO_PUBLISHER_ENDPOINTS"),
    )
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias=AliasChoices("REDIS_URL", "PUBLICATION_STUDIO_REDIS_URL"))
    celery_enabled: bool = Field(default=True, validation_alias=AliasChoices("CELERY_ENABLED", "PUBLICATION_STUDIO_CELERY_ENABLED"))
    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "PUBLICATION_STUDIO_SCHEDULER_ENABLED"))
    scheduled_publish_interval_minutes: int = Field(
        default=1,
        validation_alias=AliasChoices("SCHEDULED_PUBLISH_INTERVAL_MINUTES", "PUBLICATION_STUDIO_SCHEDULED_PUBLISH_INTERVAL_MINUTES"),
    )

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
