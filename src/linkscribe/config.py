"""Library configuration via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Transcription
    openai_api_key: str = ""
    fal_key: str = ""

    # YouTube fallback tier
    apify_api_token: str = ""
    apify_youtube_actor: str = ""

    # External tools
    yt_dlp_path: str = ""
    ffmpeg_path: str = "ffmpeg"

    # Request defaults
    timeout_ms: int = 5000
    youtube_mode: str = "auto"
    firecrawl_mode: str = "auto"
    media_transcript_mode: str = "auto"

    # Transcript cache (empty path disables the persistent store)
    linkscribe_cache_path: str = ""
    cache_max_mb: int = 512

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings. Lazy initialization to avoid import-time errors."""
    return Settings()
