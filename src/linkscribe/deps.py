"""Collaborators the pipeline consumes but does not own."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from linkscribe.config import Settings
from linkscribe.models.content import (
    CacheMode,
    ExtractionRequest,
    FirecrawlMode,
    FirecrawlPayload,
    MediaTranscriptMode,
    ProgressEvent,
    YoutubeTranscriptMode,
)
from linkscribe.transcript.cache import TranscriptCache
from linkscribe.transcript.sqlite_cache import SqliteTranscriptCache

logger = logging.getLogger(__name__)

# scrape(url, cache_mode=..., timeout_ms=...) -> payload or None
ScrapeFn = Callable[..., Awaitable[FirecrawlPayload | None]]
ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class ExtractionDeps:
    """Per-call dependency bundle.

    ``client`` is the fetch capability: every HTTP call in the pipeline goes
    through it, so callers control proxies, headers, and (in tests) the
    transport. The cache handle is optional; ``None`` degrades to always-miss.
    """

    client: httpx.AsyncClient
    scrape_with_firecrawl: ScrapeFn | None = None
    apify_api_token: str | None = None
    apify_youtube_actor: str | None = None
    yt_dlp_path: str | None = None
    ffmpeg_path: str | None = "ffmpeg"
    openai_api_key: str | None = None
    fal_api_key: str | None = None
    transcript_cache: TranscriptCache | None = None
    on_progress: ProgressCallback | None = None

    @classmethod
    def from_settings(
        cls,
        client: httpx.AsyncClient,
        settings: Settings,
        *,
        scrape_with_firecrawl: ScrapeFn | None = None,
        transcript_cache: TranscriptCache | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> "ExtractionDeps":
        return cls(
            client=client,
            scrape_with_firecrawl=scrape_with_firecrawl,
            apify_api_token=settings.apify_api_token or None,
            apify_youtube_actor=settings.apify_youtube_actor or None,
            yt_dlp_path=settings.yt_dlp_path or None,
            ffmpeg_path=settings.ffmpeg_path or None,
            openai_api_key=settings.openai_api_key or None,
            fal_api_key=settings.fal_key or None,
            transcript_cache=transcript_cache,
            on_progress=on_progress,
        )

    @property
    def has_transcription_keys(self) -> bool:
        return bool(self.openai_api_key or self.fal_api_key)

    def emit(self, event: ProgressEvent) -> None:
        """Forward a progress event. Callback failures never affect control flow."""
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception:
            logger.debug("Progress callback raised for %s", event.kind, exc_info=True)


def build_request(url: str, settings: Settings, **overrides) -> ExtractionRequest:
    """ExtractionRequest with the configured defaults; keyword overrides win."""
    values = {
        "url": url,
        "timeout_ms": settings.timeout_ms,
        "youtube_mode": YoutubeTranscriptMode(settings.youtube_mode),
        "firecrawl_mode": FirecrawlMode(settings.firecrawl_mode),
        "media_transcript_mode": MediaTranscriptMode(settings.media_transcript_mode),
        "cache_mode": CacheMode.DEFAULT,
    }
    values.update(overrides)
    return ExtractionRequest(**values)


def open_transcript_cache(settings: Settings) -> SqliteTranscriptCache | None:
    """Persistent cache at LINKSCRIBE_CACHE_PATH, or None when no path is configured."""
    if not settings.linkscribe_cache_path:
        return None
    return SqliteTranscriptCache(
        settings.linkscribe_cache_path, max_bytes=settings.cache_max_mb * 1024 * 1024
    )
