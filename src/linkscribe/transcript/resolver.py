"""Transcript resolution: provider selection plus the cache read/write protocol."""

import asyncio
import logging

from linkscribe.deps import ExtractionDeps
from linkscribe.errors import MissingCredentialsError, ProviderExhaustedError
from linkscribe.extraction.router import is_youtube_url
from linkscribe.models.content import (
    DEFAULT_TIMEOUT_MS,
    CacheMode,
    CacheStatus,
    MediaTranscriptMode,
    ProgressEvent,
    TranscriptResolution,
    YoutubeTranscriptMode,
)
from linkscribe.transcript.cache import (
    map_cached_source,
    read_transcript_cache,
    write_transcript_cache,
)
from linkscribe.transcript.providers.base import ProviderContext, TranscriptProvider
from linkscribe.transcript.providers.generic import extract_embedded_youtube_url, generic_provider
from linkscribe.transcript.providers.podcast import podcast_provider
from linkscribe.transcript.providers.youtube.provider import youtube_provider
from linkscribe.transcript.utils import append_note, extract_youtube_video_id

logger = logging.getLogger(__name__)

# First match wins; generic is the default and is never asked.
SPECIALIZED_PROVIDERS: tuple[TranscriptProvider, ...] = (youtube_provider, podcast_provider)

PROGRESS_HINTS = {
    "youtube": "YouTube: resolving transcript",
    "podcast": "Podcast: resolving transcript",
}


def select_provider(url: str, html: str | None) -> TranscriptProvider:
    for provider in SPECIALIZED_PROVIDERS:
        if provider.can_handle(url, html):
            return provider
    return generic_provider


def extract_resource_key(url: str) -> str | None:
    if is_youtube_url(url):
        return extract_youtube_video_id(url)
    return None


async def resolve_transcript_for_link(
    url: str,
    html: str | None,
    deps: ExtractionDeps,
    *,
    youtube_mode: YoutubeTranscriptMode = YoutubeTranscriptMode.AUTO,
    media_transcript_mode: MediaTranscriptMode = MediaTranscriptMode.AUTO,
    cache_mode: CacheMode = CacheMode.DEFAULT,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> TranscriptResolution:
    """Resolve the spoken-word transcript for a link, consulting the cache first.

    A non-YouTube page that embeds a YouTube video is resolved as that video.
    Every completed provider attempt is written back to the cache (including
    confirmed-unavailable results) except fully inconclusive ones. When the
    provider misses but a stale cached transcript exists, the stale content is
    returned with cache_status=fallback.

    Never raises for provider failures; see require_transcript for callers
    that must have text.
    """
    normalized_url = url.strip()
    embedded_youtube_url = None
    if html and not is_youtube_url(normalized_url):
        embedded_youtube_url = await asyncio.to_thread(extract_embedded_youtube_url, html)
        if embedded_youtube_url:
            logger.info("Found embedded YouTube video %s on %s", embedded_youtube_url, normalized_url)
    effective_url = embedded_youtube_url or normalized_url
    resource_key = extract_resource_key(effective_url)
    provider = select_provider(effective_url, html)

    outcome = await read_transcript_cache(normalized_url, deps.transcript_cache, cache_mode)
    diagnostics = outcome.diagnostics
    if outcome.resolution is not None:
        outcome.resolution.diagnostics = diagnostics
        return outcome.resolution

    deps.emit(
        ProgressEvent(
            kind="transcript-start",
            url=normalized_url,
            service=provider.id,
            hint=PROGRESS_HINTS.get(provider.id, "Transcript: resolving"),
        )
    )
    result = await provider.fetch_transcript(
        ProviderContext(
            url=effective_url,
            html=html,
            resource_key=resource_key,
            deps=deps,
            youtube_mode=youtube_mode,
            media_transcript_mode=media_transcript_mode,
            timeout_ms=timeout_ms,
            cache_mode=cache_mode,
        )
    )
    text_provided = bool(result.text)
    deps.emit(
        ProgressEvent(
            kind="transcript-done",
            url=normalized_url,
            service=provider.id,
            ok=text_provided,
            hint=f"{provider.id}/{result.source.value}" if result.source else provider.id,
        )
    )
    logger.info(
        "Transcript provider %s finished for %s (source=%s, text=%s)",
        provider.id,
        normalized_url,
        result.source.value if result.source else None,
        text_provided,
    )

    diagnostics.provider = result.source
    diagnostics.attempted_providers = list(result.attempted_providers)
    diagnostics.text_provided = text_provided
    if result.notes:
        diagnostics.notes = append_note(diagnostics.notes, result.notes)

    await write_transcript_cache(
        url=normalized_url,
        service=provider.id,
        resource_key=resource_key,
        text=result.text,
        source=result.source,
        metadata=result.metadata or None,
        cache=deps.transcript_cache,
    )

    cached = outcome.cached
    if not text_provided and cached is not None and cached.content and cache_mode != CacheMode.BYPASS:
        diagnostics.cache_status = CacheStatus.FALLBACK
        diagnostics.provider = map_cached_source(cached.source)
        diagnostics.text_provided = True
        diagnostics.notes = append_note(
            diagnostics.notes, "Falling back to cached transcript content after provider miss"
        )
        return TranscriptResolution(
            text=cached.content,
            source=diagnostics.provider,
            metadata=cached.metadata or {},
            diagnostics=diagnostics,
        )

    return TranscriptResolution(
        text=result.text,
        source=result.source,
        metadata=result.metadata,
        diagnostics=diagnostics,
    )


def require_transcript(resolution: TranscriptResolution, url: str) -> str:
    """Text of a resolution that the caller cannot do without.

    Raises:
        MissingCredentialsError: no transcription key was configured.
        ProviderExhaustedError: every tier ran and none produced text.
    """
    notes = resolution.diagnostics.notes if resolution.diagnostics else None
    if resolution.metadata.get("reason") == "missing_transcription_keys":
        raise MissingCredentialsError(
            f"Missing OPENAI_API_KEY (or FAL_KEY) to transcribe {url}"
        )
    if not resolution.text:
        raise ProviderExhaustedError(f"Could not resolve a transcript for {url}", notes)
    return resolution.text
