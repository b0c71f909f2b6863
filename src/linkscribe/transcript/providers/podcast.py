"""Podcast and direct-media provider.

Resolves a playable audio URL for the page (direct media, feed enclosures,
Apple Podcasts, Spotify, og:audio, yt-dlp), downloads it under size and time
caps, and transcribes it with Whisper.
"""

import asyncio
import json
import logging
import mimetypes
import re
import tempfile
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, quote, unquote, urlparse

import httpx
from bs4 import BeautifulSoup

from linkscribe.errors import DownloadFailedError, FetchTimeoutError
from linkscribe.extraction.blocked import looks_like_blocked_embed
from linkscribe.extraction.router import is_direct_media_url, is_podcast_url
from linkscribe.media.download import (
    MAX_REMOTE_MEDIA_BYTES,
    download_capped_bytes,
    download_to_file,
    inspect_remote_media,
)
from linkscribe.media.feed import (
    Enclosure,
    extract_enclosure_for_episode,
    extract_first_enclosure,
    looks_like_feed,
)
from linkscribe.media.process import resolve_executable
from linkscribe.media.whisper import (
    DEFAULT_SEGMENT_SECONDS,
    MAX_OPENAI_UPLOAD_BYTES,
    TranscriptionResult,
    transcribe_media_file_with_whisper,
    transcribe_media_with_whisper,
)
from linkscribe.media.ytdlp import transcribe_with_yt_dlp
from linkscribe.models.content import MediaTranscriptMode, ProgressEvent
from linkscribe.models.transcript import ProviderResult, TranscriptSource
from linkscribe.transcript.providers.base import ProviderContext, TranscriptProvider
from linkscribe.transcript.utils import append_note, decode_html_entities

logger = logging.getLogger(__name__)

SERVICE = "podcast"
FEED_TIMEOUT_SECONDS = 20.0
ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"
ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
SPOTIFY_EMBED_URL = "https://open.spotify.com/embed/episode/{episode_id}"

SPOTIFY_EPISODE_ID_PATTERN = re.compile(r"open\.spotify\.com/(?:embed/)?episode/([A-Za-z0-9]+)")
APPLE_SHOW_ID_PATTERN = re.compile(r"/id(\d+)")
APPLE_STREAM_URL_PATTERN = re.compile(r'"streamUrl"\s*:\s*"((?:[^"\\]|\\.)+)"')
APPLE_FEED_URL_PATTERN = re.compile(r'"feedUrl"\s*:\s*"((?:[^"\\]|\\.)+)"')
NEXT_DATA_PATTERN = re.compile(
    r'<script[^>]*id=["\']__NEXT_DATA__["\'][^>]*>([\s\S]*?)</script>', re.IGNORECASE
)
DRM_FORMAT_MARKERS = ("CBCS", "CENC", "ENCRYPTED")


class PodcastLookupError(Exception):
    """A platform lookup step failed; the message becomes a diagnostics note."""


def can_handle(url: str, html: str | None = None) -> bool:
    return is_podcast_url(url) or is_direct_media_url(url) or looks_like_feed(html)


def _is_http_url(value: str | None) -> bool:
    if not value:
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _decode_json_string(raw: str) -> str | None:
    """Decode a JSON string body captured by regex (handles ``\\u0026`` and ``\\/``)."""
    try:
        value = json.loads(f'"{raw}"')
    except ValueError:
        return None
    return value if isinstance(value, str) else None


def _find_json_url(pattern: re.Pattern[str], html: str | None) -> str | None:
    for match in pattern.finditer(html or ""):
        value = _decode_json_string(match.group(1))
        if _is_http_url(value):
            return value
    return None


def _episode_title_hint(url: str, html: str | None) -> str | None:
    """Episode named by the URL fragment, else by the page's og:title."""
    fragment = unquote(urlparse(url).fragment).strip()
    if fragment:
        return fragment
    if html and not looks_like_feed(html):
        soup = BeautifulSoup(html, "html.parser")
        tag = soup.find("meta", attrs={"property": "og:title"})
        if tag and tag.get("content"):
            return tag["content"].strip() or None
    return None


def extract_og_audio_url(html: str | None) -> str | None:
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    for key in ("og:audio", "og:audio:url", "og:audio:secure_url"):
        tag = soup.find("meta", attrs={"property": key})
        value = tag.get("content", "").strip() if tag else ""
        if _is_http_url(value):
            return value
    return None


def _guess_media_type(filename: str | None) -> str:
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed and guessed.startswith(("audio/", "video/")):
            return guessed
    return "audio/mpeg"


async def _fetch_text(client: httpx.AsyncClient, url: str) -> str:
    """GET a feed or JSON document.

    Raises:
        PodcastLookupError: network failure, timeout, or non-2xx status.
    """
    try:
        async with asyncio.timeout(FEED_TIMEOUT_SECONDS):
            response = await client.get(url, follow_redirects=True)
    except (httpx.HTTPError, TimeoutError) as exc:
        raise PodcastLookupError(f"request failed: {exc or type(exc).__name__}") from exc
    if not response.is_success:
        raise PodcastLookupError(f"request failed ({response.status_code})")
    return response.text


async def _fetch_json(client: httpx.AsyncClient, url: str) -> Any:
    text = await _fetch_text(client, url)
    try:
        return json.loads(text)
    except ValueError as exc:
        raise PodcastLookupError("response was not JSON") from exc


async def transcribe_media_url(
    context: ProviderContext,
    media_url: str,
    *,
    kind: str,
    duration_seconds: int | None = None,
    notes: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ProviderResult:
    """Inspect, download under caps, and transcribe one media URL."""
    deps = context.deps
    attempted = [TranscriptSource.WHISPER]
    base_metadata: dict[str, Any] = {"provider": SERVICE, "kind": kind, **(metadata or {})}
    if duration_seconds:
        base_metadata["durationSeconds"] = duration_seconds

    info = await inspect_remote_media(deps.client, media_url)
    if info.content_length and info.content_length > MAX_REMOTE_MEDIA_BYTES:
        return ProviderResult(
            metadata=base_metadata,
            attempted_providers=attempted,
            notes=append_note(
                notes, f"Remote media too large ({info.content_length} bytes); skipping download"
            ),
        )

    media_type = info.media_type or _guess_media_type(info.filename)
    filename = info.filename or "audio"

    def on_download(downloaded: int, total: int | None) -> None:
        deps.emit(
            ProgressEvent(
                kind="transcript-media-download-progress",
                url=media_url,
                service=SERVICE,
                downloaded_bytes=downloaded,
                total_bytes=total,
            )
        )

    def on_part(done: int, total: int) -> None:
        processed = None
        if duration_seconds:
            processed = float(min(duration_seconds, done * DEFAULT_SEGMENT_SECONDS))
        deps.emit(
            ProgressEvent(
                kind="transcript-whisper-progress",
                url=media_url,
                service=SERVICE,
                processed_seconds=processed,
                total_seconds=float(duration_seconds) if duration_seconds else None,
                parts_done=done,
                parts_total=total,
            )
        )

    deps.emit(
        ProgressEvent(
            kind="transcript-media-download-start",
            url=media_url,
            service=SERVICE,
            total_bytes=info.content_length,
        )
    )
    keys = {
        "openai_api_key": deps.openai_api_key,
        "fal_api_key": deps.fal_api_key,
        "ffmpeg_path": deps.ffmpeg_path,
    }
    ffmpeg = resolve_executable(deps.ffmpeg_path, "ffmpeg")
    try:
        if info.content_length and info.content_length <= MAX_OPENAI_UPLOAD_BYTES:
            data = await download_capped_bytes(
                deps.client, media_url, MAX_OPENAI_UPLOAD_BYTES, on_progress=on_download
            )
            _emit_download_done(context, media_url, len(data))
            _emit_whisper_start(context, media_url, duration_seconds)
            result = await transcribe_media_with_whisper(
                deps.client, data, media_type, filename, **keys
            )
        elif ffmpeg is not None:
            with tempfile.TemporaryDirectory(prefix="linkscribe-media-") as tmp:
                target = Path(tmp) / (Path(filename).name or "audio")
                written = await download_to_file(
                    deps.client, media_url, target, on_progress=on_download
                )
                _emit_download_done(context, media_url, written)
                _emit_whisper_start(context, media_url, duration_seconds)
                result = await transcribe_media_file_with_whisper(
                    deps.client, target, media_type, on_part=on_part, **keys
                )
        else:
            notes = append_note(notes, "ffmpeg not available; transcribing a truncated download")
            data = await download_capped_bytes(
                deps.client,
                media_url,
                MAX_OPENAI_UPLOAD_BYTES,
                headers={"Range": f"bytes=0-{MAX_OPENAI_UPLOAD_BYTES - 1}"},
                on_progress=on_download,
            )
            _emit_download_done(context, media_url, len(data))
            _emit_whisper_start(context, media_url, duration_seconds)
            result = await transcribe_media_with_whisper(
                deps.client, data, media_type, filename, **keys
            )
    except (DownloadFailedError, FetchTimeoutError, httpx.HTTPError, OSError) as exc:
        logger.warning("Podcast enclosure download failed for %s: %s", media_url, exc)
        return ProviderResult(
            metadata=base_metadata,
            attempted_providers=attempted,
            notes=append_note(notes, f"Podcast enclosure download failed: {exc}"),
        )

    return _from_transcription(result, TranscriptSource.WHISPER, base_metadata, attempted, notes)


def _emit_download_done(context: ProviderContext, url: str, downloaded: int) -> None:
    context.deps.emit(
        ProgressEvent(
            kind="transcript-media-download-done",
            url=url,
            service=SERVICE,
            downloaded_bytes=downloaded,
        )
    )


def _emit_whisper_start(context: ProviderContext, url: str, duration_seconds: int | None) -> None:
    context.deps.emit(
        ProgressEvent(
            kind="transcript-whisper-start",
            url=url,
            service=SERVICE,
            total_seconds=float(duration_seconds) if duration_seconds else None,
        )
    )


def _from_transcription(
    result: TranscriptionResult,
    source: TranscriptSource,
    metadata: dict[str, Any],
    attempted: list[TranscriptSource],
    notes: str | None,
) -> ProviderResult:
    for note in result.notes:
        notes = append_note(notes, note)
    if result.provider:
        metadata = {**metadata, "transcriptionProvider": result.provider}
    if result.text:
        return ProviderResult(
            text=result.text,
            source=source,
            metadata=metadata,
            attempted_providers=attempted,
            notes=notes,
        )
    return ProviderResult(
        metadata=metadata,
        attempted_providers=attempted,
        notes=append_note(notes, f"Transcription failed: {result.error}"),
    )


async def _from_feed_html(context: ProviderContext) -> ProviderResult | None:
    """The page is itself an RSS/Atom feed."""
    html = context.html
    if not looks_like_feed(html):
        return None
    enclosure: Enclosure | None = None
    title = _episode_title_hint(context.url, None)
    if title:
        enclosure = extract_enclosure_for_episode(html, title)
    enclosure = enclosure or extract_first_enclosure(html)
    if enclosure is None:
        return None
    media_url = decode_html_entities(enclosure.url)
    return await transcribe_media_url(
        context,
        media_url,
        kind="rss_enclosure",
        duration_seconds=enclosure.duration_seconds,
        metadata={"enclosureUrl": media_url},
    )


async def _from_apple(context: ProviderContext) -> ProviderResult | None:
    if "podcasts.apple.com" not in context.url:
        return None
    deps, html = context.deps, context.html

    stream_url = _find_json_url(APPLE_STREAM_URL_PATTERN, html)
    if stream_url:
        return await transcribe_media_url(
            context, stream_url, kind="apple_stream_url", metadata={"audioUrl": stream_url}
        )

    notes: str | None = None
    feed_url = _find_json_url(APPLE_FEED_URL_PATTERN, html)
    if feed_url:
        try:
            feed = await _fetch_text(deps.client, feed_url)
        except PodcastLookupError as exc:
            notes = append_note(notes, f"Apple feed fetch failed: {exc}")
        else:
            title = await asyncio.to_thread(_episode_title_hint, context.url, html)
            enclosure = (extract_enclosure_for_episode(feed, title) if title else None) or (
                extract_first_enclosure(feed)
            )
            if enclosure is not None:
                media_url = decode_html_entities(enclosure.url)
                return await transcribe_media_url(
                    context,
                    media_url,
                    kind="apple_feed_url",
                    duration_seconds=enclosure.duration_seconds,
                    notes=notes,
                    metadata={"feedUrl": feed_url, "enclosureUrl": media_url},
                )

    show_match = APPLE_SHOW_ID_PATTERN.search(urlparse(context.url).path)
    if not show_match:
        return None
    episode_id = (parse_qs(urlparse(context.url).query).get("i") or [None])[0]
    try:
        payload = await _fetch_json(
            deps.client,
            f"{ITUNES_LOOKUP_URL}?id={show_match.group(1)}&entity=podcastEpisode&limit=200",
        )
    except PodcastLookupError as exc:
        logger.debug("iTunes lookup failed for %s: %s", context.url, exc)
        return None

    episode = pick_itunes_episode(payload, episode_id)
    if episode is None:
        return None
    millis = episode.get("trackTimeMillis")
    return await transcribe_media_url(
        context,
        episode["episodeUrl"],
        kind="apple_itunes_episode",
        duration_seconds=int(millis / 1000) if isinstance(millis, (int, float)) and millis > 0 else None,
        notes=notes,
        metadata={"episodeUrl": episode["episodeUrl"]},
    )


def pick_itunes_episode(payload: Any, episode_id: str | None) -> dict | None:
    """The episode matching ``episode_id``, else the newest by releaseDate."""
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return None
    episodes = [
        item
        for item in results
        if isinstance(item, dict) and _is_http_url(item.get("episodeUrl"))
    ]
    if not episodes:
        return None
    if episode_id:
        for episode in episodes:
            if str(episode.get("trackId")) == episode_id:
                return episode
    return max(episodes, key=lambda item: str(item.get("releaseDate") or ""))


def parse_spotify_embed(html: str) -> dict | None:
    """Title, show, and a usable (non-DRM) audio URL from the embed's __NEXT_DATA__."""
    match = NEXT_DATA_PATTERN.search(html or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
        state_data = data["props"]["pageProps"]["state"]["data"]
    except (ValueError, KeyError, TypeError):
        return None
    if not isinstance(state_data, dict):
        return None
    entity = state_data.get("entity") if isinstance(state_data.get("entity"), dict) else {}
    audio = entity.get("defaultAudioFileObject") or state_data.get("defaultAudioFileObject") or {}

    audio_url = None
    if isinstance(audio, dict):
        fmt = str(audio.get("format") or "").upper()
        urls = [url for url in audio.get("url") or [] if _is_http_url(url)]
        if urls and not any(marker in fmt for marker in DRM_FORMAT_MARKERS):
            audio_url = next((url for url in urls if "scdn" in urlparse(url).netloc), urls[0])

    return {
        "title": (entity.get("title") or entity.get("name") or "").strip() or None,
        "show": (entity.get("subtitle") or "").strip() or None,
        "audio_url": audio_url,
    }


async def _load_spotify_embed(context: ProviderContext, embed_url: str) -> tuple[str, str | None]:
    """Embed HTML, through the scrape adapter when the direct fetch looks blocked.

    Raises:
        PodcastLookupError: fetch failed or the page stayed blocked.
    """
    deps = context.deps
    notes: str | None = None
    try:
        async with asyncio.timeout(FEED_TIMEOUT_SECONDS):
            response = await deps.client.get(embed_url, follow_redirects=True)
    except (httpx.HTTPError, TimeoutError) as exc:
        raise PodcastLookupError(f"Spotify embed fetch failed: {exc or type(exc).__name__}") from exc
    if not response.is_success:
        raise PodcastLookupError(f"Spotify embed fetch failed ({response.status_code})")

    html = response.text
    if not looks_like_blocked_embed(html):
        return html, notes

    if deps.scrape_with_firecrawl is None:
        raise PodcastLookupError("Spotify embed HTML looked blocked")
    notes = "Spotify embed looked blocked; retrying via Firecrawl"
    try:
        payload = await deps.scrape_with_firecrawl(
            embed_url, cache_mode=context.cache_mode, timeout_ms=context.timeout_ms
        )
    except Exception as exc:
        raise PodcastLookupError(f"Firecrawl error: {exc}") from exc
    scraped = (payload.html or payload.markdown) if payload is not None else None
    if not scraped or not scraped.strip():
        raise PodcastLookupError("Firecrawl returned empty content")
    if looks_like_blocked_embed(scraped):
        raise PodcastLookupError("Spotify embed HTML blocked even via Firecrawl")
    return scraped, notes


async def _find_feed_for_show(client: httpx.AsyncClient, show: str) -> str:
    payload = await _fetch_json(
        client, f"{ITUNES_SEARCH_URL}?media=podcast&entity=podcast&limit=10&term={quote(show)}"
    )
    results = payload.get("results") if isinstance(payload, dict) else None
    candidates = [
        item for item in results or [] if isinstance(item, dict) and _is_http_url(item.get("feedUrl"))
    ]
    wanted = show.strip().lower()
    for item in candidates:
        if str(item.get("collectionName") or "").strip().lower() == wanted:
            return item["feedUrl"]
    if candidates:
        return candidates[0]["feedUrl"]
    raise PodcastLookupError(f"iTunes Search could not resolve RSS feed for {show!r}")


async def _from_spotify(context: ProviderContext) -> ProviderResult | None:
    match = SPOTIFY_EPISODE_ID_PATTERN.search(context.url)
    if not match:
        return None
    deps = context.deps
    embed_url = SPOTIFY_EMBED_URL.format(episode_id=match.group(1))
    notes: str | None = None
    kind = "spotify_itunes_rss_enclosure"
    try:
        embed_html, notes = await _load_spotify_embed(context, embed_url)
        embed = parse_spotify_embed(embed_html)
        if embed is None or not embed["title"]:
            raise PodcastLookupError("Spotify embed data not found")

        if embed["audio_url"]:
            return await transcribe_media_url(
                context,
                embed["audio_url"],
                kind="spotify_embed_audio",
                notes=append_note(notes, "Resolved Spotify embed audio"),
                metadata={"audioUrl": embed["audio_url"], "episodeTitle": embed["title"]},
            )

        if not embed["show"]:
            raise PodcastLookupError("Spotify embed data not found (missing show name)")
        feed_url = await _find_feed_for_show(deps.client, embed["show"])
        feed = await _fetch_text(deps.client, feed_url)
        enclosure = extract_enclosure_for_episode(feed, embed["title"])
        if enclosure is None:
            raise PodcastLookupError(f"episode {embed['title']!r} not found in RSS feed")
    except PodcastLookupError as exc:
        logger.warning("Spotify episode lookup failed for %s: %s", context.url, exc)
        return ProviderResult(
            metadata={"provider": SERVICE, "kind": kind},
            attempted_providers=[TranscriptSource.WHISPER],
            notes=append_note(notes, f"Spotify episode fetch failed: {exc}"),
        )

    media_url = decode_html_entities(enclosure.url)
    return await transcribe_media_url(
        context,
        media_url,
        kind=kind,
        duration_seconds=enclosure.duration_seconds,
        notes=notes,
        metadata={"feedUrl": feed_url, "enclosureUrl": media_url, "episodeTitle": embed["title"]},
    )


async def _from_yt_dlp(context: ProviderContext) -> ProviderResult:
    deps = context.deps
    notes: str | None = None
    attempted = [TranscriptSource.YT_DLP]
    metadata = {"provider": SERVICE, "kind": "yt_dlp"}

    def on_part(done: int, total: int) -> None:
        deps.emit(
            ProgressEvent(
                kind="transcript-whisper-progress",
                url=context.url,
                service=SERVICE,
                parts_done=done,
                parts_total=total,
            )
        )

    _emit_whisper_start(context, context.url, None)
    result = await transcribe_with_yt_dlp(
        deps.client,
        context.url,
        yt_dlp_path=deps.yt_dlp_path,
        openai_api_key=deps.openai_api_key,
        fal_api_key=deps.fal_api_key,
        ffmpeg_path=deps.ffmpeg_path,
        on_part=on_part,
    )
    if result.text:
        return _from_transcription(
            result, TranscriptSource.YT_DLP, metadata, attempted, append_note(notes, "yt-dlp used")
        )
    for note in result.notes:
        notes = append_note(notes, note)
    return ProviderResult(
        metadata=metadata,
        attempted_providers=attempted,
        notes=append_note(notes, f"yt-dlp transcription failed: {result.error}"),
    )


async def fetch_transcript(context: ProviderContext) -> ProviderResult:
    """Resolve an audio URL tier by tier and transcribe the first one found."""
    deps = context.deps
    if not deps.has_transcription_keys:
        return ProviderResult(
            metadata={"provider": SERVICE, "reason": "missing_transcription_keys"},
            notes="Missing OPENAI_API_KEY (or FAL_KEY) for podcast transcription",
        )
    if context.media_transcript_mode == MediaTranscriptMode.OFF:
        return ProviderResult(
            metadata={"provider": SERVICE, "reason": "media_transcript_disabled"},
            notes="Media transcription disabled by request",
        )

    if is_direct_media_url(context.url):
        return await transcribe_media_url(
            context, context.url, kind="direct_media", metadata={"mediaUrl": context.url}
        )

    for tier in (_from_feed_html, _from_apple, _from_spotify):
        result = await tier(context)
        if result is not None:
            return result

    og_audio = None
    if "open.spotify.com" not in context.url:
        og_audio = await asyncio.to_thread(extract_og_audio_url, context.html)
    if og_audio:
        return await transcribe_media_url(
            context,
            og_audio,
            kind="og_audio",
            notes="Using og:audio (may be a preview clip)",
            metadata={"audioUrl": og_audio},
        )

    if deps.yt_dlp_path:
        return await _from_yt_dlp(context)

    logger.info("No podcast enclosure found for %s", context.url)
    return ProviderResult(
        metadata={"provider": SERVICE, "reason": "no_enclosure_and_no_yt_dlp"},
        notes="No podcast enclosure or stream URL found",
    )


podcast_provider = TranscriptProvider(
    id=SERVICE, can_handle=can_handle, fetch_transcript=fetch_transcript
)
