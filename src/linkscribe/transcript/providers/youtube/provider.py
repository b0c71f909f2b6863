"""YouTube provider: runs the caption tiers in order and stops at the first transcript."""

import asyncio
import logging
import re

from linkscribe.media.ytdlp import transcribe_with_yt_dlp
from linkscribe.models.content import ProgressEvent, YoutubeTranscriptMode
from linkscribe.models.transcript import ProviderResult, TranscriptSource
from linkscribe.transcript.providers.base import ProviderContext, TranscriptProvider
from linkscribe.transcript.providers.youtube.apify import fetch_transcript_with_apify
from linkscribe.transcript.providers.youtube.captions import fetch_transcript_from_caption_tracks
from linkscribe.transcript.providers.youtube.youtubei import (
    extract_youtubei_transcript_config,
    fetch_transcript_from_transcript_endpoint,
)
from linkscribe.transcript.utils import (
    append_note,
    extract_youtube_video_id,
    normalize_transcript_text,
)

logger = logging.getLogger(__name__)

YOUTUBE_URL_PATTERN = re.compile(r"youtube\.com|youtu\.be", re.IGNORECASE)


def can_handle(url: str, html: str | None = None) -> bool:
    return bool(YOUTUBE_URL_PATTERN.search(url))


def _resolved(text: str, source: TranscriptSource, attempted: list, notes: str | None) -> ProviderResult:
    return ProviderResult(
        text=normalize_transcript_text(text),
        source=source,
        metadata={"provider": source.value},
        attempted_providers=attempted,
        notes=notes,
    )


async def _try_yt_dlp(context: ProviderContext, video_id: str) -> tuple[str | None, str | None]:
    deps = context.deps

    def on_part(done: int, total: int) -> None:
        deps.emit(
            ProgressEvent(
                kind="transcript-whisper-progress",
                url=context.url,
                service="youtube",
                parts_done=done,
                parts_total=total,
            )
        )

    deps.emit(
        ProgressEvent(
            kind="transcript-whisper-start",
            url=context.url,
            service="youtube",
            hint="YouTube: downloading audio with yt-dlp",
        )
    )
    result = await transcribe_with_yt_dlp(
        deps.client,
        f"https://www.youtube.com/watch?v={video_id}",
        yt_dlp_path=deps.yt_dlp_path,
        openai_api_key=deps.openai_api_key,
        fal_api_key=deps.fal_api_key,
        ffmpeg_path=deps.ffmpeg_path,
        on_part=on_part,
    )
    notes = "; ".join(result.notes) or None
    if result.text:
        return result.text, notes
    return None, append_note(notes, f"yt-dlp transcription failed: {result.error}")


async def fetch_transcript(context: ProviderContext) -> ProviderResult:
    """Tiers: youtubei and captionTracks (web), Apify, then yt-dlp.

    ``youtube_mode=web`` skips Apify; ``youtube_mode=apify`` skips the web
    tiers and yt-dlp. When every tier misses, the result is the
    confirmed-unavailable record that gets negative-cached.
    """
    attempted: list[TranscriptSource] = []
    notes: str | None = None
    html, url, mode = context.html, context.url, context.youtube_mode
    deps = context.deps

    if not html:
        return ProviderResult(attempted_providers=attempted)
    video_id = (context.resource_key or extract_youtube_video_id(url) or "").strip()
    if not video_id:
        return ProviderResult(attempted_providers=attempted)

    if mode != YoutubeTranscriptMode.APIFY:
        config = await asyncio.to_thread(extract_youtubei_transcript_config, html)
        if config is not None:
            attempted.append(TranscriptSource.YOUTUBEI)
            text = await fetch_transcript_from_transcript_endpoint(
                deps.client, config=config, original_url=url, timeout_ms=context.timeout_ms
            )
            if text:
                return _resolved(text, TranscriptSource.YOUTUBEI, attempted, notes)
            logger.debug("youtubei transcript endpoint returned nothing for %s", video_id)

        attempted.append(TranscriptSource.CAPTION_TRACKS)
        text = await fetch_transcript_from_caption_tracks(
            deps.client,
            html=html,
            original_url=url,
            video_id=video_id,
            timeout_ms=context.timeout_ms,
        )
        if text:
            return _resolved(text, TranscriptSource.CAPTION_TRACKS, attempted, notes)
        logger.debug("No usable caption track for %s", video_id)

    if mode != YoutubeTranscriptMode.WEB and deps.apify_api_token:
        attempted.append(TranscriptSource.APIFY)
        text = await fetch_transcript_with_apify(
            deps.client, deps.apify_api_token, deps.apify_youtube_actor, url
        )
        if text:
            return _resolved(text, TranscriptSource.APIFY, attempted, notes)
        notes = append_note(notes, "Apify returned no transcript")

    if mode != YoutubeTranscriptMode.APIFY and deps.yt_dlp_path:
        if not deps.has_transcription_keys:
            notes = append_note(notes, "Skipping yt-dlp: missing OPENAI_API_KEY (or FAL_KEY)")
        else:
            attempted.append(TranscriptSource.YT_DLP)
            text, yt_dlp_notes = await _try_yt_dlp(context, video_id)
            notes = append_note(notes, yt_dlp_notes or "")
            if text:
                return _resolved(text, TranscriptSource.YT_DLP, attempted, notes)

    logger.warning("No YouTube transcript available for %s (tried %s)", video_id, attempted)
    attempted.append(TranscriptSource.UNAVAILABLE)
    return ProviderResult(
        source=TranscriptSource.UNAVAILABLE,
        metadata={"provider": "youtube", "reason": "no_transcript_available"},
        attempted_providers=attempted,
        notes=notes,
    )


youtube_provider = TranscriptProvider(
    id="youtube", can_handle=can_handle, fetch_transcript=fetch_transcript
)
