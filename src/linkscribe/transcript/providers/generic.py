"""Fallback provider for arbitrary pages: embedded caption tracks and media files."""

import asyncio
import logging
import re
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from linkscribe.extraction.article import extract_article_content, normalize_for_prompt
from linkscribe.extraction.router import is_direct_media_url
from linkscribe.models.content import MediaTranscriptMode
from linkscribe.models.transcript import ProviderResult, TranscriptSource
from linkscribe.transcript.providers.base import ProviderContext, TranscriptProvider
from linkscribe.transcript.providers.podcast import transcribe_media_url
from linkscribe.transcript.utils import (
    append_note,
    decode_html_entities,
    extract_youtube_video_id,
)

logger = logging.getLogger(__name__)

MAX_EMBED_YOUTUBE_TEXT_CHARS = 2000
CAPTION_KINDS = ("captions", "subtitles")
CUE_TIMING_PATTERN = re.compile(r"-->")
CUE_TAG_PATTERN = re.compile(r"<[^>]+>")
CUE_ID_PATTERN = re.compile(r"^\d+$")
VTT_BLOCK_HEADERS = ("NOTE", "STYLE", "REGION")


def can_handle(url: str, html: str | None = None) -> bool:
    return True


def parse_caption_file(raw: str) -> str | None:
    """Plain text of a WebVTT or SRT file, one cue line per line.

    Timing lines, numeric cue ids, the WEBVTT header, and NOTE/STYLE/REGION
    blocks are dropped, as are inline tags and consecutive duplicate lines
    (rolling captions repeat the previous line).
    """
    lines: list[str] = []
    skipping_block = False
    for line in raw.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        stripped = line.strip().lstrip("\ufeff")
        if not stripped:
            skipping_block = False
            continue
        if skipping_block:
            continue
        if stripped.startswith("WEBVTT"):
            skipping_block = True
            continue
        if stripped.split(" ", 1)[0] in VTT_BLOCK_HEADERS:
            skipping_block = True
            continue
        if CUE_TIMING_PATTERN.search(stripped) or CUE_ID_PATTERN.match(stripped):
            continue
        text = decode_html_entities(CUE_TAG_PATTERN.sub("", stripped)).strip()
        if text and (not lines or lines[-1] != text):
            lines.append(text)
    return "\n".join(lines) or None


def extract_caption_track_urls(html: str, page_url: str) -> list[str]:
    soup = BeautifulSoup(html, "html.parser")
    urls = []
    for track in soup.find_all("track"):
        kind = (track.get("kind") or "subtitles").strip().lower()
        src = (track.get("src") or "").strip()
        if kind in CAPTION_KINDS and src:
            urls.append(urljoin(page_url, src))
    return urls


def extract_embedded_media_url(html: str, page_url: str) -> str | None:
    """Direct media file referenced by <video>/<audio>/<source> or og:video."""
    soup = BeautifulSoup(html, "html.parser")
    candidates = [
        tag.get("src") for tag in soup.find_all(["video", "audio", "source"]) if tag.get("src")
    ]
    for key in ("og:video", "og:video:url", "og:video:secure_url"):
        tag = soup.find("meta", attrs={"property": key})
        if tag and tag.get("content"):
            candidates.append(tag["content"])
    for candidate in candidates:
        url = urljoin(page_url, candidate.strip())
        if is_direct_media_url(url):
            return url
    return None


def extract_embedded_youtube_url(html: str) -> str | None:
    """Canonical watch URL of a YouTube video embedded in a small page.

    Pages whose readable text exceeds MAX_EMBED_YOUTUBE_TEXT_CHARS are
    skipped; they are unlikely to be single-video pages.
    """
    if not html:
        return None
    text = normalize_for_prompt(extract_article_content(html))
    if len(text) > MAX_EMBED_YOUTUBE_TEXT_CHARS:
        return None

    soup = BeautifulSoup(html, "html.parser")
    candidates = []
    iframe = soup.select_one('iframe[src*="youtube.com/embed/"], iframe[src*="youtu.be/"]')
    if iframe is not None:
        candidates.append(iframe.get("src", ""))
    for key in ("og:video", "og:video:url", "og:video:secure_url"):
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag and tag.get("content"):
            candidates.append(tag["content"])
            break

    for candidate in candidates:
        url = candidate.strip()
        if url.startswith("//"):
            url = f"https:{url}"
        elif url.startswith("/"):
            url = f"https://www.youtube.com{url}"
        video_id = extract_youtube_video_id(url)
        if video_id:
            return f"https://www.youtube.com/watch?v={video_id}"
    return None


async def _download_caption_file(client: httpx.AsyncClient, url: str, timeout_ms: int) -> str | None:
    try:
        async with asyncio.timeout(timeout_ms / 1000):
            response = await client.get(url, follow_redirects=True)
    except (httpx.HTTPError, TimeoutError) as exc:
        logger.debug("Caption file fetch failed for %s: %s", url, exc)
        return None
    if not response.is_success:
        return None
    return parse_caption_file(response.text)


async def fetch_transcript(context: ProviderContext) -> ProviderResult:
    attempted = [TranscriptSource.EMBEDDED]
    html = context.html
    if not html:
        return ProviderResult(attempted_providers=attempted)

    track_urls = await asyncio.to_thread(extract_caption_track_urls, html, context.url)
    for track_url in track_urls:
        text = await _download_caption_file(context.deps.client, track_url, context.timeout_ms)
        if text:
            return ProviderResult(
                text=text,
                source=TranscriptSource.EMBEDDED,
                metadata={"provider": "generic", "kind": "caption_track", "trackUrl": track_url},
                attempted_providers=attempted,
            )

    notes = None
    if context.media_transcript_mode == MediaTranscriptMode.PREFER:
        media_url = await asyncio.to_thread(extract_embedded_media_url, html, context.url)
        if media_url and context.deps.has_transcription_keys:
            result = await transcribe_media_url(
                context, media_url, kind="embedded_media", metadata={"mediaUrl": media_url}
            )
            result.attempted_providers = attempted + result.attempted_providers
            return result
        if media_url:
            notes = append_note(notes, "Missing OPENAI_API_KEY (or FAL_KEY) for media transcription")

    return ProviderResult(attempted_providers=attempted, notes=notes)


generic_provider = TranscriptProvider(
    id="generic", can_handle=can_handle, fetch_transcript=fetch_transcript
)
