"""URL pattern matching and resource classification."""

import asyncio
import logging
import re
from urllib.parse import urlparse

import httpx

from linkscribe.models.content import ResourceKind

logger = logging.getLogger(__name__)

NON_ASSET_EXTENSIONS = frozenset({".html", ".htm", ".php", ".asp", ".aspx"})
AUDIO_EXTENSIONS = frozenset(
    {".mp3", ".m4a", ".aac", ".wav", ".ogg", ".oga", ".opus", ".flac", ".weba"}
)
VIDEO_EXTENSIONS = frozenset({".mp4", ".m4v", ".mov", ".webm", ".mkv", ".avi", ".mpeg"})
MEDIA_EXTENSIONS = AUDIO_EXTENSIONS | VIDEO_EXTENSIONS

HTML_CONTENT_TYPES = frozenset({"text/html", "application/xhtml+xml"})

EXTENSION_PATTERN = re.compile(r"\.([a-z0-9]{1,8})$", re.IGNORECASE)
DISPOSITION_FILENAME_PATTERN = re.compile(
    r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE
)
HTML_SNIFF_PATTERN = re.compile(rb"^\s*(?:<!doctype html|<html|<head|<body|<!--)", re.IGNORECASE)
SPOTIFY_EPISODE_PATTERN = re.compile(r"open\.spotify\.com/(?:embed/)?episode/", re.IGNORECASE)
APPLE_PODCASTS_PATTERN = re.compile(r"podcasts\.apple\.com/", re.IGNORECASE)
PODCAST_PATH_PATTERN = re.compile(r"/podcasts?(?:/|$)|/feed(?:/|$)|\.rss$|\.xml$", re.IGNORECASE)

SNIFF_RANGE = "bytes=0-2047"


def is_youtube_url(url: str) -> bool:
    """Hostname contains youtube.com or youtu.be. Falls back to a substring test."""
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError:
        lower = url.lower()
        return "youtube.com" in lower or "youtu.be" in lower
    return "youtube.com" in hostname or "youtu.be" in hostname


def is_youtube_video_url(url: str) -> bool:
    """True for URLs that point at a single video, not a channel or playlist page."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    hostname = (parsed.hostname or "").lower()
    if hostname == "youtu.be":
        return True
    if "youtube.com" not in hostname:
        return False
    path = parsed.path
    return (
        path.startswith("/watch")
        or path.startswith("/shorts/")
        or path.startswith("/embed/")
        or path.startswith("/v/")
    )


def _path_extension(url: str) -> str | None:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    match = EXTENSION_PATTERN.search(path)
    return f".{match.group(1).lower()}" if match else None


def is_direct_media_url(url: str) -> bool:
    """Path ends in a known audio or video file extension."""
    return _path_extension(url) in MEDIA_EXTENSIONS


def is_podcast_url(url: str) -> bool:
    """Spotify episodes, Apple Podcasts, and feed-looking paths."""
    if SPOTIFY_EPISODE_PATTERN.search(url) or APPLE_PODCASTS_PATTERN.search(url):
        return True
    try:
        path = urlparse(url).path
    except ValueError:
        return False
    return bool(PODCAST_PATH_PATTERN.search(path))


def looks_like_asset_path(url: str) -> bool:
    """Path has a file extension that is not a server-rendered page."""
    extension = _path_extension(url)
    return extension is not None and extension not in NON_ASSET_EXTENSIONS


def classify(url: str) -> ResourceKind:
    """Classify a URL from its text alone. Malformed input is a webpage."""
    if is_youtube_url(url):
        return ResourceKind.YOUTUBE
    if is_podcast_url(url) or is_direct_media_url(url):
        return ResourceKind.PODCAST
    if looks_like_asset_path(url):
        return ResourceKind.REMOTE_ASSET
    return ResourceKind.WEBPAGE


def normalize_header_type(value: str | None) -> str | None:
    """Lowercase a Content-Type and drop parameters (``text/html; charset=x`` -> ``text/html``)."""
    if not value:
        return None
    media_type = value.split(";", 1)[0].strip().lower()
    return media_type or None


async def classify_remote(
    client: httpx.AsyncClient, url: str, timeout_ms: int
) -> ResourceKind:
    """Classify a URL, confirming generic pages with a HEAD info and a byte sniff.

    Never raises: info failures fall through to the string-based answer, and
    anything that still looks like a page is a webpage.
    """
    kind = classify(url)
    if kind in (ResourceKind.YOUTUBE, ResourceKind.PODCAST):
        return kind
    checked = False

    try:
        async with asyncio.timeout(timeout_ms / 1000):
            head = await client.head(url, follow_redirects=True)
        if head.is_success:
            checked = True
            media_type = normalize_header_type(head.headers.get("content-type"))
            if media_type and media_type not in HTML_CONTENT_TYPES:
                return ResourceKind.REMOTE_ASSET
            disposition = head.headers.get("content-disposition") or ""
            match = DISPOSITION_FILENAME_PATTERN.search(disposition)
            if match and looks_like_asset_path(f"/{match.group(1).strip()}"):
                return ResourceKind.REMOTE_ASSET
    except (httpx.HTTPError, TimeoutError) as exc:
        logger.debug("HEAD request failed for %s: %s", url, exc)

    try:
        async with asyncio.timeout(timeout_ms / 1000):
            async with client.stream(
                "GET", url, headers={"Range": SNIFF_RANGE}, follow_redirects=True
            ) as response:
                if not response.is_success:
                    return ResourceKind.WEBPAGE if checked else kind
                checked = True
                media_type = normalize_header_type(response.headers.get("content-type"))
                if media_type and media_type not in HTML_CONTENT_TYPES:
                    return ResourceKind.REMOTE_ASSET
                head_bytes = b""
                async for chunk in response.aiter_bytes():
                    head_bytes += chunk
                    if len(head_bytes) >= 2048:
                        break
                if head_bytes.strip() and not HTML_SNIFF_PATTERN.search(head_bytes):
                    return ResourceKind.REMOTE_ASSET
    except (httpx.HTTPError, TimeoutError) as exc:
        logger.debug("Range sniff failed for %s: %s", url, exc)

    return ResourceKind.WEBPAGE if checked else kind
