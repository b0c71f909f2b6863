"""Tests for the podcast and direct-media provider."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from linkscribe.media.whisper import OPENAI_TRANSCRIPTIONS_URL, TranscriptionResult
from linkscribe.models.content import FirecrawlPayload, MediaTranscriptMode
from linkscribe.models.transcript import TranscriptSource
from linkscribe.transcript.providers.base import ProviderContext
from linkscribe.transcript.providers.podcast import (
    can_handle,
    extract_og_audio_url,
    fetch_transcript,
    parse_spotify_embed,
    pick_itunes_episode,
)

MODULE = "linkscribe.transcript.providers.podcast"
MEDIA_URL = "https://cdn.example.com/ep.mp3"
SPOTIFY_URL = "https://open.spotify.com/episode/7makk4oTQel546B0PZlDM5"
SPOTIFY_EMBED = "https://open.spotify.com/embed/episode/7makk4oTQel546B0PZlDM5"

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item>
    <title>Episode 2</title>
    <enclosure url="https://cdn.example.com/ep2.mp3?a=1&amp;b=2" type="audio/mpeg"/>
    <itunes:duration>10:00</itunes:duration>
  </item>
  <item>
    <title>Episode 1</title>
    <enclosure url="https://cdn.example.com/ep1.mp3" type="audio/mpeg"/>
  </item>
</channel></rss>"""


def _context(deps, url=MEDIA_URL, html=None, mode=MediaTranscriptMode.AUTO) -> ProviderContext:
    return ProviderContext(url=url, html=html, resource_key=None, deps=deps, media_transcript_mode=mode)


def _media_handler(routes: dict | None = None, transcript: str = "Podcast words", requests=None):
    """Serve small audio for any media URL, Whisper for the OpenAI endpoint, plus ``routes``."""
    routes = routes or {}

    def handler(request):
        if requests is not None:
            requests.append(request)
        url = str(request.url)
        if url == OPENAI_TRANSCRIPTIONS_URL:
            return httpx.Response(200, json={"text": transcript})
        if url in routes:
            return routes[url]
        if request.method == "HEAD":
            return httpx.Response(200, headers={"content-length": "3", "content-type": "audio/mpeg"})
        if url.startswith("https://cdn.example.com/") or "scdn.co" in url:
            return httpx.Response(200, content=b"abc")
        return httpx.Response(404)

    return handler


def _spotify_embed_html(audio: dict | None, show: str = "Example Show") -> str:
    entity = {"title": "Episode 1", "subtitle": show}
    if audio is not None:
        entity["defaultAudioFileObject"] = audio
    data = {"props": {"pageProps": {"state": {"data": {"entity": entity}}}}}
    return (
        '<html><body><script id="__NEXT_DATA__" type="application/json">'
        f"{json.dumps(data)}</script></body></html>"
    )


# --- helpers ---


def test_can_handle():
    assert can_handle(MEDIA_URL) is True
    assert can_handle(SPOTIFY_URL) is True
    assert can_handle("https://example.com/show", RSS) is True
    assert can_handle("https://example.com/blog", "<html></html>") is False


def test_extract_og_audio_url():
    html = '<meta property="og:audio" content="https://cdn.example.com/clip.mp3">'
    assert extract_og_audio_url(html) == "https://cdn.example.com/clip.mp3"
    assert extract_og_audio_url('<meta property="og:audio" content="/relative.mp3">') is None


def test_pick_itunes_episode():
    payload = {
        "results": [
            {"wrapperType": "track", "kind": "podcast"},
            {"trackId": 1, "episodeUrl": "https://cdn.example.com/old.mp3", "releaseDate": "2024-01-01"},
            {"trackId": 2, "episodeUrl": "https://cdn.example.com/new.mp3", "releaseDate": "2025-01-01"},
        ]
    }
    assert pick_itunes_episode(payload, "1")["episodeUrl"] == "https://cdn.example.com/old.mp3"
    assert pick_itunes_episode(payload, None)["episodeUrl"] == "https://cdn.example.com/new.mp3"
    assert pick_itunes_episode({"results": []}, None) is None


def test_parse_spotify_embed_prefers_scdn_and_skips_drm():
    audio = {
        "format": "MP4_128",
        "url": ["https://other.example.com/a.mp4", "https://audio4-fa.scdn.co/a.mp4"],
    }
    embed = parse_spotify_embed(_spotify_embed_html(audio))
    assert embed == {
        "title": "Episode 1",
        "show": "Example Show",
        "audio_url": "https://audio4-fa.scdn.co/a.mp4",
    }

    drm = parse_spotify_embed(_spotify_embed_html({"format": "MP4_128_CBCS", "url": ["https://audio4-fa.scdn.co/a.mp4"]}))
    assert drm["audio_url"] is None
    assert parse_spotify_embed("<html></html>") is None


# --- guard rails ---


@pytest.mark.asyncio
async def test_missing_transcription_keys(make_deps):
    result = await fetch_transcript(_context(make_deps()))

    assert result.text is None
    assert result.source is None
    assert result.metadata["reason"] == "missing_transcription_keys"
    assert result.notes == "Missing OPENAI_API_KEY (or FAL_KEY) for podcast transcription"


@pytest.mark.asyncio
async def test_media_transcription_disabled(make_deps):
    result = await fetch_transcript(
        _context(make_deps(openai_api_key="sk-test"), mode=MediaTranscriptMode.OFF)
    )
    assert result.metadata["reason"] == "media_transcript_disabled"


# --- direct media ---


@pytest.mark.asyncio
async def test_direct_media_small_file(make_deps):
    events = []
    deps = make_deps(_media_handler(), openai_api_key="sk-test", on_progress=events.append)
    result = await fetch_transcript(_context(deps))

    assert result.text == "Podcast words"
    assert result.source == TranscriptSource.WHISPER
    assert result.attempted_providers == [TranscriptSource.WHISPER]
    assert result.metadata["kind"] == "direct_media"
    assert result.metadata["transcriptionProvider"] == "openai"
    kinds = [event.kind for event in events]
    assert kinds[0] == "transcript-media-download-start"
    assert "transcript-media-download-done" in kinds
    assert "transcript-whisper-start" in kinds


@pytest.mark.asyncio
async def test_direct_media_too_large(make_deps):
    routes = {MEDIA_URL: httpx.Response(200, headers={"content-length": str(600 * 1024 * 1024)})}
    requests = []
    deps = make_deps(_media_handler(routes, requests=requests), openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps))

    assert result.text is None
    assert result.source is None
    assert "Remote media too large" in result.notes
    assert [request.method for request in requests] == ["HEAD"]


@pytest.mark.asyncio
async def test_direct_media_without_ffmpeg_uses_truncated_download(make_deps):
    requests = []
    handler = _media_handler(requests=requests)

    def no_head(request):
        if request.method == "HEAD":
            requests.append(request)
            return httpx.Response(405)
        return handler(request)

    deps = make_deps(no_head, openai_api_key="sk-test")
    with patch(f"{MODULE}.resolve_executable", return_value=None):
        result = await fetch_transcript(_context(deps))

    assert result.text == "Podcast words"
    assert "ffmpeg not available; transcribing a truncated download" in result.notes
    media_get = next(r for r in requests if r.method == "GET" and str(r.url) == MEDIA_URL)
    assert media_get.headers["range"].startswith("bytes=0-")


@pytest.mark.asyncio
async def test_direct_media_download_failure_is_inconclusive(make_deps):
    routes = {}
    handler = _media_handler(routes)

    def forbidden_get(request):
        if request.method == "GET" and str(request.url) == MEDIA_URL:
            return httpx.Response(403)
        return handler(request)

    deps = make_deps(forbidden_get, openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps))

    assert result.source is None
    assert result.notes == "Podcast enclosure download failed: Download failed (403)"


@pytest.mark.asyncio
async def test_transcription_failure_note(make_deps):
    whisper = AsyncMock(return_value=TranscriptionResult(provider="openai", error="boom"))
    deps = make_deps(_media_handler(), openai_api_key="sk-test")
    with patch(f"{MODULE}.transcribe_media_with_whisper", whisper):
        result = await fetch_transcript(_context(deps))

    assert result.text is None
    assert result.notes == "Transcription failed: boom"


@pytest.mark.asyncio
async def test_unparsable_transcription_response_is_a_note(make_deps):
    handler = _media_handler()

    def gateway_page(request):
        if str(request.url) == OPENAI_TRANSCRIPTIONS_URL:
            return httpx.Response(200, text="<html>gateway</html>")
        return handler(request)

    deps = make_deps(gateway_page, openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps))

    assert result.text is None
    assert result.source is None
    assert result.notes == (
        "Transcription failed: OpenAI transcription failed: "
        "unparsable response: <html>gateway</html> (200)"
    )


# --- feeds and platforms ---


@pytest.mark.asyncio
async def test_rss_feed_page_uses_first_enclosure(make_deps):
    requests = []
    deps = make_deps(_media_handler(requests=requests), openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps, url="https://example.com/feed.xml", html=RSS))

    assert result.text == "Podcast words"
    assert result.metadata["kind"] == "rss_enclosure"
    assert result.metadata["enclosureUrl"] == "https://cdn.example.com/ep2.mp3?a=1&b=2"
    assert result.metadata["durationSeconds"] == 600
    assert any(str(r.url) == "https://cdn.example.com/ep2.mp3?a=1&b=2" for r in requests)


@pytest.mark.asyncio
async def test_rss_feed_fragment_selects_episode(make_deps):
    deps = make_deps(_media_handler(), openai_api_key="sk-test")
    result = await fetch_transcript(
        _context(deps, url="https://example.com/feed.xml#Episode%201", html=RSS)
    )
    assert result.metadata["enclosureUrl"] == "https://cdn.example.com/ep1.mp3"


@pytest.mark.asyncio
async def test_apple_stream_url(make_deps):
    html = '<script>{"streamUrl":"https:\\/\\/cdn.example.com\\/apple.mp3?x=1\\u0026y=2"}</script>'
    deps = make_deps(_media_handler(), openai_api_key="sk-test")
    result = await fetch_transcript(
        _context(deps, url="https://podcasts.apple.com/us/podcast/show/id123?i=456", html=html)
    )

    assert result.metadata["kind"] == "apple_stream_url"
    assert result.metadata["audioUrl"] == "https://cdn.example.com/apple.mp3?x=1&y=2"


@pytest.mark.asyncio
async def test_apple_itunes_lookup(make_deps):
    lookup = {
        "results": [
            {"trackId": 456, "episodeUrl": "https://cdn.example.com/456.mp3", "trackTimeMillis": 90_000},
            {"trackId": 789, "episodeUrl": "https://cdn.example.com/789.mp3", "releaseDate": "2030-01-01"},
        ]
    }
    routes = {
        "https://itunes.apple.com/lookup?id=123&entity=podcastEpisode&limit=200": httpx.Response(
            200, json=lookup
        )
    }
    deps = make_deps(_media_handler(routes), openai_api_key="sk-test")
    result = await fetch_transcript(
        _context(deps, url="https://podcasts.apple.com/us/podcast/show/id123?i=456", html="<html></html>")
    )

    assert result.metadata["kind"] == "apple_itunes_episode"
    assert result.metadata["episodeUrl"] == "https://cdn.example.com/456.mp3"
    assert result.metadata["durationSeconds"] == 90


@pytest.mark.asyncio
async def test_spotify_embed_audio(make_deps):
    audio = {"format": "MP4_128", "url": ["https://audio4-fa.scdn.co/a.mp4"]}
    routes = {SPOTIFY_EMBED: httpx.Response(200, text=_spotify_embed_html(audio))}
    deps = make_deps(_media_handler(routes), openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps, url=SPOTIFY_URL, html="<html></html>"))

    assert result.text == "Podcast words"
    assert result.metadata["kind"] == "spotify_embed_audio"
    assert "Resolved Spotify embed audio" in result.notes


@pytest.mark.asyncio
async def test_spotify_falls_back_to_itunes_feed(make_deps):
    search = {"results": [{"collectionName": "Example Show", "feedUrl": "https://feeds.example.com/show.xml"}]}
    routes = {
        SPOTIFY_EMBED: httpx.Response(200, text=_spotify_embed_html(None)),
        "https://itunes.apple.com/search?media=podcast&entity=podcast&limit=10&term=Example%20Show": (
            httpx.Response(200, json=search)
        ),
        "https://feeds.example.com/show.xml": httpx.Response(200, text=RSS),
    }
    deps = make_deps(_media_handler(routes), openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps, url=SPOTIFY_URL, html="<html></html>"))

    assert result.metadata["kind"] == "spotify_itunes_rss_enclosure"
    assert result.metadata["enclosureUrl"] == "https://cdn.example.com/ep1.mp3"


@pytest.mark.asyncio
async def test_spotify_embed_fetch_failure(make_deps):
    routes = {SPOTIFY_EMBED: httpx.Response(500)}
    deps = make_deps(_media_handler(routes), openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps, url=SPOTIFY_URL, html="<html></html>"))

    assert result.text is None
    assert result.source is None
    assert result.attempted_providers == [TranscriptSource.WHISPER]
    assert result.metadata["kind"] == "spotify_itunes_rss_enclosure"
    assert result.notes == "Spotify episode fetch failed: Spotify embed fetch failed (500)"


@pytest.mark.asyncio
async def test_spotify_blocked_embed_retries_via_firecrawl(make_deps):
    audio = {"format": "MP4_128", "url": ["https://audio4-fa.scdn.co/a.mp4"]}
    routes = {SPOTIFY_EMBED: httpx.Response(200, text="<html>Please verify you are human</html>")}
    scrape = AsyncMock(return_value=FirecrawlPayload(html=_spotify_embed_html(audio)))
    deps = make_deps(_media_handler(routes), openai_api_key="sk-test", scrape_with_firecrawl=scrape)
    result = await fetch_transcript(_context(deps, url=SPOTIFY_URL, html="<html></html>"))

    assert result.text == "Podcast words"
    assert scrape.await_args.args[0] == SPOTIFY_EMBED
    assert "retrying via Firecrawl" in result.notes


@pytest.mark.asyncio
async def test_spotify_blocked_embed_without_firecrawl(make_deps):
    routes = {SPOTIFY_EMBED: httpx.Response(200, text="<html>captcha</html>")}
    deps = make_deps(_media_handler(routes), openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps, url=SPOTIFY_URL, html="<html></html>"))

    assert result.notes == "Spotify episode fetch failed: Spotify embed HTML looked blocked"


@pytest.mark.asyncio
async def test_og_audio_fallback(make_deps):
    html = '<html><head><meta property="og:audio" content="https://cdn.example.com/clip.mp3"></head></html>'
    deps = make_deps(_media_handler(), openai_api_key="sk-test")
    result = await fetch_transcript(_context(deps, url="https://example.com/podcast/ep-1", html=html))

    assert result.metadata["kind"] == "og_audio"
    assert "Using og:audio (may be a preview clip)" in result.notes


@pytest.mark.asyncio
async def test_yt_dlp_last_resort(make_deps):
    ytdlp = AsyncMock(return_value=TranscriptionResult(text="from yt-dlp", provider="openai"))
    deps = make_deps(openai_api_key="sk-test", yt_dlp_path="/usr/bin/yt-dlp")
    with patch(f"{MODULE}.transcribe_with_yt_dlp", ytdlp):
        result = await fetch_transcript(
            _context(deps, url="https://example.com/podcast/ep-1", html="<html></html>")
        )

    assert result.text == "from yt-dlp"
    assert result.source == TranscriptSource.YT_DLP
    assert "yt-dlp used" in result.notes


@pytest.mark.asyncio
async def test_nothing_found(make_deps):
    deps = make_deps(openai_api_key="sk-test")
    result = await fetch_transcript(
        _context(deps, url="https://example.com/podcast/ep-1", html="<html></html>")
    )

    assert result.text is None
    assert result.source is None
    assert result.metadata["reason"] == "no_enclosure_and_no_yt_dlp"
