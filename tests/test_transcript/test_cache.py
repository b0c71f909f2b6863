"""Tests for the transcript cache read/write policy and the in-memory cache."""

import pytest

from linkscribe.models.content import CacheMode, CacheStatus
from linkscribe.models.transcript import CacheLookup, CacheWrite, TranscriptSource
from linkscribe.transcript.cache import (
    DEFAULT_TTL_MS,
    NEGATIVE_TTL_MS,
    MemoryTranscriptCache,
    map_cached_source,
    read_transcript_cache,
    write_transcript_cache,
)

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class RecordingCache:
    def __init__(self, lookup: CacheLookup | None = None):
        self.lookup = lookup
        self.writes: list[CacheWrite] = []

    async def get(self, url):
        return self.lookup

    async def set(self, write):
        self.writes.append(write)


# --- read_transcript_cache ---


@pytest.mark.asyncio
async def test_read_without_cache_is_miss():
    outcome = await read_transcript_cache(URL, None, CacheMode.DEFAULT)
    assert outcome.resolution is None
    assert outcome.diagnostics.cache_status == CacheStatus.MISS


@pytest.mark.asyncio
async def test_read_hit_returns_resolution():
    cache = RecordingCache(CacheLookup(content="hello", source="youtubei", metadata={"a": 1}))
    outcome = await read_transcript_cache(URL, cache, CacheMode.DEFAULT)

    assert outcome.resolution.text == "hello"
    assert outcome.resolution.source == TranscriptSource.YOUTUBEI
    assert outcome.resolution.metadata == {"a": 1}
    assert outcome.diagnostics.cache_status == CacheStatus.HIT
    assert outcome.diagnostics.text_provided is True


@pytest.mark.asyncio
async def test_read_negative_hit_reports_no_text():
    cache = RecordingCache(CacheLookup(content=None, source="unavailable"))
    outcome = await read_transcript_cache(URL, cache, CacheMode.DEFAULT)

    assert outcome.resolution is not None
    assert outcome.resolution.text is None
    assert outcome.resolution.source == TranscriptSource.UNAVAILABLE
    assert outcome.diagnostics.text_provided is False


@pytest.mark.asyncio
async def test_read_bypass_keeps_entry_for_fallback():
    cache = RecordingCache(CacheLookup(content="old", source="apify"))
    outcome = await read_transcript_cache(URL, cache, CacheMode.BYPASS)

    assert outcome.resolution is None
    assert outcome.cached.content == "old"
    assert outcome.diagnostics.cache_status == CacheStatus.BYPASSED
    assert outcome.diagnostics.notes == "Cache bypass requested"


@pytest.mark.asyncio
async def test_read_expired_entry():
    cache = RecordingCache(CacheLookup(content="old", source="apify", expired=True))
    outcome = await read_transcript_cache(URL, cache, CacheMode.DEFAULT)

    assert outcome.resolution is None
    assert outcome.diagnostics.cache_status == CacheStatus.EXPIRED


def test_map_cached_source():
    assert map_cached_source("yt-dlp") == TranscriptSource.YT_DLP
    assert map_cached_source("something-new") == TranscriptSource.UNKNOWN
    assert map_cached_source(None) is None


# --- write_transcript_cache ---


@pytest.mark.asyncio
async def test_inconclusive_result_is_not_written():
    cache = RecordingCache()
    await write_transcript_cache(
        url=URL, service="youtube", resource_key=None, text=None, source=None,
        metadata=None, cache=cache,
    )
    assert cache.writes == []


@pytest.mark.asyncio
async def test_negative_result_uses_short_ttl():
    cache = RecordingCache()
    await write_transcript_cache(
        url=URL, service="youtube", resource_key="dQw4w9WgXcQ", text=None,
        source=TranscriptSource.UNAVAILABLE, metadata={"reason": "x"}, cache=cache,
    )
    [write] = cache.writes
    assert write.content is None
    assert write.ttl_ms == NEGATIVE_TTL_MS
    assert write.resource_key == "dQw4w9WgXcQ"


@pytest.mark.asyncio
async def test_positive_result_uses_default_ttl():
    cache = RecordingCache()
    await write_transcript_cache(
        url=URL, service="youtube", resource_key=None, text="hi",
        source=TranscriptSource.CAPTION_TRACKS, metadata=None, cache=cache,
    )
    [write] = cache.writes
    assert write.content == "hi"
    assert write.ttl_ms == DEFAULT_TTL_MS
    assert write.source == TranscriptSource.CAPTION_TRACKS


# --- MemoryTranscriptCache ---


@pytest.mark.asyncio
async def test_memory_cache_positive_entry_round_trip():
    cache = MemoryTranscriptCache(clock=FakeClock())
    await write_transcript_cache(
        url=URL, service="youtube", resource_key=None, text="Hello",
        source=TranscriptSource.YOUTUBEI, metadata={"provider": "youtubei"}, cache=cache,
    )
    outcome = await read_transcript_cache(URL, cache, CacheMode.DEFAULT)

    assert outcome.resolution.text == "Hello"
    assert outcome.diagnostics.cache_status == CacheStatus.HIT


@pytest.mark.asyncio
async def test_memory_cache_negative_entry_expires_after_six_hours():
    clock = FakeClock()
    cache = MemoryTranscriptCache(clock=clock)
    await write_transcript_cache(
        url=URL, service="youtube", resource_key=None, text=None,
        source=TranscriptSource.UNAVAILABLE, metadata=None, cache=cache,
    )

    clock.now += NEGATIVE_TTL_MS / 1000 - 1
    fresh = await read_transcript_cache(URL, cache, CacheMode.DEFAULT)
    assert fresh.diagnostics.cache_status == CacheStatus.HIT
    assert fresh.resolution.source == TranscriptSource.UNAVAILABLE

    clock.now += 2
    stale = await read_transcript_cache(URL, cache, CacheMode.DEFAULT)
    assert stale.diagnostics.cache_status == CacheStatus.EXPIRED
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_memory_cache_is_bounded_and_evicts_least_recently_used():
    cache = MemoryTranscriptCache(maxsize=3, clock=FakeClock())
    for index in range(3):
        await write_transcript_cache(
            url=f"https://example.com/{index}", service="generic", resource_key=None,
            text=f"text {index}", source=TranscriptSource.EMBEDDED, metadata=None, cache=cache,
        )
    assert await cache.get("https://example.com/0") is not None

    await write_transcript_cache(
        url="https://example.com/3", service="generic", resource_key=None,
        text="text 3", source=TranscriptSource.EMBEDDED, metadata=None, cache=cache,
    )
    assert await cache.get("https://example.com/1") is None
    assert (await cache.get("https://example.com/0")).content == "text 0"

    for index in range(4, 50):
        await write_transcript_cache(
            url=f"https://example.com/{index}", service="generic", resource_key=None,
            text=f"text {index}", source=TranscriptSource.EMBEDDED, metadata=None, cache=cache,
        )

    assert len(cache) == 3
    assert (await cache.get("https://example.com/49")).content == "text 49"
