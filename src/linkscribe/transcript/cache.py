"""Transcript cache protocol and the read/write policy around it.

The cache maps a URL to a previously resolved transcript, or to an explicit
negative record (content=None) when a provider confirmed nothing is available.
Negative records live for NEGATIVE_TTL_MS, positive ones for DEFAULT_TTL_MS.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from cachetools import LRUCache

from linkscribe.models.content import (
    CacheMode,
    CacheStatus,
    TranscriptDiagnostics,
    TranscriptResolution,
)
from linkscribe.models.transcript import CacheLookup, CacheWrite, TranscriptSource

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 7 * 24 * 60 * 60 * 1000  # 7 days
NEGATIVE_TTL_MS = 6 * 60 * 60 * 1000  # 6 hours
DEFAULT_MEMORY_CACHE_SIZE = 1024

_KNOWN_SOURCES = {source.value: source for source in TranscriptSource}


class TranscriptCache(Protocol):
    """Narrow get/set contract. Implementations must tolerate concurrent callers."""

    async def get(self, url: str) -> CacheLookup | None: ...

    async def set(self, write: CacheWrite) -> None: ...


@dataclass
class CacheReadOutcome:
    cached: CacheLookup | None
    resolution: TranscriptResolution | None
    diagnostics: TranscriptDiagnostics


def map_cached_source(source: str | None) -> TranscriptSource | None:
    """Map a stored source string to TranscriptSource; unknown strings map to UNKNOWN."""
    if source is None:
        return None
    return _KNOWN_SOURCES.get(source, TranscriptSource.UNKNOWN)


async def read_transcript_cache(
    url: str,
    cache: "TranscriptCache | None",
    cache_mode: CacheMode,
) -> CacheReadOutcome:
    """Look up a URL and classify the outcome as miss, bypassed, expired, or hit.

    Returns a resolution only on a fresh hit. A bypassed or expired entry is
    still returned in ``cached`` so the resolver can fall back to it when every
    provider misses.
    """
    diagnostics = TranscriptDiagnostics(cache_mode=cache_mode, cache_status=CacheStatus.MISS)
    if cache is None:
        return CacheReadOutcome(cached=None, resolution=None, diagnostics=diagnostics)

    cached = await cache.get(url)
    if cached is None:
        return CacheReadOutcome(cached=None, resolution=None, diagnostics=diagnostics)

    if cache_mode == CacheMode.BYPASS:
        diagnostics.cache_status = CacheStatus.BYPASSED
        diagnostics.notes = "Cache bypass requested"
        return CacheReadOutcome(cached=cached, resolution=None, diagnostics=diagnostics)

    if cached.expired:
        diagnostics.cache_status = CacheStatus.EXPIRED
        return CacheReadOutcome(cached=cached, resolution=None, diagnostics=diagnostics)

    source = map_cached_source(cached.source) or TranscriptSource.UNKNOWN
    diagnostics.cache_status = CacheStatus.HIT
    diagnostics.text_provided = bool(cached.content)
    diagnostics.provider = source
    logger.debug("Transcript cache hit for %s (source=%s)", url, source.value)
    return CacheReadOutcome(
        cached=cached,
        resolution=TranscriptResolution(
            text=cached.content,
            source=source,
            metadata=cached.metadata or {},
        ),
        diagnostics=diagnostics,
    )


async def write_transcript_cache(
    *,
    url: str,
    service: str,
    resource_key: str | None,
    text: str | None,
    source: TranscriptSource | None,
    metadata: dict[str, Any] | None,
    cache: "TranscriptCache | None",
) -> None:
    """Persist a provider outcome.

    An inconclusive attempt (no text and no source) is never written, so a
    transient failure cannot poison later requests. A confirmed-unavailable
    result is written with the shorter negative TTL.
    """
    if cache is None:
        return
    if text is None and source is None:
        return

    content = text or None
    ttl_ms = NEGATIVE_TTL_MS if content is None else DEFAULT_TTL_MS
    await cache.set(
        CacheWrite(
            url=url,
            service=service,
            resource_key=resource_key,
            content=content,
            source=map_cached_source(source) or TranscriptSource.UNKNOWN,
            ttl_ms=ttl_ms,
            metadata=metadata,
        )
    )


class MemoryTranscriptCache:
    """In-process TranscriptCache for a single long-lived embedding application.

    Holds at most ``maxsize`` entries, evicting the least recently used.
    Expired entries are reported once (expired=True) and then evicted.
    """

    def __init__(self, maxsize: int = DEFAULT_MEMORY_CACHE_SIZE, clock=time.monotonic):
        self._entries: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, url: str) -> CacheLookup | None:
        async with self._lock:
            stored = self._entries.get(url)
            if stored is None:
                return None
            write, expires_at = stored
            expired = expires_at <= self._clock()
            if expired:
                del self._entries[url]
            return CacheLookup(
                content=write.content,
                source=write.source.value,
                expired=expired,
                metadata=write.metadata,
            )

    async def set(self, write: CacheWrite) -> None:
        async with self._lock:
            self._entries[write.url] = (write, self._clock() + write.ttl_ms / 1000)

    def __len__(self) -> int:
        return len(self._entries)
