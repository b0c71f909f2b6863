"""Transcript sources, resolutions, and cache records."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TranscriptSource(str, Enum):
    """Which tier produced (or confirmed the absence of) a transcript."""

    YOUTUBEI = "youtubei"
    CAPTION_TRACKS = "captionTracks"
    YT_DLP = "yt-dlp"
    APIFY = "apify"
    WHISPER = "whisper"
    EMBEDDED = "embedded"
    UNAVAILABLE = "unavailable"  # Confirmed negative result
    UNKNOWN = "unknown"  # Unrecognized source read back from the cache


class ProviderResult(BaseModel):
    """What a provider chain returns.

    text=None with a source set is a confirmed-unavailable result (negative-cached);
    source=None means nothing conclusive was attempted (never cached).
    """

    text: str | None = None
    source: TranscriptSource | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    attempted_providers: list[TranscriptSource] = Field(default_factory=list)
    notes: str | None = None


class CacheLookup(BaseModel):
    """Entry returned by TranscriptCache.get()."""

    content: str | None = None  # None marks a negative record
    source: str | None = None  # Raw string; mapped to TranscriptSource on read
    expired: bool = False
    metadata: dict[str, Any] | None = None


class CacheWrite(BaseModel):
    """Entry passed to TranscriptCache.set()."""

    url: str
    service: str  # Provider id: "youtube", "podcast", or "generic"
    resource_key: str | None = None  # e.g. YouTube video id
    content: str | None = None
    source: TranscriptSource
    ttl_ms: int
    metadata: dict[str, Any] | None = None
