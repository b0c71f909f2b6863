"""Request options, fetched documents, diagnostics, and the final extracted content."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from linkscribe.models.transcript import TranscriptSource

DEFAULT_TIMEOUT_MS = 5000


class ResourceKind(str, Enum):
    """What a URL points at, as decided by the classifier."""

    WEBPAGE = "webpage"
    YOUTUBE = "youtube"
    PODCAST = "podcast"
    REMOTE_ASSET = "remote-asset"


class YoutubeTranscriptMode(str, Enum):
    AUTO = "auto"
    WEB = "web"  # Page-derived tiers only
    APIFY = "apify"  # Paid actor only


class FirecrawlMode(str, Enum):
    OFF = "off"
    AUTO = "auto"  # Only when HTML fails, looks blocked, or is thin
    ALWAYS = "always"


class MediaTranscriptMode(str, Enum):
    AUTO = "auto"
    PREFER = "prefer"  # Transcript first; direct media skips the HTML fetch
    OFF = "off"


class CacheMode(str, Enum):
    DEFAULT = "default"
    BYPASS = "bypass"


class CacheStatus(str, Enum):
    """Cache outcome surfaced in transcript diagnostics."""

    MISS = "miss"
    HIT = "hit"
    EXPIRED = "expired"
    BYPASSED = "bypassed"
    FALLBACK = "fallback"  # Provider missed; stale cached content served
    UNKNOWN = "unknown"


class ExtractionRequest(BaseModel):
    """Per-call options. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    url: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    youtube_mode: YoutubeTranscriptMode = YoutubeTranscriptMode.AUTO
    firecrawl_mode: FirecrawlMode = FirecrawlMode.AUTO
    media_transcript_mode: MediaTranscriptMode = MediaTranscriptMode.AUTO
    cache_mode: CacheMode = CacheMode.DEFAULT

    @property
    def effective_timeout_ms(self) -> int:
        """Timeout with non-positive values replaced by the default."""
        if self.timeout_ms <= 0:
            return DEFAULT_TIMEOUT_MS
        return self.timeout_ms


class FetchedDocument(BaseModel):
    """Raw HTML plus the URL it was finally served from (after redirects)."""

    final_url: str
    html: str
    content_type: str | None = None


class FirecrawlPayload(BaseModel):
    """Result of the paid scrape capability."""

    markdown: str = ""
    html: str | None = None
    metadata: dict | None = None


class _Diagnostics(BaseModel):
    """Serializes to camelCase keys for downstream JSON consumers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FirecrawlDiagnostics(_Diagnostics):
    attempted: bool = False
    used: bool = False
    cache_mode: CacheMode = CacheMode.DEFAULT
    cache_status: CacheStatus = CacheStatus.UNKNOWN
    notes: str | None = None


class TranscriptDiagnostics(_Diagnostics):
    cache_mode: CacheMode = CacheMode.DEFAULT
    cache_status: CacheStatus = CacheStatus.UNKNOWN
    text_provided: bool = False
    provider: TranscriptSource | None = None
    attempted_providers: list[TranscriptSource] = Field(default_factory=list)
    notes: str | None = None


class TranscriptResolution(BaseModel):
    """Resolved transcript for a link. text=None means article text only."""

    text: str | None = None
    source: TranscriptSource | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    diagnostics: TranscriptDiagnostics | None = None


class ContentDiagnostics(_Diagnostics):
    strategy: str  # "html", "firecrawl", or "transcript"
    firecrawl: FirecrawlDiagnostics = Field(default_factory=FirecrawlDiagnostics)
    transcript: TranscriptDiagnostics = Field(default_factory=TranscriptDiagnostics)


class ExtractedContent(BaseModel):
    """Terminal artifact of one request. Created once by the finalizer, never mutated."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: str | None = None
    description: str | None = None
    site_name: str | None = None
    content: str  # Normalized text handed to the prompt builder
    total_characters: int
    word_count: int
    transcript_characters: int | None = None
    transcript_lines: int | None = None
    transcript_source: TranscriptSource | None = None
    diagnostics: ContentDiagnostics


class ProgressEvent(BaseModel):
    """Advisory progress notification. Never affects control flow."""

    kind: str  # e.g. "fetch-html-progress", "transcript-whisper-start"
    url: str | None = None
    service: str | None = None
    hint: str | None = None
    ok: bool | None = None
    downloaded_bytes: int | None = None
    total_bytes: int | None = None
    processed_seconds: float | None = None
    total_seconds: float | None = None
    parts_done: int | None = None
    parts_total: int | None = None
