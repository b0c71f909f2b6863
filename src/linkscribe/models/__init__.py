"""Data models and enums for the linkscribe pipeline."""

from linkscribe.models.content import (
    CacheMode,
    CacheStatus,
    ContentDiagnostics,
    ExtractedContent,
    ExtractionRequest,
    FetchedDocument,
    FirecrawlDiagnostics,
    FirecrawlMode,
    FirecrawlPayload,
    MediaTranscriptMode,
    ProgressEvent,
    ResourceKind,
    TranscriptDiagnostics,
    TranscriptResolution,
    YoutubeTranscriptMode,
)
from linkscribe.models.transcript import (
    CacheLookup,
    CacheWrite,
    ProviderResult,
    TranscriptSource,
)

__all__ = [
    "CacheLookup",
    "CacheMode",
    "CacheStatus",
    "CacheWrite",
    "ContentDiagnostics",
    "ExtractedContent",
    "ExtractionRequest",
    "FetchedDocument",
    "FirecrawlDiagnostics",
    "FirecrawlMode",
    "FirecrawlPayload",
    "MediaTranscriptMode",
    "ProgressEvent",
    "ProviderResult",
    "ResourceKind",
    "TranscriptDiagnostics",
    "TranscriptResolution",
    "TranscriptSource",
    "YoutubeTranscriptMode",
]
