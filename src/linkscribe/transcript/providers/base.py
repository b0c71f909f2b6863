"""Shared shape of the transcript provider chains."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from linkscribe.deps import ExtractionDeps
from linkscribe.models.content import (
    DEFAULT_TIMEOUT_MS,
    CacheMode,
    MediaTranscriptMode,
    YoutubeTranscriptMode,
)
from linkscribe.models.transcript import ProviderResult


@dataclass
class ProviderContext:
    """Everything a provider needs for one resolution attempt."""

    url: str
    html: str | None
    resource_key: str | None
    deps: ExtractionDeps
    youtube_mode: YoutubeTranscriptMode = YoutubeTranscriptMode.AUTO
    media_transcript_mode: MediaTranscriptMode = MediaTranscriptMode.AUTO
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    cache_mode: CacheMode = CacheMode.DEFAULT


@dataclass(frozen=True)
class TranscriptProvider:
    """A named provider chain.

    ``fetch_transcript`` never raises for tier failures; it reports them
    through ``ProviderResult.notes``.
    """

    id: str
    can_handle: Callable[[str, str | None], bool]
    fetch_transcript: Callable[[ProviderContext], Awaitable[ProviderResult]]
