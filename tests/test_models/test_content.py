"""Tests for request options, diagnostics, and the transcript result models."""

import pytest
from pydantic import ValidationError

from linkscribe.models.content import (
    DEFAULT_TIMEOUT_MS,
    CacheMode,
    CacheStatus,
    ContentDiagnostics,
    ExtractedContent,
    ExtractionRequest,
    FirecrawlMode,
    MediaTranscriptMode,
    ResourceKind,
    TranscriptDiagnostics,
    YoutubeTranscriptMode,
)
from linkscribe.models.transcript import ProviderResult, TranscriptSource


# --- ExtractionRequest ---


def test_extraction_request_defaults():
    """Only url is required; every mode defaults to auto/default."""
    request = ExtractionRequest(url="https://example.com")
    assert request.timeout_ms == DEFAULT_TIMEOUT_MS
    assert request.youtube_mode == YoutubeTranscriptMode.AUTO
    assert request.firecrawl_mode == FirecrawlMode.AUTO
    assert request.media_transcript_mode == MediaTranscriptMode.AUTO
    assert request.cache_mode == CacheMode.DEFAULT


def test_extraction_request_is_frozen():
    request = ExtractionRequest(url="https://example.com")
    with pytest.raises(ValidationError):
        request.timeout_ms = 10


def test_extraction_request_accepts_string_modes():
    request = ExtractionRequest(url="https://example.com", firecrawl_mode="always", cache_mode="bypass")
    assert request.firecrawl_mode == FirecrawlMode.ALWAYS
    assert request.cache_mode == CacheMode.BYPASS


def test_extraction_request_rejects_unknown_mode():
    with pytest.raises(ValidationError):
        ExtractionRequest(url="https://example.com", youtube_mode="captions-only")


@pytest.mark.parametrize("timeout_ms", [0, -1, -5000])
def test_effective_timeout_replaces_non_positive(timeout_ms):
    request = ExtractionRequest(url="https://example.com", timeout_ms=timeout_ms)
    assert request.effective_timeout_ms == DEFAULT_TIMEOUT_MS


def test_effective_timeout_keeps_positive():
    request = ExtractionRequest(url="https://example.com", timeout_ms=1200)
    assert request.effective_timeout_ms == 1200


# --- Enums ---


def test_resource_kind_values():
    assert [kind.value for kind in ResourceKind] == ["webpage", "youtube", "podcast", "remote-asset"]
    assert ResourceKind.REMOTE_ASSET == "remote-asset"


def test_transcript_source_values():
    """Source strings are persisted in the cache, so they must stay stable."""
    assert TranscriptSource.CAPTION_TRACKS.value == "captionTracks"
    assert TranscriptSource.YT_DLP.value == "yt-dlp"
    assert TranscriptSource("unavailable") is TranscriptSource.UNAVAILABLE


# --- Diagnostics ---


def test_transcript_diagnostics_serializes_camel_case():
    diagnostics = TranscriptDiagnostics(
        cache_status=CacheStatus.HIT,
        text_provided=True,
        provider=TranscriptSource.YOUTUBEI,
        attempted_providers=[TranscriptSource.YOUTUBEI],
    )
    dumped = diagnostics.model_dump(by_alias=True, mode="json")
    assert dumped == {
        "cacheMode": "default",
        "cacheStatus": "hit",
        "textProvided": True,
        "provider": "youtubei",
        "attemptedProviders": ["youtubei"],
        "notes": None,
    }


def test_diagnostics_populate_by_alias():
    diagnostics = TranscriptDiagnostics(textProvided=True, cacheStatus="expired")
    assert diagnostics.text_provided is True
    assert diagnostics.cache_status == CacheStatus.EXPIRED


def test_content_diagnostics_nested_defaults():
    diagnostics = ContentDiagnostics(strategy="html")
    assert diagnostics.firecrawl.attempted is False
    assert diagnostics.firecrawl.used is False
    assert diagnostics.transcript.attempted_providers == []
    dumped = diagnostics.model_dump(by_alias=True)
    assert "cacheStatus" in dumped["firecrawl"]
    assert "textProvided" in dumped["transcript"]


def test_attempted_providers_not_shared_between_instances():
    first = TranscriptDiagnostics()
    second = TranscriptDiagnostics()
    first.attempted_providers.append(TranscriptSource.WHISPER)
    assert second.attempted_providers == []


# --- ExtractedContent ---


def test_extracted_content_is_frozen():
    content = ExtractedContent(
        url="https://example.com",
        content="Hello world",
        total_characters=11,
        word_count=2,
        diagnostics=ContentDiagnostics(strategy="html"),
    )
    assert content.title is None
    assert content.transcript_source is None
    with pytest.raises(ValidationError):
        content.content = "changed"


# --- ProviderResult ---


def test_provider_result_defaults_are_inconclusive():
    result = ProviderResult()
    assert result.text is None
    assert result.source is None
    assert result.metadata == {}
    assert result.attempted_providers == []
    assert result.notes is None
