"""Resolve LLM-ready text and transcripts for web pages, YouTube videos, and podcasts.

Public API:
    fetch_link_content(url, request, deps) -> ExtractedContent
        Fetches the page (or the scrape fallback), resolves a transcript when
        the link carries one, and returns normalized text plus diagnostics.
    resolve_transcript_for_link(url, html, deps, ...) -> TranscriptResolution
        Transcript resolution alone, including the cache protocol.
"""

from linkscribe.deps import ExtractionDeps
from linkscribe.extraction.pipeline import fetch_link_content
from linkscribe.extraction.router import classify, classify_remote
from linkscribe.models import ExtractedContent, ExtractionRequest, TranscriptResolution
from linkscribe.transcript.cache import MemoryTranscriptCache
from linkscribe.transcript.resolver import require_transcript, resolve_transcript_for_link
from linkscribe.transcript.sqlite_cache import SqliteTranscriptCache

__all__ = [
    "ExtractedContent",
    "ExtractionDeps",
    "ExtractionRequest",
    "MemoryTranscriptCache",
    "SqliteTranscriptCache",
    "TranscriptResolution",
    "classify",
    "classify_remote",
    "fetch_link_content",
    "require_transcript",
    "resolve_transcript_for_link",
]
