"""Link content orchestration: HTML or scrape fallback, transcript, finalization.

Public API:
    fetch_link_content(url, request, deps) -> ExtractedContent
"""

import asyncio
import logging
import re

from linkscribe.deps import ExtractionDeps
from linkscribe.errors import FetchError
from linkscribe.extraction.article import (
    extract_article_content,
    extract_metadata_from_firecrawl,
    extract_metadata_from_html,
    extract_youtube_short_description,
    normalize_candidate,
    normalize_for_prompt,
    safe_hostname,
)
from linkscribe.extraction.blocked import should_fallback_to_firecrawl
from linkscribe.extraction.fetcher import fetch_html_document, fetch_with_firecrawl
from linkscribe.extraction.router import classify, is_direct_media_url
from linkscribe.models.content import (
    ContentDiagnostics,
    ExtractedContent,
    ExtractionRequest,
    FirecrawlDiagnostics,
    FirecrawlMode,
    FirecrawlPayload,
    MediaTranscriptMode,
    ResourceKind,
    TranscriptDiagnostics,
    TranscriptResolution,
)
from linkscribe.transcript.resolver import require_transcript, resolve_transcript_for_link
from linkscribe.transcript.utils import append_note

logger = logging.getLogger(__name__)

LEADING_CONTROL_PATTERN = re.compile(r"^[\s\x00-\x1f\x7f-\x9f]+")
TRANSCRIPT_PREFIX = "Transcript:\n"


def strip_leading_title(content: str, title: str | None) -> str:
    """Drop a title line that the body repeats verbatim (case-insensitive) at its start."""
    if not content or not title or not title.strip():
        return content
    normalized_title = title.strip()
    trimmed = content.lstrip()
    if not trimmed.lower().startswith(normalized_title.lower()):
        return content
    return LEADING_CONTROL_PATTERN.sub("", trimmed[len(normalized_title):])


def select_base_content(source_content: str, transcript_text: str | None) -> str:
    """A non-empty transcript replaces the page body."""
    if not transcript_text:
        return source_content
    normalized = normalize_for_prompt(transcript_text)
    if not normalized:
        return source_content
    return f"{TRANSCRIPT_PREFIX}{normalized}"


def summarize_transcript(text: str | None) -> tuple[int | None, int | None]:
    """(characters, non-empty lines), each None when zero."""
    if not text:
        return None, None
    lines = sum(1 for line in text.splitlines() if line.strip())
    return len(text), lines or None


def ensure_transcript_diagnostics(resolution: TranscriptResolution) -> TranscriptDiagnostics:
    if resolution.diagnostics is not None:
        return resolution.diagnostics
    return TranscriptDiagnostics(
        text_provided=bool(resolution.text),
        provider=resolution.source,
        attempted_providers=[resolution.source] if resolution.source else [],
    )


def pick_first_text(*candidates: str | None) -> str | None:
    for candidate in candidates:
        normalized = normalize_candidate(candidate)
        if normalized:
            return normalized
    return None


def finalize_extracted_content(
    *,
    url: str,
    base_content: str,
    title: str | None,
    description: str | None,
    site_name: str | None,
    resolution: TranscriptResolution,
    diagnostics: ContentDiagnostics,
) -> ExtractedContent:
    """Build the terminal ExtractedContent record with its text statistics."""
    content = normalize_for_prompt(base_content)
    transcript_characters, transcript_lines = summarize_transcript(resolution.text)
    return ExtractedContent(
        url=url,
        title=title,
        description=description,
        site_name=site_name,
        content=content,
        total_characters=len(content),
        word_count=len(content.split()),
        transcript_characters=transcript_characters,
        transcript_lines=transcript_lines,
        transcript_source=resolution.source,
        diagnostics=diagnostics,
    )


class _LinkContentRun:
    """State for one fetch_link_content call.

    The scrape fallback is attempted at most once per run; its diagnostics
    accumulate across every fallback reason.
    """

    def __init__(self, url: str, request: ExtractionRequest, deps: ExtractionDeps):
        self.url = url
        self.request = request
        self.deps = deps
        self.timeout_ms = request.effective_timeout_ms
        self.kind = classify(url)
        self.can_use_firecrawl = (
            request.firecrawl_mode != FirecrawlMode.OFF
            and deps.scrape_with_firecrawl is not None
            and self.kind != ResourceKind.YOUTUBE
        )
        self.firecrawl_attempted = False
        self.firecrawl_payload: FirecrawlPayload | None = None
        self.firecrawl = FirecrawlDiagnostics(cache_mode=request.cache_mode)

    async def resolve_transcript(self, url: str, html: str | None) -> TranscriptResolution:
        return await resolve_transcript_for_link(
            url,
            html,
            self.deps,
            youtube_mode=self.request.youtube_mode,
            media_transcript_mode=self.request.media_transcript_mode,
            cache_mode=self.request.cache_mode,
            timeout_ms=self.timeout_ms,
        )

    async def attempt_firecrawl(self, reason: str) -> ExtractedContent | None:
        if not self.can_use_firecrawl:
            return None
        if not self.firecrawl_attempted:
            self.firecrawl_attempted = True
            self.firecrawl_payload, self.firecrawl = await fetch_with_firecrawl(
                self.deps,
                self.url,
                timeout_ms=self.timeout_ms,
                cache_mode=self.request.cache_mode,
            )
        self.firecrawl.notes = append_note(self.firecrawl.notes, reason)
        if self.firecrawl_payload is None:
            return None

        result = await self.build_from_firecrawl(self.firecrawl_payload)
        if result is None:
            self.firecrawl.used = False
            self.firecrawl.notes = append_note(self.firecrawl.notes, "Firecrawl returned empty content")
        return result

    async def build_from_firecrawl(self, payload: FirecrawlPayload) -> ExtractedContent | None:
        markdown = normalize_for_prompt(payload.markdown)
        if not markdown:
            self.firecrawl.notes = append_note(
                self.firecrawl.notes, "Firecrawl markdown normalization yielded empty text"
            )
            return None

        resolution = await self.resolve_transcript(self.url, payload.html)
        base_content = select_base_content(markdown, resolution.text)

        html_metadata = {"title": None, "description": None, "site_name": None}
        if payload.html:
            html_metadata = await asyncio.to_thread(extract_metadata_from_html, payload.html, self.url)
        metadata = extract_metadata_from_firecrawl(payload.metadata)

        self.firecrawl.used = True
        logger.info("Using Firecrawl content for %s", self.url)
        return finalize_extracted_content(
            url=self.url,
            base_content=base_content,
            title=pick_first_text(metadata["title"], html_metadata["title"]),
            description=pick_first_text(metadata["description"], html_metadata["description"]),
            site_name=pick_first_text(
                metadata["site_name"], html_metadata["site_name"], safe_hostname(self.url)
            ),
            resolution=resolution,
            diagnostics=ContentDiagnostics(
                strategy="firecrawl",
                firecrawl=self.firecrawl,
                transcript=ensure_transcript_diagnostics(resolution),
            ),
        )

    async def build_from_html(self, final_url: str, html: str) -> ExtractedContent:
        metadata = await asyncio.to_thread(extract_metadata_from_html, html, final_url)
        normalized = normalize_for_prompt(await asyncio.to_thread(extract_article_content, html))
        resolution = await self.resolve_transcript(final_url, html)

        youtube_description = None
        if resolution.text is None:
            youtube_description = extract_youtube_short_description(html)
        base_candidate = normalize_for_prompt(youtube_description) if youtube_description else normalized

        base_content = select_base_content(base_candidate, resolution.text)
        if base_content == normalized:
            base_content = strip_leading_title(base_content, metadata["title"])

        return finalize_extracted_content(
            url=final_url,
            base_content=base_content,
            title=metadata["title"],
            description=metadata["description"],
            site_name=metadata["site_name"],
            resolution=resolution,
            diagnostics=ContentDiagnostics(
                strategy="html",
                firecrawl=self.firecrawl,
                transcript=ensure_transcript_diagnostics(resolution),
            ),
        )

    async def build_from_media(self) -> ExtractedContent:
        resolution = await self.resolve_transcript(self.url, None)
        text = require_transcript(resolution, self.url)
        return finalize_extracted_content(
            url=self.url,
            base_content=select_base_content("", text),
            title=None,
            description=None,
            site_name=safe_hostname(self.url),
            resolution=resolution,
            diagnostics=ContentDiagnostics(
                strategy="transcript",
                firecrawl=self.firecrawl,
                transcript=ensure_transcript_diagnostics(resolution),
            ),
        )

    async def run(self) -> ExtractedContent:
        logger.info("Fetching %s as %s", self.url, self.kind.value)
        if (
            self.request.media_transcript_mode == MediaTranscriptMode.PREFER
            and self.kind == ResourceKind.PODCAST
            and is_direct_media_url(self.url)
        ):
            return await self.build_from_media()

        if self.request.firecrawl_mode == FirecrawlMode.ALWAYS:
            result = await self.attempt_firecrawl("Firecrawl forced via options")
            if result is not None:
                return result

        try:
            document = await fetch_html_document(self.deps, self.url, self.timeout_ms)
        except Exception as exc:
            if not self.can_use_firecrawl:
                raise
            logger.warning("HTML fetch failed for %s: %s", self.url, exc)
            result = await self.attempt_firecrawl("HTML fetch failed; falling back to Firecrawl")
            if result is not None:
                return result
            message = "Failed to fetch HTML document"
            if self.firecrawl.notes:
                message += f"; Firecrawl notes: {self.firecrawl.notes}"
            message += f"; HTML error: {exc}"
            raise FetchError(message, status=getattr(exc, "status", None)) from exc

        if self.request.firecrawl_mode == FirecrawlMode.AUTO and await asyncio.to_thread(
            should_fallback_to_firecrawl, document.html
        ):
            result = await self.attempt_firecrawl(
                "HTML content looked blocked/thin; falling back to Firecrawl"
            )
            if result is not None:
                return result

        return await self.build_from_html(document.final_url, document.html)


async def fetch_link_content(
    url: str,
    request: ExtractionRequest | None,
    deps: ExtractionDeps,
) -> ExtractedContent:
    """Resolve normalized text (and transcript, when there is one) for a URL.

    Raises:
        FetchError: no HTML and no usable scrape fallback.
        UnsupportedContentTypeError: the URL is not an HTML document (and no
            scrape fallback is usable).
        FetchTimeoutError: the HTML fetch deadline expired (same condition).
        MissingCredentialsError: direct media with media_transcript_mode=prefer
            and no transcription key configured.
        ProviderExhaustedError: direct media with media_transcript_mode=prefer
            and no transcript could be produced.
    """
    request = request or ExtractionRequest(url=url)
    return await _LinkContentRun(url.strip(), request, deps).run()
