"""HTML document fetch and the paid scrape fallback adapter."""

import asyncio
import logging

import httpx

from linkscribe.deps import ExtractionDeps, ScrapeFn
from linkscribe.errors import FetchError, FetchTimeoutError, UnsupportedContentTypeError
from linkscribe.extraction.router import HTML_CONTENT_TYPES, is_youtube_url, normalize_header_type
from linkscribe.models.content import (
    DEFAULT_TIMEOUT_MS,
    CacheMode,
    CacheStatus,
    FetchedDocument,
    FirecrawlDiagnostics,
    FirecrawlPayload,
    ProgressEvent,
)
from linkscribe.transcript.utils import append_note

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
}


async def fetch_html_document(
    deps: ExtractionDeps,
    url: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> FetchedDocument:
    """Stream an HTML document within a deadline.

    Emits one ``fetch-html-progress`` event per received chunk. ``final_url``
    is the URL after redirects.

    Raises:
        FetchError: non-2xx status.
        UnsupportedContentTypeError: the response is not HTML.
        FetchTimeoutError: the deadline expired.
        httpx.HTTPError: network failure.
    """
    deps.emit(ProgressEvent(kind="fetch-html-start", url=url))
    try:
        async with asyncio.timeout(timeout_ms / 1000):
            async with deps.client.stream(
                "GET", url, headers=DEFAULT_HEADERS, follow_redirects=True
            ) as response:
                if not response.is_success:
                    raise FetchError(
                        f"Failed to fetch HTML document (status {response.status_code})",
                        status=response.status_code,
                    )
                content_type = normalize_header_type(response.headers.get("content-type"))
                if content_type and content_type not in HTML_CONTENT_TYPES:
                    raise UnsupportedContentTypeError(content_type)

                total = response.headers.get("content-length")
                total_bytes = int(total) if total and total.isdigit() else None
                chunks: list[bytes] = []
                downloaded = 0
                async for chunk in response.aiter_bytes():
                    if not chunk:
                        continue
                    chunks.append(chunk)
                    downloaded += len(chunk)
                    deps.emit(
                        ProgressEvent(
                            kind="fetch-html-progress",
                            url=url,
                            downloaded_bytes=downloaded,
                            total_bytes=total_bytes,
                        )
                    )
                body = b"".join(chunks)
                encoding = response.charset_encoding or "utf-8"
                final_url = str(response.url)
    except TimeoutError:
        raise FetchTimeoutError("Fetching HTML document timed out") from None

    try:
        html = body.decode(encoding, errors="replace")
    except LookupError:
        html = body.decode("utf-8", errors="replace")

    deps.emit(ProgressEvent(kind="fetch-html-done", url=url, downloaded_bytes=downloaded, ok=True))
    if final_url != url:
        logger.debug("Fetched %s via redirect to %s", url, final_url)
    return FetchedDocument(final_url=final_url, html=html, content_type=content_type)


async def fetch_with_firecrawl(
    deps: ExtractionDeps,
    url: str,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    cache_mode: CacheMode = CacheMode.DEFAULT,
    reason: str | None = None,
) -> tuple[FirecrawlPayload | None, FirecrawlDiagnostics]:
    """Invoke the optional scrape capability. Never raises.

    Returns:
        (payload, diagnostics). The payload is None when the scrape was
        skipped, failed, or returned nothing usable; diagnostics.notes says why.
    """
    diagnostics = FirecrawlDiagnostics(
        cache_mode=cache_mode,
        cache_status=CacheStatus.BYPASSED if cache_mode == CacheMode.BYPASS else CacheStatus.UNKNOWN,
        notes=reason,
    )
    if is_youtube_url(url):
        diagnostics.notes = append_note(diagnostics.notes, "Skipped Firecrawl for YouTube URL")
        return None, diagnostics

    scrape: ScrapeFn | None = deps.scrape_with_firecrawl
    if scrape is None:
        diagnostics.notes = append_note(diagnostics.notes, "Firecrawl is not configured")
        return None, diagnostics

    diagnostics.attempted = True
    deps.emit(ProgressEvent(kind="firecrawl-start", url=url, hint=reason))
    payload: FirecrawlPayload | None = None
    try:
        async with asyncio.timeout(timeout_ms / 1000):
            payload = await scrape(url, cache_mode=cache_mode, timeout_ms=timeout_ms)
    except TimeoutError:
        diagnostics.notes = append_note(diagnostics.notes, "Firecrawl error: timed out")
    except Exception as exc:
        logger.warning("Firecrawl scrape failed for %s: %s", url, exc)
        diagnostics.notes = append_note(diagnostics.notes, f"Firecrawl error: {exc}")
    else:
        if payload is None:
            diagnostics.notes = append_note(
                diagnostics.notes, "Firecrawl returned no content payload"
            )

    usable = payload is not None and bool(payload.markdown.strip() or (payload.html or "").strip())
    deps.emit(ProgressEvent(kind="firecrawl-done", url=url, ok=usable))
    if not usable:
        if payload is not None:
            diagnostics.notes = append_note(diagnostics.notes, "Firecrawl returned empty content")
        return None, diagnostics

    diagnostics.used = True
    return payload, diagnostics
