"""Remote media probing and size-capped downloads."""

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from linkscribe.errors import DownloadFailedError, FetchTimeoutError
from linkscribe.extraction.router import normalize_header_type

logger = logging.getLogger(__name__)

MAX_REMOTE_MEDIA_BYTES = 512 * 1024 * 1024  # 512MB
DOWNLOAD_TIMEOUT_SECONDS = 300.0
HEAD_TIMEOUT_SECONDS = 10.0

DISPOSITION_FILENAME_PATTERN = re.compile(
    r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE
)

# (downloaded_bytes, total_bytes or None)
DownloadProgress = Callable[[int, int | None], None]


@dataclass
class MediaInfo:
    """Best-effort facts about a remote media file. Every field may be None."""

    content_length: int | None = None
    media_type: str | None = None
    filename: str | None = None


def parse_content_length(value: str | None) -> int | None:
    """Positive integer Content-Length, else None."""
    if value is None:
        return None
    try:
        length = int(float(value))
    except ValueError:
        return None
    return length if length > 0 else None


def filename_from_url(url: str) -> str | None:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    segment = unquote(path.rstrip("/").rsplit("/", 1)[-1])
    return segment or None


async def inspect_remote_media(client: httpx.AsyncClient, url: str) -> MediaInfo:
    """HEAD the media URL. Failure never aborts the flow; defaults are substituted."""
    fallback = MediaInfo(filename=filename_from_url(url))
    try:
        async with asyncio.timeout(HEAD_TIMEOUT_SECONDS):
            response = await client.head(url, follow_redirects=True)
    except (httpx.HTTPError, TimeoutError) as exc:
        logger.debug("HEAD request failed for %s: %s", url, exc)
        return fallback
    if not response.is_success:
        return fallback

    filename = None
    match = DISPOSITION_FILENAME_PATTERN.search(response.headers.get("content-disposition") or "")
    if match:
        filename = match.group(1).strip()
    return MediaInfo(
        content_length=parse_content_length(response.headers.get("content-length")),
        media_type=normalize_header_type(response.headers.get("content-type")),
        filename=filename or filename_from_url(str(response.url)) or fallback.filename,
    )


async def _close_quietly(response: httpx.Response) -> None:
    """Close a streaming response. Cancelling the reader is best-effort cleanup."""
    try:
        await response.aclose()
    except Exception as exc:
        logger.debug("Ignoring error while closing media stream: %r", exc)


async def _iter_chunks(response: httpx.Response):
    """Non-empty body chunks.

    httpx closes the stream itself once the body is exhausted; a failure raised
    by that close is ignored like any other close failure.
    """
    chunks = response.aiter_bytes()
    while True:
        try:
            chunk = await anext(chunks)
        except StopAsyncIteration:
            return
        except Exception as exc:
            if not response.is_closed:
                raise
            logger.debug("Ignoring error while closing media stream: %r", exc)
            return
        if chunk:
            yield chunk


async def _open_stream(
    client: httpx.AsyncClient, url: str, headers: dict[str, str] | None
) -> httpx.Response:
    request = client.build_request("GET", url, headers=headers)
    response = await client.send(request, stream=True, follow_redirects=True)
    if not response.is_success:
        await _close_quietly(response)
        raise DownloadFailedError(response.status_code)
    return response


async def download_capped_bytes(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: int,
    *,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = DOWNLOAD_TIMEOUT_SECONDS,
    on_progress: DownloadProgress | None = None,
) -> bytes:
    """Stream a body into memory, truncating at ``max_bytes``.

    Reading stops as soon as the budget is reached, regardless of the declared
    or actual size. Empty chunks are skipped.

    Raises:
        DownloadFailedError: non-2xx response.
        FetchTimeoutError: deadline exceeded.
    """
    buffer = bytearray()
    try:
        async with asyncio.timeout(timeout_seconds):
            response = await _open_stream(client, url, headers)
            try:
                total = parse_content_length(response.headers.get("content-length"))
                async for chunk in _iter_chunks(response):
                    remaining = max_bytes - len(buffer)
                    buffer.extend(chunk[:remaining])
                    if on_progress is not None:
                        on_progress(len(buffer), total)
                    if len(buffer) >= max_bytes:
                        break
            finally:
                await _close_quietly(response)
    except TimeoutError:
        raise FetchTimeoutError(f"Media download timed out: {url}") from None
    return bytes(buffer)


async def download_to_file(
    client: httpx.AsyncClient,
    url: str,
    target: Path,
    *,
    max_bytes: int = MAX_REMOTE_MEDIA_BYTES,
    timeout_seconds: float = DOWNLOAD_TIMEOUT_SECONDS,
    on_progress: DownloadProgress | None = None,
) -> int:
    """Stream a body to ``target`` (same chunk rules as download_capped_bytes).

    Returns:
        Number of bytes written.
    """
    written = 0
    try:
        async with asyncio.timeout(timeout_seconds):
            response = await _open_stream(client, url, None)
            try:
                total = parse_content_length(response.headers.get("content-length"))
                with open(target, "wb") as f:
                    async for chunk in _iter_chunks(response):
                        chunk = chunk[: max_bytes - written]
                        f.write(chunk)
                        written += len(chunk)
                        if on_progress is not None:
                            on_progress(written, total)
                        if written >= max_bytes:
                            break
            finally:
                await _close_quietly(response)
    except TimeoutError:
        raise FetchTimeoutError(f"Media download timed out: {url}") from None
    return written
