"""Exception types raised at the edges of the extraction pipeline.

Providers and the scrape fallback never raise these past their own boundary;
they return empty results plus diagnostics notes instead. Only the outermost
HTML fetch, media downloads (caught by the media provider), and explicit
"a transcript is required" checks surface them to callers.
"""


class LinkscribeError(Exception):
    """Base class for all pipeline errors."""


class FetchError(LinkscribeError):
    """Non-2xx response (or no content at all) while fetching a document."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class UnsupportedContentTypeError(LinkscribeError):
    """The document is not HTML."""

    def __init__(self, content_type: str):
        super().__init__(f"Unsupported content-type for HTML document fetch: {content_type}")
        self.content_type = content_type


class FetchTimeoutError(LinkscribeError, TimeoutError):
    """A deadline expired. Distinct from network failures (httpx.HTTPError)."""


class DownloadFailedError(LinkscribeError):
    """Media download returned a non-2xx status."""

    def __init__(self, status: int):
        super().__init__(f"Download failed ({status})")
        self.status = status


class MissingCredentialsError(LinkscribeError):
    """Transcription requested but neither OPENAI_API_KEY nor FAL_KEY is configured."""


class ProviderExhaustedError(LinkscribeError):
    """Every tier of a transcript provider chain failed."""

    def __init__(self, message: str, notes: str | None = None):
        if notes:
            message = f"{message}; {notes}"
        super().__init__(message)
        self.notes = notes
