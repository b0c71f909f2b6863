"""Readable text and page metadata extraction using trafilatura and BeautifulSoup."""

import logging
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from trafilatura import extract

from linkscribe.transcript.providers.youtube.player import extract_initial_player_response

logger = logging.getLogger(__name__)

WWW_PREFIX_PATTERN = re.compile(r"^www\.", re.IGNORECASE)
CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
INLINE_SPACE_PATTERN = re.compile(r"[ \t\f\v\u00a0\u200b]+")
EXCESS_NEWLINES_PATTERN = re.compile(r"\n{3,}")
WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_for_prompt(text: str | None) -> str:
    """Normalize text for an LLM prompt.

    Unifies newlines, strips control characters, collapses runs of inline
    whitespace, trims each line, and keeps at most one blank line between
    paragraphs.
    """
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = CONTROL_CHARS_PATTERN.sub("", text)
    lines = [INLINE_SPACE_PATTERN.sub(" ", line).strip() for line in text.split("\n")]
    text = EXCESS_NEWLINES_PATTERN.sub("\n\n", "\n".join(lines))
    return text.strip()


def normalize_candidate(value: str | None) -> str | None:
    """Collapse whitespace in a metadata value; empty becomes None."""
    if not value:
        return None
    collapsed = WHITESPACE_PATTERN.sub(" ", value).strip()
    return collapsed or None


def safe_hostname(url: str) -> str | None:
    """Hostname without a leading ``www.``, or None for unparseable URLs."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return WWW_PREFIX_PATTERN.sub("", hostname)


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def visible_body_text(soup: BeautifulSoup) -> str:
    """Raw visible text of <body> (or the whole document) without scripts or styles."""
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    root = soup.body or soup
    return root.get_text("\n", strip=True)


def extract_article_content(html: str) -> str:
    """Extract the main readable region of an HTML page.

    Uses trafilatura's content scoring (navigation, footers, and comments are
    dropped). Falls back to the visible body text when scoring finds nothing.
    Never raises on malformed input; the worst case is an empty string.
    """
    if not html or not html.strip():
        return ""
    try:
        text = extract(
            html,
            include_comments=False,
            include_tables=False,
            favor_recall=True,
        )
    except Exception:
        logger.debug("trafilatura failed to extract readable text", exc_info=True)
        text = None
    if text:
        return text

    try:
        return visible_body_text(_parse(html))
    except Exception:
        logger.debug("Could not parse HTML body text", exc_info=True)
        return ""


def _meta_content(soup: BeautifulSoup, *keys: str) -> str | None:
    """First non-empty <meta content> whose property or name matches one of keys."""
    for key in keys:
        for attr in ("property", "name"):
            tag = soup.find("meta", attrs={attr: key})
            if tag is None:
                continue
            value = normalize_candidate(tag.get("content"))
            if value:
                return value
    return None


def extract_metadata_from_html(html: str, url: str) -> dict[str, str | None]:
    """Title, description, and site name from Open Graph, Twitter, and standard tags.

    Returns:
        Dict with keys ``title``, ``description``, ``site_name``. Any value may
        be None except site_name, which falls back to the URL hostname.
    """
    try:
        soup = _parse(html)
    except Exception:
        logger.debug("Could not parse HTML metadata for %s", url, exc_info=True)
        return {"title": None, "description": None, "site_name": safe_hostname(url)}

    title = _meta_content(soup, "og:title", "twitter:title")
    if title is None and soup.title is not None:
        title = normalize_candidate(soup.title.get_text())

    description = _meta_content(soup, "og:description", "twitter:description", "description")
    site_name = _meta_content(soup, "og:site_name", "application-name") or safe_hostname(url)
    return {"title": title, "description": description, "site_name": site_name}


def extract_metadata_from_firecrawl(metadata: dict | None) -> dict[str, str | None]:
    """Map scrape-service metadata keys onto title/description/site_name."""
    if not metadata:
        return {"title": None, "description": None, "site_name": None}

    def pick(*keys: str) -> str | None:
        for key in keys:
            value = metadata.get(key)
            if isinstance(value, list):
                value = value[0] if value else None
            if isinstance(value, str) and normalize_candidate(value):
                return normalize_candidate(value)
        return None

    return {
        "title": pick("title", "ogTitle", "og:title"),
        "description": pick("description", "ogDescription", "og:description"),
        "site_name": pick("siteName", "ogSiteName", "og:site_name"),
    }


def extract_youtube_short_description(html: str) -> str | None:
    """Video description from a YouTube watch page's initial player response."""
    player_response = extract_initial_player_response(html)
    if not player_response:
        return None
    details = player_response.get("videoDetails")
    if not isinstance(details, dict):
        return None
    description = details.get("shortDescription")
    if isinstance(description, str) and description.strip():
        return description.strip()
    return None
