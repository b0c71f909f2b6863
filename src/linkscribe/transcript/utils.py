"""Shared helpers for transcript providers: JSON scanning, video ids, text cleanup."""

import html
import re
from urllib.parse import parse_qs, urlparse

YOUTUBE_VIDEO_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{11}$")
YOUTUBE_PATH_ID_PATTERN = re.compile(r"^/(?:shorts|embed|v|live)/([^/?#]+)")

INLINE_WHITESPACE_PATTERN = re.compile(r"[ \t\u00a0]+")


def extract_balanced_json_object(source: str, start_at: int = 0) -> str | None:
    """Return the first balanced ``{...}`` substring at or after ``start_at``.

    Embedded page scripts are not standalone JSON (``ytcfg.set({...});``,
    ``var x = {...};``), and string literals may contain braces, so this walks
    the raw characters with an explicit outside-string / in-string / escaped
    state machine. The returned slice is meant for ``json.loads``.
    """
    start = source.find("{", start_at)
    if start < 0:
        return None

    depth = 0
    quote: str | None = None
    escaped = False

    for index in range(start, len(source)):
        char = source[index]
        if quote is not None:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue

        if char in ('"', "'"):
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return source[start : index + 1]
    return None


def extract_youtube_video_id(url: str) -> str | None:
    """11-character video id from youtu.be, /watch?v=, /shorts/, /embed/, /v/, or /live/ URLs."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    hostname = (parsed.hostname or "").lower()

    candidate = None
    if hostname == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/", 1)[0]
    elif "youtube.com" in hostname:
        if parsed.path.startswith("/watch"):
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        else:
            match = YOUTUBE_PATH_ID_PATTERN.match(parsed.path)
            candidate = match.group(1) if match else None

    if candidate and YOUTUBE_VIDEO_ID_PATTERN.match(candidate):
        return candidate
    return None


def decode_html_entities(text: str) -> str:
    """Decode named and numeric entities as caption XML and feeds carry them."""
    return html.unescape(text)


def normalize_transcript_text(text: str) -> str:
    """Decode entities, collapse inline whitespace, and drop blank lines."""
    text = decode_html_entities(text).replace("\r\n", "\n").replace("\r", "\n")
    lines = (INLINE_WHITESPACE_PATTERN.sub(" ", line).strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def append_note(existing: str | None, note: str) -> str | None:
    """Join diagnostics notes with ``"; "``."""
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}; {note}"
