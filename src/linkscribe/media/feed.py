"""RSS/Atom enclosure parsing.

Feeds in the wild are often not well-formed XML (stray entities, CDATA in
odd places), so items are located with tolerant patterns rather than an
XML parser.
"""

import re
from dataclasses import dataclass

from linkscribe.transcript.utils import decode_html_entities

ITEM_PATTERN = re.compile(r"<(item|entry)\b[\s\S]*?</\1>", re.IGNORECASE)
TITLE_PATTERN = re.compile(r"<title\b[^>]*>([\s\S]*?)</title>", re.IGNORECASE)
CDATA_PATTERN = re.compile(r"<!\[CDATA\[([\s\S]*?)\]\]>")
ENCLOSURE_TAG_PATTERN = re.compile(r"<enclosure\b[^>]*>", re.IGNORECASE)
LINK_TAG_PATTERN = re.compile(r"<link\b[^>]*>", re.IGNORECASE)
ATTRIBUTE_PATTERN = re.compile(r"([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
DURATION_PATTERN = re.compile(r"<itunes:duration\b[^>]*>([\s\S]*?)</itunes:duration>", re.IGNORECASE)
FEED_MARKER_PATTERN = re.compile(r"<rss\b|<feed\b[^>]*xmlns=[\"']http://www\.w3\.org/2005/Atom", re.IGNORECASE)

# Curly quotes and dashes mis-decoded as Windows-1252
MOJIBAKE = {"â€“": "-", "â€”": "-", "â€™": "'", "â€˜": "'", "â€œ": '"', "â€\x9d": '"'}
NON_WORD_PATTERN = re.compile(r"[^\w]+", re.UNICODE)


@dataclass
class Enclosure:
    url: str  # Raw attribute value; entities are decoded by the caller
    duration_seconds: int | None = None
    title: str | None = None


def looks_like_feed(text: str | None) -> bool:
    return bool(text) and bool(FEED_MARKER_PATTERN.search(text[:4096]))


def _attributes(tag: str) -> dict[str, str]:
    return {
        match.group(1).lower(): match.group(2) if match.group(2) is not None else match.group(3)
        for match in ATTRIBUTE_PATTERN.finditer(tag)
    }


def parse_duration_seconds(raw: str | None) -> int | None:
    """``SS``, ``M:SS``, or ``H:MM:SS``. Zero or unparsable values give None."""
    if raw is None:
        return None
    value = CDATA_PATTERN.sub(r"\1", raw).strip()
    if not value:
        return None
    parts = value.split(":")
    if len(parts) > 3 or not all(part.strip().isdigit() for part in parts):
        return None
    seconds = 0
    for part in parts:
        seconds = seconds * 60 + int(part)
    return seconds or None


def extract_item_duration_seconds(item_xml: str) -> int | None:
    match = DURATION_PATTERN.search(item_xml)
    return parse_duration_seconds(match.group(1)) if match else None


def extract_item_title(item_xml: str) -> str | None:
    match = TITLE_PATTERN.search(item_xml)
    if not match:
        return None
    title = CDATA_PATTERN.sub(r"\1", match.group(1)).strip()
    return decode_html_entities(title) or None


def extract_enclosure_url(fragment: str) -> str | None:
    """``<enclosure url>`` (RSS) or ``<link rel="enclosure" href>`` (Atom)."""
    for tag in ENCLOSURE_TAG_PATTERN.findall(fragment):
        url = _attributes(tag).get("url")
        if url:
            return url.strip()
    for tag in LINK_TAG_PATTERN.findall(fragment):
        attributes = _attributes(tag)
        if attributes.get("rel", "").lower() == "enclosure" and attributes.get("href"):
            return attributes["href"].strip()
    return None


def iter_enclosures(feed: str):
    """Yield every item's enclosure in feed order.

    A feed without ``<item>``/``<entry>`` wrappers yields its first top-level
    enclosure, if any.
    """
    found = False
    for match in ITEM_PATTERN.finditer(feed):
        item = match.group(0)
        url = extract_enclosure_url(item)
        if url:
            found = True
            yield Enclosure(
                url=url,
                duration_seconds=extract_item_duration_seconds(item),
                title=extract_item_title(item),
            )
    if not found:
        url = extract_enclosure_url(feed)
        if url:
            yield Enclosure(url=url, duration_seconds=extract_item_duration_seconds(feed))


def normalize_episode_title(title: str) -> str:
    """Lowercased words only, so typographic and mis-encoded punctuation compare equal."""
    for broken, replacement in MOJIBAKE.items():
        title = title.replace(broken, replacement)
    title = decode_html_entities(title).lower()
    return NON_WORD_PATTERN.sub(" ", title).strip()


def extract_enclosure_for_episode(feed: str, episode_title: str) -> Enclosure | None:
    """The enclosure whose item title matches ``episode_title`` after normalization."""
    wanted = normalize_episode_title(episode_title)
    if not wanted:
        return None
    for enclosure in iter_enclosures(feed):
        if enclosure.title and normalize_episode_title(enclosure.title) == wanted:
            return enclosure
    return None


def extract_first_enclosure(feed: str) -> Enclosure | None:
    return next(iter_enclosures(feed), None)
