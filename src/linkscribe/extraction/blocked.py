"""Block-page detection with a configurable phrase list."""

import functools
import re
from pathlib import Path

import yaml

from linkscribe.extraction.article import extract_article_content, normalize_for_prompt

_CONFIG_PATH = Path(__file__).resolve().parent / "blocked_page_hints.yaml"

MIN_HTML_CONTENT_CHARACTERS = 200
NEXT_DATA_MARKER = "__NEXT_DATA__"


@functools.lru_cache
def load_blocked_hints() -> tuple[str, ...]:
    """Load block-page phrases from the YAML config file. Result is cached."""
    with open(_CONFIG_PATH) as f:
        data = yaml.safe_load(f)
    return tuple(hint.lower() for hint in data.get("hints", []))


@functools.lru_cache
def _blocked_pattern() -> re.Pattern[str]:
    return re.compile("|".join(re.escape(hint) for hint in load_blocked_hints()), re.IGNORECASE)


def looks_blocked(html: str) -> bool:
    """True when the HTML contains any known bot-check / access-denied phrase."""
    return bool(html) and bool(_blocked_pattern().search(html))


def looks_like_blocked_embed(html: str) -> bool:
    """Block check for embed pages.

    Pages that carry a Next.js structured-data script are never treated as
    blocked: the script routinely contains words like "captcha" in its config
    while the payload itself is intact.
    """
    if NEXT_DATA_MARKER in html:
        return False
    return looks_blocked(html)


def should_fallback_to_firecrawl(html: str) -> bool:
    """Blocked-looking, or readable text below MIN_HTML_CONTENT_CHARACTERS."""
    if looks_blocked(html):
        return True
    normalized = normalize_for_prompt(extract_article_content(html))
    return len(normalized) < MIN_HTML_CONTENT_CHARACTERS
