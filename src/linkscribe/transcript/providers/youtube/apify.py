"""Paid YouTube transcript fallback via an Apify actor."""

import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_APIFY_YOUTUBE_ACTOR = "dB9f4B02ocpTICIEY"
APIFY_TIMEOUT_SECONDS = 45.0
APIFY_RUN_URL = "https://api.apify.com/v2/acts/{actor}/run-sync-get-dataset-items"


def normalize_apify_actor(actor: str | None) -> str:
    """``owner/name`` becomes the API's ``owner~name`` form; empty uses the default actor."""
    actor = (actor or "").strip()
    if not actor:
        return DEFAULT_APIFY_YOUTUBE_ACTOR
    return actor.replace("/", "~")


def _normalize_transcript_value(value: object) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, list):
        lines = []
        for item in value:
            text = item.get("text") if isinstance(item, dict) else item
            if isinstance(text, str) and text.strip():
                lines.append(text.strip())
        return "\n".join(lines) or None
    return None


def extract_apify_transcript(items: object) -> str | None:
    """First dataset item whose transcript, transcriptText, or text is non-empty."""
    if not isinstance(items, list):
        return None
    for item in items:
        if not isinstance(item, dict):
            continue
        for key in ("transcript", "transcriptText", "text"):
            text = _normalize_transcript_value(item.get(key))
            if text:
                return text
    return None


async def fetch_transcript_with_apify(
    client: httpx.AsyncClient,
    api_token: str | None,
    actor: str | None,
    url: str,
) -> str | None:
    """Run the actor synchronously and read its dataset. Returns None on any failure."""
    if not api_token:
        return None

    endpoint = APIFY_RUN_URL.format(actor=normalize_apify_actor(actor))
    try:
        async with asyncio.timeout(APIFY_TIMEOUT_SECONDS):
            response = await client.post(
                endpoint,
                params={"token": api_token},
                json={"startUrls": [url], "includeTimestamps": "No"},
            )
    except (httpx.HTTPError, TimeoutError) as exc:
        logger.warning("Apify transcript request failed for %s: %s", url, exc)
        return None

    if not response.is_success:
        logger.warning("Apify transcript request returned %d for %s", response.status_code, url)
        return None
    try:
        items = response.json()
    except ValueError:
        return None
    return extract_apify_transcript(items)
