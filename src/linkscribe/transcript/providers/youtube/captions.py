"""Caption track selection and download (json3 first, XML as the retry)."""

import asyncio
import json
import logging
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from linkscribe.transcript.providers.youtube.player import (
    extract_initial_player_response,
    fetch_player_response,
)
from linkscribe.transcript.utils import decode_html_entities

logger = logging.getLogger(__name__)

XML_TEXT_PATTERN = re.compile(r"<text[^>]*>([\s\S]*?)</text>")
XML_TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")


def extract_caption_tracks(player_response: dict | None) -> list[dict]:
    """Manual and automatic caption tracks, de-duplicated by language (first wins)."""
    if not isinstance(player_response, dict):
        return []
    captions = player_response.get("captions")
    renderer = captions.get("playerCaptionsTracklistRenderer") if isinstance(captions, dict) else None
    if not isinstance(renderer, dict):
        return []

    candidates = []
    for key in ("captionTracks", "automaticCaptions"):
        value = renderer.get(key)
        if isinstance(value, list):
            candidates.extend(track for track in value if isinstance(track, dict))

    tracks = []
    seen_languages: set[str] = set()
    for track in candidates:
        language = track.get("languageCode")
        if isinstance(language, str) and language:
            language = language.lower()
            if language in seen_languages:
                continue
            seen_languages.add(language)
        tracks.append(track)
    return tracks


def _is_english(track: dict) -> bool:
    language = str(track.get("languageCode") or "").lower()
    return language == "en" or language.startswith("en-")


def order_caption_tracks(tracks: list[dict]) -> list[dict]:
    """Auto-generated (``asr``) tracks first, then English first; ties keep source order."""
    return sorted(tracks, key=lambda track: (track.get("kind") != "asr", not _is_english(track)))


def parse_json_transcript(raw: str) -> str | None:
    """Join ``events[].segs[].utf8`` into one line per event."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    events = payload.get("events") if isinstance(payload, dict) else None
    if not isinstance(events, list):
        return None

    lines = []
    for event in events:
        segs = event.get("segs") if isinstance(event, dict) else None
        if not isinstance(segs, list):
            continue
        line = "".join(
            seg["utf8"] for seg in segs if isinstance(seg, dict) and isinstance(seg.get("utf8"), str)
        ).strip()
        if line:
            lines.append(line)
    return "\n".join(lines) or None


def parse_xml_transcript(raw: str) -> str | None:
    """Text bodies of ``<text>`` elements with entities decoded."""
    lines = []
    for match in XML_TEXT_PATTERN.finditer(raw):
        text = decode_html_entities(XML_TAG_PATTERN.sub("", match.group(1)))
        text = WHITESPACE_PATTERN.sub(" ", text).strip()
        if text:
            lines.append(text)
    return "\n".join(lines) or None


def _with_query(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _without_query(url: str, *names: str) -> str:
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    query = [(key, value) for key, value in pairs if key not in names]
    return urlunsplit(parts._replace(query=urlencode(query)))


async def _get_text(client: httpx.AsyncClient, url: str, timeout_ms: int) -> str | None:
    try:
        async with asyncio.timeout(timeout_ms / 1000):
            response = await client.get(url)
    except (httpx.HTTPError, TimeoutError) as exc:
        logger.debug("Caption request failed: %s", exc)
        return None
    if not response.is_success:
        logger.debug("Caption request returned %d", response.status_code)
        return None
    return response.text


async def download_caption_track(
    client: httpx.AsyncClient, track: dict, timeout_ms: int
) -> str | None:
    """Download one track: json3 format first, then the same track as XML."""
    base_url = track.get("baseUrl") or track.get("url")
    if not isinstance(base_url, str) or not base_url:
        return None

    raw = await _get_text(client, _with_query(base_url, fmt="json3", alt="json"), timeout_ms)
    if raw:
        text = parse_json_transcript(raw) or parse_xml_transcript(raw)
        if text:
            return text

    xml_url = _without_query(base_url, "fmt")
    raw = await _get_text(client, xml_url, timeout_ms)
    if not raw:
        return None
    return parse_json_transcript(raw) or parse_xml_transcript(raw)


async def _first_working_track(
    client: httpx.AsyncClient, player_response: dict | None, timeout_ms: int
) -> str | None:
    for track in order_caption_tracks(extract_caption_tracks(player_response)):
        text = await download_caption_track(client, track, timeout_ms)
        if text:
            return text
    return None


async def fetch_transcript_from_caption_tracks(
    client: httpx.AsyncClient,
    *,
    html: str,
    original_url: str,
    video_id: str,
    timeout_ms: int,
) -> str | None:
    """Transcript from the page's own player response, else from the player endpoint."""
    initial = await asyncio.to_thread(extract_initial_player_response, html)
    if initial is not None:
        text = await _first_working_track(client, initial, timeout_ms)
        if text:
            return text

    player_response = await fetch_player_response(
        client,
        html=html,
        video_id=video_id,
        original_url=original_url,
        timeout_ms=timeout_ms,
    )
    if player_response is None:
        return None
    return await _first_working_track(client, player_response, timeout_ms)
