"""Transcript panel endpoint (``/youtubei/v1/get_transcript``)."""

import logging
import re

import httpx

from linkscribe.transcript.providers.youtube.player import (
    YOUTUBE_ORIGIN,
    build_bootstrap_context,
    build_bootstrap_headers,
    extract_bootstrap_config,
    post_json,
)

logger = logging.getLogger(__name__)

GET_TRANSCRIPT_ENDPOINT = f"{YOUTUBE_ORIGIN}/youtubei/v1/get_transcript"
TRANSCRIPT_PARAMS_PATTERN = re.compile(r'"getTranscriptEndpoint":\{"params":"([^"]+)"')


def extract_youtubei_transcript_config(html: str) -> dict | None:
    """API key, bootstrap, and transcript params when the page exposes a transcript panel.

    Returns:
        Dict with ``api_key``, ``params``, and ``bootstrap``, or None when any
        piece is missing.
    """
    match = TRANSCRIPT_PARAMS_PATTERN.search(html or "")
    if not match:
        return None
    bootstrap = extract_bootstrap_config(html)
    if bootstrap is None:
        return None
    api_key = bootstrap.get("INNERTUBE_API_KEY")
    if not isinstance(api_key, str) or not api_key:
        return None
    return {"api_key": api_key, "params": match.group(1), "bootstrap": bootstrap}


def _collect_segments(node: object, lines: list[str]) -> None:
    """Walk the response for ``transcriptSegmentRenderer`` snippets, in document order."""
    if isinstance(node, list):
        for item in node:
            _collect_segments(item, lines)
        return
    if not isinstance(node, dict):
        return

    segment = node.get("transcriptSegmentRenderer")
    if isinstance(segment, dict):
        snippet = segment.get("snippet") or {}
        runs = snippet.get("runs") if isinstance(snippet, dict) else None
        if isinstance(runs, list):
            text = "".join(run.get("text", "") for run in runs if isinstance(run, dict)).strip()
            if text:
                lines.append(text)
        return

    for value in node.values():
        _collect_segments(value, lines)


def parse_transcript_endpoint_response(payload: dict) -> str | None:
    lines: list[str] = []
    _collect_segments(payload, lines)
    return "\n".join(lines) or None


async def fetch_transcript_from_transcript_endpoint(
    client: httpx.AsyncClient,
    *,
    config: dict,
    original_url: str,
    timeout_ms: int,
) -> str | None:
    bootstrap = config["bootstrap"]
    context = build_bootstrap_context(bootstrap, original_url)
    if context is None:
        return None
    payload = await post_json(
        client,
        f"{GET_TRANSCRIPT_ENDPOINT}?key={config['api_key']}",
        {"context": context, "params": config["params"]},
        build_bootstrap_headers(bootstrap, original_url),
        timeout_ms,
    )
    if payload is None:
        return None
    return parse_transcript_endpoint_response(payload)
