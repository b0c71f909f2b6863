"""YouTube watch-page parsing and the private player endpoint.

A watch page embeds two script objects this module cares about:

- ``ytInitialPlayerResponse = {...}``: the player payload, including
  caption tracks and video details.
- ``ytcfg.set({...})``: the bootstrap configuration (API key, client
  identity, visitor and session tokens) needed to call ``/youtubei/v1/*``.

Neither is valid standalone JSON, so both are cut out with the balanced-brace
scanner before parsing.
"""

import asyncio
import copy
import json
import logging
import re

import httpx
from bs4 import BeautifulSoup

from linkscribe.transcript.utils import extract_balanced_json_object

logger = logging.getLogger(__name__)

INITIAL_PLAYER_RESPONSE_TOKEN = "ytInitialPlayerResponse"
BOOTSTRAP_TOKENS = ("ytcfg.set", "var ytcfg")
XSSI_PREFIX = ")]}'"
INNERTUBE_API_KEY_PATTERN = re.compile(
    r'"INNERTUBE_API_KEY":"([^"]+)"|INNERTUBE_API_KEY\\":\\"([^\\"]+)\\"'
)

YOUTUBE_ORIGIN = "https://www.youtube.com"
PLAYER_ENDPOINT = f"{YOUTUBE_ORIGIN}/youtubei/v1/player"

# Fixed client identity used when the page bootstrap is missing or rejected
ANDROID_CLIENT_NAME = "ANDROID"
ANDROID_CLIENT_ID = "3"
ANDROID_CLIENT_VERSION = "20.10.38"


def _loads_dict(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_initial_player_response(html: str) -> dict | None:
    """Parse the ``ytInitialPlayerResponse`` object embedded in a watch page."""
    if not html:
        return None
    token_index = html.find(INITIAL_PLAYER_RESPONSE_TOKEN)
    if token_index < 0:
        return None
    assignment_index = html.find("=", token_index)
    if assignment_index < 0:
        return None
    return _loads_dict(extract_balanced_json_object(html, assignment_index))


def parse_bootstrap_from_script(source: str) -> dict | None:
    """Parse the first ``ytcfg.set({...})`` (or ``var ytcfg = {...}``) object in a script."""
    sanitized = source.lstrip()
    if sanitized.startswith(XSSI_PREFIX):
        sanitized = sanitized[len(XSSI_PREFIX) :]

    for token in BOOTSTRAP_TOKENS:
        index = sanitized.find(token)
        while index >= 0:
            parsed = _loads_dict(extract_balanced_json_object(sanitized, index + len(token)))
            if parsed is not None:
                return parsed
            index = sanitized.find(token, index + len(token))
    return None


def extract_bootstrap_config(html: str) -> dict | None:
    """Bootstrap configuration from the page, trying each <script> before the whole document."""
    if not html:
        return None
    try:
        scripts = BeautifulSoup(html, "html.parser").find_all("script")
    except Exception:
        logger.debug("Could not parse watch page scripts", exc_info=True)
        scripts = []
    for script in scripts:
        text = script.string or script.get_text()
        if not text or "ytcfg" not in text:
            continue
        config = parse_bootstrap_from_script(text)
        if config is not None:
            return config
    return parse_bootstrap_from_script(html)


def extract_innertube_api_key(html: str, bootstrap: dict | None = None) -> str | None:
    if bootstrap and isinstance(bootstrap.get("INNERTUBE_API_KEY"), str):
        return bootstrap["INNERTUBE_API_KEY"]
    match = INNERTUBE_API_KEY_PATTERN.search(html or "")
    if not match:
        return None
    return match.group(1) or match.group(2)


def build_bootstrap_headers(bootstrap: dict, original_url: str) -> dict[str, str]:
    """Headers the web client sends alongside bootstrap-authenticated requests."""
    context = bootstrap.get("INNERTUBE_CONTEXT") or {}
    client_context = context.get("client") if isinstance(context, dict) else None
    client_context = client_context if isinstance(client_context, dict) else {}

    headers = {
        "Content-Type": "application/json",
        "Origin": YOUTUBE_ORIGIN,
        "Referer": original_url,
        "X-Goog-AuthUser": "0",
    }
    optional = {
        "X-Youtube-Client-Name": bootstrap.get("INNERTUBE_CONTEXT_CLIENT_NAME"),
        "X-Youtube-Client-Version": bootstrap.get("INNERTUBE_CONTEXT_CLIENT_VERSION")
        or client_context.get("clientVersion"),
        "X-Goog-Visitor-Id": bootstrap.get("VISITOR_DATA") or client_context.get("visitorData"),
        "X-Youtube-Page-CL": bootstrap.get("PAGE_CL"),
        "X-Youtube-Page-Label": bootstrap.get("PAGE_BUILD_LABEL"),
        "X-Youtube-Identity-Token": bootstrap.get("ID_TOKEN"),
    }
    for name, value in optional.items():
        if value is not None and value != "":
            headers[name] = str(value)
    return headers


def build_bootstrap_context(bootstrap: dict, original_url: str) -> dict | None:
    """INNERTUBE_CONTEXT with ``client.originalUrl`` set to the page URL."""
    context = bootstrap.get("INNERTUBE_CONTEXT")
    if not isinstance(context, dict):
        return None
    context = copy.deepcopy(context)
    client_context = context.get("client")
    if not isinstance(client_context, dict):
        client_context = {}
        context["client"] = client_context
    client_context["originalUrl"] = original_url
    return context


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    body: dict,
    headers: dict[str, str],
    timeout_ms: int,
) -> dict | None:
    """POST and parse a JSON object. Non-2xx or unparsable bodies return None."""
    try:
        async with asyncio.timeout(timeout_ms / 1000):
            response = await client.post(url, json=body, headers=headers)
    except (httpx.HTTPError, TimeoutError) as exc:
        logger.debug("youtubei request failed: %s (%s)", url.split("?", 1)[0], exc)
        return None
    if not response.is_success:
        logger.debug("youtubei request returned %d: %s", response.status_code, url.split("?", 1)[0])
        return None
    return _loads_dict(response.text)


async def _fetch_with_bootstrap(
    client: httpx.AsyncClient,
    bootstrap: dict,
    video_id: str,
    original_url: str,
    timeout_ms: int,
) -> dict | None:
    api_key = bootstrap.get("INNERTUBE_API_KEY")
    context = build_bootstrap_context(bootstrap, original_url)
    if not isinstance(api_key, str) or context is None:
        return None
    body = {
        "context": context,
        "videoId": video_id,
        "playbackContext": {
            "contentPlaybackContext": {"html5Preference": "HTML5_PREF_WANTS"},
        },
        "contentCheckOk": True,
        "racyCheckOk": True,
    }
    return await post_json(
        client,
        f"{PLAYER_ENDPOINT}?key={api_key}",
        body,
        build_bootstrap_headers(bootstrap, original_url),
        timeout_ms,
    )


async def _fetch_with_android_client(
    client: httpx.AsyncClient,
    api_key: str,
    video_id: str,
    timeout_ms: int,
) -> dict | None:
    body = {
        "context": {
            "client": {
                "clientName": ANDROID_CLIENT_NAME,
                "clientVersion": ANDROID_CLIENT_VERSION,
            },
        },
        "videoId": video_id,
    }
    headers = {
        "Content-Type": "application/json",
        "User-Agent": f"com.google.android.youtube/{ANDROID_CLIENT_VERSION} (Linux; U; Android 14) gzip",
        "X-Youtube-Client-Name": ANDROID_CLIENT_ID,
        "X-Youtube-Client-Version": ANDROID_CLIENT_VERSION,
    }
    return await post_json(client, f"{PLAYER_ENDPOINT}?key={api_key}", body, headers, timeout_ms)


async def fetch_player_response(
    client: httpx.AsyncClient,
    *,
    html: str,
    video_id: str,
    original_url: str,
    timeout_ms: int,
) -> dict | None:
    """Fetch the player payload from ``/youtubei/v1/player``.

    Uses the page bootstrap (web client identity and session headers) first.
    If the bootstrap is missing, or that request fails or returns unparsable
    JSON, retries once with the fixed ANDROID client identity. The ANDROID
    request only needs the page's INNERTUBE_API_KEY.
    """
    bootstrap = await asyncio.to_thread(extract_bootstrap_config, html)
    if bootstrap is not None:
        payload = await _fetch_with_bootstrap(client, bootstrap, video_id, original_url, timeout_ms)
        if payload is not None:
            return payload
        logger.debug("Bootstrap player request failed for %s, retrying as ANDROID", video_id)

    api_key = extract_innertube_api_key(html, bootstrap)
    if not api_key:
        return None
    return await _fetch_with_android_client(client, api_key, video_id, timeout_ms)
