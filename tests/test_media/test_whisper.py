"""Tests for Whisper transcription (OpenAI first, FAL fallback)."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from linkscribe.media.whisper import (
    FAL_WHISPER_URL,
    OPENAI_TRANSCRIPTIONS_URL,
    TranscriptionRequestError,
    transcribe_media_file_with_whisper,
    transcribe_media_with_whisper,
    upload_filename,
)

MODULE = "linkscribe.media.whisper"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# --- helpers ---


def test_upload_filename():
    assert upload_filename("episode.bin", "audio/mpeg") == "episode.mp3"
    assert upload_filename(None, "audio/x-m4a") == "audio.m4a"
    assert upload_filename("clip.ogg", "application/octet-stream") == "clip.ogg"
    assert upload_filename(None, None) == "audio.mp3"


def test_decode_error_detection():
    assert TranscriptionRequestError("Audio file could not be decoded (400)").is_decode_error
    assert not TranscriptionRequestError("Rate limited (429)").is_decode_error


# --- transcribe_media_with_whisper ---


@pytest.mark.asyncio
async def test_no_keys():
    async with _client(lambda request: httpx.Response(500)) as client:
        result = await transcribe_media_with_whisper(
            client, b"abc", "audio/mpeg", "a.mp3", openai_api_key=None, fal_api_key=None
        )

    assert result.text is None
    assert result.error == "No transcription providers available: set OPENAI_API_KEY or FAL_KEY"


@pytest.mark.asyncio
async def test_openai_success():
    def handler(request):
        assert str(request.url) == OPENAI_TRANSCRIPTIONS_URL
        assert request.headers["authorization"] == "Bearer sk-test"
        assert b'name="model"' in request.content
        return httpx.Response(200, json={"text": "  Hello from Whisper  "})

    async with _client(handler) as client:
        result = await transcribe_media_with_whisper(
            client, b"abc", "audio/mpeg", "a.mp3",
            openai_api_key="sk-test", fal_api_key=None, ffmpeg_path=None,
        )

    assert result.text == "Hello from Whisper"
    assert result.provider == "openai"


@pytest.mark.asyncio
async def test_openai_failure_falls_back_to_fal():
    def handler(request):
        if str(request.url) == OPENAI_TRANSCRIPTIONS_URL:
            return httpx.Response(429, json={"error": {"message": "Rate limited"}})
        assert str(request.url) == FAL_WHISPER_URL
        assert request.headers["authorization"] == "Key fal-test"
        body = json.loads(request.content)
        assert body["audio_url"].startswith("data:audio/mpeg;base64,")
        return httpx.Response(200, json={"chunks": [{"text": "from"}, {"text": "fal"}]})

    async with _client(handler) as client:
        result = await transcribe_media_with_whisper(
            client, b"abc", "audio/mpeg", "a.mp3",
            openai_api_key="sk-test", fal_api_key="fal-test", ffmpeg_path=None,
        )

    assert result.text == "from fal"
    assert result.provider == "fal"
    assert result.notes == ["OpenAI transcription failed: Rate limited (429); falling back to FAL"]


@pytest.mark.asyncio
async def test_fal_skipped_for_video():
    async with _client(lambda request: httpx.Response(500, text="boom")) as client:
        result = await transcribe_media_with_whisper(
            client, b"abc", "video/mp4", "a.mp4",
            openai_api_key="sk-test", fal_api_key="fal-test", ffmpeg_path=None,
        )

    assert result.text is None
    assert result.error.startswith("OpenAI transcription failed")
    assert result.notes == ["Skipping FAL transcription: video/mp4 is not an audio type"]


@pytest.mark.asyncio
async def test_undecodable_without_ffmpeg_adds_note():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Audio file could not be decoded"}})

    with patch(f"{MODULE}.resolve_executable", return_value=None):
        async with _client(handler) as client:
            result = await transcribe_media_with_whisper(
                client, b"abc", "audio/ogg", "a.ogg", openai_api_key="sk-test", fal_api_key=None
            )

    assert result.text is None
    assert "install ffmpeg to enable transcoding" in result.notes[0]


@pytest.mark.asyncio
async def test_undecodable_retries_after_transcode():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(400, json={"error": {"message": "Invalid file format."}})
        assert b'filename="audio.mp3"' in request.content
        return httpx.Response(200, json={"text": "second try"})

    with (
        patch(f"{MODULE}.resolve_executable", return_value="/usr/bin/ffmpeg"),
        patch(f"{MODULE}._transcode_bytes", new_callable=AsyncMock, return_value=b"mp3"),
    ):
        async with _client(handler) as client:
            result = await transcribe_media_with_whisper(
                client, b"abc", "audio/ogg", "a.ogg", openai_api_key="sk-test", fal_api_key=None
            )

    assert result.text == "second try"
    assert "transcoding via ffmpeg and retrying" in result.notes[0]


@pytest.mark.asyncio
async def test_oversize_without_ffmpeg_truncates_upload():
    uploads = []

    def handler(request):
        uploads.append(request.content)
        return httpx.Response(200, json={"text": "partial"})

    with (
        patch(f"{MODULE}.MAX_OPENAI_UPLOAD_BYTES", 10),
        patch(f"{MODULE}.resolve_executable", return_value=None),
    ):
        async with _client(handler) as client:
            result = await transcribe_media_with_whisper(
                client, b"x" * 100, "audio/mpeg", "a.mp3", openai_api_key="sk-test", fal_api_key=None
            )

    assert result.text == "partial"
    assert "install ffmpeg to enable chunked transcription" in result.notes[0]
    assert b"x" * 11 not in uploads[0]


@pytest.mark.asyncio
async def test_openai_non_json_body_falls_back_to_fal():
    def handler(request):
        if str(request.url) == OPENAI_TRANSCRIPTIONS_URL:
            return httpx.Response(200, text="<html>gateway</html>")
        return httpx.Response(200, json={"text": "from fal"})

    async with _client(handler) as client:
        result = await transcribe_media_with_whisper(
            client, b"abc", "audio/mpeg", "a.mp3",
            openai_api_key="sk-test", fal_api_key="fal-test", ffmpeg_path=None,
        )

    assert result.text == "from fal"
    assert result.provider == "fal"
    assert result.notes == [
        "OpenAI transcription failed: unparsable response: <html>gateway</html> (200); falling back to FAL"
    ]


@pytest.mark.asyncio
async def test_openai_list_payload_is_reported():
    def handler(request):
        return httpx.Response(200, json=[{"text": "not an object"}])

    async with _client(handler) as client:
        result = await transcribe_media_with_whisper(
            client, b"abc", "audio/mpeg", "a.mp3",
            openai_api_key="sk-test", fal_api_key=None, ffmpeg_path=None,
        )

    assert result.text is None
    assert result.error == "OpenAI transcription failed: unexpected response payload (200)"


@pytest.mark.asyncio
async def test_timeout_after_transcode_is_not_blamed_on_ffmpeg():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(400, json={"error": {"message": "Invalid file format."}})
        raise TimeoutError("upstream stalled")

    with (
        patch(f"{MODULE}.resolve_executable", return_value="/usr/bin/ffmpeg"),
        patch(f"{MODULE}._transcode_bytes", new_callable=AsyncMock, return_value=b"mp3"),
    ):
        async with _client(handler) as client:
            result = await transcribe_media_with_whisper(
                client, b"abc", "audio/ogg", "a.ogg", openai_api_key="sk-test", fal_api_key=None
            )

    assert result.text is None
    assert result.error == "OpenAI transcription failed after transcoding: upstream stalled"
    assert "ffmpeg" not in result.error


# --- transcribe_media_file_with_whisper ---


@pytest.mark.asyncio
async def test_file_under_limit_is_sent_whole(tmp_path):
    audio = tmp_path / "ep.mp3"
    audio.write_bytes(b"abc")

    async with _client(lambda request: httpx.Response(200, json={"text": "whole"})) as client:
        result = await transcribe_media_file_with_whisper(
            client, audio, "audio/mpeg", openai_api_key="sk-test", fal_api_key=None
        )

    assert result.text == "whole"


@pytest.mark.asyncio
async def test_file_over_limit_is_chunked(tmp_path):
    audio = tmp_path / "ep.mp3"
    audio.write_bytes(b"x" * 100)
    parts_dir = tmp_path / "parts"
    parts_dir.mkdir()
    parts = []
    for index in range(3):
        part = parts_dir / f"part-{index:03d}.mp3"
        part.write_bytes(b"p")
        parts.append(part)

    responses = iter(["one", "two", "three"])
    progress = []

    with (
        patch(f"{MODULE}.MAX_OPENAI_UPLOAD_BYTES", 10),
        patch(f"{MODULE}.resolve_executable", return_value="/usr/bin/ffmpeg"),
        patch(f"{MODULE}.segment_audio", new_callable=AsyncMock, return_value=parts),
    ):
        async with _client(lambda request: httpx.Response(200, json={"text": next(responses)})) as client:
            result = await transcribe_media_file_with_whisper(
                client, audio, "audio/mpeg", openai_api_key="sk-test", fal_api_key=None,
                on_part=lambda done, total: progress.append((done, total)),
            )

    assert result.text == "one\n\ntwo\n\nthree"
    assert result.notes == ["ffmpeg chunked media into 3 parts"]
    assert progress == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_file_over_limit_without_ffmpeg_reads_prefix(tmp_path):
    audio = tmp_path / "ep.mp3"
    audio.write_bytes(b"x" * 100)
    uploads = []

    def handler(request):
        uploads.append(request.content)
        return httpx.Response(200, json={"text": "prefix"})

    with (
        patch(f"{MODULE}.MAX_OPENAI_UPLOAD_BYTES", 10),
        patch(f"{MODULE}.resolve_executable", return_value=None),
    ):
        async with _client(handler) as client:
            result = await transcribe_media_file_with_whisper(
                client, audio, "audio/mpeg", openai_api_key="sk-test", fal_api_key=None
            )

    assert result.text == "prefix"
    assert result.notes[0].startswith("Media too large for Whisper upload")
    assert b"x" * 11 not in uploads[0]
