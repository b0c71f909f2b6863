"""Speech-to-text via OpenAI Whisper, with FAL as the audio fallback.

Both providers are called over plain HTTPS through the shared httpx client.
ffmpeg, when available, is used only to make media fit the upload limit:
re-encoding undecodable input and splitting long files into parts.
"""

import asyncio
import base64
import logging
import subprocess
import tempfile
from collections.abc import Callable
from pathlib import Path

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from linkscribe.errors import FetchTimeoutError
from linkscribe.media.process import resolve_executable, segment_audio, transcode_to_mp3

logger = logging.getLogger(__name__)

MAX_OPENAI_UPLOAD_BYTES = 25 * 1024 * 1024  # 25MB
OPENAI_TRANSCRIPTIONS_URL = "https://api.openai.com/v1/audio/transcriptions"
OPENAI_WHISPER_MODEL = "whisper-1"
FAL_WHISPER_URL = "https://fal.run/fal-ai/wizper"
TRANSCRIPTION_TIMEOUT_SECONDS = 600.0
FFMPEG_TIMEOUT_SECONDS = 600.0
DEFAULT_SEGMENT_SECONDS = 600
MAX_ERROR_DETAIL_CHARS = 200

DECODE_ERROR_HINTS = ("could not be decoded", "invalid file format", "unsupported", "decode")

EXTENSION_BY_MEDIA_TYPE = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/aac": "aac",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/ogg": "ogg",
    "audio/opus": "opus",
    "audio/flac": "flac",
    "audio/webm": "webm",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "video/mpeg": "mpeg",
}

# (parts_done, parts_total)
PartProgress = Callable[[int, int], None]


class TranscriptionResult(BaseModel):
    text: str | None = None
    provider: str | None = None  # "openai" or "fal"
    error: str | None = None
    notes: list[str] = Field(default_factory=list)


class TranscriptionRequestError(Exception):
    """A transcription provider rejected the request."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

    @property
    def is_decode_error(self) -> bool:
        message = str(self).lower()
        return any(hint in message for hint in DECODE_ERROR_HINTS)


def _truncate(message: str, limit: int = MAX_ERROR_DETAIL_CHARS) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 1].rstrip() + "…"


def _is_audio(media_type: str | None) -> bool:
    return bool(media_type) and media_type.startswith("audio/")


def upload_filename(filename: str | None, media_type: str | None) -> str:
    """Filename whose extension the transcription API will accept."""
    extension = EXTENSION_BY_MEDIA_TYPE.get(media_type or "")
    stem = Path(filename).stem if filename else "audio"
    if extension is None:
        suffix = Path(filename).suffix.lstrip(".") if filename else ""
        extension = suffix or "mp3"
    return f"{stem or 'audio'}.{extension}"


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    wait=wait_fixed(1),
    stop=stop_after_attempt(2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _transcribe_with_openai(
    client: httpx.AsyncClient,
    data: bytes,
    media_type: str | None,
    filename: str | None,
    api_key: str,
) -> str | None:
    """POST multipart audio to OpenAI. One retry on transport errors only.

    Raises:
        TranscriptionRequestError: non-2xx response, or a body that is not a
            JSON object.
    """
    async with asyncio.timeout(TRANSCRIPTION_TIMEOUT_SECONDS):
        response = await client.post(
            OPENAI_TRANSCRIPTIONS_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            data={"model": OPENAI_WHISPER_MODEL, "response_format": "json"},
            files={
                "file": (
                    upload_filename(filename, media_type),
                    data,
                    media_type or "application/octet-stream",
                )
            },
        )
    if not response.is_success:
        detail = response.text
        try:
            detail = response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            pass
        raise TranscriptionRequestError(f"{detail} ({response.status_code})", response.status_code)
    try:
        payload = response.json()
    except ValueError:
        raise TranscriptionRequestError(
            f"unparsable response: {_truncate(response.text)} ({response.status_code})",
            response.status_code,
        ) from None
    if not isinstance(payload, dict):
        raise TranscriptionRequestError(
            f"unexpected response payload ({response.status_code})", response.status_code
        )
    text = payload.get("text")
    return text.strip() if isinstance(text, str) and text.strip() else None


async def _transcribe_with_fal(
    client: httpx.AsyncClient, data: bytes, media_type: str, api_key: str
) -> str | None:
    """Synchronous FAL run with the audio inlined as a data URI."""
    audio_url = f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"
    async with asyncio.timeout(TRANSCRIPTION_TIMEOUT_SECONDS):
        response = await client.post(
            FAL_WHISPER_URL,
            headers={"Authorization": f"Key {api_key}"},
            json={"audio_url": audio_url, "task": "transcribe"},
        )
    if not response.is_success:
        raise TranscriptionRequestError(
            f"{_truncate(response.text)} ({response.status_code})", response.status_code
        )
    payload = response.json()
    text = payload.get("text") if isinstance(payload, dict) else None
    if not (isinstance(text, str) and text.strip()) and isinstance(payload, dict):
        chunks = payload.get("chunks") or []
        text = " ".join(
            chunk.get("text", "").strip() for chunk in chunks if isinstance(chunk, dict)
        )
    return text.strip() if isinstance(text, str) and text.strip() else None


async def _transcode_bytes(ffmpeg: str, data: bytes, filename: str) -> bytes:
    with tempfile.TemporaryDirectory(prefix="linkscribe-") as tmp:
        source = Path(tmp) / f"input{Path(filename).suffix or '.bin'}"
        target = Path(tmp) / "transcoded.mp3"
        await asyncio.to_thread(source.write_bytes, data)
        await transcode_to_mp3(ffmpeg, source, target, FFMPEG_TIMEOUT_SECONDS)
        return await asyncio.to_thread(target.read_bytes)


async def transcribe_media_with_whisper(
    client: httpx.AsyncClient,
    data: bytes,
    media_type: str | None,
    filename: str | None,
    *,
    openai_api_key: str | None,
    fal_api_key: str | None,
    ffmpeg_path: str | None = "ffmpeg",
) -> TranscriptionResult:
    """Transcribe in-memory media. OpenAI first, then FAL for audio types.

    Never raises for provider failures; the outcome (and every fallback
    decision) is reported in the returned result's ``error`` and ``notes``.
    """
    notes: list[str] = []
    if not openai_api_key and not fal_api_key:
        return TranscriptionResult(
            error="No transcription providers available: set OPENAI_API_KEY or FAL_KEY",
            notes=notes,
        )

    error: str | None = None
    if openai_api_key:
        upload, upload_type, upload_name = data, media_type, filename
        ffmpeg = resolve_executable(ffmpeg_path, "ffmpeg")
        if len(data) > MAX_OPENAI_UPLOAD_BYTES:
            if ffmpeg is not None:
                try:
                    upload = await _transcode_bytes(ffmpeg, data, upload_filename(filename, media_type))
                    upload_type, upload_name = "audio/mpeg", "audio.mp3"
                    notes.append("Media too large for Whisper upload; transcoded via ffmpeg")
                except (subprocess.CalledProcessError, FetchTimeoutError, OSError) as exc:
                    notes.append(f"ffmpeg transcode failed: {_truncate(str(exc))}")
            if len(upload) > MAX_OPENAI_UPLOAD_BYTES:
                upload = upload[:MAX_OPENAI_UPLOAD_BYTES]
                notes.append(
                    "Media too large for Whisper upload; transcribing the first 25MB "
                    "(install ffmpeg to enable chunked transcription)"
                )

        try:
            text = await _transcribe_with_openai(
                client, upload, upload_type, upload_name, openai_api_key
            )
            if text:
                return TranscriptionResult(text=text, provider="openai", notes=notes)
            error = "OpenAI transcription returned empty text"
        except TranscriptionRequestError as exc:
            error = f"OpenAI transcription failed: {exc}"
            if exc.is_decode_error:
                text, error = await _retry_transcoded(
                    client, data, media_type, filename, openai_api_key, ffmpeg, notes, error
                )
                if text:
                    return TranscriptionResult(text=text, provider="openai", notes=notes)
        except (httpx.HTTPError, TimeoutError, ValueError) as exc:
            error = f"OpenAI transcription failed: {exc or type(exc).__name__}"

    if fal_api_key:
        if not _is_audio(media_type):
            notes.append(f"Skipping FAL transcription: {media_type or 'unknown'} is not an audio type")
        else:
            if error:
                notes.append(f"{_truncate(error)}; falling back to FAL")
            try:
                text = await _transcribe_with_fal(client, data, media_type, fal_api_key)
            except (TranscriptionRequestError, httpx.HTTPError, TimeoutError, ValueError) as exc:
                return TranscriptionResult(
                    provider="fal", error=f"FAL transcription failed: {exc}", notes=notes
                )
            if text:
                return TranscriptionResult(text=text, provider="fal", notes=notes)
            return TranscriptionResult(
                provider="fal", error="FAL transcription returned empty text", notes=notes
            )

    return TranscriptionResult(
        provider="openai" if openai_api_key else None,
        error=error or "No transcription providers available for this media type",
        notes=notes,
    )


async def _retry_transcoded(
    client: httpx.AsyncClient,
    data: bytes,
    media_type: str | None,
    filename: str | None,
    api_key: str,
    ffmpeg: str | None,
    notes: list[str],
    error: str,
) -> tuple[str | None, str]:
    """Second OpenAI attempt after an undecodable upload, re-encoded to MP3."""
    if ffmpeg is None:
        notes.append("OpenAI could not decode the media; install ffmpeg to enable transcoding")
        return None, error

    notes.append("OpenAI could not decode the media; transcoding via ffmpeg and retrying")
    try:
        transcoded = await _transcode_bytes(ffmpeg, data, upload_filename(filename, media_type))
    except (subprocess.CalledProcessError, FetchTimeoutError, OSError) as exc:
        return None, f"{error}; ffmpeg transcode failed: {_truncate(str(exc))}"
    try:
        text = await _transcribe_with_openai(
            client, transcoded[:MAX_OPENAI_UPLOAD_BYTES], "audio/mpeg", "audio.mp3", api_key
        )
    except (TranscriptionRequestError, httpx.HTTPError, TimeoutError, ValueError) as exc:
        return None, f"OpenAI transcription failed after transcoding: {exc}"
    if not text:
        return None, "OpenAI transcription returned empty text"
    return text, error


async def transcribe_media_file_with_whisper(
    client: httpx.AsyncClient,
    path: Path,
    media_type: str | None,
    *,
    openai_api_key: str | None,
    fal_api_key: str | None,
    ffmpeg_path: str | None = "ffmpeg",
    segment_seconds: int = DEFAULT_SEGMENT_SECONDS,
    on_part: PartProgress | None = None,
) -> TranscriptionResult:
    """Transcribe a local media file, splitting it into parts when it exceeds the upload limit.

    Returns:
        TranscriptionResult whose text joins the parts' text in order with a
        blank line between parts.
    """
    if not openai_api_key and not fal_api_key:
        return TranscriptionResult(
            error="No transcription providers available: set OPENAI_API_KEY or FAL_KEY"
        )

    size = path.stat().st_size
    keys = {"openai_api_key": openai_api_key, "fal_api_key": fal_api_key, "ffmpeg_path": ffmpeg_path}
    if size <= MAX_OPENAI_UPLOAD_BYTES:
        data = await asyncio.to_thread(path.read_bytes)
        return await transcribe_media_with_whisper(client, data, media_type, path.name, **keys)

    ffmpeg = resolve_executable(ffmpeg_path, "ffmpeg")
    if ffmpeg is None:
        data = await asyncio.to_thread(_read_prefix, path, MAX_OPENAI_UPLOAD_BYTES)
        result = await transcribe_media_with_whisper(client, data, media_type, path.name, **keys)
        result.notes.insert(
            0,
            "Media too large for Whisper upload; install ffmpeg to enable chunked transcription",
        )
        return result

    notes: list[str] = []
    with tempfile.TemporaryDirectory(prefix="linkscribe-parts-") as tmp:
        try:
            parts = await segment_audio(
                ffmpeg, path, Path(tmp), segment_seconds, FFMPEG_TIMEOUT_SECONDS
            )
        except (subprocess.CalledProcessError, FetchTimeoutError, OSError) as exc:
            return TranscriptionResult(error=f"ffmpeg segmenting failed: {_truncate(str(exc))}")
        if not parts:
            return TranscriptionResult(error="ffmpeg produced no audio segments", notes=notes)

        notes.append(f"ffmpeg chunked media into {len(parts)} parts")
        texts: list[str] = []
        provider = None
        for index, part in enumerate(parts):
            data = await asyncio.to_thread(part.read_bytes)
            result = await transcribe_media_with_whisper(client, data, "audio/mpeg", part.name, **keys)
            notes.extend(note for note in result.notes if note not in notes)
            if not result.text:
                return TranscriptionResult(
                    provider=result.provider,
                    error=f"Part {index + 1}/{len(parts)}: {result.error}",
                    notes=notes,
                )
            provider = result.provider
            texts.append(result.text.strip())
            if on_part is not None:
                on_part(index + 1, len(parts))

    return TranscriptionResult(text="\n\n".join(texts), provider=provider, notes=notes)


def _read_prefix(path: Path, limit: int) -> bytes:
    with open(path, "rb") as f:
        return f.read(limit)
