"""Last-resort audio fetch through the external yt-dlp downloader."""

import logging
import subprocess
import tempfile
from pathlib import Path

import httpx

from linkscribe.errors import FetchTimeoutError
from linkscribe.media.process import resolve_executable, run_command
from linkscribe.media.whisper import (
    PartProgress,
    TranscriptionResult,
    transcribe_media_file_with_whisper,
)

logger = logging.getLogger(__name__)

YT_DLP_TIMEOUT_SECONDS = 600.0
MAX_ERROR_DETAIL_CHARS = 300


async def download_audio_with_yt_dlp(
    yt_dlp_path: str,
    url: str,
    out_dir: Path,
    timeout_seconds: float = YT_DLP_TIMEOUT_SECONDS,
) -> Path:
    """Extract the audio of ``url`` as MP3 into ``out_dir``.

    Raises:
        FileNotFoundError: yt-dlp is not installed, or it produced no file.
        FetchTimeoutError: deadline exceeded (the process is killed).
        subprocess.CalledProcessError: yt-dlp exited non-zero.
    """
    executable = resolve_executable(yt_dlp_path, "yt-dlp")
    if executable is None:
        raise FileNotFoundError(f"yt-dlp not found at {yt_dlp_path}")

    template = out_dir / "audio.%(ext)s"
    await run_command(
        [
            executable,
            "--no-playlist",
            "--no-progress",
            "-x",
            "--audio-format",
            "mp3",
            "-o",
            str(template),
            url,
        ],
        "yt-dlp",
        timeout_seconds,
    )
    files = sorted(out_dir.glob("audio.*"))
    if not files:
        raise FileNotFoundError("yt-dlp finished without producing an audio file")
    return files[0]


async def transcribe_with_yt_dlp(
    client: httpx.AsyncClient,
    url: str,
    *,
    yt_dlp_path: str,
    openai_api_key: str | None,
    fal_api_key: str | None,
    ffmpeg_path: str | None = "ffmpeg",
    timeout_seconds: float = YT_DLP_TIMEOUT_SECONDS,
    on_part: PartProgress | None = None,
) -> TranscriptionResult:
    """Download with yt-dlp, then transcribe the file. Failures come back as ``error``."""
    with tempfile.TemporaryDirectory(prefix="linkscribe-ytdlp-") as tmp:
        try:
            audio = await download_audio_with_yt_dlp(yt_dlp_path, url, Path(tmp), timeout_seconds)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip()[-MAX_ERROR_DETAIL_CHARS:]
            return TranscriptionResult(error=f"yt-dlp failed (exit {exc.returncode}): {detail}")
        except (FetchTimeoutError, OSError) as exc:
            return TranscriptionResult(error=f"yt-dlp failed: {exc}")

        logger.info("yt-dlp downloaded %s (%d bytes)", url, audio.stat().st_size)
        return await transcribe_media_file_with_whisper(
            client,
            audio,
            "audio/mpeg",
            openai_api_key=openai_api_key,
            fal_api_key=fal_api_key,
            ffmpeg_path=ffmpeg_path,
            on_part=on_part,
        )
