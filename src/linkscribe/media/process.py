"""External tool invocation (ffmpeg, yt-dlp) with deadlines."""

import asyncio
import logging
import shutil
import subprocess
from pathlib import Path

from linkscribe.errors import FetchTimeoutError

logger = logging.getLogger(__name__)

TRANSCODE_ARGS = ["-vn", "-ac", "1", "-ar", "16000", "-b:a", "64k"]


def resolve_executable(path: str | None, default: str) -> str | None:
    """Absolute path of an executable (explicit path or PATH lookup), or None."""
    return shutil.which(path or default)


async def run_command(cmd: list[str], description: str, timeout_seconds: float) -> str:
    """Run an external command; returns stdout.

    Raises:
        FetchTimeoutError: deadline exceeded (the process is killed).
        subprocess.CalledProcessError: non-zero exit status.
    """
    logger.debug("Running %s: %s", description, " ".join(cmd))
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        async with asyncio.timeout(timeout_seconds):
            stdout, stderr = await process.communicate()
    except TimeoutError:
        process.kill()
        await process.wait()
        raise FetchTimeoutError(f"{description} timed out after {timeout_seconds:.0f}s") from None
    except asyncio.CancelledError:
        process.kill()
        raise

    if process.returncode != 0:
        error_text = stderr.decode("utf-8", errors="replace").strip()
        logger.warning("%s failed (exit %d): %s", description, process.returncode, error_text[-500:])
        raise subprocess.CalledProcessError(process.returncode, cmd, stdout, error_text)
    return stdout.decode("utf-8", errors="replace")


async def transcode_to_mp3(
    ffmpeg: str, source: Path, target: Path, timeout_seconds: float
) -> Path:
    """Re-encode to mono 16 kHz 64 kbps MP3, small enough for upload limits."""
    await run_command(
        [ffmpeg, "-y", "-i", str(source), *TRANSCODE_ARGS, str(target)],
        "ffmpeg transcode",
        timeout_seconds,
    )
    return target


async def segment_audio(
    ffmpeg: str, source: Path, out_dir: Path, segment_seconds: int, timeout_seconds: float
) -> list[Path]:
    """Split into bounded-duration MP3 parts, returned in playback order."""
    pattern = out_dir / "part-%03d.mp3"
    await run_command(
        [
            ffmpeg,
            "-y",
            "-i",
            str(source),
            *TRANSCODE_ARGS,
            "-f",
            "segment",
            "-segment_time",
            str(segment_seconds),
            "-reset_timestamps",
            "1",
            str(pattern),
        ],
        "ffmpeg segment",
        timeout_seconds,
    )
    return sorted(out_dir.glob("part-*.mp3"))
