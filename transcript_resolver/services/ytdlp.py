"""
yt-dlp delegate - download best audio for a page URL with the yt-dlp binary
and transcribe the file with the transcription engine.
"""
import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config import settings
from ..exceptions import DownloadError
from .transcriber import TranscriptionEngine

logger = logging.getLogger(__name__)

YT_DLP_TIMEOUT_SECONDS = 600


@dataclass
class YtDlpTranscript:
    text: Optional[str]
    provider: Optional[str]
    notes: list[str] = field(default_factory=list)


async def download_audio_with_ytdlp(yt_dlp_path: str, url: str, output_dir: Path) -> Path:
    """Run yt-dlp and return the downloaded audio file."""
    process = await asyncio.create_subprocess_exec(
        yt_dlp_path,
        "-f", "bestaudio/best",
        "--no-playlist",
        "--no-progress",
        "-o", str(output_dir / "audio.%(ext)s"),
        url,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=YT_DLP_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise DownloadError(f"yt-dlp timed out after {YT_DLP_TIMEOUT_SECONDS}s")

    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip().splitlines()
        raise DownloadError(f"yt-dlp failed: {message[-1] if message else process.returncode}")

    candidates = sorted(output_dir.glob("audio.*"))
    if not candidates:
        raise DownloadError("yt-dlp finished without producing an audio file")
    return candidates[0]


async def fetch_transcript_with_ytdlp(
    yt_dlp_path: str,
    url: str,
    engine: TranscriptionEngine,
    openai_api_key: Optional[str] = None,
    fal_api_key: Optional[str] = None,
) -> YtDlpTranscript:
    """
    Download audio for url with yt-dlp and transcribe it.

    Download failures raise DownloadError; transcription failures are returned
    as a result without text, with the engine error in notes.
    """
    settings.TEMP_AUDIO_DIR.mkdir(parents=True, exist_ok=True)
    tmpdir = Path(tempfile.mkdtemp(prefix="ytdlp-", dir=settings.TEMP_AUDIO_DIR))
    try:
        logger.info(f"Downloading audio with yt-dlp: {url}")
        audio_path = await download_audio_with_ytdlp(yt_dlp_path, url, tmpdir)
        duration = await engine.probe_duration_seconds(audio_path)
        outcome = await engine.transcribe_file(
            audio_path,
            "application/octet-stream",
            audio_path.name,
            openai_api_key=openai_api_key,
            fal_api_key=fal_api_key,
            total_duration_seconds=duration,
        )
        notes = list(outcome.notes)
        if outcome.error is not None:
            notes.append(f"yt-dlp audio transcription failed: {outcome.error}")
        return YtDlpTranscript(text=outcome.text, provider=outcome.provider, notes=notes)
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)
