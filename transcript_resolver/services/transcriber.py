"""
Transcription Engine - speech-to-text over the local Whisper API container or
remote providers, with ffmpeg chunking for files above the upload limit.
"""
import asyncio
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import aiofiles
import httpx

from ..config import settings
from ..exceptions import TranscriptionError
from ..models import TranscriptionOutcome
from ..utils import format_bytes
from .remote_stt import FAL_MODEL_ID, OPENAI_MODEL_ID, FalTranscriber, OpenAITranscriber
from .whisper_client import WhisperClient

logger = logging.getLogger(__name__)

CHUNK_SECONDS = 20 * 60  # 64 kbps mp3 parts stay well under the upload limit
READY_CACHE_SECONDS = 30.0


@dataclass
class WhisperProgress:
    processed_duration_seconds: Optional[float]
    total_duration_seconds: Optional[float]
    part_index: Optional[int]
    parts: Optional[int]


WhisperProgressCallback = Callable[[WhisperProgress], None]


def is_ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


async def probe_media_duration_seconds(file_path: Path) -> Optional[float]:
    """Get duration of an audio/video file in seconds using ffprobe."""
    if shutil.which("ffprobe") is None:
        return None
    try:
        process = await asyncio.create_subprocess_exec(
            "ffprobe",
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(file_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        logger.warning(f"ffprobe failed to start: {e}")
        return None

    if process.returncode != 0:
        logger.warning(f"ffprobe error: {stderr.decode(errors='replace').strip()}")
        return None
    try:
        duration = float(stdout.decode().strip())
    except ValueError:
        return None
    return duration if duration > 0 else None


async def split_media_file(file_path: Path, output_dir: Path, segment_seconds: int = CHUNK_SECONDS) -> list[Path]:
    """Split media into mono 64 kbps mp3 segments of segment_seconds each."""
    pattern = output_dir / "part-%03d.mp3"
    process = await asyncio.create_subprocess_exec(
        "ffmpeg",
        "-i", str(file_path),
        "-vn",  # No video
        "-ac", "1",  # Mono
        "-c:a", "libmp3lame",
        "-b:a", "64k",
        "-f", "segment",
        "-segment_time", str(segment_seconds),
        "-y",  # Overwrite
        str(pattern),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()
    if process.returncode != 0:
        raise TranscriptionError(f"Failed to split media: {stderr.decode(errors='replace').strip()[-300:]}")
    return sorted(output_dir.glob("part-*.mp3"))


def _report(callback: Optional[WhisperProgressCallback], event: WhisperProgress) -> None:
    if callback is None:
        return
    try:
        callback(event)
    except Exception as e:
        logger.error(f"Progress callback error: {e}")


class TranscriptionEngine:
    """
    Chooses between the local Whisper API and the remote providers.

    The local container wins whenever it is healthy. Otherwise OpenAI is used
    when its key is set, and FAL is called when OpenAI is absent or fails.
    """

    def __init__(self, client: httpx.AsyncClient, whisper_client: Optional[WhisperClient] = None):
        self.client = client
        if whisper_client is None and settings.WHISPER_ENABLED:
            whisper_client = WhisperClient(client)
        self.whisper = whisper_client
        self._ready: Optional[bool] = None
        self._ready_checked_at = 0.0

    async def is_ready(self) -> bool:
        """Whether the local engine is reachable (cached briefly)."""
        if self.whisper is None:
            return False
        now = time.monotonic()
        if self._ready is None or now - self._ready_checked_at > READY_CACHE_SECONDS:
            self._ready = await self.whisper.health_check()
            self._ready_checked_at = now
        return self._ready

    def is_chunking_available(self) -> bool:
        return is_ffmpeg_available()

    def resolve_model_name(self) -> Optional[str]:
        return f"whisper {self.whisper.model_size}" if self.whisper else None

    async def probe_duration_seconds(self, file_path: Path) -> Optional[float]:
        return await probe_media_duration_seconds(file_path)

    async def transcribe_bytes(
        self,
        data: bytes,
        media_type: str,
        filename: str,
        openai_api_key: Optional[str] = None,
        fal_api_key: Optional[str] = None,
        total_duration_seconds: Optional[float] = None,
        on_progress: Optional[WhisperProgressCallback] = None,
    ) -> TranscriptionOutcome:
        if await self.is_ready():
            outcome = await self._transcribe_local(data, filename, media_type)
        else:
            outcome = await self._transcribe_remote(data, filename, media_type, openai_api_key, fal_api_key)
        if outcome.text:
            _report(on_progress, WhisperProgress(total_duration_seconds, total_duration_seconds, 1, 1))
        return outcome

    async def transcribe_file(
        self,
        file_path: Path,
        media_type: str,
        filename: str,
        openai_api_key: Optional[str] = None,
        fal_api_key: Optional[str] = None,
        total_duration_seconds: Optional[float] = None,
        on_progress: Optional[WhisperProgressCallback] = None,
    ) -> TranscriptionOutcome:
        """
        Transcribe a media file of any size.

        Files above the single-request limit are split with ffmpeg and
        transcribed part by part for the remote providers. Without ffmpeg only
        the leading bytes are sent.
        """
        if await self.is_ready():
            # The local service takes whole files; stream from disk.
            outcome = await self._transcribe_local(file_path, filename, media_type)
            if outcome.text:
                _report(on_progress, WhisperProgress(total_duration_seconds, total_duration_seconds, 1, 1))
            return outcome

        size = file_path.stat().st_size
        limit = settings.MAX_UPLOAD_BYTES
        if size <= limit or not self.is_chunking_available():
            async with aiofiles.open(file_path, 'rb') as f:
                data = await f.read(limit)
            outcome = await self.transcribe_bytes(
                data, media_type, filename, openai_api_key, fal_api_key, total_duration_seconds, on_progress
            )
            if size > limit:
                outcome.notes.append(f"Transcribed first {format_bytes(len(data))} only (ffmpeg not available)")
            return outcome

        return await self._transcribe_chunked(
            file_path, openai_api_key, fal_api_key, total_duration_seconds, on_progress
        )

    async def _transcribe_chunked(
        self,
        file_path: Path,
        openai_api_key: Optional[str],
        fal_api_key: Optional[str],
        total_duration_seconds: Optional[float],
        on_progress: Optional[WhisperProgressCallback],
    ) -> TranscriptionOutcome:
        settings.TEMP_AUDIO_DIR.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=settings.TEMP_AUDIO_DIR, prefix="chunks-") as tmp:
            try:
                parts = await split_media_file(file_path, Path(tmp))
            except (OSError, TranscriptionError) as e:
                return TranscriptionOutcome(text=None, provider=None, error=e)
            if not parts:
                return TranscriptionOutcome(
                    text=None, provider=None, error=TranscriptionError("ffmpeg produced no segments")
                )

            logger.info(f"Transcribing {file_path.name} in {len(parts)} parts")
            texts: list[str] = []
            notes: list[str] = []
            provider = None
            for idx, part in enumerate(parts, 1):
                async with aiofiles.open(part, 'rb') as f:
                    data = await f.read()
                outcome = await self._transcribe_remote(
                    data, part.name, "audio/mpeg", openai_api_key, fal_api_key
                )
                notes.extend(outcome.notes)
                provider = outcome.provider or provider
                if outcome.error is not None:
                    return TranscriptionOutcome(text=None, provider=provider, error=outcome.error, notes=notes)
                if outcome.text:
                    texts.append(outcome.text)

                processed = idx * CHUNK_SECONDS
                if total_duration_seconds is not None:
                    processed = min(processed, total_duration_seconds)
                _report(on_progress, WhisperProgress(processed, total_duration_seconds, idx, len(parts)))

        text = "\n".join(texts).strip()
        return TranscriptionOutcome(text=text or None, provider=provider, notes=notes)

    async def _transcribe_local(
        self, source: Union[bytes, Path], filename: str, media_type: str
    ) -> TranscriptionOutcome:
        try:
            if isinstance(source, Path):
                result = await self.whisper.transcribe_file(source, filename, media_type)
            else:
                result = await self.whisper.transcribe_bytes(source, filename, media_type)
        except (httpx.HTTPError, TranscriptionError, OSError, ValueError) as e:
            logger.error(f"Local Whisper transcription failed: {e}")
            return TranscriptionOutcome(text=None, provider="local", error=e)
        text = result.text.strip()
        if not text:
            return TranscriptionOutcome(
                text=None, provider="local", error=TranscriptionError("Whisper API returned an empty transcript")
            )
        return TranscriptionOutcome(text=text, provider="local")

    async def _transcribe_remote(
        self,
        data: bytes,
        filename: str,
        media_type: str,
        openai_api_key: Optional[str],
        fal_api_key: Optional[str],
    ) -> TranscriptionOutcome:
        providers = []
        if openai_api_key:
            providers.append(("openai", OpenAITranscriber(self.client, openai_api_key)))
        if fal_api_key:
            providers.append(("fal", FalTranscriber(self.client, fal_api_key)))
        if not providers:
            return TranscriptionOutcome(
                text=None,
                provider=None,
                error=TranscriptionError("No transcription provider available (set OPENAI_API_KEY or FAL_KEY)"),
            )

        notes: list[str] = []
        last_error: Optional[Exception] = None
        name = providers[0][0]
        for name, transcriber in providers:
            try:
                text = await transcriber.transcribe(data, filename, media_type)
            except (httpx.HTTPError, TranscriptionError, ValueError) as e:
                logger.warning(f"{name} transcription failed: {e}")
                last_error = e
                if name != providers[-1][0]:
                    notes.append(f"{name} transcription failed; falling back: {e}")
                continue
            if text:
                return TranscriptionOutcome(text=text, provider=name, notes=notes)
            last_error = TranscriptionError(f"{name} returned an empty transcript")

        return TranscriptionOutcome(text=None, provider=name, error=last_error, notes=notes)


def model_id_for(provider_hint: str, engine: Optional[TranscriptionEngine] = None) -> Optional[str]:
    """Display model id for a provider hint; "openai->fal" yields a composite id."""
    if provider_hint == "local":
        return (engine.resolve_model_name() if engine else None) or "whisper"
    return {
        "openai->fal": f"{OPENAI_MODEL_ID}->{FAL_MODEL_ID}",
        "openai": OPENAI_MODEL_ID,
        "fal": FAL_MODEL_ID,
    }.get(provider_hint)
