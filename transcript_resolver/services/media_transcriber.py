"""
Media Transcriber - download a resolved media URL and hand it to the
transcription engine, choosing between in-memory and on-disk acquisition.
"""
import logging
from typing import Optional

import httpx

from ..config import settings
from ..models import ProgressCallback, ProgressEvent, TranscriptionAttempt
from ..utils import format_bytes
from .downloader import acquire_media, cleanup_temp_file, ensure_within_size_limit, get_temp_media_path, probe_remote_media
from .transcriber import TranscriptionEngine, WhisperProgress, model_id_for

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Emit progress events for one source URL; callback failures never interrupt work."""

    def __init__(self, url: str, callback: Optional[ProgressCallback], service: str = "podcast"):
        self.url = url
        self.callback = callback
        self.service = service

    def notify(self, kind: str, **fields) -> None:
        if self.callback is None:
            return
        try:
            self.callback(ProgressEvent(kind=kind, url=self.url, service=self.service, **fields))
        except Exception as e:
            logger.error(f"Progress callback error: {e}")

    def download_progress(self, total_bytes: Optional[int]):
        def _report(downloaded: int) -> None:
            self.notify(
                "transcript-media-download-progress", downloaded_bytes=downloaded, total_bytes=total_bytes
            )
        return _report

    def whisper_progress(self, event: WhisperProgress) -> None:
        self.notify(
            "transcript-whisper-progress",
            processed_duration_seconds=event.processed_duration_seconds,
            total_duration_seconds=event.total_duration_seconds,
            part_index=event.part_index,
            parts=event.parts,
        )


async def resolve_provider_hint(
    engine: TranscriptionEngine,
    openai_api_key: Optional[str],
    fal_api_key: Optional[str],
) -> str:
    if await engine.is_ready():
        return "local"
    if openai_api_key and fal_api_key:
        return "openai->fal"
    if openai_api_key:
        return "openai"
    if fal_api_key:
        return "fal"
    return "unknown"


async def transcribe_media_url(
    client: httpx.AsyncClient,
    url: str,
    filename_hint: str,
    duration_seconds_hint: Optional[float],
    openai_api_key: Optional[str],
    fal_api_key: Optional[str],
    notes: list[str],
    progress: Optional[ProgressReporter],
    engine: TranscriptionEngine,
) -> TranscriptionAttempt:
    """
    Transcribe the media behind url.

    Media whose declared size exceeds MAX_REMOTE_MEDIA_BYTES is rejected with
    MediaTooLargeError before any body bytes are requested. Engine notes are
    appended to notes; download errors propagate to the caller.

    Args:
        client: HTTP client used for probing and downloading
        url: Direct media URL
        filename_hint: Upload filename when the URL has no usable path segment
        duration_seconds_hint: Known episode duration, if any
        openai_api_key: Enables the OpenAI provider
        fal_api_key: Enables the FAL provider
        notes: Per-call note accumulator
        progress: Progress reporter for the source URL, or None
        engine: Transcription engine

    Returns:
        TranscriptionAttempt with text, provider and error
    """
    progress = progress or ProgressReporter(url, None)
    can_chunk = engine.is_chunking_available()
    provider_hint = await resolve_provider_hint(engine, openai_api_key, fal_api_key)
    model_id = model_id_for(provider_hint, engine)

    probe = await probe_remote_media(client, url)
    ensure_within_size_limit(probe)

    media_type = probe.media_type or "application/octet-stream"
    filename = probe.filename or filename_hint
    total_bytes = probe.content_length

    progress.notify("transcript-media-download-start", media_url=url, total_bytes=total_bytes)

    in_memory = not can_chunk or (total_bytes is not None and total_bytes <= settings.MAX_UPLOAD_BYTES)
    temp_path = None if in_memory else get_temp_media_path()
    try:
        payload = await acquire_media(
            client,
            url,
            max_bytes=settings.MAX_UPLOAD_BYTES,
            output_path=temp_path,
            progress_callback=progress.download_progress(total_bytes),
        )
        progress.notify("transcript-media-download-done", downloaded_bytes=payload.size, total_bytes=total_bytes)

        if payload.kind == "bytes":
            progress.notify(
                "transcript-whisper-start",
                provider_hint=provider_hint,
                model_id=model_id,
                total_duration_seconds=duration_seconds_hint,
            )
            if not can_chunk:
                notes.append(f"Transcribed first {format_bytes(payload.size)} only (ffmpeg not available)")
            outcome = await engine.transcribe_bytes(
                payload.data,
                media_type,
                filename,
                openai_api_key=openai_api_key,
                fal_api_key=fal_api_key,
                total_duration_seconds=duration_seconds_hint,
                on_progress=progress.whisper_progress,
            )
        else:
            duration = duration_seconds_hint
            if duration is None:
                duration = await engine.probe_duration_seconds(payload.path)
            progress.notify(
                "transcript-whisper-start",
                provider_hint=provider_hint,
                model_id=model_id,
                total_duration_seconds=duration,
            )
            outcome = await engine.transcribe_file(
                payload.path,
                media_type,
                filename,
                openai_api_key=openai_api_key,
                fal_api_key=fal_api_key,
                total_duration_seconds=duration,
                on_progress=progress.whisper_progress,
            )
    finally:
        if temp_path is not None:
            await cleanup_temp_file(temp_path)

    notes.extend(outcome.notes)
    return TranscriptionAttempt(text=outcome.text, provider=outcome.provider, error=outcome.error)
