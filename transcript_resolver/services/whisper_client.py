"""
Whisper API Client - async HTTP client for the containerized Whisper API service.

The container is the local transcription engine: when it answers its health
check it takes precedence over the remote speech-to-text providers.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

import httpx

from ..config import settings
from ..exceptions import TranscriptionError

logger = logging.getLogger(__name__)


@dataclass
class TranscriptionResult:
    """Result of a transcription."""
    text: str
    language: str
    duration: float  # seconds
    segments: list[dict]  # Detailed segments with timestamps


class WhisperClient:
    """
    HTTP client for Whisper API service.

    Uploads audio to the /transcribe endpoint and waits for the result.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: Optional[str] = None,
        model_size: Optional[str] = None,
        timeout: Optional[float] = None,
        health_timeout: Optional[float] = None,
    ):
        self.client = client
        self.api_url = (api_url or settings.WHISPER_API).rstrip('/')
        self.model_size = model_size or settings.WHISPER_MODEL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.health_timeout = health_timeout or settings.WHISPER_HEALTH_TIMEOUT

    async def health_check(self) -> bool:
        """Check if Whisper API is available."""
        try:
            response = await self.client.get(f"{self.api_url}/health", timeout=self.health_timeout)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Whisper API health check failed: {e}")
            return False

    async def transcribe_bytes(
        self,
        data: bytes,
        filename: str,
        media_type: str = "application/octet-stream",
        language: Optional[str] = None,
    ) -> TranscriptionResult:
        """
        Upload audio bytes and wait for the transcription.

        Args:
            data: Audio/video bytes
            filename: Upload filename; the service validates its extension
            media_type: MIME type of the upload
            language: Language code (auto-detect if None)

        Returns:
            TranscriptionResult with text and segments
        """
        logger.info(f"Uploading to Whisper API: {filename} ({len(data) / 1024 / 1024:.1f} MB)")
        return await self._upload(data, filename, media_type, language)

    async def transcribe_file(
        self,
        file_path: Path,
        filename: Optional[str] = None,
        media_type: str = "application/octet-stream",
        language: Optional[str] = None,
    ) -> TranscriptionResult:
        """Stream a media file from disk to the Whisper API."""
        filename = filename or file_path.name
        logger.info(f"Uploading to Whisper API: {filename} ({file_path.stat().st_size / 1024 / 1024:.1f} MB)")
        with open(file_path, 'rb') as f:
            return await self._upload(f, filename, media_type, language)

    async def _upload(
        self,
        upload: Union[bytes, BinaryIO],
        filename: str,
        media_type: str,
        language: Optional[str],
    ) -> TranscriptionResult:
        url = f"{self.api_url}/transcribe"
        form = {
            'model_size': self.model_size,
            'output_format': 'both',
            'vad_filter': 'true',
        }
        if language:
            form['language'] = language

        try:
            response = await self.client.post(
                url,
                files={'file': (filename, upload, media_type)},
                data=form,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Whisper API error: {e.response.status_code} - {e.response.text}")
            raise TranscriptionError(f"Whisper API error ({e.response.status_code})") from e

        result = response.json()
        logger.info(
            f"Transcription complete: language={result.get('language')}, "
            f"duration={result.get('duration') or 0:.1f}s, "
            f"segments={len(result.get('segments', []))}"
        )
        return self._parse_result(result)

    def _parse_result(self, data: dict) -> TranscriptionResult:
        """Parse API response into TranscriptionResult."""
        segments = []
        for seg in data.get('segments', []):
            segments.append({
                'start': seg.get('start', 0),
                'end': seg.get('end', 0),
                'text': seg.get('text', '').strip(),
            })

        # Build text from segments if txt_content not provided
        txt_content = data.get('txt_content')
        if not txt_content and segments:
            txt_content = '\n'.join(seg['text'] for seg in segments)

        return TranscriptionResult(
            text=txt_content or '',
            language=data.get('language', 'unknown'),
            duration=data.get('duration') or 0,
            segments=segments,
        )
