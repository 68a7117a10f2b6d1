"""
Remote speech-to-text clients - OpenAI whisper-1 and FAL wizper over HTTP.
"""
import base64
import logging
from typing import Optional

import httpx

from ..config import settings
from ..exceptions import TranscriptionError

logger = logging.getLogger(__name__)

OPENAI_MODEL_ID = "whisper-1"
FAL_MODEL_ID = "fal-ai/wizper"


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        error = payload.get("error") or payload.get("detail")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
    return response.text[:200]


class OpenAITranscriber:
    """Client for the OpenAI /audio/transcriptions endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.api_key = api_key
        self.api_base = (api_base or settings.OPENAI_API_BASE).rstrip('/')
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    async def transcribe(self, data: bytes, filename: str, media_type: str) -> str:
        response = await self.client.post(
            f"{self.api_base}/audio/transcriptions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            files={"file": (filename, data, media_type)},
            data={"model": OPENAI_MODEL_ID, "response_format": "text"},
            timeout=self.timeout,
        )
        if not response.is_success:
            raise TranscriptionError(
                f"OpenAI transcription failed ({response.status_code}): {_error_detail(response)}"
            )
        return response.text.strip()


class FalTranscriber:
    """Client for the FAL wizper model, sending audio inline as a data URI."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.client = client
        self.api_key = api_key
        self.api_base = (api_base or settings.FAL_API_BASE).rstrip('/')
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    async def transcribe(self, data: bytes, filename: str, media_type: str) -> str:
        audio_url = f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"
        response = await self.client.post(
            f"{self.api_base}/{FAL_MODEL_ID}",
            headers={"Authorization": f"Key {self.api_key}"},
            json={"audio_url": audio_url, "task": "transcribe", "chunk_level": "segment"},
            timeout=self.timeout,
        )
        if not response.is_success:
            raise TranscriptionError(
                f"FAL transcription failed ({response.status_code}): {_error_detail(response)}"
            )
        payload = response.json()
        text = payload.get("text") if isinstance(payload, dict) else None
        if isinstance(text, str) and text.strip():
            return text.strip()

        chunks = payload.get("chunks") if isinstance(payload, dict) else None
        if isinstance(chunks, list):
            parts = [str(c.get("text") or "").strip() for c in chunks if isinstance(c, dict)]
            return "\n".join(p for p in parts if p)
        return ""
