"""
Podcast Transcript Resolver - Configuration

Transcription runs on one of two backends:
- Whisper API: Containerized faster-whisper service used as the local engine
- Remote speech-to-text: OpenAI whisper-1 and FAL wizper, enabled by API keys
"""
import tempfile
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ========== Local Whisper API ==========
    WHISPER_API: str = "http://localhost:8207"  # Docker whisper-api service
    WHISPER_MODEL: str = "large-v3"  # Model size: tiny/base/small/medium/large-v3
    WHISPER_ENABLED: bool = True
    WHISPER_HEALTH_TIMEOUT: float = 5.0

    # ========== Remote transcription providers ==========
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    FAL_KEY: Optional[str] = None
    FAL_API_BASE: str = "https://fal.run"

    # ========== Optional collaborators ==========
    FIRECRAWL_API_KEY: Optional[str] = None
    FIRECRAWL_API_BASE: str = "https://api.firecrawl.dev"
    YT_DLP_PATH: Optional[str] = None

    # ========== Directory lookup ==========
    ITUNES_SEARCH_URL: str = "https://itunes.apple.com/search"
    ITUNES_LOOKUP_URL: str = "https://itunes.apple.com/lookup"

    # ========== Limits ==========
    HTTP_TIMEOUT_SECONDS: float = 600.0  # Applies to every network call
    MAX_REMOTE_MEDIA_BYTES: int = 512 * 1024 * 1024
    MAX_UPLOAD_BYTES: int = 24 * 1024 * 1024  # Single-request speech-to-text ceiling

    # ========== Paths ==========
    TEMP_AUDIO_DIR: Path = Path(tempfile.gettempdir()) / "podcast-transcripts"

    # ========== Server ==========
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
