"""
Pydantic models and dataclasses for API and internal data structures.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Literal, Optional

import httpx
from pydantic import BaseModel, model_validator

if TYPE_CHECKING:
    from .services.transcriber import TranscriptionEngine


class TranscriptSource(str, Enum):
    PODCAST_TRANSCRIPT = "podcast_transcript"
    WHISPER = "whisper"
    YT_DLP = "yt-dlp"


ProgressKind = Literal[
    "transcript-media-download-start",
    "transcript-media-download-progress",
    "transcript-media-download-done",
    "transcript-whisper-start",
    "transcript-whisper-progress",
]


class ProgressEvent(BaseModel):
    """Advisory lifecycle event emitted while acquiring and transcribing media."""
    kind: ProgressKind
    url: str
    service: str = "podcast"
    media_url: Optional[str] = None
    total_bytes: Optional[int] = None
    downloaded_bytes: Optional[int] = None
    provider_hint: Optional[str] = None
    model_id: Optional[str] = None
    total_duration_seconds: Optional[float] = None
    processed_duration_seconds: Optional[float] = None
    part_index: Optional[int] = None
    parts: Optional[int] = None


class ProviderResult(BaseModel):
    """Outcome of one resolution pass, with provenance for diagnostics."""
    text: Optional[str] = None
    source: Optional[TranscriptSource] = None
    attempted_providers: list[TranscriptSource] = []
    notes: Optional[str] = None
    metadata: dict[str, Any] = {}

    @model_validator(mode="after")
    def _text_iff_source(self) -> "ProviderResult":
        if (self.text is None) != (self.source is None):
            raise ValueError("text and source must be set together")
        return self


class ResolveRequest(BaseModel):
    """Request to resolve a transcript for a URL."""
    url: str
    html: Optional[str] = None


@dataclass(frozen=True)
class ProviderContext:
    url: str
    html: Optional[str] = None


@dataclass
class ScrapeResult:
    markdown: str
    html: Optional[str] = None


ScrapeFunction = Callable[..., Awaitable[Optional[ScrapeResult]]]
ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class ProviderFetchOptions:
    """Capabilities and credentials for one resolution call."""
    client: httpx.AsyncClient
    openai_api_key: Optional[str] = None
    fal_api_key: Optional[str] = None
    yt_dlp_path: Optional[str] = None
    scrape: Optional[ScrapeFunction] = None
    on_progress: Optional[ProgressCallback] = None
    engine: Optional["TranscriptionEngine"] = None


@dataclass
class TranscriptCandidate:
    url: str
    type: Optional[str] = None


@dataclass
class FeedItemFacts:
    title: Optional[str]
    enclosure_url: Optional[str]
    duration_seconds: Optional[int]
    transcript_candidates: list[TranscriptCandidate] = field(default_factory=list)


@dataclass
class FeedEnclosure:
    enclosure_url: str
    duration_seconds: Optional[int] = None


@dataclass
class FeedTranscript:
    text: str
    transcript_url: str
    transcript_type: Optional[str] = None


@dataclass
class MediaProbe:
    content_length: Optional[int] = None
    media_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class MediaPayload:
    """Downloaded media, either held in memory or streamed to a file."""
    kind: Literal["bytes", "file"]
    size: int
    data: Optional[bytes] = None
    path: Optional[Path] = None


@dataclass
class TranscriptionAttempt:
    text: Optional[str]
    provider: Optional[str]
    error: Optional[Exception] = None


@dataclass
class TranscriptionOutcome:
    """Result shape returned by a transcription engine call."""
    text: Optional[str]
    provider: Optional[str]
    error: Optional[Exception] = None
    notes: list[str] = field(default_factory=list)


@dataclass
class AutoModelAttempt:
    user_model_id: str
    llm_model_id: str
    openrouter_providers: Optional[list[str]]
    force_openrouter: bool
    required_env: str
    debug: str
