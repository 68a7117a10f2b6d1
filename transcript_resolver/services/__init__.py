"""Services package."""
from .pipeline import build_fetch_options, can_handle, fetch_transcript
from .strategies import DEFAULT_STRATEGIES, ResolutionRun, TranscriptStrategy
from .transcriber import TranscriptionEngine
from .media_transcriber import transcribe_media_url
from .model_auto import build_auto_model_attempts, normalize_model_id, parse_model_id

__all__ = [
    "build_fetch_options",
    "can_handle",
    "fetch_transcript",
    "DEFAULT_STRATEGIES",
    "ResolutionRun",
    "TranscriptStrategy",
    "TranscriptionEngine",
    "transcribe_media_url",
    "build_auto_model_attempts",
    "normalize_model_id",
    "parse_model_id",
]
