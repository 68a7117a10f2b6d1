"""Shared constants, feed builders and fakes for transcript_resolver tests.

Test modules import helpers from here directly (``from conftest import ...``).
"""
import json
from typing import Callable, Optional

import httpx

from transcript_resolver.models import ProviderFetchOptions, TranscriptionOutcome
from transcript_resolver.services.transcriber import WhisperProgress

# Test constants
TEST_MEDIA_URL = "https://x/ep.mp3"
TEST_FEED_URL = "https://feeds.example.com/show.xml"
TEST_TRANSCRIPT_JSON_URL = "https://example.com/t.json"
TEST_TRANSCRIPT_VTT_URL = "https://example.com/t.vtt"
TEST_EPISODE_TITLE = "The Daily: Episode #42"
TEST_SHOW_TITLE = "The Daily"
TEST_TRANSCRIBED_TEXT = "transcribed words"
# httpx refuses to build a request for this URL (space in host, non-numeric port).
TEST_MALFORMED_URL = "https://exa mple.com:abc/t.json"


def build_item(
    title: Optional[str] = None,
    enclosure_url: Optional[str] = None,
    duration: Optional[str] = None,
    transcripts: tuple = (),
) -> str:
    """Build one <item>; transcripts is a sequence of (url, type) pairs."""
    parts = ["<item>"]
    if title is not None:
        parts.append(f"<title>{title}</title>")
    if enclosure_url is not None:
        parts.append(f'<enclosure url="{enclosure_url}" type="audio/mpeg" length="1000"/>')
    if duration is not None:
        parts.append(f"<itunes:duration>{duration}</itunes:duration>")
    for url, kind in transcripts:
        type_attr = f' type="{kind}"' if kind else ""
        parts.append(f'<podcast:transcript url="{url}"{type_attr}/>')
    parts.append("</item>")
    return "".join(parts)


def build_rss(*items: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd" '
        'xmlns:podcast="https://podcastindex.org/namespace/1.0">'
        f"<channel><title>{TEST_SHOW_TITLE}</title>{''.join(items)}</channel></rss>"
    )


Handler = Callable[[httpx.Request], httpx.Response]


class RecordingHandler:
    """MockTransport handler that records requests and routes by (method, url)."""

    def __init__(self, routes: Optional[dict] = None, default: Optional[Handler] = None):
        self.routes = dict(routes or {})
        self.default = default
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url).split("?")[0]
        route = self.routes.get((request.method, url)) or self.routes.get(url)
        if route is not None:
            if callable(route):
                return route(request)
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)
        if self.default is not None:
            return self.default(request)
        return httpx.Response(404, text="not found")

    def methods_for(self, url: str) -> list[str]:
        return [r.method for r in self.requests if str(r.url).split("?")[0] == url]


def make_client(handler: Handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeEngine:
    """In-memory transcription engine recording every call."""

    def __init__(
        self,
        ready: bool = False,
        chunking: bool = True,
        text: Optional[str] = TEST_TRANSCRIBED_TEXT,
        error: Optional[Exception] = None,
        provider: Optional[str] = "openai",
        notes: Optional[list[str]] = None,
    ):
        self.ready = ready
        self.chunking = chunking
        self.text = text
        self.error = error
        self.provider = provider
        self.notes = notes or []
        self.calls: list[tuple] = []

    async def is_ready(self) -> bool:
        return self.ready

    def is_chunking_available(self) -> bool:
        return self.chunking

    def resolve_model_name(self) -> Optional[str]:
        return "whisper large-v3"

    async def probe_duration_seconds(self, path) -> Optional[float]:
        return 120.0

    def _outcome(self, total_duration_seconds, on_progress) -> TranscriptionOutcome:
        if on_progress is not None and self.text:
            on_progress(WhisperProgress(total_duration_seconds, total_duration_seconds, 1, 1))
        return TranscriptionOutcome(
            text=self.text, provider=self.provider, error=self.error, notes=list(self.notes)
        )

    async def transcribe_bytes(
        self, data, media_type, filename, openai_api_key=None, fal_api_key=None,
        total_duration_seconds=None, on_progress=None,
    ) -> TranscriptionOutcome:
        self.calls.append(("bytes", len(data), filename, media_type))
        return self._outcome(total_duration_seconds, on_progress)

    async def transcribe_file(
        self, path, media_type, filename, openai_api_key=None, fal_api_key=None,
        total_duration_seconds=None, on_progress=None,
    ) -> TranscriptionOutcome:
        self.calls.append(("file", path.stat().st_size, filename, total_duration_seconds))
        return self._outcome(total_duration_seconds, on_progress)


def make_options(
    client: httpx.AsyncClient,
    engine: Optional[FakeEngine] = None,
    openai_api_key: Optional[str] = None,
    fal_api_key: Optional[str] = None,
    **kwargs,
) -> ProviderFetchOptions:
    return ProviderFetchOptions(
        client=client,
        openai_api_key=openai_api_key,
        fal_api_key=fal_api_key,
        engine=engine or FakeEngine(),
        **kwargs,
    )


def build_spotify_embed_html(
    audio_urls: tuple = ("https://audio4-fa.scdn.co/audio/ep",),
    duration_ms: Optional[int] = 1_800_000,
    show_title: str = TEST_SHOW_TITLE,
    episode_title: str = "Episode 42",
) -> str:
    entity = {"title": episode_title, "subtitle": show_title}
    if duration_ms is not None:
        entity["duration"] = duration_ms
    data = {
        "props": {"pageProps": {"state": {"data": {
            "entity": entity,
            "defaultAudioFileObject": {"url": list(audio_urls), "format": "MP4_128_DUAL"},
        }}}}
    }
    return f'<html><script id="__NEXT_DATA__" type="application/json">{json.dumps(data)}</script></html>'
