"""
Resolution strategies - one class per transcript source, tried in order.

Each strategy answers can_attempt(context) cheaply from the URL/HTML and, when
attempted, returns a ProviderResult to stop the cascade or None to let the next
strategy run. Per-call state (notes, attempted sources, credentials) lives on
the ResolutionRun passed to attempt().
"""
import logging
from typing import Any, Optional

import httpx

from ..config import settings
from ..exceptions import FeedFetchError, SpotifyEmbedError, TranscriptResolverError
from ..models import (
    FeedTranscript,
    ProviderContext,
    ProviderFetchOptions,
    ProviderResult,
    TranscriptionAttempt,
    TranscriptSource,
)
from .feed_parser import (
    extract_enclosure_for_episode,
    extract_enclosure_from_feed,
    has_transcript_marker,
    looks_like_feed,
)
from .feed_transcript import fetch_transcript_from_feed
from .itunes_client import ItunesDirectoryClient
from .media_transcriber import ProgressReporter, transcribe_media_url
from .page_metadata import (
    SpotifyEmbedData,
    extract_apple_episode_title,
    extract_apple_podcast_ids,
    extract_embedded_json_url,
    extract_og_audio_url,
    extract_spotify_embed_data,
    extract_spotify_episode_id,
    fetch_spotify_embed_html,
)
from .transcriber import TranscriptionEngine
from .ytdlp import fetch_transcript_with_ytdlp

logger = logging.getLogger(__name__)

PROVIDER_NAME = "podcast"
MISSING_PROVIDER_NOTE = (
    "Missing transcription provider (start the local Whisper API or set OPENAI_API_KEY/FAL_KEY)"
)

# Errors a strategy turns into a note; anything else reaches the cascade loop.
RECOVERABLE_ERRORS = (
    httpx.HTTPError,
    httpx.InvalidURL,
    TranscriptResolverError,
    OSError,
    ValueError,
)


class ResolutionRun:
    """State for a single fetch_transcript call."""

    def __init__(
        self,
        context: ProviderContext,
        options: ProviderFetchOptions,
        engine: TranscriptionEngine,
        has_local_engine: bool,
    ):
        self.context = context
        self.options = options
        self.engine = engine
        self.has_local_engine = has_local_engine
        self.notes: list[str] = []
        self.attempted_providers: list[TranscriptSource] = []
        self.progress = ProgressReporter(context.url, options.on_progress)
        self.directory = ItunesDirectoryClient(options.client)

    @property
    def client(self) -> httpx.AsyncClient:
        return self.options.client

    def push_once(self, source: TranscriptSource) -> None:
        if source not in self.attempted_providers:
            self.attempted_providers.append(source)

    def joined_notes(self) -> Optional[str]:
        return "; ".join(self.notes) if self.notes else None

    def success(self, text: str, source: TranscriptSource, **metadata: Any) -> ProviderResult:
        return ProviderResult(
            text=text,
            source=source,
            attempted_providers=list(self.attempted_providers),
            notes=self.joined_notes(),
            metadata={"provider": PROVIDER_NAME, **metadata},
        )

    def failure(self, notes: Optional[str], **metadata: Any) -> ProviderResult:
        return ProviderResult(
            text=None,
            source=None,
            attempted_providers=list(self.attempted_providers),
            notes=notes,
            metadata={"provider": PROVIDER_NAME, **metadata},
        )

    def has_transcription_provider(self) -> bool:
        return bool(self.has_local_engine or self.options.openai_api_key or self.options.fal_api_key)

    def missing_provider_result(self) -> ProviderResult:
        return self.failure(MISSING_PROVIDER_NOTE, reason="missing_transcription_keys")

    def require_transcription_provider(self) -> Optional[ProviderResult]:
        """Return the missing-provider result when nothing can transcribe, else None."""
        if self.has_transcription_provider():
            return None
        return self.missing_provider_result()

    async def transcribe(
        self,
        media_url: str,
        filename_hint: str,
        duration_seconds_hint: Optional[float] = None,
    ) -> TranscriptionAttempt:
        return await transcribe_media_url(
            self.client,
            media_url,
            filename_hint,
            duration_seconds_hint,
            self.options.openai_api_key,
            self.options.fal_api_key,
            self.notes,
            self.progress,
            self.engine,
        )

    async def fetch_feed(self, feed_url: str) -> str:
        response = await self.client.get(
            feed_url, timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True
        )
        if not response.is_success:
            raise FeedFetchError(f"Feed fetch failed ({response.status_code})")
        return response.text

    async def feed_transcript(self, feed_xml: str, episode_title: Optional[str]) -> Optional[FeedTranscript]:
        return await fetch_transcript_from_feed(self.client, feed_xml, episode_title, self.notes)


def _error_message(error: Optional[Exception]) -> Optional[str]:
    return str(error) if error is not None else None


class TranscriptStrategy:
    """Base class for one step of the cascade."""

    name = "strategy"

    def can_attempt(self, context: ProviderContext) -> bool:
        return True

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        raise NotImplementedError


class FeedTranscriptStrategy(TranscriptStrategy):
    """A feed document that already references a <podcast:transcript>."""

    name = "feed_transcript"

    def can_attempt(self, context: ProviderContext) -> bool:
        html = context.html
        return html is not None and looks_like_feed(html) and has_transcript_marker(html)

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        run.push_once(TranscriptSource.PODCAST_TRANSCRIPT)
        transcript = await run.feed_transcript(run.context.html, None)
        if transcript is None:
            return None
        return run.success(
            transcript.text,
            TranscriptSource.PODCAST_TRANSCRIPT,
            kind="rss_podcast_transcript",
            transcript_url=transcript.transcript_url,
            transcript_type=transcript.transcript_type,
        )


class SpotifyStrategy(TranscriptStrategy):
    """
    Spotify episode pages.

    The embed page gives stable metadata and sometimes a playable audio URL.
    DRM-protected episodes are resolved through the publisher's feed found
    via the iTunes directory.
    """

    name = "spotify"

    def can_attempt(self, context: ProviderContext) -> bool:
        return extract_spotify_episode_id(context.url) is not None

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        episode_id = extract_spotify_episode_id(run.context.url)
        try:
            return await self._resolve(run, episode_id)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Spotify episode {episode_id} failed: {e}")
            return run.failure(
                f"Spotify episode fetch failed: {e}",
                kind="spotify_itunes_rss_enclosure",
                episode_id=episode_id,
            )

    async def _resolve(self, run: ResolutionRun, episode_id: str) -> ProviderResult:
        embed_url = f"https://open.spotify.com/embed/episode/{episode_id}"
        html, via = await fetch_spotify_embed_html(run.client, embed_url, episode_id, run.options.scrape)
        embed = extract_spotify_embed_data(html)
        if embed is None:
            raise SpotifyEmbedError("Spotify embed data not found (missing __NEXT_DATA__)")

        if embed.audio_url:
            missing = run.require_transcription_provider()
            if missing:
                return missing
            run.push_once(TranscriptSource.WHISPER)
            result = await run.transcribe(embed.audio_url, "episode.mp4", embed.duration_seconds)
            if result.text:
                run.notes.append(
                    "Resolved Spotify embed audio via Firecrawl" if via == "firecrawl"
                    else "Resolved Spotify embed audio"
                )
                return run.success(
                    result.text,
                    TranscriptSource.WHISPER,
                    kind="spotify_embed_audio",
                    episode_id=episode_id,
                    show_title=embed.show_title,
                    episode_title=embed.episode_title,
                    audio_url=embed.audio_url,
                    duration_seconds=embed.duration_seconds,
                    drm_format=embed.drm_format,
                    transcription_provider=result.provider,
                )
            run.notes.append(
                "Spotify embed audio transcription failed; falling back to iTunes RSS: "
                f"{_error_message(result.error) or 'unknown error'}"
            )

        feed_url = await run.directory.search_feed_url(embed.show_title)
        if not feed_url:
            found = await self._resolve_via_episode_search(run, episode_id, embed)
            if found:
                return found
            raise SpotifyEmbedError(
                "Spotify episode audio appears DRM-protected; could not resolve RSS feed "
                f'via iTunes Search API for show "{embed.show_title}"'
            )

        feed_xml = await run.fetch_feed(feed_url)
        if has_transcript_marker(feed_xml):
            run.push_once(TranscriptSource.PODCAST_TRANSCRIPT)
            transcript = await run.feed_transcript(feed_xml, embed.episode_title)
            if transcript:
                return run.success(
                    transcript.text,
                    TranscriptSource.PODCAST_TRANSCRIPT,
                    kind="spotify_itunes_rss_transcript",
                    episode_id=episode_id,
                    show_title=embed.show_title,
                    episode_title=embed.episode_title,
                    feed_url=feed_url,
                    transcript_url=transcript.transcript_url,
                    transcript_type=transcript.transcript_type,
                )

        match = extract_enclosure_for_episode(feed_xml, embed.episode_title)
        if match is None:
            found = await self._resolve_via_episode_search(run, episode_id, embed)
            if found:
                return found
            raise SpotifyEmbedError(f'Episode enclosure not found in RSS feed for "{embed.episode_title}"')

        run.notes.append(
            "Resolved Spotify episode via Firecrawl embed + iTunes RSS" if via == "firecrawl"
            else "Resolved Spotify episode via iTunes RSS"
        )
        missing = run.require_transcription_provider()
        if missing:
            return missing
        run.push_once(TranscriptSource.WHISPER)
        result = await run.transcribe(match.enclosure_url, "episode.mp3", match.duration_seconds)
        metadata = dict(
            kind="spotify_itunes_rss_enclosure",
            episode_id=episode_id,
            show_title=embed.show_title,
            episode_title=embed.episode_title,
            feed_url=feed_url,
            enclosure_url=match.enclosure_url,
            duration_seconds=match.duration_seconds,
        )
        if result.text:
            return run.success(
                result.text, TranscriptSource.WHISPER, transcription_provider=result.provider, **metadata
            )
        return run.failure(_error_message(result.error), **metadata)

    async def _resolve_via_episode_search(
        self, run: ResolutionRun, episode_id: str, embed: SpotifyEmbedData
    ) -> Optional[ProviderResult]:
        episode = await run.directory.search_episode(embed.show_title, embed.episode_title)
        if episode is None:
            return None
        missing = run.require_transcription_provider()
        if missing:
            return missing
        run.push_once(TranscriptSource.WHISPER)
        result = await run.transcribe(episode.episode_url, "episode.mp3", episode.duration_seconds)
        if not result.text:
            return None
        run.notes.append("Resolved Spotify episode via iTunes episode search")
        return run.success(
            result.text,
            TranscriptSource.WHISPER,
            kind="spotify_itunes_search_episode",
            episode_id=episode_id,
            show_title=embed.show_title,
            episode_title=episode.episode_title,
            episode_url=episode.episode_url,
            duration_seconds=episode.duration_seconds,
            transcription_provider=result.provider,
        )


class AppleLookupStrategy(TranscriptStrategy):
    """Apple Podcasts URLs without page HTML, resolved through the iTunes lookup API."""

    name = "apple_lookup"

    def can_attempt(self, context: ProviderContext) -> bool:
        return context.html is None and extract_apple_podcast_ids(context.url) is not None

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        ids = extract_apple_podcast_ids(run.context.url)
        try:
            episode = await run.directory.lookup_episode(ids.show_id, ids.episode_id)
            if episode is None:
                raise TranscriptResolverError("iTunes lookup did not return an episodeUrl")

            if episode.feed_url and episode.episode_title:
                run.push_once(TranscriptSource.PODCAST_TRANSCRIPT)
                try:
                    feed_xml = await run.fetch_feed(episode.feed_url)
                except FeedFetchError as e:
                    logger.info(f"Apple feed unavailable, transcribing episode instead: {e}")
                    feed_xml = None
                transcript = None
                if feed_xml and has_transcript_marker(feed_xml):
                    transcript = await run.feed_transcript(feed_xml, episode.episode_title)
                if transcript:
                    run.notes.append("Resolved Apple Podcasts episode via RSS <podcast:transcript>")
                    return run.success(
                        transcript.text,
                        TranscriptSource.PODCAST_TRANSCRIPT,
                        kind="apple_itunes_rss_transcript",
                        show_id=ids.show_id,
                        episode_id=ids.episode_id,
                        feed_url=episode.feed_url,
                        episode_title=episode.episode_title,
                        transcript_url=transcript.transcript_url,
                        transcript_type=transcript.transcript_type,
                    )

            missing = run.require_transcription_provider()
            if missing:
                return missing
            run.push_once(TranscriptSource.WHISPER)
            filename = f"episode.{episode.file_extension}" if episode.file_extension else "episode.mp3"
            result = await run.transcribe(episode.episode_url, filename, episode.duration_seconds)
            metadata = dict(
                kind="apple_itunes_episode",
                show_id=ids.show_id,
                episode_id=ids.episode_id,
                episode_url=episode.episode_url,
                feed_url=episode.feed_url,
                duration_seconds=episode.duration_seconds,
                transcription_provider=result.provider,
            )
            if result.text:
                run.notes.append("Resolved Apple Podcasts episode via iTunes lookup")
                return run.success(result.text, TranscriptSource.WHISPER, **metadata)
            return run.failure(_error_message(result.error), **metadata)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Apple Podcasts lookup for show {ids.show_id} failed: {e}")
            return run.failure(
                f"Apple Podcasts iTunes lookup failed: {e}",
                kind="apple_itunes_episode",
                show_id=ids.show_id,
            )


class EmbeddedFeedUrlStrategy(TranscriptStrategy):
    """Pages embedding the show's feed as inline JSON ("feedUrl")."""

    name = "embedded_feed_url"

    def can_attempt(self, context: ProviderContext) -> bool:
        return context.html is not None and extract_embedded_json_url(context.html, "feedUrl") is not None

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        html = run.context.html
        feed_url = extract_embedded_json_url(html, "feedUrl")
        episode_title = extract_apple_episode_title(html)

        try:
            feed_xml = await run.fetch_feed(feed_url)
            if has_transcript_marker(feed_xml):
                run.push_once(TranscriptSource.PODCAST_TRANSCRIPT)
                transcript = await run.feed_transcript(feed_xml, episode_title)
                if transcript:
                    return run.success(
                        transcript.text,
                        TranscriptSource.PODCAST_TRANSCRIPT,
                        kind="apple_feed_transcript",
                        feed_url=feed_url,
                        episode_title=episode_title,
                        transcript_url=transcript.transcript_url,
                        transcript_type=transcript.transcript_type,
                    )
            if episode_title:
                enclosure = extract_enclosure_for_episode(feed_xml, episode_title)
            else:
                enclosure = extract_enclosure_from_feed(feed_xml)
        except (httpx.HTTPError, httpx.InvalidURL, TranscriptResolverError) as e:
            # Apple pages usually carry a streamUrl too; let the next strategy use it.
            run.notes.append(f"Podcast feed fetch failed: {e}")
            return None

        if enclosure is None:
            return None

        missing = run.require_transcription_provider()
        if missing:
            return missing
        run.push_once(TranscriptSource.WHISPER)
        metadata = dict(
            kind="apple_feed_url",
            feed_url=feed_url,
            episode_title=episode_title,
            enclosure_url=enclosure.enclosure_url,
            duration_seconds=enclosure.duration_seconds,
        )
        try:
            result = await run.transcribe(enclosure.enclosure_url, "episode.mp3", enclosure.duration_seconds)
        except RECOVERABLE_ERRORS as e:
            return run.failure(str(e), **metadata)
        if result.text:
            return run.success(
                result.text, TranscriptSource.WHISPER, transcription_provider=result.provider, **metadata
            )
        return run.failure(_error_message(result.error), **metadata)


class EmbeddedStreamUrlStrategy(TranscriptStrategy):
    """Pages embedding a direct media URL as inline JSON ("streamUrl")."""

    name = "embedded_stream_url"

    def can_attempt(self, context: ProviderContext) -> bool:
        return context.html is not None and extract_embedded_json_url(context.html, "streamUrl") is not None

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        stream_url = extract_embedded_json_url(run.context.html, "streamUrl")
        missing = run.require_transcription_provider()
        if missing:
            return missing
        run.push_once(TranscriptSource.WHISPER)
        try:
            result = await run.transcribe(stream_url, "episode.mp3")
        except RECOVERABLE_ERRORS as e:
            return run.failure(str(e), kind="apple_stream_url", stream_url=stream_url)
        if result.text:
            return run.success(
                result.text,
                TranscriptSource.WHISPER,
                kind="apple_stream_url",
                stream_url=stream_url,
                transcription_provider=result.provider,
            )
        return run.failure(_error_message(result.error), kind="apple_stream_url", stream_url=stream_url)


class FeedEnclosureStrategy(TranscriptStrategy):
    """A bare RSS/Atom document: feed transcript first, then its first enclosure."""

    name = "feed_enclosure"

    def can_attempt(self, context: ProviderContext) -> bool:
        html = context.html
        return html is not None and looks_like_feed(html) and extract_enclosure_from_feed(html) is not None

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        feed_xml = run.context.html
        enclosure = extract_enclosure_from_feed(feed_xml)
        with_marker = has_transcript_marker(feed_xml)
        if with_marker:
            run.push_once(TranscriptSource.PODCAST_TRANSCRIPT)

        try:
            if with_marker:
                transcript = await run.feed_transcript(feed_xml, None)
                if transcript:
                    return run.success(
                        transcript.text,
                        TranscriptSource.PODCAST_TRANSCRIPT,
                        kind="rss_podcast_transcript",
                        transcript_url=transcript.transcript_url,
                        transcript_type=transcript.transcript_type,
                    )

            missing = run.require_transcription_provider()
            if missing:
                return missing
            run.push_once(TranscriptSource.WHISPER)
            result = await run.transcribe(enclosure.enclosure_url, "episode.mp3", enclosure.duration_seconds)
        except RECOVERABLE_ERRORS as e:
            return run.failure(
                f"Podcast enclosure download failed: {e}",
                kind="rss_enclosure",
                enclosure_url=enclosure.enclosure_url,
            )

        metadata = dict(
            kind="rss_enclosure",
            enclosure_url=enclosure.enclosure_url,
            duration_seconds=enclosure.duration_seconds,
            transcription_provider=result.provider,
        )
        if result.text:
            return run.success(result.text, TranscriptSource.WHISPER, **metadata)
        return run.failure(_error_message(result.error), **metadata)


class OgAudioStrategy(TranscriptStrategy):
    """Pages exposing og:audio; the media may only be a preview clip."""

    name = "og_audio"

    def can_attempt(self, context: ProviderContext) -> bool:
        return context.html is not None and extract_og_audio_url(context.html) is not None

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        og_audio_url = extract_og_audio_url(run.context.html)
        missing = run.require_transcription_provider()
        if missing:
            return missing
        run.push_once(TranscriptSource.WHISPER)
        try:
            result = await run.transcribe(og_audio_url, "audio.mp3")
        except RECOVERABLE_ERRORS as e:
            return run.failure(str(e), kind="og_audio", og_audio_url=og_audio_url)
        if result.text:
            run.notes.append("Used og:audio media (may be a preview clip, not the full episode)")
            return run.success(
                result.text,
                TranscriptSource.WHISPER,
                kind="og_audio",
                og_audio_url=og_audio_url,
                transcription_provider=result.provider,
            )
        return run.failure(_error_message(result.error), kind="og_audio", og_audio_url=og_audio_url)


class YtDlpStrategy(TranscriptStrategy):
    """Last resort: hand the page URL to yt-dlp when a binary is configured."""

    name = "yt_dlp"

    async def attempt(self, run: ResolutionRun) -> Optional[ProviderResult]:
        yt_dlp_path = run.options.yt_dlp_path
        if not yt_dlp_path:
            return None
        missing = run.require_transcription_provider()
        if missing:
            return missing
        run.push_once(TranscriptSource.YT_DLP)
        try:
            result = await fetch_transcript_with_ytdlp(
                yt_dlp_path,
                run.context.url,
                run.engine,
                openai_api_key=run.options.openai_api_key,
                fal_api_key=run.options.fal_api_key,
            )
        except RECOVERABLE_ERRORS as e:
            return run.failure(f"yt-dlp transcription failed: {e}", kind="yt_dlp")

        run.notes.extend(result.notes)
        if result.text:
            return run.success(
                result.text, TranscriptSource.YT_DLP, kind="yt_dlp", transcription_provider=result.provider
            )
        return run.failure(run.joined_notes(), kind="yt_dlp", transcription_provider=result.provider)


DEFAULT_STRATEGIES: tuple[TranscriptStrategy, ...] = (
    FeedTranscriptStrategy(),
    SpotifyStrategy(),
    AppleLookupStrategy(),
    EmbeddedFeedUrlStrategy(),
    EmbeddedStreamUrlStrategy(),
    FeedEnclosureStrategy(),
    OgAudioStrategy(),
    YtDlpStrategy(),
)
