"""
Transcript Pipeline - run the resolution cascade for one podcast reference.
"""
import logging
from typing import Optional, Sequence

import httpx

from ..config import settings
from ..models import ProgressCallback, ProviderContext, ProviderFetchOptions, ProviderResult
from .feed_parser import looks_like_feed
from .firecrawl import FirecrawlScraper
from .page_metadata import is_podcast_platform_url, looks_like_feed_url
from .strategies import DEFAULT_STRATEGIES, PROVIDER_NAME, ResolutionRun, TranscriptStrategy
from .transcriber import TranscriptionEngine

logger = logging.getLogger(__name__)


def can_handle(context: ProviderContext) -> bool:
    """Whether a reference looks like a podcast feed, platform page or feed URL."""
    if context.html is not None and looks_like_feed(context.html):
        return True
    if is_podcast_platform_url(context.url):
        return True
    return looks_like_feed_url(context.url)


def build_fetch_options(
    client: httpx.AsyncClient,
    on_progress: Optional[ProgressCallback] = None,
    engine: Optional[TranscriptionEngine] = None,
) -> ProviderFetchOptions:
    """Fetch options populated from settings."""
    scrape = FirecrawlScraper(client, settings.FIRECRAWL_API_KEY) if settings.FIRECRAWL_API_KEY else None
    return ProviderFetchOptions(
        client=client,
        openai_api_key=settings.OPENAI_API_KEY,
        fal_api_key=settings.FAL_KEY,
        yt_dlp_path=settings.YT_DLP_PATH,
        scrape=scrape,
        on_progress=on_progress,
        engine=engine,
    )


async def fetch_transcript(
    context: ProviderContext,
    options: ProviderFetchOptions,
    strategies: Sequence[TranscriptStrategy] = DEFAULT_STRATEGIES,
) -> ProviderResult:
    """
    Resolve a transcript for context, trying each strategy in order.

    Never raises: unexpected errors end the cascade with a failure result.
    """
    engine = options.engine or TranscriptionEngine(options.client)
    run: Optional[ResolutionRun] = None
    try:
        has_local_engine = await engine.is_ready()
        run = ResolutionRun(context, options, engine, has_local_engine)

        for strategy in strategies:
            if not strategy.can_attempt(context):
                continue
            logger.debug(f"Trying {strategy.name} for {context.url}")
            result = await strategy.attempt(run)
            if result is not None:
                logger.info(
                    f"Resolved {context.url} via {strategy.name}: "
                    f"source={result.source.value if result.source else None}"
                )
                return result

        missing = run.require_transcription_provider()
        if missing:
            return missing
        return run.failure(run.joined_notes(), reason="no_enclosure_and_no_yt_dlp")

    except Exception as e:
        logger.exception(f"Transcript resolution failed for {context.url}: {e}")
        return ProviderResult(
            text=None,
            source=None,
            attempted_providers=list(run.attempted_providers) if run else [],
            notes=f"Podcast transcript resolution failed: {e}",
            metadata={"provider": PROVIDER_NAME},
        )
