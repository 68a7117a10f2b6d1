"""
Firecrawl scraper - optional fallback for pages that block direct fetches.
"""
import logging
from typing import Optional

import httpx

from ..config import settings
from ..models import ScrapeResult

logger = logging.getLogger(__name__)


class FirecrawlScraper:
    """Callable scrape function backed by the Firecrawl /v1/scrape endpoint."""

    def __init__(self, client: httpx.AsyncClient, api_key: str, api_base: Optional[str] = None):
        self.client = client
        self.api_key = api_key
        self.api_base = (api_base or settings.FIRECRAWL_API_BASE).rstrip('/')

    async def __call__(
        self,
        url: str,
        cache_mode: str = "default",
        timeout_ms: Optional[int] = None,
    ) -> Optional[ScrapeResult]:
        timeout_ms = timeout_ms or int(settings.HTTP_TIMEOUT_SECONDS * 1000)
        body = {
            "url": url,
            "formats": ["markdown", "html"],
            "timeout": timeout_ms,
        }
        if cache_mode == "bypass":
            body["maxAge"] = 0

        try:
            response = await self.client.post(
                f"{self.api_base}/v1/scrape",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=body,
                timeout=timeout_ms / 1000 + 5,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Firecrawl request failed for {url}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Firecrawl scrape failed ({response.status_code}) for {url}")
            return None
        try:
            payload = response.json()
        except ValueError:
            return None

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return None
        markdown = data.get("markdown") if isinstance(data.get("markdown"), str) else ""
        html = data.get("html") if isinstance(data.get("html"), str) else None
        if not markdown and not html:
            return None
        return ScrapeResult(markdown=markdown, html=html)
