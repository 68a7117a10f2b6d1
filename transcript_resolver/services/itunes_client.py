"""
iTunes Directory Client - resolve shows and episodes to feed or media URLs.

Uses the public iTunes Search and Lookup APIs. Every call is a single
request/parse round trip; non-success responses and malformed payloads are
reported as "not found" (None).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from ..config import settings
from ..utils import as_record_list, is_http_url, millis_to_seconds, normalize_title

logger = logging.getLogger(__name__)


@dataclass
class ItunesEpisode:
    """Episode resolved from a directory lookup."""
    episode_url: str
    episode_title: Optional[str] = None
    duration_seconds: Optional[float] = None
    feed_url: Optional[str] = None
    file_extension: Optional[str] = None


def _parse_release_date(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    # Naive and aware timestamps must stay comparable when sorting.
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def pick_newest_episode(episodes: list[dict]) -> Optional[dict]:
    """Newest episode by releaseDate; unparseable dates sort last."""
    if not episodes:
        return None
    dated = [(e, _parse_release_date(e.get("releaseDate"))) for e in episodes]
    with_date = [pair for pair in dated if pair[1] is not None]
    if not with_date:
        return episodes[0]
    return max(with_date, key=lambda pair: pair[1])[0]


def choose_lookup_episode(episodes: list[dict], episode_id: Optional[str]) -> Optional[dict]:
    """Exact trackId match when an id is given, else the newest episode."""
    if episode_id:
        for record in episodes:
            if str(record.get("trackId", "")) == episode_id:
                return record
    return pick_newest_episode(episodes)


class ItunesDirectoryClient:
    """
    Async client for the iTunes podcast directory.

    Args:
        client: Shared httpx client used for every request
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: Optional[float] = None,
        search_url: Optional[str] = None,
        lookup_url: Optional[str] = None,
    ):
        self.client = client
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.search_url = search_url or settings.ITUNES_SEARCH_URL
        self.lookup_url = lookup_url or settings.ITUNES_LOOKUP_URL

    async def _get_results(self, url: str, params: dict[str, str]) -> list[dict]:
        response = await self.client.get(
            url,
            params=params,
            timeout=self.timeout,
            follow_redirects=True,
            headers={"accept": "application/json"},
        )
        if not response.is_success:
            logger.warning(f"iTunes request failed: {response.status_code} {url}")
            return []
        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"iTunes returned malformed JSON: {url}")
            return []
        if not isinstance(payload, dict):
            return []
        return as_record_list(payload.get("results"))

    async def search_feed_url(self, show_title: str) -> Optional[str]:
        """Find the RSS feed URL of a show, preferring an exact title match."""
        results = await self._get_results(
            self.search_url,
            {"term": show_title, "media": "podcast", "entity": "podcast", "limit": "10"},
        )
        if not results:
            return None

        target = normalize_title(show_title)
        best = next(
            (r for r in results if normalize_title(str(r.get("collectionName") or "")) == target),
            results[0],
        )
        feed_url = best.get("feedUrl")
        feed_url = feed_url.strip() if isinstance(feed_url, str) else ""
        return feed_url if is_http_url(feed_url) else None

    async def search_episode(self, show_title: str, episode_title: str) -> Optional[ItunesEpisode]:
        """
        Search episodes by "<show> <episode>".

        Preference: both titles match, then episode title only, then the
        first usable result.
        """
        results = await self._get_results(
            self.search_url,
            {
                "term": f"{show_title} {episode_title}",
                "media": "podcast",
                "entity": "podcastEpisode",
                "limit": "25",
            },
        )
        candidates = []
        for record in results:
            title = record.get("trackName")
            episode_url = record.get("episodeUrl")
            if not isinstance(title, str) or not title or not isinstance(episode_url, str) or not episode_url:
                continue
            collection = record.get("collectionName")
            candidates.append({
                "title": title,
                "collection": collection if isinstance(collection, str) else "",
                "episode_url": episode_url,
                "duration_seconds": millis_to_seconds(record.get("trackTimeMillis")),
            })
        if not candidates:
            return None

        show = normalize_title(show_title)
        episode = normalize_title(episode_title)
        exact = next(
            (c for c in candidates
             if normalize_title(c["title"]) == episode and normalize_title(c["collection"]) == show),
            None,
        )
        exact_episode = next((c for c in candidates if normalize_title(c["title"]) == episode), None)
        best = exact or exact_episode or candidates[0]

        return ItunesEpisode(
            episode_url=best["episode_url"],
            episode_title=best["title"],
            duration_seconds=best["duration_seconds"],
        )

    async def lookup_episode(self, show_id: str, episode_id: Optional[str] = None) -> Optional[ItunesEpisode]:
        """
        Look up a show's episodes by numeric id.

        Picks the episode whose trackId equals episode_id, or the most
        recently released one when no id is given or it is not listed.
        """
        results = await self._get_results(
            self.lookup_url,
            {"id": show_id, "entity": "podcastEpisode", "limit": "200"},
        )

        show = next(
            (r for r in results if r.get("wrapperType") == "track" and r.get("kind") == "podcast"),
            None,
        )
        feed_url = show.get("feedUrl") if show else None
        feed_url = feed_url.strip() if isinstance(feed_url, str) and feed_url.strip() else None

        episodes = [r for r in results if r.get("wrapperType") == "podcastEpisode"]
        chosen = choose_lookup_episode(episodes, episode_id)
        if chosen is None:
            return None

        raw_url = chosen.get("episodeUrl")
        if not isinstance(raw_url, str):
            raw_url = chosen.get("previewUrl")
        episode_url = raw_url.strip() if isinstance(raw_url, str) else ""
        if not is_http_url(episode_url):
            return None

        extension = chosen.get("episodeFileExtension")
        extension = extension.strip().lstrip(".") if isinstance(extension, str) and extension.strip() else None
        title = chosen.get("trackName")
        title = title.strip() if isinstance(title, str) and title.strip() else None

        return ItunesEpisode(
            episode_url=episode_url,
            episode_title=title,
            duration_seconds=millis_to_seconds(chosen.get("trackTimeMillis")),
            feed_url=feed_url,
            file_extension=extension,
        )
