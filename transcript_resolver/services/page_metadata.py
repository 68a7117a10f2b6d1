"""
Embedded page metadata - recover show/episode identity and media URLs from
podcast platform pages (Spotify embed JSON, Apple Podcasts meta tags and
inline JSON fields, Open Graph audio).
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from ..config import settings
from ..exceptions import SpotifyEmbedError
from ..models import ScrapeFunction
from ..utils import decode_xml_entities, get_json_number, get_json_path, get_json_string, is_http_url

logger = logging.getLogger(__name__)

FEED_HINT_URL_PATTERN = re.compile(r"rss|feed|podcast|\.xml($|[?#])", re.IGNORECASE)
PODCAST_PLATFORM_HOST_PATTERN = re.compile(
    r"open\.spotify\.com|spotify\.com|podcasts\.apple\.com|overcast\.fm|pca\.st|pod\.link|castbox\.fm|player\.fm",
    re.IGNORECASE,
)
BLOCKED_HTML_HINT_PATTERN = re.compile(
    r"access denied|attention required|captcha|recaptcha|cloudflare|forbidden|verify you are human",
    re.IGNORECASE,
)

_NEXT_DATA = re.compile(
    r"""<script[^>]*id=["']__NEXT_DATA__["'][^>]*>([\s\S]*?)</script>""", re.IGNORECASE
)
_APPLE_TITLE_META = re.compile(
    r"""<meta\s+name=["']apple:title["']\s+content=["']([^"']+)["']""", re.IGNORECASE
)
_OG_TITLE_META = re.compile(
    r"""<meta\s+property=["']og:title["']\s+content=["']([^"']+)["']""", re.IGNORECASE
)
_OG_AUDIO_META = re.compile(
    r"""<meta\s+property=['"]og:audio['"]\s+content=['"]([^'"]+)['"][^>]*>""", re.IGNORECASE
)
_APPLE_SHOW_ID = re.compile(r"/id(\d+)(?:/|$)")
_SPOTIFY_ID = re.compile(r"^[A-Za-z0-9]+$")

_SPOTIFY_ENTITY = ("props", "pageProps", "state", "data", "entity")
_SPOTIFY_AUDIO = ("props", "pageProps", "state", "data", "defaultAudioFileObject")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120 Safari/537.36"
)


@dataclass
class SpotifyEmbedData:
    show_title: str
    episode_title: str
    duration_seconds: Optional[float]
    drm_format: Optional[str]
    audio_url: Optional[str]


@dataclass
class ApplePodcastIds:
    show_id: str
    episode_id: Optional[str] = None


def looks_like_blocked_html(html: str) -> bool:
    """Detect bot-protection interstitials (captcha, access denied, ...)."""
    head = html[:20000].lower()
    # Embed pages carry __NEXT_DATA__ even when the rest of the markup is minimal.
    if "__next_data__" in head:
        return False
    return bool(BLOCKED_HTML_HINT_PATTERN.search(head))


def is_podcast_platform_url(url: str) -> bool:
    return bool(PODCAST_PLATFORM_HOST_PATTERN.search(url))


def looks_like_feed_url(url: str) -> bool:
    return bool(FEED_HINT_URL_PATTERN.search(url))


def extract_spotify_episode_id(url: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if not host.endswith("spotify.com"):
        return None

    parts = [p for p in parsed.path.split("/") if p]
    if "episode" not in parts:
        return None
    idx = parts.index("episode")
    episode_id = parts[idx + 1] if idx + 1 < len(parts) else None
    return episode_id if episode_id and _SPOTIFY_ID.match(episode_id) else None


def pick_spotify_embed_audio_url(raw: Any) -> Optional[str]:
    """Prefer Spotify CDN (scdn.co) URLs among the embed's audio file URLs."""
    if not isinstance(raw, list):
        return None
    urls = [u.strip() for u in raw if isinstance(u, str)]
    urls = [u for u in urls if is_http_url(u)]
    if not urls:
        return None
    for u in urls:
        if "scdn.co" in u.lower():
            return u
    return urls[0]


def extract_spotify_embed_data(html: str) -> Optional[SpotifyEmbedData]:
    """Read show/episode identity and audio URL from the embed page's __NEXT_DATA__."""
    match = _NEXT_DATA.search(html)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        return None

    show_title = (get_json_string(data, _SPOTIFY_ENTITY + ("subtitle",)) or "").strip()
    episode_title = (get_json_string(data, _SPOTIFY_ENTITY + ("title",)) or "").strip()
    if not show_title or not episode_title:
        return None

    duration_ms = get_json_number(data, _SPOTIFY_ENTITY + ("duration",))
    return SpotifyEmbedData(
        show_title=show_title,
        episode_title=episode_title,
        duration_seconds=duration_ms / 1000 if duration_ms is not None else None,
        drm_format=get_json_string(data, _SPOTIFY_AUDIO + ("format",)),
        audio_url=pick_spotify_embed_audio_url(get_json_path(data, _SPOTIFY_AUDIO + ("url",))),
    )


def extract_apple_podcast_ids(url: str) -> Optional[ApplePodcastIds]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if host != "podcasts.apple.com":
        return None

    show_match = _APPLE_SHOW_ID.search(parsed.path)
    if not show_match:
        return None
    raw_episode = parse_qs(parsed.query).get("i", [None])[0]
    episode_id = raw_episode if raw_episode and raw_episode.isascii() and raw_episode.isdigit() else None
    return ApplePodcastIds(show_id=show_match.group(1), episode_id=episode_id)


def extract_apple_episode_title(html: str) -> Optional[str]:
    """Episode title from apple:title (episode only), else og:title."""
    match = _APPLE_TITLE_META.search(html) or _OG_TITLE_META.search(html)
    if not match:
        return None
    title = decode_xml_entities(match.group(1)).strip()
    return title or None


def extract_embedded_json_url(html: str, field: str) -> Optional[str]:
    """Find ``"<field>":"<json string>"`` in inline page JSON and decode it."""
    pattern = re.compile(rf'"{re.escape(field)}":"((?:\\.|[^"\\])*)"', re.IGNORECASE)
    match = pattern.search(html)
    if not match or not match.group(1):
        return None
    try:
        value = json.loads(f'"{match.group(1)}"')
    except ValueError:
        return None
    return value if isinstance(value, str) else None


def extract_og_audio_url(html: str) -> Optional[str]:
    match = _OG_AUDIO_META.search(html)
    if not match:
        return None
    candidate = match.group(1).strip()
    return candidate if is_http_url(candidate) else None


async def fetch_spotify_embed_html(
    client: httpx.AsyncClient,
    embed_url: str,
    episode_id: str,
    scrape: Optional[ScrapeFunction] = None,
) -> tuple[str, str]:
    """
    Fetch the Spotify embed page, falling back to the external scraper.

    Returns:
        (html, via) where via is "fetch" or "firecrawl"
    """
    try:
        response = await client.get(
            embed_url,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            follow_redirects=True,
            headers={
                "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "accept-language": "en-US,en;q=0.9",
                "referer": f"https://open.spotify.com/episode/{episode_id}",
                "user-agent": BROWSER_USER_AGENT,
            },
        )
        if not response.is_success:
            raise SpotifyEmbedError(f"Spotify embed fetch failed ({response.status_code})")
        if looks_like_blocked_html(response.text):
            raise SpotifyEmbedError("Spotify embed HTML looked blocked (captcha)")
        return response.text, "fetch"
    except (httpx.HTTPError, httpx.InvalidURL, SpotifyEmbedError) as e:
        if scrape is None:
            raise
        logger.info(f"Spotify embed fetch failed, trying scraper: {e}")

        payload = await scrape(
            embed_url,
            cache_mode="bypass",
            timeout_ms=int(settings.HTTP_TIMEOUT_SECONDS * 1000),
        )
        text = ((payload.html or payload.markdown) if payload else "") or ""
        text = text.strip()
        if not text:
            raise SpotifyEmbedError(
                f"Spotify embed fetch failed and Firecrawl returned empty content ({e})"
            ) from e
        if looks_like_blocked_html(text):
            raise SpotifyEmbedError("Spotify embed blocked even via Firecrawl (captcha)") from e
        return text, "firecrawl"
