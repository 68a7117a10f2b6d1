"""Tests for platform page metadata extraction."""
import unittest

import httpx

from transcript_resolver.exceptions import SpotifyEmbedError
from transcript_resolver.models import ScrapeResult
from transcript_resolver.services.page_metadata import (
    extract_apple_episode_title,
    extract_apple_podcast_ids,
    extract_embedded_json_url,
    extract_og_audio_url,
    extract_spotify_embed_data,
    extract_spotify_episode_id,
    fetch_spotify_embed_html,
    looks_like_blocked_html,
)

from conftest import RecordingHandler, build_spotify_embed_html, make_client

EMBED_URL = "https://open.spotify.com/embed/episode/abc123"


class TestUrlIdentifiers(unittest.TestCase):
    def test_spotify_episode_id(self):
        self.assertEqual(extract_spotify_episode_id("https://open.spotify.com/episode/4rOoJ6Egrf8K2IrywzwOMk?si=x"),
                         "4rOoJ6Egrf8K2IrywzwOMk")
        self.assertIsNone(extract_spotify_episode_id("https://open.spotify.com/show/abc"))
        self.assertIsNone(extract_spotify_episode_id("https://example.com/episode/abc"))

    def test_apple_ids(self):
        ids = extract_apple_podcast_ids("https://podcasts.apple.com/us/podcast/the-daily/id1200361736?i=1000650000000")
        self.assertEqual(ids.show_id, "1200361736")
        self.assertEqual(ids.episode_id, "1000650000000")

    def test_apple_ids_without_episode(self):
        ids = extract_apple_podcast_ids("https://www.podcasts.apple.com/us/podcast/x/id42")
        self.assertEqual(ids.show_id, "42")
        self.assertIsNone(ids.episode_id)
        self.assertIsNone(extract_apple_podcast_ids("https://podcasts.apple.com/us/browse"))


class TestHtmlExtractors(unittest.TestCase):
    def test_spotify_embed_data(self):
        data = extract_spotify_embed_data(build_spotify_embed_html(
            audio_urls=("https://other.example/a.mp4", "https://audio4-fa.scdn.co/audio/ep")
        ))
        self.assertEqual(data.show_title, "The Daily")
        self.assertEqual(data.episode_title, "Episode 42")
        self.assertEqual(data.duration_seconds, 1800)
        self.assertEqual(data.drm_format, "MP4_128_DUAL")
        self.assertEqual(data.audio_url, "https://audio4-fa.scdn.co/audio/ep")

    def test_spotify_embed_data_missing(self):
        self.assertIsNone(extract_spotify_embed_data("<html>nothing here</html>"))

    def test_embedded_json_url_unescapes(self):
        html = '<script>{"feedUrl":"https:\\/\\/feeds.example.com\\/show.xml","streamUrl":""}</script>'
        self.assertEqual(extract_embedded_json_url(html, "feedUrl"), "https://feeds.example.com/show.xml")
        self.assertIsNone(extract_embedded_json_url(html, "streamUrl"))

    def test_apple_episode_title_prefers_apple_meta(self):
        html = (
            '<meta property="og:title" content="Show page">'
            '<meta name="apple:title" content="Tom &amp; Jerry">'
        )
        self.assertEqual(extract_apple_episode_title(html), "Tom & Jerry")

    def test_og_audio_requires_absolute_url(self):
        self.assertEqual(
            extract_og_audio_url('<meta property="og:audio" content="https://cdn.example.com/clip.mp3" />'),
            "https://cdn.example.com/clip.mp3",
        )
        self.assertIsNone(extract_og_audio_url('<meta property="og:audio" content="/clip.mp3" />'))

    def test_blocked_html(self):
        self.assertTrue(looks_like_blocked_html("<title>Attention Required! | Cloudflare</title>"))
        self.assertFalse(looks_like_blocked_html(build_spotify_embed_html() + "recaptcha"))


class TestFetchSpotifyEmbed(unittest.IsolatedAsyncioTestCase):
    async def test_direct_fetch(self):
        handler = RecordingHandler({EMBED_URL: httpx.Response(200, text=build_spotify_embed_html())})
        async with make_client(handler) as client:
            html, via = await fetch_spotify_embed_html(client, EMBED_URL, "abc123")
        self.assertEqual(via, "fetch")
        self.assertIn("__NEXT_DATA__", html)
        self.assertIn("Mozilla", handler.requests[0].headers["user-agent"])

    async def test_blocked_page_falls_back_to_scraper(self):
        calls = []

        async def scrape(url, cache_mode="default", timeout_ms=None):
            calls.append((url, cache_mode))
            return ScrapeResult(markdown="", html=build_spotify_embed_html())

        handler = RecordingHandler({EMBED_URL: httpx.Response(200, text="<p>Verify you are human</p>")})
        async with make_client(handler) as client:
            html, via = await fetch_spotify_embed_html(client, EMBED_URL, "abc123", scrape)
        self.assertEqual(via, "firecrawl")
        self.assertEqual(calls, [(EMBED_URL, "bypass")])
        self.assertIsNotNone(extract_spotify_embed_data(html))

    async def test_failure_without_scraper_raises(self):
        handler = RecordingHandler({EMBED_URL: httpx.Response(403)})
        async with make_client(handler) as client:
            with self.assertRaises(SpotifyEmbedError):
                await fetch_spotify_embed_html(client, EMBED_URL, "abc123")
