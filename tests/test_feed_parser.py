"""Tests for feed parsing and title normalization."""
import unittest

from transcript_resolver.services.feed_parser import (
    extract_enclosure_for_episode,
    extract_enclosure_from_feed,
    looks_like_feed,
    parse_duration,
    parse_feed_items,
    select_preferred_candidate,
)
from transcript_resolver.models import TranscriptCandidate
from transcript_resolver.utils import normalize_title

from conftest import TEST_MEDIA_URL, build_item, build_rss


class TestParseDuration(unittest.TestCase):
    def test_hours_minutes_seconds(self):
        feed = build_rss(build_item(title="Ep", enclosure_url=TEST_MEDIA_URL, duration="01:02:03"))
        self.assertEqual(parse_feed_items(feed)[0].duration_seconds, 3723)

    def test_plain_seconds(self):
        self.assertEqual(parse_duration("65"), 65)

    def test_minutes_seconds(self):
        self.assertEqual(parse_duration("12:30"), 750)

    def test_rejects_zero_negative_and_garbage(self):
        for raw in ("0", "-5", "abc", "", "00:00", "1:2:3:4", "-1:30"):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_duration(raw))

    def test_cdata_wrapped(self):
        self.assertEqual(parse_duration("<![CDATA[90]]>"), 90)


class TestNormalizeTitle(unittest.TestCase):
    def test_punctuation_and_case_collapse(self):
        self.assertEqual(normalize_title("The Daily: Episode #42"), normalize_title("the daily episode 42"))

    def test_diacritics_stripped(self):
        self.assertEqual(normalize_title("Café Olé"), "cafe ole")

    def test_distinct_titles_stay_distinct(self):
        self.assertNotEqual(normalize_title("Episode 41"), normalize_title("Episode 42"))


class TestFeedDetection(unittest.TestCase):
    def test_rss_and_atom(self):
        self.assertTrue(looks_like_feed(build_rss()))
        self.assertTrue(looks_like_feed('<?xml version="1.0"?><feed xmlns="http://www.w3.org/2005/Atom"></feed>'))

    def test_html_page(self):
        self.assertFalse(looks_like_feed("<html><head><title>x</title></head></html>"))

    def test_marker_beyond_head_ignored(self):
        self.assertFalse(looks_like_feed("<html>" + " " * 5000 + "<rss>"))


class TestEnclosures(unittest.TestCase):
    def test_first_item_with_enclosure(self):
        feed = build_rss(
            build_item(title="No audio"),
            build_item(title="Ep 1", enclosure_url="https://x/a.mp3?x=1&amp;y=2", duration="65"),
        )
        enclosure = extract_enclosure_from_feed(feed)
        self.assertEqual(enclosure.enclosure_url, "https://x/a.mp3?x=1&y=2")
        self.assertEqual(enclosure.duration_seconds, 65)

    def test_atom_link_enclosure(self):
        feed = (
            '<feed xmlns="http://www.w3.org/2005/Atom"><entry><title>A</title>'
            '<link rel="enclosure" href="https://x/atom.mp3"/></entry></feed>'
        )
        self.assertEqual(extract_enclosure_from_feed(feed).enclosure_url, "https://x/atom.mp3")

    def test_feed_level_fallback_without_items(self):
        feed = f'<rss><channel><enclosure url="{TEST_MEDIA_URL}"/></channel></rss>'
        self.assertEqual(extract_enclosure_from_feed(feed).enclosure_url, TEST_MEDIA_URL)

    def test_no_enclosure(self):
        self.assertIsNone(extract_enclosure_from_feed(build_rss(build_item(title="Nothing"))))

    def test_enclosure_for_episode_matches_normalized_title(self):
        feed = build_rss(
            build_item(title="Episode 41", enclosure_url="https://x/41.mp3"),
            build_item(title="<![CDATA[The Daily: Episode #42]]>", enclosure_url="https://x/42.mp3"),
        )
        match = extract_enclosure_for_episode(feed, "the daily episode 42")
        self.assertEqual(match.enclosure_url, "https://x/42.mp3")

    def test_enclosure_for_episode_without_match(self):
        feed = build_rss(build_item(title="Episode 41", enclosure_url="https://x/41.mp3"))
        self.assertIsNone(extract_enclosure_for_episode(feed, "Episode 42"))


class TestTranscriptCandidates(unittest.TestCase):
    def test_items_carry_candidates(self):
        feed = build_rss(build_item(
            title="Ep",
            transcripts=(("https://x/t.vtt", "text/vtt"), ("https://x/t.json", "application/json")),
        ))
        facts = parse_feed_items(feed)[0]
        self.assertEqual([c.url for c in facts.transcript_candidates], ["https://x/t.vtt", "https://x/t.json"])

    def test_json_preferred_over_vtt(self):
        chosen = select_preferred_candidate([
            TranscriptCandidate("https://x/t.vtt", "text/vtt"),
            TranscriptCandidate("https://x/t.json", "Application/JSON"),
        ])
        self.assertEqual(chosen.url, "https://x/t.json")
        self.assertEqual(chosen.type, "application/json")

    def test_vtt_preferred_over_plain(self):
        chosen = select_preferred_candidate([
            TranscriptCandidate("https://x/t.txt", "text/plain"),
            TranscriptCandidate("https://x/captions.vtt", None),
        ])
        self.assertEqual(chosen.url, "https://x/captions.vtt")

    def test_first_declared_otherwise(self):
        chosen = select_preferred_candidate([
            TranscriptCandidate("https://x/a.txt", "text/plain"),
            TranscriptCandidate("https://x/b.html", "text/html"),
        ])
        self.assertEqual(chosen.url, "https://x/a.txt")
        self.assertIsNone(select_preferred_candidate([]))
