"""
RSS Feed Parser - Extract episode facts from RSS/Atom feeds.

Feeds in the wild are frequently malformed, so items are located with
tolerant pattern matching instead of a full XML parser.
"""
import re
from typing import Optional

from ..models import FeedEnclosure, FeedItemFacts, TranscriptCandidate
from ..utils import decode_xml_entities, normalize_title, strip_cdata

_ITEM_BLOCK = re.compile(r"<(item|entry)\b[\s\S]*?</\1>", re.IGNORECASE)
_TITLE = re.compile(r"<title\b[^>]*>([\s\S]*?)</title>", re.IGNORECASE)
_ENCLOSURE = re.compile(r"""<enclosure\b[^>]*\burl\s*=\s*(['"])([^'"]+)\1""", re.IGNORECASE)
_ATOM_ENCLOSURE = re.compile(
    r"""<link\b[^>]*\brel\s*=\s*(['"])enclosure\1[^>]*\bhref\s*=\s*(['"])([^'"]+)\2""",
    re.IGNORECASE,
)
_DURATION = re.compile(r"<itunes:duration>([\s\S]*?)</itunes:duration>", re.IGNORECASE)
_TRANSCRIPT_TAG = re.compile(
    r"""<podcast:transcript\b[^>]*\burl\s*=\s*(['"])([^'"]+)\1[^>]*>""", re.IGNORECASE
)
_TYPE_ATTR = re.compile(r"""\btype\s*=\s*(['"])([^'"]+)\1""", re.IGNORECASE)
_TRANSCRIPT_MARKER = re.compile(r"podcast:transcript", re.IGNORECASE)
_DIGITS = re.compile(r"[0-9]+")


def looks_like_feed(xml: str) -> bool:
    """Check whether a document starts like an RSS or Atom feed."""
    head = xml[:4096].lstrip().lower()
    return "<rss" in head or "<feed" in head


def has_transcript_marker(xml: str) -> bool:
    return bool(_TRANSCRIPT_MARKER.search(xml))


def iter_item_blocks(xml: str) -> list[str]:
    """Return the raw text of every <item> or <entry> block."""
    return [match.group(0) for match in _ITEM_BLOCK.finditer(xml)]


def parse_duration(duration_str: Optional[str]) -> Optional[int]:
    """Parse duration string to seconds. Handles HH:MM:SS, MM:SS, or seconds.

    Non-positive and malformed values return None.
    """
    if not duration_str:
        return None

    raw = strip_cdata(duration_str)
    if not raw:
        return None

    if _DIGITS.fullmatch(raw):
        seconds = int(raw)
        return seconds if seconds > 0 else None

    parts = [part.strip() for part in raw.split(":") if part.strip()]
    if len(parts) not in (2, 3):
        return None
    try:
        nums = [float(part) for part in parts]
    except ValueError:
        return None
    if any(n < 0 or n != n or n == float("inf") for n in nums):
        return None

    if len(nums) == 3:
        hours, minutes, secs = nums
        seconds = round(hours * 3600 + minutes * 60 + secs)
    else:
        minutes, secs = nums
        seconds = round(minutes * 60 + secs)
    return seconds if seconds > 0 else None


def extract_item_title(item_xml: str) -> Optional[str]:
    match = _TITLE.search(item_xml)
    if not match:
        return None
    title = decode_xml_entities(strip_cdata(match.group(1))).strip()
    return title or None


def extract_enclosure_url(item_xml: str) -> Optional[str]:
    """Find the enclosure URL, RSS style first and Atom <link rel="enclosure"> second."""
    match = _ENCLOSURE.search(item_xml)
    if match:
        return decode_xml_entities(match.group(2))
    atom = _ATOM_ENCLOSURE.search(item_xml)
    if atom:
        return decode_xml_entities(atom.group(3))
    return None


def extract_item_duration(item_xml: str) -> Optional[int]:
    match = _DURATION.search(item_xml)
    return parse_duration(match.group(1)) if match else None


def extract_transcript_candidates(item_xml: str) -> list[TranscriptCandidate]:
    candidates = []
    for match in _TRANSCRIPT_TAG.finditer(item_xml):
        url = match.group(2).strip()
        if not url:
            continue
        type_match = _TYPE_ATTR.search(match.group(0))
        declared = type_match.group(2).strip() if type_match else None
        candidates.append(TranscriptCandidate(url=url, type=declared or None))
    return candidates


def select_preferred_candidate(
    candidates: list[TranscriptCandidate],
) -> Optional[TranscriptCandidate]:
    """Pick JSON over WebVTT over whatever was declared first."""
    if not candidates:
        return None

    normalized = [
        TranscriptCandidate(
            url=c.url,
            type=c.type.lower().split(";")[0].strip() if c.type else None,
        )
        for c in candidates
    ]
    for c in normalized:
        if c.type == "application/json" or c.url.lower().endswith(".json"):
            return c
    for c in normalized:
        if c.type == "text/vtt" or c.url.lower().endswith(".vtt"):
            return c
    return normalized[0]


def parse_item(item_xml: str) -> FeedItemFacts:
    return FeedItemFacts(
        title=extract_item_title(item_xml),
        enclosure_url=extract_enclosure_url(item_xml),
        duration_seconds=extract_item_duration(item_xml),
        transcript_candidates=extract_transcript_candidates(item_xml),
    )


def parse_feed_items(xml: str) -> list[FeedItemFacts]:
    """Parse every item/entry of a feed into FeedItemFacts."""
    return [parse_item(block) for block in iter_item_blocks(xml)]


def extract_enclosure_from_feed(xml: str) -> Optional[FeedEnclosure]:
    """
    Return the first item's enclosure.

    Single-episode documents without an enclosing <item> fall back to a
    feed-level search.
    """
    for block in iter_item_blocks(xml):
        url = extract_enclosure_url(block)
        if url:
            return FeedEnclosure(enclosure_url=url, duration_seconds=extract_item_duration(block))

    url = extract_enclosure_url(xml)
    if url:
        return FeedEnclosure(enclosure_url=url, duration_seconds=extract_item_duration(xml))
    return None


def extract_enclosure_for_episode(xml: str, episode_title: str) -> Optional[FeedEnclosure]:
    """Return the enclosure of the item whose normalized title equals episode_title's."""
    target = normalize_title(episode_title)
    if not target:
        return extract_enclosure_from_feed(xml)
    for block in iter_item_blocks(xml):
        title = extract_item_title(block)
        if not title or normalize_title(title) != target:
            continue
        url = extract_enclosure_url(block)
        if not url:
            continue
        return FeedEnclosure(enclosure_url=url, duration_seconds=extract_item_duration(block))
    return None
