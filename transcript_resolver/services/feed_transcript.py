"""
Feed Transcript Resolver - fetch Podcasting 2.0 <podcast:transcript> files
referenced by a feed and normalize them to plain text.
"""
import json
import logging
import re
from typing import Any, Optional

import httpx

from ..config import settings
from ..exceptions import DownloadError
from ..models import FeedTranscript
from ..utils import decode_xml_entities, normalize_header_type, normalize_title
from .feed_parser import extract_item_title, extract_transcript_candidates, iter_item_blocks, select_preferred_candidate

logger = logging.getLogger(__name__)

TRANSCRIPT_ACCEPT = "text/vtt,text/plain,application/json;q=0.9,*/*;q=0.8"

_VTT_TIMING = re.compile(r"^\d{2}:\d{2}:\d{2}\.\d{3}\s+-->\s+\d{2}:\d{2}:\d{2}\.\d{3}")
_VTT_CUE_INDEX = re.compile(r"^\d+$")
_VTT_BLOCK = re.compile(r"^(NOTE|STYLE|REGION)\b", re.IGNORECASE)


def vtt_to_plain_text(raw: str) -> str:
    """Strip the WEBVTT header, cue timings, cue indexes and NOTE/STYLE/REGION lines."""
    lines = []
    for line in raw.replace("\r\n", "\n").split("\n"):
        line = line.strip()
        if not line:
            continue
        if line.upper() == "WEBVTT":
            continue
        if _VTT_TIMING.match(line) or _VTT_CUE_INDEX.match(line) or _VTT_BLOCK.match(line):
            continue
        lines.append(line)
    return "\n".join(lines).strip()


def _join_text_rows(rows: list) -> Optional[str]:
    parts = [
        row["text"].strip()
        for row in rows
        if isinstance(row, dict) and isinstance(row.get("text"), str) and row["text"].strip()
    ]
    text = "\n".join(parts).strip()
    return text or None


def json_transcript_to_plain_text(payload: Any) -> Optional[str]:
    """
    Accept a list of {"text": ...} rows, or an object carrying a "transcript"
    or "text" string or a "segments" list of rows.
    """
    if isinstance(payload, list):
        return _join_text_rows(payload)

    if isinstance(payload, dict):
        for key in ("transcript", "text"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        segments = payload.get("segments")
        if isinstance(segments, list):
            return _join_text_rows(segments)

    return None


def transcript_body_to_text(body: str, transcript_url: str, effective_type: Optional[str]) -> Optional[str]:
    lowered_url = transcript_url.lower()
    if effective_type == "application/json" or lowered_url.endswith(".json"):
        try:
            return json_transcript_to_plain_text(json.loads(body))
        except ValueError:
            return None
    if effective_type == "text/vtt" or lowered_url.endswith(".vtt"):
        return vtt_to_plain_text(body) or None
    return body.strip() or None


async def fetch_transcript_from_feed(
    client: httpx.AsyncClient,
    feed_xml: str,
    episode_title: Optional[str],
    notes: list[str],
) -> Optional[FeedTranscript]:
    """
    Resolve the feed-embedded transcript of one item.

    When episode_title is given only the item with the same normalized title
    is considered, and any failure on that item fails the whole resolution.
    Without a title, items are tried in order until one yields text.
    """
    target = normalize_title(episode_title) if episode_title else None

    for item in iter_item_blocks(feed_xml):
        if target:
            title = extract_item_title(item)
            if not title or normalize_title(title) != target:
                continue

        preferred = select_preferred_candidate(extract_transcript_candidates(item))
        if preferred is None:
            if target:
                return None
            continue

        transcript_url = decode_xml_entities(preferred.url)
        try:
            response = await client.get(
                transcript_url,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                follow_redirects=True,
                headers={"accept": TRANSCRIPT_ACCEPT},
            )
            if not response.is_success:
                raise DownloadError(f"transcript fetch failed ({response.status_code})")

            effective_type = preferred.type or normalize_header_type(response.headers.get("content-type"))
            text = transcript_body_to_text(response.text, transcript_url, effective_type)
        except (httpx.HTTPError, httpx.InvalidURL, DownloadError) as e:
            logger.warning(f"Feed transcript fetch failed: {transcript_url}: {e}")
            if target:
                notes.append(f"RSS <podcast:transcript> fetch failed: {e}")
                return None
            continue

        if not text:
            if target:
                return None
            continue

        notes.append("Used RSS <podcast:transcript> (skipped Whisper)")
        return FeedTranscript(text=text, transcript_url=transcript_url, transcript_type=effective_type)

    return None
