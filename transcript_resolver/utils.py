"""Utility functions for titles, headers, URLs, and loose JSON access."""
import html
import re
import unicodedata
from typing import Any, Optional
from urllib.parse import unquote, urlparse

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CDATA = re.compile(r"<!\[CDATA\[|\]\]>", re.IGNORECASE)
_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)


def normalize_title(value: str) -> str:
    """
    Normalize a show/episode title for equality matching.

    Lowercases, strips diacritics after NFKD decomposition and collapses every
    run of non-alphanumeric characters into a single space. Titles written
    entirely in non-Latin scripts normalize to an empty string.
    """
    decomposed = unicodedata.normalize("NFKD", value.lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _NON_ALNUM.sub(" ", stripped).strip()


def strip_cdata(value: str) -> str:
    return _CDATA.sub("", value).strip()


def decode_xml_entities(value: str) -> str:
    """Decode character references such as ``&amp;`` in feed attribute values."""
    return html.unescape(value)


def is_http_url(value: Optional[str]) -> bool:
    return bool(value) and bool(_HTTP_URL.match(value))


def normalize_header_type(value: Optional[str]) -> Optional[str]:
    """Reduce a Content-Type header to its lowercase media type."""
    if not value or not value.strip():
        return None
    return value.split(";")[0].strip().lower() or None


def parse_content_length(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    if parsed != parsed or parsed <= 0 or parsed == float("inf"):
        return None
    return int(parsed)


def filename_from_url(url: str) -> Optional[str]:
    """Return the last path segment of a URL, or None."""
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    base = unquote(path.rsplit("/", 1)[-1])
    return base if base.strip() else None


def format_bytes(num_bytes: int) -> str:
    """Format a byte count as a short human string (e.g. ``24MB``, ``1.5KB``)."""
    units = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    decimals = 0 if value >= 10 or idx == 0 else 1
    return f"{value:.{decimals}f}{units[idx]}"


def get_json_path(value: Any, path: tuple[str, ...]) -> Any:
    current = value
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def get_json_string(value: Any, path: tuple[str, ...]) -> Optional[str]:
    found = get_json_path(value, path)
    return found if isinstance(found, str) else None


def get_json_number(value: Any, path: tuple[str, ...]) -> Optional[float]:
    found = get_json_path(value, path)
    if isinstance(found, bool) or not isinstance(found, (int, float)):
        return None
    return float(found) if found == found else None


def as_record_list(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def millis_to_seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value / 1000
