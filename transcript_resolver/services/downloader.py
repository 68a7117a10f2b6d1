"""
Podcast Media Downloader - HEAD probing, capped in-memory downloads and
streamed file downloads with progress tracking.
"""
import logging
import uuid
from pathlib import Path
from typing import Callable, Optional

import aiofiles
import httpx

from ..config import settings
from ..exceptions import DownloadError, MediaTooLargeError
from ..models import MediaPayload, MediaProbe
from ..utils import filename_from_url, format_bytes, normalize_header_type, parse_content_length

logger = logging.getLogger(__name__)

CAPPED_PROGRESS_STEP = 64 * 1024
FILE_PROGRESS_STEP = 128 * 1024


async def probe_remote_media(client: httpx.AsyncClient, url: str) -> MediaProbe:
    """HEAD the media URL for size, type and filename. Never raises."""
    try:
        response = await client.head(url, follow_redirects=True, timeout=settings.HTTP_TIMEOUT_SECONDS)
        if not response.is_success:
            raise DownloadError(f"HEAD failed ({response.status_code})")
        return MediaProbe(
            content_length=parse_content_length(response.headers.get("content-length")),
            media_type=normalize_header_type(response.headers.get("content-type")),
            filename=filename_from_url(url),
        )
    except (httpx.HTTPError, httpx.InvalidURL, DownloadError) as e:
        logger.debug(f"Media probe failed for {url}: {e}")
        return MediaProbe()


def ensure_within_size_limit(probe: MediaProbe, limit: Optional[int] = None) -> None:
    """Reject media whose declared size exceeds the ceiling before downloading."""
    limit = limit if limit is not None else settings.MAX_REMOTE_MEDIA_BYTES
    if probe.content_length is not None and probe.content_length > limit:
        raise MediaTooLargeError(
            probe.content_length,
            limit,
            f"Remote media too large ({format_bytes(probe.content_length)}). "
            f"Limit is {format_bytes(limit)}.",
        )


async def download_capped_bytes(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: int,
    progress_callback: Optional[Callable[[int], None]] = None,
) -> bytes:
    """
    Download at most max_bytes of a media file into memory.

    Args:
        client: HTTP client
        url: Media URL
        max_bytes: Byte cap; the body is truncated here
        progress_callback: Called with downloaded bytes (>= 64KB steps and once at the end)

    Returns:
        The downloaded prefix
    """
    async with client.stream(
        "GET",
        url,
        headers={"Range": f"bytes=0-{max_bytes - 1}"},
        follow_redirects=True,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    ) as response:
        if not response.is_success:
            raise DownloadError(f"Download failed ({response.status_code})")

        chunks: list[bytes] = []
        total = 0
        last_reported = 0
        async for chunk in response.aiter_bytes():
            if not chunk:
                continue
            remaining = max_bytes - total
            if len(chunk) > remaining:
                chunk = chunk[:remaining]
            chunks.append(chunk)
            total += len(chunk)
            if progress_callback and total - last_reported >= CAPPED_PROGRESS_STEP:
                last_reported = total
                progress_callback(total)
            if total >= max_bytes:
                break

    if progress_callback:
        progress_callback(total)
    return b"".join(chunks)


async def download_to_file(
    client: httpx.AsyncClient,
    url: str,
    output_path: Path,
    progress_callback: Optional[Callable[[int], None]] = None,
    chunk_size: int = 1024 * 1024,  # 1MB chunks
) -> int:
    """
    Stream a full media file to disk.

    Returns:
        Number of bytes written
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    async with client.stream(
        "GET", url, follow_redirects=True, timeout=settings.HTTP_TIMEOUT_SECONDS
    ) as response:
        if not response.is_success:
            raise DownloadError(f"Download failed ({response.status_code})")

        downloaded = 0
        last_reported = 0
        async with aiofiles.open(output_path, "wb") as f:
            async for chunk in response.aiter_bytes(chunk_size):
                await f.write(chunk)
                downloaded += len(chunk)
                if progress_callback and downloaded - last_reported >= FILE_PROGRESS_STEP:
                    last_reported = downloaded
                    progress_callback(downloaded)

    if progress_callback:
        progress_callback(downloaded)
    logger.info(f"Downloaded: {output_path} ({downloaded / 1024 / 1024:.1f} MB)")
    return downloaded


async def acquire_media(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: Optional[int] = None,
    output_path: Optional[Path] = None,
    progress_callback: Optional[Callable[[int], None]] = None,
) -> MediaPayload:
    """
    Download media either as a capped byte buffer or as a full file.

    Pass output_path to stream the whole body to disk; otherwise max_bytes
    caps an in-memory download.
    """
    if output_path is not None:
        size = await download_to_file(client, url, output_path, progress_callback)
        return MediaPayload(kind="file", size=size, path=output_path)

    cap = max_bytes if max_bytes is not None else settings.MAX_UPLOAD_BYTES
    data = await download_capped_bytes(client, url, cap, progress_callback)
    return MediaPayload(kind="bytes", size=len(data), data=data)


def get_temp_media_path(extension: str = ".bin") -> Path:
    """Generate a unique temporary path for downloaded media."""
    settings.TEMP_AUDIO_DIR.mkdir(parents=True, exist_ok=True)
    return settings.TEMP_AUDIO_DIR / f"podcast-{uuid.uuid4().hex}{extension}"


async def cleanup_temp_file(file_path: Path) -> None:
    """Remove temporary media file after transcription."""
    try:
        if file_path.exists():
            file_path.unlink()
            logger.debug(f"Cleaned up temp file: {file_path}")
    except OSError as e:
        logger.warning(f"Failed to cleanup temp file {file_path}: {e}")
