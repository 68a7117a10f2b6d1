"""Exception types raised inside the resolver and caught at strategy boundaries."""


class TranscriptResolverError(Exception):
    """Base class for resolver errors."""


class DownloadError(TranscriptResolverError):
    """Media or transcript download returned a non-success response."""


class MediaTooLargeError(TranscriptResolverError):
    """Remote media declares a size above the configured ceiling."""

    def __init__(self, content_length: int, limit: int, message: str):
        super().__init__(message)
        self.content_length = content_length
        self.limit = limit


class FeedFetchError(TranscriptResolverError):
    """Podcast feed could not be fetched."""


class SpotifyEmbedError(TranscriptResolverError):
    """Spotify embed page was unavailable, blocked, or missing its data blob."""


class TranscriptionError(TranscriptResolverError):
    """A speech-to-text provider rejected or failed a request."""
