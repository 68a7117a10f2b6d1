"""Podcast Transcript Resolver - find or produce transcripts for podcast episodes."""

__version__ = "1.0.0"
