"""Tests for downloading resolved media and handing it to the engine."""
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import httpx

from transcript_resolver.config import settings
from transcript_resolver.exceptions import MediaTooLargeError
from transcript_resolver.services.media_transcriber import (
    ProgressReporter,
    resolve_provider_hint,
    transcribe_media_url,
)

from conftest import TEST_MEDIA_URL, TEST_TRANSCRIBED_TEXT, FakeEngine, RecordingHandler, make_client

SOURCE_URL = "https://podcasts.example.com/episode/42"


def media_handler(body: bytes, declared_length=None) -> RecordingHandler:
    headers = {"content-type": "audio/mpeg"}
    if declared_length is not None:
        headers["content-length"] = str(declared_length)
    return RecordingHandler({
        ("HEAD", TEST_MEDIA_URL): httpx.Response(200, headers=headers),
        ("GET", TEST_MEDIA_URL): httpx.Response(200, content=body),
    })


class TestTranscribeMediaUrl(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.temp_dir = Path(self._tmp.name) / "media"
        patcher = patch.object(settings, "TEMP_AUDIO_DIR", self.temp_dir)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self._tmp.cleanup)

    async def _run(self, handler, engine, notes=None, events=None, duration=None):
        reporter = ProgressReporter(SOURCE_URL, events.append if events is not None else None)
        async with make_client(handler) as client:
            return await transcribe_media_url(
                client, TEST_MEDIA_URL, "episode.mp3", duration, "sk-test", None,
                notes if notes is not None else [], reporter, engine,
            )

    async def test_small_media_stays_in_memory(self):
        engine = FakeEngine()
        events = []
        attempt = await self._run(media_handler(b"abc", 3), engine, events=events, duration=60.0)

        self.assertEqual(attempt.text, TEST_TRANSCRIBED_TEXT)
        self.assertEqual(attempt.provider, "openai")
        self.assertEqual(engine.calls, [("bytes", 3, "ep.mp3", "audio/mpeg")])
        kinds = [e.kind for e in events]
        self.assertEqual(kinds[0], "transcript-media-download-start")
        self.assertIn("transcript-media-download-done", kinds)
        self.assertIn("transcript-whisper-progress", kinds)
        start = next(e for e in events if e.kind == "transcript-whisper-start")
        self.assertEqual(start.provider_hint, "openai")
        self.assertEqual(start.model_id, "whisper-1")
        self.assertEqual(start.total_duration_seconds, 60.0)
        self.assertTrue(all(e.url == SOURCE_URL and e.service == "podcast" for e in events))

    async def test_unknown_size_streams_to_file_and_cleans_up(self):
        engine = FakeEngine()
        attempt = await self._run(media_handler(b"x" * 1000), engine)

        self.assertEqual(attempt.text, TEST_TRANSCRIBED_TEXT)
        # Duration probed from the downloaded file.
        self.assertEqual(engine.calls, [("file", 1000, "ep.mp3", 120.0)])
        self.assertEqual(list(self.temp_dir.iterdir()), [])

    async def test_without_ffmpeg_notes_truncation(self):
        engine = FakeEngine(chunking=False)
        notes = []
        await self._run(media_handler(b"abcd", 4), engine, notes=notes)
        self.assertEqual(engine.calls[0][0], "bytes")
        self.assertEqual(notes, ["Transcribed first 4B only (ffmpeg not available)"])

    async def test_oversize_rejected_before_get(self):
        handler = media_handler(b"", settings.MAX_REMOTE_MEDIA_BYTES + 1)
        with self.assertRaises(MediaTooLargeError):
            await self._run(handler, FakeEngine())
        self.assertEqual(handler.methods_for(TEST_MEDIA_URL), ["HEAD"])

    async def test_engine_notes_and_errors_carried(self):
        engine = FakeEngine(text=None, provider=None, error=RuntimeError("boom"), notes=["engine note"])
        notes = []
        attempt = await self._run(media_handler(b"abc", 3), engine, notes=notes)
        self.assertIsNone(attempt.text)
        self.assertEqual(str(attempt.error), "boom")
        self.assertEqual(notes, ["engine note"])

    async def test_progress_callback_errors_are_swallowed(self):
        def broken(event):
            raise RuntimeError("listener failed")

        reporter = ProgressReporter(SOURCE_URL, broken)
        async with make_client(media_handler(b"abc", 3)) as client:
            attempt = await transcribe_media_url(
                client, TEST_MEDIA_URL, "episode.mp3", None, "sk-test", None, [], reporter, FakeEngine(),
            )
        self.assertEqual(attempt.text, TEST_TRANSCRIBED_TEXT)


class TestProviderHint(unittest.IsolatedAsyncioTestCase):
    async def test_hints(self):
        self.assertEqual(await resolve_provider_hint(FakeEngine(ready=True), "a", "b"), "local")
        self.assertEqual(await resolve_provider_hint(FakeEngine(), "a", "b"), "openai->fal")
        self.assertEqual(await resolve_provider_hint(FakeEngine(), "a", None), "openai")
        self.assertEqual(await resolve_provider_hint(FakeEngine(), None, "b"), "fal")
        self.assertEqual(await resolve_provider_hint(FakeEngine(), None, None), "unknown")
