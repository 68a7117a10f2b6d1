"""Tests for the transcription engine and its providers."""
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import httpx

from transcript_resolver.config import settings
from transcript_resolver.exceptions import TranscriptionError
from transcript_resolver.services.transcriber import TranscriptionEngine, WhisperProgress, model_id_for
from transcript_resolver.services.whisper_client import WhisperClient

from conftest import RecordingHandler, make_client

WHISPER_URL = "http://whisper.test"
OPENAI_URL = "https://api.openai.com/v1/audio/transcriptions"
FAL_URL = "https://fal.run/fal-ai/wizper"


def build_engine(client, whisper=True) -> TranscriptionEngine:
    whisper_client = WhisperClient(client, api_url=WHISPER_URL, model_size="small") if whisper else None
    return TranscriptionEngine(client, whisper_client=whisper_client)


class TestRemoteProviders(unittest.IsolatedAsyncioTestCase):
    async def test_openai_failure_falls_back_to_fal(self):
        handler = RecordingHandler({
            f"{WHISPER_URL}/health": httpx.Response(503),
            OPENAI_URL: httpx.Response(500, json={"error": {"message": "overloaded"}}),
            FAL_URL: httpx.Response(200, json={"text": " fal words "}),
        })
        async with make_client(handler) as client:
            outcome = await build_engine(client).transcribe_bytes(b"abc", "audio/mpeg", "ep.mp3", "sk", "fk")

        self.assertEqual(outcome.text, "fal words")
        self.assertEqual(outcome.provider, "fal")
        self.assertEqual(len(outcome.notes), 1)
        self.assertTrue(outcome.notes[0].startswith("openai transcription failed; falling back:"))
        self.assertIn("overloaded", outcome.notes[0])
        fal_request = handler.requests[-1]
        self.assertEqual(fal_request.headers["authorization"], "Key fk")

    async def test_openai_success_reports_progress(self):
        handler = RecordingHandler({OPENAI_URL: httpx.Response(200, text="hello there\n")})
        events = []
        async with make_client(handler) as client:
            outcome = await build_engine(client, whisper=False).transcribe_bytes(
                b"abc", "audio/mpeg", "ep.mp3", "sk", None, total_duration_seconds=30.0, on_progress=events.append
            )
        self.assertEqual((outcome.text, outcome.provider), ("hello there", "openai"))
        self.assertEqual(events, [WhisperProgress(30.0, 30.0, 1, 1)])
        self.assertEqual(handler.requests[0].headers["authorization"], "Bearer sk")

    async def test_fal_chunks_joined(self):
        handler = RecordingHandler({
            FAL_URL: httpx.Response(200, json={"text": "", "chunks": [{"text": " one "}, {"text": "two"}]}),
        })
        async with make_client(handler) as client:
            outcome = await build_engine(client, whisper=False).transcribe_bytes(b"a", "audio/mpeg", "a.mp3", None, "fk")
        self.assertEqual(outcome.text, "one\ntwo")

    async def test_no_provider_is_an_error(self):
        async with make_client(RecordingHandler()) as client:
            outcome = await build_engine(client, whisper=False).transcribe_bytes(b"a", "audio/mpeg", "a.mp3")
        self.assertIsNone(outcome.text)
        self.assertIsInstance(outcome.error, TranscriptionError)

    async def test_every_provider_failing_keeps_last_error(self):
        handler = RecordingHandler({OPENAI_URL: httpx.Response(401, text="bad key")})
        async with make_client(handler) as client:
            outcome = await build_engine(client, whisper=False).transcribe_bytes(b"a", "audio/mpeg", "a.mp3", "sk")
        self.assertIsNone(outcome.text)
        self.assertEqual(outcome.provider, "openai")
        self.assertIn("401", str(outcome.error))
        self.assertEqual(outcome.notes, [])


class TestLocalEngine(unittest.IsolatedAsyncioTestCase):
    async def test_local_engine_preferred_and_health_cached(self):
        handler = RecordingHandler({
            f"{WHISPER_URL}/health": httpx.Response(200, json={"status": "ok"}),
            f"{WHISPER_URL}/transcribe": httpx.Response(200, json={
                "language": "en", "duration": 3.0,
                "segments": [{"start": 0, "end": 1, "text": " local "}, {"start": 1, "end": 3, "text": "words"}],
            }),
        })
        async with make_client(handler) as client:
            engine = build_engine(client)
            first = await engine.transcribe_bytes(b"abc", "audio/mpeg", "ep.mp3", "sk")
            second = await engine.transcribe_bytes(b"abc", "audio/mpeg", "ep.mp3", "sk")

        self.assertEqual((first.text, first.provider), ("local\nwords", "local"))
        self.assertEqual(second.provider, "local")
        self.assertEqual(handler.methods_for(f"{WHISPER_URL}/health"), ["GET"])
        self.assertEqual(handler.methods_for(OPENAI_URL), [])
        self.assertEqual(engine.resolve_model_name(), "whisper small")

    async def test_local_error_is_reported(self):
        handler = RecordingHandler({
            f"{WHISPER_URL}/health": httpx.Response(200),
            f"{WHISPER_URL}/transcribe": httpx.Response(500, text="model crashed"),
        })
        async with make_client(handler) as client:
            outcome = await build_engine(client).transcribe_bytes(b"abc", "audio/mpeg", "ep.mp3")
        self.assertIsNone(outcome.text)
        self.assertEqual(outcome.provider, "local")
        self.assertIsInstance(outcome.error, TranscriptionError)


class TestTranscribeFile(unittest.IsolatedAsyncioTestCase):
    async def test_oversize_file_without_ffmpeg_sends_prefix(self):
        received = []

        def openai(request):
            received.append(request.read())
            return httpx.Response(200, text="partial")

        handler = RecordingHandler({OPENAI_URL: openai})
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ep.mp3"
            path.write_bytes(b"0123456789")
            async with make_client(handler) as client:
                engine = build_engine(client, whisper=False)
                with patch.object(settings, "MAX_UPLOAD_BYTES", 4), \
                        patch.object(TranscriptionEngine, "is_chunking_available", return_value=False):
                    outcome = await engine.transcribe_file(path, "audio/mpeg", "ep.mp3", "sk")

        self.assertEqual(outcome.text, "partial")
        self.assertEqual(outcome.notes, ["Transcribed first 4B only (ffmpeg not available)"])
        self.assertIn(b"0123", received[0])
        self.assertNotIn(b"01234", received[0])

    async def test_local_engine_streams_whole_file(self):
        received = []

        def transcribe(request):
            received.append(request.read())
            return httpx.Response(200, json={"language": "en", "txt_content": "local words"})

        handler = RecordingHandler({
            f"{WHISPER_URL}/health": httpx.Response(200),
            f"{WHISPER_URL}/transcribe": transcribe,
        })
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ep.mp3"
            path.write_bytes(b"0123456789")
            async with make_client(handler) as client:
                engine = build_engine(client)
                with patch.object(settings, "MAX_UPLOAD_BYTES", 4), \
                        patch("transcript_resolver.services.transcriber.aiofiles.open") as aio_open:
                    outcome = await engine.transcribe_file(path, "audio/mpeg", "ep.mp3", "sk")

        self.assertEqual((outcome.text, outcome.provider, outcome.notes), ("local words", "local", []))
        aio_open.assert_not_called()
        self.assertIn(b"0123456789", received[0])
        self.assertIn(b'filename="ep.mp3"', received[0])
        self.assertEqual(handler.methods_for(OPENAI_URL), [])


class TestModelIds(unittest.TestCase):
    def test_model_id_for_hints(self):
        self.assertEqual(model_id_for("openai"), "whisper-1")
        self.assertEqual(model_id_for("fal"), "fal-ai/wizper")
        self.assertEqual(model_id_for("openai->fal"), "whisper-1->fal-ai/wizper")
        self.assertEqual(model_id_for("local"), "whisper")
        self.assertIsNone(model_id_for("unknown"))
