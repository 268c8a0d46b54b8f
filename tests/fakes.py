"""In-memory collaborators and builders shared by the test modules."""

from __future__ import annotations

import io
import itertools
import wave
from collections.abc import Callable

import httpx

from src.pipeline_config import PipelineConfig
from src.speech.corrector import TranscriptCorrector
from src.speech.errors import StorageUploadError
from src.speech.finalizer import SessionFinalizer
from src.speech.models import FinalizedSession, Participants, SpeakerSegment, TranscriptionResult
from src.speech.pipeline import SpeechPipeline
from src.speech.processor import AudioChunkProcessor
from src.speech.session_cache import SessionCache
from src.speech.timer import SessionTimer
from src.storage.object_store import DeleteResult, generate_key

STORE_BASE_URL = "https://store.test/audio/"


def make_wav(seconds: float, sample_rate: int = 8000, channels: int = 1) -> bytes:
    """Silent 16-bit PCM WAV of the given length."""
    frames = int(sample_rate * seconds)
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(b"\x00\x00" * channels * frames)
    return buf.getvalue()


class FakeObjectStore:
    """Keeps uploaded objects in a dict keyed by URL."""

    def __init__(self, fail_upload: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_upload = fail_upload

    def generate_key(
        self,
        filename: str,
        canvas_id: str | None = None,
        mentor_id: int | None = None,
        mentee_id: int | None = None,
    ) -> str:
        return generate_key(filename, canvas_id, mentor_id, mentee_id)

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        if self.fail_upload:
            raise StorageUploadError(f"Upload of {key} failed: bucket unavailable")
        url = STORE_BASE_URL + key
        self.objects[url] = data
        return url

    def delete_many(self, urls: list[str]) -> DeleteResult:
        self.deleted.extend(urls)
        for url in urls:
            self.objects.pop(url, None)
        return DeleteResult(deleted_count=len(urls))

    def transport(self) -> httpx.MockTransport:
        """Serve stored objects over HTTP for finalize downloads."""

        def handler(request: httpx.Request) -> httpx.Response:
            data = self.objects.get(str(request.url))
            if data is None:
                return httpx.Response(404)
            return httpx.Response(200, content=data)

        return httpx.MockTransport(handler)


class FakeTranscriber:
    """Returns one segment per chunk, or whatever *respond* builds.

    The default response follows the real service contract: diarized
    timings are shifted by the session offset, recognizer timings are
    chunk-relative.
    """

    def __init__(
        self,
        respond: Callable[[str, float, bool], TranscriptionResult] | None = None,
    ) -> None:
        self.calls: list[tuple[str, float, bool]] = []
        self.respond = respond or self._default

    @staticmethod
    def _default(audio_url: str, offset: float, diarized: bool) -> TranscriptionResult:
        shift = offset if diarized else 0.0
        return TranscriptionResult(
            transcript="hello from this chunk",
            confidence=0.92,
            speakers=[SpeakerSegment("hello from this chunk", 1.0 + shift, 4.0 + shift, 1)],
        )

    def transcribe(
        self, audio_url: str, session_offset: float = 0.0, diarization_enabled: bool = True
    ) -> TranscriptionResult:
        self.calls.append((audio_url, session_offset, diarization_enabled))
        return self.respond(audio_url, session_offset, diarization_enabled)


class FakeRepository:
    """In-memory stand-in for the Supabase tables."""

    def __init__(self, participants: Participants | None = None) -> None:
        self.participants = participants or Participants(1, 2, "Mentor Kim", "Mentee Lee")
        self.sessions: dict[str, FinalizedSession] = {}
        self.batches: list[int] = []
        self._ids = itertools.count(1)

    def create_session(
        self, canvas_id: str, mentor_id: int | None, mentee_id: int | None, audio_url: str
    ) -> str:
        session_id = f"session-{next(self._ids)}"
        self.sessions[session_id] = FinalizedSession(
            id=session_id,
            canvas_id=canvas_id,
            audio_url=audio_url,
            mentor_id=mentor_id,
            mentee_id=mentee_id,
            created_at="2026-10-18T10:00:00+00:00",
        )
        return session_id

    def insert_segments(
        self, session_id: str, segments: list[SpeakerSegment], batch_size: int = 1000
    ) -> int:
        for i in range(0, len(segments), batch_size):
            batch = segments[i : i + batch_size]
            self.sessions[session_id].segments.extend(batch)
            self.batches.append(len(batch))
        return len(segments)

    def get_session(self, session_id: str) -> FinalizedSession | None:
        return self.sessions.get(session_id)

    def list_sessions(
        self, canvas_id: str, page: int = 1, limit: int = 20
    ) -> tuple[list[FinalizedSession], int]:
        matching = [s for s in self.sessions.values() if s.canvas_id == canvas_id]
        start = (page - 1) * limit
        return matching[start : start + limit], len(matching)

    def get_participants(self, canvas_id: str) -> Participants:
        return self.participants


def fast_config(**overrides: object) -> PipelineConfig:
    """Pipeline tunables with sub-second finalize waits."""
    values: dict[str, object] = {
        "inactivity_threshold_seconds": 30.0,
        "finalize_max_wait_seconds": 1.0,
        "finalize_poll_interval_seconds": 0.05,
        "filler_stoplist": frozenset({"um", "uh", "음", "네"}),
    }
    values.update(overrides)
    return PipelineConfig(**values)  # type: ignore[arg-type]


class PipelineHarness:
    """A fully wired pipeline over in-memory collaborators."""

    def __init__(
        self,
        config: PipelineConfig | None = None,
        transcriber: FakeTranscriber | None = None,
        store: FakeObjectStore | None = None,
        repository: FakeRepository | None = None,
    ) -> None:
        self.config = config or fast_config()
        self.store = store or FakeObjectStore()
        self.transcriber = transcriber or FakeTranscriber()
        self.repository = repository or FakeRepository()
        self.cache = SessionCache(self.config.max_sessions, self.config.inactivity_threshold_seconds)
        self.processor = AudioChunkProcessor(
            self.cache, self.store, self.transcriber, TranscriptCorrector(), self.config
        )
        self.finalizer = SessionFinalizer(
            self.cache,
            self.store,
            self.repository,
            self.config,
            http_client_factory=lambda: httpx.AsyncClient(transport=self.store.transport()),
        )
        self.timer = SessionTimer(self.cache, self.config)
        self.pipeline = SpeechPipeline(
            cache=self.cache,
            processor=self.processor,
            finalizer=self.finalizer,
            timer=self.timer,
            participants=self.repository,
        )
