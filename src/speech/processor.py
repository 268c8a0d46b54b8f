"""Per-chunk pipeline: register, probe, upload, transcribe, normalize, correct."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol

from src.pipeline_config import PipelineConfig, TranscriptionPath
from src.speech.corrector import TranscriptCorrector
from src.speech.duration import extension_for, map_timings_to_full_duration, probe_duration
from src.speech.errors import (
    ChunkProcessingError,
    DuplicateChunkError,
    SessionFinalizingError,
    SpeechPipelineError,
)
from src.speech.models import (
    ChunkOutcome,
    CompleteChunk,
    ProcessingChunk,
    RecordingSession,
    SpeakerSegment,
    TranscriptionResult,
)
from src.speech.session_cache import SessionCache, generate_session_key

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    def generate_key(
        self,
        filename: str,
        canvas_id: str | None = None,
        mentor_id: int | None = None,
        mentee_id: int | None = None,
    ) -> str: ...

    def upload(self, data: bytes, key: str, content_type: str) -> str: ...

    def delete_many(self, urls: list[str]) -> object: ...


class Transcriber(Protocol):
    def transcribe(
        self, audio_url: str, session_offset: float = 0.0, diarization_enabled: bool = True
    ) -> TranscriptionResult: ...


class AudioChunkProcessor:
    """Runs one audio chunk through the pipeline and records it in the session cache.

    Chunks of the same recording may be processed concurrently. Registration
    of the processing placeholder and its later replacement are the only
    cache mutations, both done under the canvas lock.
    """

    def __init__(
        self,
        cache: SessionCache,
        store: ObjectStore,
        transcriber: Transcriber,
        corrector: TranscriptCorrector | None = None,
        config: PipelineConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.store = store
        self.transcriber = transcriber
        self.corrector = corrector or TranscriptCorrector()
        self.config = config or PipelineConfig()
        self.clock = clock

    def _resolve_session(
        self,
        canvas_id: str,
        mentor_id: int,
        mentee_id: int,
        is_new_recording_session: bool,
    ) -> RecordingSession:
        now = self.clock()
        key = self.cache.find_active(canvas_id)
        session = self.cache.get(key) if key else None

        if session is None:
            segment_index = self.cache.max_segment_index(canvas_id) + 1
            session = RecordingSession(
                canvas_id=canvas_id,
                session_key=generate_session_key(canvas_id, now),
                mentor_id=mentor_id,
                mentee_id=mentee_id,
                segment_index=segment_index,
                session_start_time=now,
                last_activity=now,
            )
            logger.info(
                "New session %s for canvas %s (segment %d)",
                session.session_key,
                canvas_id,
                segment_index,
            )
        elif is_new_recording_session and not session.finalizing:
            session.segment_index += 1
            session.last_activity = now
            logger.info(
                "New recording segment %d in session %s", session.segment_index, session.session_key
            )
        else:
            session.last_activity = now
        return session

    async def _register(
        self,
        canvas_id: str,
        mentor_id: int,
        mentee_id: int,
        chunk_index: int,
        is_new_recording_session: bool,
    ) -> RecordingSession:
        async with self.cache.lock(canvas_id):
            session = self._resolve_session(
                canvas_id, mentor_id, mentee_id, is_new_recording_session
            )
            if session.finalizing:
                raise SessionFinalizingError(
                    f"Canvas {canvas_id} is being finalized; chunk {chunk_index} rejected"
                )
            if session.find_processing(chunk_index) is not None:
                raise DuplicateChunkError(
                    f"Chunk {chunk_index} is already processing in {session.session_key}"
                )
            session.chunks.append(ProcessingChunk(chunk_index))
            self.cache.put(session.session_key, session)
        return session

    async def _discard(self, session: RecordingSession, chunk_index: int) -> None:
        async with self.cache.lock(session.canvas_id):
            pos = session.find_processing(chunk_index)
            if pos is not None:
                del session.chunks[pos]
            self.cache.notify(session.canvas_id)
        logger.error(
            "Chunk %d failed, removed from session %s", chunk_index, session.session_key
        )

    async def _complete(self, session: RecordingSession, chunk: CompleteChunk) -> None:
        async with self.cache.lock(session.canvas_id):
            pos = session.find_processing(chunk.chunk_index)
            if pos is None:
                session.chunks.append(chunk)
            else:
                session.chunks[pos] = chunk
            session.last_activity = self.clock()
            if session.session_key not in self.cache:
                logger.warning(
                    "Session %s left the cache while chunk %d was processing",
                    session.session_key,
                    chunk.chunk_index,
                )
            self.cache.notify(session.canvas_id)

    def _normalize(
        self,
        result: TranscriptionResult,
        path: TranscriptionPath,
        duration: float,
        session_offset: float,
    ) -> list[SpeakerSegment]:
        speakers = list(result.speakers)
        if path is TranscriptionPath.DIARIZED or not speakers or duration <= 0:
            return speakers
        stt_duration = result.audio_duration or max(s.end_time for s in speakers)
        return map_timings_to_full_duration(speakers, stt_duration, duration, session_offset)

    async def process(
        self,
        data: bytes,
        mime_type: str,
        canvas_id: str,
        mentor_id: int,
        mentee_id: int,
        chunk_index: int,
        diarization_enabled: bool = True,
        is_new_recording_session: bool = False,
    ) -> ChunkOutcome:
        """Process one chunk end to end.

        Raises:
            SessionFinalizingError: The canvas is already being finalized.
            DuplicateChunkError: The same chunk index is still processing.
            SpeechPipelineError: Any later failure; the placeholder is removed first.
        """
        session = await self._register(
            canvas_id, mentor_id, mentee_id, chunk_index, is_new_recording_session
        )
        path = TranscriptionPath.DIARIZED if diarization_enabled else TranscriptionPath.RECOGNIZER

        try:
            duration = await asyncio.to_thread(probe_duration, data, mime_type)
            session_offset = sum(c.duration for c in session.complete_chunks)
            logger.info(
                "Chunk %d: duration %.3fs, offset %.3fs", chunk_index, duration, session_offset
            )

            key = self.store.generate_key(
                f"voice_chunk_{session.segment_index}_{chunk_index}.{extension_for(mime_type)}",
                canvas_id,
                mentor_id,
                mentee_id,
            )
            audio_url = await asyncio.to_thread(self.store.upload, data, key, mime_type)

            result = await asyncio.to_thread(
                self.transcriber.transcribe, audio_url, session_offset, diarization_enabled
            )
            speakers = self._normalize(result, path, duration, session_offset)
            speakers = self.corrector.correct(speakers)
        except Exception as exc:
            await self._discard(session, chunk_index)
            if isinstance(exc, SpeechPipelineError):
                raise
            raise ChunkProcessingError(chunk_index, str(exc)) from exc

        await self._complete(
            session,
            CompleteChunk(
                chunk_index=chunk_index,
                audio_url=audio_url,
                speakers=tuple(speakers),
                duration=duration,
            ),
        )
        logger.info(
            "Chunk %d complete in %s: %d segments", chunk_index, session.session_key, len(speakers)
        )
        return ChunkOutcome(
            session_key=session.session_key,
            segment_index=session.segment_index,
            chunk_index=chunk_index,
            audio_url=audio_url,
            duration=duration,
            session_offset=session_offset,
            speakers=speakers,
            transcript=result.transcript,
            confidence=result.confidence,
        )
