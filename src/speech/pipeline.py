"""Request-level orchestration for "transcribe with context" calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from src.speech.errors import InvalidAudioError, ParticipantLookupError, SessionExpiredError
from src.speech.finalizer import SessionFinalizer
from src.speech.models import ChunkOutcome, FinalizeResult, Participants
from src.speech.processor import AudioChunkProcessor
from src.speech.session_cache import SessionCache
from src.speech.timer import SessionTimer, TimeCheckResult

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "audio/wav"


class ParticipantSource(Protocol):
    def get_participants(self, canvas_id: str) -> Participants: ...


@dataclass
class ChunkRequest:
    canvas_id: str
    mentor_id: int
    mentee_id: int
    chunk_index: int = 0
    audio: bytes = b""
    mime_type: str = DEFAULT_MIME_TYPE
    is_final_chunk: bool = False
    is_new_recording_session: bool = False
    use_diarization: bool | None = None


@dataclass
class TranscribeOutcome:
    canvas_id: str
    mentor_id: int
    mentee_id: int
    time_check: TimeCheckResult
    participants: Participants
    chunk: ChunkOutcome | None = None
    finalized: FinalizeResult | None = None


class SpeechPipeline:
    """Entry point used by the HTTP layer.

    Resolves participants, enforces the session time limit, processes the
    chunk (if any audio was sent) and finalizes when the final-chunk flag is
    set.
    """

    def __init__(
        self,
        cache: SessionCache,
        processor: AudioChunkProcessor,
        finalizer: SessionFinalizer,
        timer: SessionTimer,
        participants: ParticipantSource,
        use_diarization_by_default: bool = True,
    ) -> None:
        self.cache = cache
        self.processor = processor
        self.finalizer = finalizer
        self.timer = timer
        self.participants = participants
        self.use_diarization_by_default = use_diarization_by_default

    async def resolve_participants(self, canvas_id: str) -> Participants:
        try:
            return await asyncio.to_thread(self.participants.get_participants, canvas_id)
        except Exception as exc:
            raise ParticipantLookupError(f"Participant lookup failed: {exc}") from exc

    async def transcribe_with_context(self, request: ChunkRequest) -> TranscribeOutcome:
        """Handle one client call.

        Raises:
            InvalidAudioError: Neither audio nor the final-chunk flag was sent.
            SessionExpiredError: The session hit its time limit and this is not the final chunk.
            SpeechPipelineError: Chunk processing or finalize failed.
        """
        if not request.audio and not request.is_final_chunk:
            raise InvalidAudioError("Audio data is required")

        participants = await self.resolve_participants(request.canvas_id)
        mentor_id = participants.mentor_id or request.mentor_id
        mentee_id = participants.mentee_id or request.mentee_id

        time_check = self.timer.check_time_limit(request.canvas_id)
        outcome = TranscribeOutcome(
            canvas_id=request.canvas_id,
            mentor_id=mentor_id,
            mentee_id=mentee_id,
            time_check=time_check,
            participants=participants,
        )

        if request.audio:
            if time_check.should_block and not request.is_final_chunk:
                raise SessionExpiredError(time_check.message)
            if time_check.should_block:
                logger.warning(
                    "Dropping final chunk audio for expired canvas %s", request.canvas_id
                )
            else:
                diarize = (
                    self.use_diarization_by_default
                    if request.use_diarization is None
                    else request.use_diarization
                )
                outcome.chunk = await self.processor.process(
                    request.audio,
                    request.mime_type or DEFAULT_MIME_TYPE,
                    request.canvas_id,
                    mentor_id,
                    mentee_id,
                    request.chunk_index,
                    diarization_enabled=diarize,
                    is_new_recording_session=request.is_new_recording_session,
                )

        if request.is_final_chunk:
            outcome.finalized = await self.finalizer.finalize(
                request.canvas_id, mentor_id, mentee_id
            )
        return outcome

    def cleanup(self) -> int:
        """Run the idle-session sweep now."""
        return self.cache.cleanup_inactive()
