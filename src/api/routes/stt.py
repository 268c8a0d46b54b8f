"""Chunk ingest endpoint: transcribe audio chunks and finalize recordings."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from src.api.dependencies import get_pipeline
from src.api.models import (
    SessionTimeOut,
    SpeakerInfo,
    SpeakerSegmentOut,
    TimeWarningOut,
    TranscribeChunkRequest,
    TranscribeResponse,
)
from src.speech.errors import (
    DuplicateChunkError,
    InvalidAudioError,
    ParticipantLookupError,
    SessionExpiredError,
    SessionFinalizingError,
    SpeechPipelineError,
    StorageUploadError,
    TranscriptionError,
)
from src.speech.models import ChunkStatus, SpeakerSegment, WarningLevel
from src.speech.pipeline import ChunkRequest, SpeechPipeline, TranscribeOutcome
from src.speech.timer import SessionTimeInfo, TimeCheckResult

logger = logging.getLogger(__name__)

router = APIRouter()

# 25 MB of decoded audio per chunk
MAX_CHUNK_BYTES = 25 * 1024 * 1024

# Seconds a client-declared chunk duration may differ from the probed one
DECLARED_DURATION_TOLERANCE = 1.0

_STATUS_BY_ERROR: list[tuple[type[SpeechPipelineError], int]] = [
    (InvalidAudioError, 400),
    (ParticipantLookupError, 400),
    (SessionExpiredError, 403),
    (SessionFinalizingError, 409),
    (DuplicateChunkError, 409),
    (StorageUploadError, 502),
    (TranscriptionError, 503),
]


def status_for(exc: SpeechPipelineError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def log_declared_mismatch(body: TranscribeChunkRequest, outcome: TranscribeOutcome) -> None:
    """Warn when the client's declared duration or chunk count disagrees with what arrived."""
    chunk = outcome.chunk
    if (
        chunk is not None
        and body.duration is not None
        and abs(body.duration - chunk.duration) > DECLARED_DURATION_TOLERANCE
    ):
        logger.warning(
            "Chunk %d of canvas %s declared %.2fs but probed %.2fs",
            chunk.chunk_index,
            body.canvas_id,
            body.duration,
            chunk.duration,
        )

    final = outcome.finalized
    if final is not None and body.total_chunks is not None and final.chunk_count != body.total_chunks:
        logger.warning(
            "Canvas %s declared %d chunks but finalized %d",
            body.canvas_id,
            body.total_chunks,
            final.chunk_count,
        )


def decode_audio(audio_data: str | None) -> bytes:
    """Decode base64 chunk audio.

    Raises:
        HTTPException(400): Not valid base64.
        HTTPException(413): Decoded chunk too large.
    """
    if not audio_data:
        return b""
    try:
        raw = base64.b64decode(audio_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid base64 audio data") from exc
    if len(raw) > MAX_CHUNK_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Chunk too large. Maximum size is {MAX_CHUNK_BYTES // (1024 * 1024)} MB.",
        )
    return raw


def speaker_segments_out(
    segments: list[SpeakerSegment], mentor_id: int | None, mentee_id: int | None
) -> list[SpeakerSegmentOut]:
    """Speaker tag 1 is the mentor; every other tag is the mentee."""
    return [
        SpeakerSegmentOut(
            speaker_tag=s.speaker_tag,
            user_id=mentor_id if s.speaker_tag == 1 else mentee_id,
            text=s.text,
            start_time=s.start_time,
            end_time=s.end_time,
        )
        for s in segments
    ]


def session_time_out(info: SessionTimeInfo) -> SessionTimeOut:
    return SessionTimeOut(
        canvas_id=info.canvas_id,
        session_key=info.session_key,
        start_time=info.start_time,
        elapsed_seconds=round(info.elapsed_seconds, 3),
        remaining_seconds=round(info.remaining_seconds, 3),
        elapsed_minutes=info.elapsed_minutes,
        remaining_minutes=info.remaining_minutes,
        max_seconds=info.max_seconds,
        is_expired=info.expired,
        warning_level=info.warning_level,
    )


def _time_warning(check: TimeCheckResult) -> TimeWarningOut | None:
    if not check.should_warn:
        return None
    level = check.time_info.warning_level
    return TimeWarningOut(
        level=WarningLevel.CRITICAL if level is WarningLevel.CRITICAL else WarningLevel.WARNING,
        message=check.message,
        remaining_minutes=check.time_info.remaining_minutes,
    )


@router.post("/api/stt/transcribe-with-context", response_model=TranscribeResponse)
async def transcribe_with_context(
    body: TranscribeChunkRequest,
    pipeline: Annotated[SpeechPipeline, Depends(get_pipeline)],
) -> TranscribeResponse:
    """Ingest one audio chunk and, when ``isFinalChunk`` is set, finalize the recording.

    Error mapping: 400 bad base64 or rejected audio, 403 session time limit
    reached, 409 canvas already finalizing or duplicate chunk index, 502
    storage upload failure, 503 transcription service unavailable. Chunk
    failures carry ``status: "failed"`` and the chunk index in ``detail``.
    """
    started = time.perf_counter()
    audio = decode_audio(body.audio_data)

    request = ChunkRequest(
        canvas_id=body.canvas_id,
        mentor_id=body.mentor_id,
        mentee_id=body.mentee_id,
        chunk_index=body.chunk_index,
        audio=audio,
        mime_type=body.mime_type,
        is_final_chunk=body.is_final_chunk,
        is_new_recording_session=body.is_new_recording_session,
        use_diarization=body.use_diarization,
    )

    try:
        outcome = await pipeline.transcribe_with_context(request)
    except SpeechPipelineError as exc:
        status = status_for(exc)
        log = logger.exception if status >= 500 else logger.warning
        log("transcribe-with-context failed for canvas %s: %s", body.canvas_id, exc)
        raise HTTPException(
            status_code=status,
            detail={
                "message": str(exc),
                "chunkIndex": body.chunk_index,
                "status": ChunkStatus.FAILED.value,
            },
        ) from exc

    log_declared_mismatch(body, outcome)

    response = TranscribeResponse(
        timestamp=datetime.now(UTC).isoformat(),
        processing_time_ms=int((time.perf_counter() - started) * 1000),
        canvas_id=outcome.canvas_id,
        mentor_id=outcome.mentor_id,
        mentee_id=outcome.mentee_id,
        speaker_info=SpeakerInfo(
            mentor=outcome.participants.mentor_name or "",
            mentee=outcome.participants.mentee_name or "",
        ),
        session_time=session_time_out(outcome.time_check.time_info),
        time_warning=_time_warning(outcome.time_check),
    )

    if outcome.chunk is not None:
        chunk = outcome.chunk
        response.chunk_index = chunk.chunk_index
        response.chunk_status = ChunkStatus.COMPLETE
        response.segment_index = chunk.segment_index
        response.session_offset = round(chunk.session_offset, 3)
        response.duration = round(chunk.duration, 3)
        response.transcript = chunk.transcript
        response.confidence = chunk.confidence
        response.audio_url = chunk.audio_url
        response.speakers = speaker_segments_out(
            chunk.speakers, outcome.mentor_id, outcome.mentee_id
        )

    if outcome.finalized is not None:
        final = outcome.finalized
        response.finalized = not final.empty
        response.session_id = final.session_id
        response.partial = final.partial
        response.context_text = final.context_text
        if not final.empty:
            response.audio_url = final.audio_url
            response.duration = round(final.duration, 3)
            response.speakers = speaker_segments_out(
                final.segments, outcome.mentor_id, outcome.mentee_id
            )

    return response
