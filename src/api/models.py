"""Pydantic request/response schemas for the interview speech API.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.speech.models import ChunkStatus, WarningLevel


class ApiModel(BaseModel):
    """Base model: camelCase JSON, snake_case attributes, either accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TranscribeChunkRequest(ApiModel):
    """Request body for /api/stt/transcribe-with-context.

    ``audio_data`` is base64. It may be omitted on the final call, which then
    only triggers finalize.
    """

    canvas_id: str = Field(min_length=1)
    mentor_id: int = 0
    mentee_id: int = 0
    audio_data: str | None = None
    mime_type: str = "audio/wav"
    chunk_index: int = Field(default=0, ge=0)
    total_chunks: int | None = None
    duration: float | None = None  # client-declared; checked against the probed duration
    is_final_chunk: bool = False
    is_new_recording_session: bool = False
    use_diarization: bool | None = None


class SpeakerSegmentOut(ApiModel):
    """One transcript segment, with the speaker resolved to a participant id."""

    speaker_tag: int
    user_id: int | None = None
    text: str
    start_time: float
    end_time: float


class SessionTimeOut(ApiModel):
    canvas_id: str
    session_key: str | None = None
    start_time: float | None = None
    elapsed_seconds: float = 0.0
    remaining_seconds: float = 0.0
    elapsed_minutes: int = 0
    remaining_minutes: int = 0
    max_seconds: float = 0.0
    is_expired: bool = False
    warning_level: WarningLevel = WarningLevel.NONE


class TimeWarningOut(ApiModel):
    level: WarningLevel
    message: str
    remaining_minutes: int


class SpeakerInfo(ApiModel):
    mentor: str = ""
    mentee: str = ""


class TranscribeResponse(ApiModel):
    """Response for a chunk ingest and/or finalize call."""

    success: bool = True
    timestamp: str
    processing_time_ms: int
    canvas_id: str
    mentor_id: int
    mentee_id: int
    speaker_info: SpeakerInfo = SpeakerInfo()
    # Chunk fields (present when audio was sent)
    chunk_index: int | None = None
    chunk_status: ChunkStatus | None = None
    segment_index: int | None = None
    session_offset: float | None = None
    duration: float | None = None
    transcript: str = ""
    confidence: float = 0.0
    audio_url: str = ""
    speakers: list[SpeakerSegmentOut] = []
    # Finalize fields (present on the final chunk)
    finalized: bool = False
    session_id: str | None = None
    partial: bool = False
    context_text: str = ""
    session_time: SessionTimeOut
    time_warning: TimeWarningOut | None = None


class ParticipantOut(ApiModel):
    id: int | None = None
    name: str | None = None


class ParticipantsResponse(ApiModel):
    canvas_id: str
    mentor: ParticipantOut
    mentee: ParticipantOut


class SessionDetail(ApiModel):
    """A finalized session with its ordered transcript."""

    id: str
    canvas_id: str
    audio_url: str
    mentor_id: int | None = None
    mentee_id: int | None = None
    created_at: str | None = None
    duration: float = 0.0
    context_text: str = ""
    segments: list[SpeakerSegmentOut] = []


class SessionListResponse(ApiModel):
    sessions: list[SessionDetail]
    total_count: int
    page: int
    limit: int
    has_more: bool


class CleanupResponse(ApiModel):
    success: bool = True
    cleaned_count: int
