"""Data models for the live-interview speech pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class ChunkStatus(StrEnum):
    """Lifecycle of a single audio chunk."""

    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class WarningLevel(StrEnum):
    """Graduated session time-limit levels."""

    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"
    EXPIRED = "expired"


@dataclass
class SpeakerSegment:
    """A contiguous span of recognized speech attributed to one speaker.

    Times are seconds on the session timeline once normalized.
    """

    text: str
    start_time: float
    end_time: float
    speaker_tag: int = 1

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class ProcessingChunk:
    """Placeholder registered before any I/O; holds no audio reference."""

    chunk_index: int
    status: ChunkStatus = field(default=ChunkStatus.PROCESSING, init=False)


@dataclass(frozen=True)
class CompleteChunk:
    """A chunk whose audio is stored and whose segments are normalized."""

    chunk_index: int
    audio_url: str
    speakers: tuple[SpeakerSegment, ...]
    duration: float
    status: ChunkStatus = field(default=ChunkStatus.COMPLETE, init=False)


Chunk = ProcessingChunk | CompleteChunk


@dataclass
class RecordingSession:
    """In-flight state for one recording attempt on a canvas."""

    canvas_id: str
    session_key: str
    mentor_id: int
    mentee_id: int
    segment_index: int
    session_start_time: float
    last_activity: float
    chunks: list[Chunk] = field(default_factory=list)
    finalizing: bool = False
    warnings_sent: set[WarningLevel] = field(default_factory=set)

    @property
    def complete_chunks(self) -> list[CompleteChunk]:
        return [c for c in self.chunks if isinstance(c, CompleteChunk)]

    @property
    def processing_count(self) -> int:
        return sum(1 for c in self.chunks if isinstance(c, ProcessingChunk))

    def find_processing(self, chunk_index: int) -> int | None:
        """Return the list position of the processing placeholder for *chunk_index*."""
        for pos, chunk in enumerate(self.chunks):
            if isinstance(chunk, ProcessingChunk) and chunk.chunk_index == chunk_index:
                return pos
        return None


@dataclass
class TranscriptionResult:
    """Output of the external transcription/diarization service."""

    transcript: str
    confidence: float
    speakers: list[SpeakerSegment] = field(default_factory=list)
    audio_duration: float | None = None  # recognizer's own view of the clip length


@dataclass
class ChunkOutcome:
    """What the processor hands back to the caller for one chunk."""

    session_key: str
    segment_index: int
    chunk_index: int
    audio_url: str
    duration: float
    session_offset: float
    speakers: list[SpeakerSegment]
    transcript: str = ""
    confidence: float = 0.0


@dataclass
class FinalizeResult:
    """Result of draining, merging and persisting a canvas's recording."""

    canvas_id: str
    session_id: str | None = None
    audio_url: str = ""
    segments: list[SpeakerSegment] = field(default_factory=list)
    context_text: str = ""
    chunk_count: int = 0
    partial: bool = False

    @property
    def empty(self) -> bool:
        return self.session_id is None

    @property
    def duration(self) -> float:
        return max((s.end_time for s in self.segments), default=0.0)


@dataclass
class FinalizedSession:
    """A persisted recording with its ordered transcript."""

    id: str
    canvas_id: str
    audio_url: str
    mentor_id: int | None = None
    mentee_id: int | None = None
    created_at: str | None = None
    segments: list[SpeakerSegment] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return max((s.end_time for s in self.segments), default=0.0)


@dataclass
class Participants:
    """Resolved mentor/mentee identifiers for a canvas."""

    mentor_id: int | None = None
    mentee_id: int | None = None
    mentor_name: str | None = None
    mentee_name: str | None = None
