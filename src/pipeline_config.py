"""Pipeline configuration: transcription path enum and PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from src.config import Settings


class TranscriptionPath(str, Enum):
    """Which timing source a chunk's segments come from."""

    DIARIZED = "diarized"  # speaker-labelled utterances, already on the session timeline
    RECOGNIZER = "recognizer"  # word timings relative to the chunk, rescaled after probing


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable tunables for the chunk cache, finalizer and session timer.

    Defaults mirror production behaviour; tests build tighter instances
    (e.g. a 30 s inactivity threshold and sub-second finalize waits).
    """

    max_sessions: int = 100
    inactivity_threshold_seconds: float = 300.0
    finalize_max_wait_seconds: float = 30.0
    finalize_poll_interval_seconds: float = 0.5
    finalize_partial_ratio: float = 0.8
    segment_insert_batch_size: int = 1000
    session_max_seconds: float = 60 * 60
    session_warning_seconds: float = 55 * 60
    session_critical_seconds: float = 58 * 60
    filler_stoplist: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            max_sessions=settings.max_cached_sessions,
            inactivity_threshold_seconds=settings.inactivity_threshold_seconds,
            finalize_max_wait_seconds=settings.finalize_max_wait_seconds,
            finalize_poll_interval_seconds=settings.finalize_poll_interval_seconds,
            finalize_partial_ratio=settings.finalize_partial_ratio,
            segment_insert_batch_size=settings.segment_insert_batch_size,
            session_max_seconds=settings.session_max_minutes * 60,
            session_warning_seconds=settings.session_warning_minutes * 60,
            session_critical_seconds=settings.session_critical_minutes * 60,
            filler_stoplist=frozenset(t.lower() for t in settings.filler_stoplist),
        )
