"""Exceptions raised by the speech pipeline.

Routes translate these into HTTP status codes; library code never raises
``HTTPException`` directly.
"""

from __future__ import annotations


class SpeechPipelineError(Exception):
    """Base class for pipeline failures surfaced to the caller."""


class StorageUploadError(SpeechPipelineError):
    """The object store rejected or failed an upload."""


class TranscriptionError(SpeechPipelineError):
    """The recognition service is unreachable or failed internally."""


class InvalidAudioError(SpeechPipelineError):
    """The recognition service rejected the audio content itself."""


class ChunkProcessingError(SpeechPipelineError):
    """Any other failure while processing a single chunk."""

    def __init__(self, chunk_index: int, message: str) -> None:
        super().__init__(f"Chunk {chunk_index}: {message}")
        self.chunk_index = chunk_index


class SessionFinalizingError(SpeechPipelineError):
    """A chunk arrived after finalize started for its canvas."""


class DuplicateChunkError(SpeechPipelineError):
    """A chunk with the same index is already being processed."""


class SessionExpiredError(SpeechPipelineError):
    """The recording exceeded the session time limit."""


class ParticipantLookupError(SpeechPipelineError):
    """Canvas participants could not be read from the durable store."""
