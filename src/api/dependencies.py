"""Process-wide pipeline wiring used as FastAPI dependencies.

Tests replace these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from src.config import get_settings
from src.pipeline_config import PipelineConfig
from src.speech.corrector import TranscriptCorrector
from src.speech.finalizer import SessionFinalizer
from src.speech.pipeline import SpeechPipeline
from src.speech.processor import AudioChunkProcessor
from src.speech.session_cache import SessionCache
from src.speech.timer import SessionTimer
from src.storage.object_store import SupabaseObjectStore, get_supabase_client
from src.storage.repository import SpeechRepository
from src.transcription.assemblyai_client import AssemblyAITranscriber


@lru_cache(maxsize=1)
def get_repository() -> SpeechRepository:
    return SpeechRepository(get_supabase_client())


@lru_cache(maxsize=1)
def get_pipeline() -> SpeechPipeline:
    """Build the singleton pipeline from settings on first use."""
    settings = get_settings()
    config = PipelineConfig.from_settings(settings)
    repository = get_repository()
    store = SupabaseObjectStore(repository.client, settings.storage_bucket)

    cache = SessionCache(config.max_sessions, config.inactivity_threshold_seconds)
    processor = AudioChunkProcessor(
        cache,
        store,
        AssemblyAITranscriber(),
        TranscriptCorrector(),
        config,
    )
    return SpeechPipeline(
        cache=cache,
        processor=processor,
        finalizer=SessionFinalizer(cache, store, repository, config),
        timer=SessionTimer(cache, config),
        participants=repository,
        use_diarization_by_default=settings.use_diarization_by_default,
    )
