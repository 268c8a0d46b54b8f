from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    assemblyai_api_key: str = ""

    # Supabase (Postgres tables + Storage bucket for chunk audio)
    supabase_url: str = ""
    supabase_key: str = ""
    storage_bucket: str = "interview-audio"

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Recognition
    speech_model: str = "universal"
    language_code: str = "ko"
    use_diarization_by_default: bool = True

    # Chunk cache
    max_cached_sessions: int = 100
    inactivity_threshold_seconds: float = 300.0
    cleanup_interval_seconds: float = 60.0

    # Finalize
    finalize_max_wait_seconds: float = 30.0
    finalize_poll_interval_seconds: float = 0.5
    finalize_partial_ratio: float = 0.8
    segment_insert_batch_size: int = 1000

    # Session time limit (minutes)
    session_max_minutes: float = 60.0
    session_warning_minutes: float = 55.0
    session_critical_minutes: float = 58.0

    # Tokens dropped from the consolidated transcript text
    filler_stoplist: list[str] = [
        "um", "uh", "ah", "er", "hmm", "mm", "yeah", "yes", "no", "okay",
        "아", "어", "음", "으", "그", "저", "이", "그런데", "그러면", "네", "예", "아니요",
    ]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
