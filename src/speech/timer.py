"""Session time limit tracking with one-shot graduated warnings."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from src.pipeline_config import PipelineConfig
from src.speech.models import RecordingSession, WarningLevel
from src.speech.session_cache import SessionCache

logger = logging.getLogger(__name__)


@dataclass
class SessionTimeInfo:
    canvas_id: str
    session_key: str | None
    start_time: float | None
    elapsed_seconds: float
    remaining_seconds: float
    max_seconds: float
    warning_level: WarningLevel = WarningLevel.NONE

    @property
    def elapsed_minutes(self) -> int:
        return int(self.elapsed_seconds // 60)

    @property
    def remaining_minutes(self) -> int:
        return int(self.remaining_seconds // 60)

    @property
    def expired(self) -> bool:
        return self.warning_level is WarningLevel.EXPIRED


@dataclass
class TimeCheckResult:
    allowed: bool
    message: str
    time_info: SessionTimeInfo
    should_warn: bool = False
    should_block: bool = False


class SessionTimer:
    """Evaluates elapsed recording time for a canvas against the session cap.

    Warning and critical notices are reported at most once per session; the
    record of which were sent lives on the session itself and disappears
    with it.
    """

    def __init__(
        self,
        cache: SessionCache,
        config: PipelineConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.config = config or PipelineConfig()
        self.clock = clock

    def warning_level(self, elapsed_seconds: float) -> WarningLevel:
        if elapsed_seconds >= self.config.session_max_seconds:
            return WarningLevel.EXPIRED
        if elapsed_seconds >= self.config.session_critical_seconds:
            return WarningLevel.CRITICAL
        if elapsed_seconds >= self.config.session_warning_seconds:
            return WarningLevel.WARNING
        return WarningLevel.NONE

    def _active_session(self, canvas_id: str) -> RecordingSession | None:
        key = self.cache.find_active(canvas_id)
        return self.cache.get(key) if key else None

    def get_time_info(self, canvas_id: str) -> SessionTimeInfo:
        max_seconds = self.config.session_max_seconds
        session = self._active_session(canvas_id)
        if session is None:
            return SessionTimeInfo(
                canvas_id=canvas_id,
                session_key=None,
                start_time=None,
                elapsed_seconds=0.0,
                remaining_seconds=max_seconds,
                max_seconds=max_seconds,
            )

        elapsed = max(0.0, self.clock() - session.session_start_time)
        return SessionTimeInfo(
            canvas_id=canvas_id,
            session_key=session.session_key,
            start_time=session.session_start_time,
            elapsed_seconds=elapsed,
            remaining_seconds=max(0.0, max_seconds - elapsed),
            max_seconds=max_seconds,
            warning_level=self.warning_level(elapsed),
        )

    def check_time_limit(self, canvas_id: str) -> TimeCheckResult:
        """Report whether another chunk may be accepted for *canvas_id*.

        Returns:
            A blocking result once the cap is reached; otherwise an allowed
            result whose ``should_warn`` is true only the first time the
            session crosses the warning or critical threshold.
        """
        info = self.get_time_info(canvas_id)
        limit_minutes = int(self.config.session_max_seconds // 60)

        if info.expired:
            logger.warning(
                "Session for canvas %s exceeded the %d minute limit (%d min elapsed)",
                canvas_id,
                limit_minutes,
                info.elapsed_minutes,
            )
            return TimeCheckResult(
                allowed=False,
                message=(
                    f"Session exceeded the {limit_minutes} minute limit "
                    f"({info.elapsed_minutes} min elapsed)"
                ),
                time_info=info,
                should_block=True,
            )

        should_warn = False
        session = self.cache.get(info.session_key) if info.session_key else None
        level = info.warning_level
        if session is not None and level in (WarningLevel.WARNING, WarningLevel.CRITICAL):
            if level not in session.warnings_sent:
                session.warnings_sent.add(level)
                should_warn = True
                logger.warning(
                    "Canvas %s session %s: %s level, %d min remaining",
                    canvas_id,
                    session.session_key,
                    level.value,
                    info.remaining_minutes,
                )

        return TimeCheckResult(
            allowed=True,
            message=self._status_message(info),
            time_info=info,
            should_warn=should_warn,
        )

    def _status_message(self, info: SessionTimeInfo) -> str:
        if info.warning_level is WarningLevel.CRITICAL:
            return f"Session ends very soon ({info.remaining_minutes} min remaining)"
        if info.warning_level is WarningLevel.WARNING:
            return f"Session is nearing its limit ({info.remaining_minutes} min remaining)"
        return (
            f"Session in progress ({info.elapsed_minutes} min elapsed, "
            f"{info.remaining_minutes} min remaining)"
        )

    def reset_warnings(self, canvas_id: str) -> None:
        """Forget which warnings were sent for the canvas's sessions."""
        for key in self.cache.keys_for(canvas_id):
            session = self.cache.get(key)
            if session is not None:
                session.warnings_sent.clear()
        logger.info("Reset session warnings for canvas %s", canvas_id)

    def force_end_session(self, canvas_id: str) -> bool:
        """Drop every non-finalizing session of a canvas from the cache.

        Returns:
            True if an active session existed.
        """
        had_active = self.cache.find_active(canvas_id) is not None
        for key in self.cache.keys_for(canvas_id):
            session = self.cache.get(key)
            if session is not None and not session.finalizing:
                self.cache.delete(key)
        if had_active:
            logger.info("Force-ended session for canvas %s", canvas_id)
        return had_active
