"""In-memory cache of in-flight recording sessions, keyed by session key."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from collections import OrderedDict
from collections.abc import Callable

from src.speech.models import RecordingSession

logger = logging.getLogger(__name__)

_KEY_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_key(canvas_id: str, now: float | None = None) -> str:
    """Build ``{canvas_id}_{epoch ms}_{6 random chars}``."""
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(6))
    return f"{canvas_id}_{millis}_{suffix}"


class SessionCache:
    """Capacity-bounded session store with per-canvas synchronisation.

    Entries are evicted FIFO (oldest inserted first) once ``max_sessions`` is
    reached. All mutation of a canvas's sessions and chunks must happen while
    holding ``lock(canvas_id)``; ``condition(canvas_id)`` shares that lock and
    is notified whenever a chunk changes state.

    Args:
        max_sessions: Maximum number of cached sessions across all canvases.
        inactivity_threshold_seconds: Idle time after which a session is swept.
        clock: Wall-clock source returning epoch seconds.
    """

    def __init__(
        self,
        max_sessions: int = 100,
        inactivity_threshold_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_sessions = max_sessions
        self.inactivity_threshold_seconds = inactivity_threshold_seconds
        self.clock = clock
        self._sessions: OrderedDict[str, RecordingSession] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        self._conditions: dict[str, asyncio.Condition] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_key: str) -> bool:
        return session_key in self._sessions

    # ------------------------------------------------------------------
    # Synchronisation
    # ------------------------------------------------------------------

    def lock(self, canvas_id: str) -> asyncio.Lock:
        if canvas_id not in self._locks:
            self._locks[canvas_id] = asyncio.Lock()
        return self._locks[canvas_id]

    def condition(self, canvas_id: str) -> asyncio.Condition:
        if canvas_id not in self._conditions:
            self._conditions[canvas_id] = asyncio.Condition(self.lock(canvas_id))
        return self._conditions[canvas_id]

    def notify(self, canvas_id: str) -> None:
        """Wake finalizers waiting on *canvas_id*. Caller must hold the canvas lock."""
        cond = self._conditions.get(canvas_id)
        if cond is not None:
            cond.notify_all()

    # ------------------------------------------------------------------
    # Map operations
    # ------------------------------------------------------------------

    def get(self, session_key: str) -> RecordingSession | None:
        return self._sessions.get(session_key)

    def put(self, session_key: str, session: RecordingSession) -> None:
        """Insert or replace an entry, evicting the oldest entry when full."""
        if session_key not in self._sessions:
            while len(self._sessions) >= self.max_sessions:
                evicted_key, _ = self._sessions.popitem(last=False)
                logger.warning("Session cache full, evicted %s", evicted_key)
        self._sessions[session_key] = session

    def delete(self, session_key: str) -> bool:
        return self._sessions.pop(session_key, None) is not None

    def keys_for(self, canvas_id: str) -> list[str]:
        """All cached session keys for a canvas, including empty sessions."""
        return [k for k, s in self._sessions.items() if s.canvas_id == canvas_id]

    def find_active(self, canvas_id: str) -> str | None:
        """Most recently active session key for *canvas_id* that holds at least one chunk."""
        latest_key: str | None = None
        latest_activity = float("-inf")
        for key, session in self._sessions.items():
            if session.canvas_id != canvas_id or not session.chunks:
                continue
            if session.last_activity > latest_activity:
                latest_activity = session.last_activity
                latest_key = key
        return latest_key

    def find_all(self, canvas_id: str) -> list[str]:
        """Session keys for *canvas_id* with a non-empty chunk list, in insertion order."""
        return [
            key
            for key, session in self._sessions.items()
            if session.canvas_id == canvas_id and session.chunks
        ]

    def max_segment_index(self, canvas_id: str) -> int:
        return max(
            (s.segment_index for s in self._sessions.values() if s.canvas_id == canvas_id),
            default=0,
        )

    def sessions(self) -> list[RecordingSession]:
        return list(self._sessions.values())

    # ------------------------------------------------------------------
    # Idle sweep
    # ------------------------------------------------------------------

    def cleanup_inactive(self, now: float | None = None) -> int:
        """Remove sessions idle longer than the inactivity threshold.

        Sessions that are being finalized or still have a chunk in flight are
        left alone.

        Returns:
            Number of sessions removed.
        """
        now = self.clock() if now is None else now
        stale = [
            key
            for key, session in self._sessions.items()
            if not session.finalizing
            and session.processing_count == 0
            and now - session.last_activity > self.inactivity_threshold_seconds
        ]
        for key in stale:
            del self._sessions[key]

        if stale:
            logger.info("Swept %d inactive sessions", len(stale))
        return len(stale)
