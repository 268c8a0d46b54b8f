"""Tests for the in-memory session cache."""

from __future__ import annotations

import asyncio
import re

from src.speech.models import CompleteChunk, ProcessingChunk, RecordingSession
from src.speech.session_cache import SessionCache, generate_session_key


def _session(
    canvas_id: str,
    key: str,
    last_activity: float = 1000.0,
    segment_index: int = 1,
    with_chunk: bool = True,
) -> RecordingSession:
    session = RecordingSession(
        canvas_id=canvas_id,
        session_key=key,
        mentor_id=1,
        mentee_id=2,
        segment_index=segment_index,
        session_start_time=last_activity,
        last_activity=last_activity,
    )
    if with_chunk:
        session.chunks.append(ProcessingChunk(0))
    return session


def test_session_key_format() -> None:
    key = generate_session_key("canvas-1", now=1700000000.123)
    assert re.fullmatch(r"canvas-1_1700000000123_[a-z0-9]{6}", key)


def test_session_keys_are_unique() -> None:
    keys = {generate_session_key("c", now=1.0) for _ in range(50)}
    assert len(keys) == 50


class TestMapOperations:
    def test_put_get_delete(self) -> None:
        cache = SessionCache()
        session = _session("c1", "k1")
        cache.put("k1", session)
        assert cache.get("k1") is session
        assert "k1" in cache
        assert cache.delete("k1") is True
        assert cache.delete("k1") is False
        assert cache.get("k1") is None

    def test_fifo_eviction(self) -> None:
        cache = SessionCache(max_sessions=2)
        cache.put("k1", _session("c1", "k1"))
        cache.put("k2", _session("c2", "k2"))
        cache.put("k1", _session("c1", "k1", last_activity=5000.0))  # update, no eviction
        assert len(cache) == 2
        cache.put("k3", _session("c3", "k3"))
        assert len(cache) == 2
        assert "k1" not in cache
        assert "k2" in cache and "k3" in cache


class TestLookups:
    def test_find_active_prefers_latest_activity(self) -> None:
        cache = SessionCache()
        cache.put("old", _session("c1", "old", last_activity=100.0))
        cache.put("new", _session("c1", "new", last_activity=200.0))
        cache.put("other", _session("c2", "other", last_activity=300.0))
        assert cache.find_active("c1") == "new"

    def test_find_active_skips_empty_sessions(self) -> None:
        cache = SessionCache()
        cache.put("empty", _session("c1", "empty", last_activity=500.0, with_chunk=False))
        assert cache.find_active("c1") is None
        assert cache.find_all("c1") == []
        assert cache.keys_for("c1") == ["empty"]

    def test_find_all_in_insertion_order(self) -> None:
        cache = SessionCache()
        cache.put("a", _session("c1", "a", last_activity=300.0))
        cache.put("b", _session("c1", "b", last_activity=100.0))
        cache.put("x", _session("c2", "x"))
        assert cache.find_all("c1") == ["a", "b"]

    def test_max_segment_index(self) -> None:
        cache = SessionCache()
        assert cache.max_segment_index("c1") == 0
        cache.put("a", _session("c1", "a", segment_index=3))
        cache.put("b", _session("c1", "b", segment_index=1))
        assert cache.max_segment_index("c1") == 3


class TestCleanup:
    @staticmethod
    def _idle(canvas_id: str, key: str, last_activity: float) -> RecordingSession:
        session = _session(canvas_id, key, last_activity=last_activity, with_chunk=False)
        session.chunks.append(CompleteChunk(0, "url", (), 1.0))
        return session

    def test_removes_idle_sessions(self) -> None:
        cache = SessionCache(inactivity_threshold_seconds=30.0)
        cache.put("idle", self._idle("c1", "idle", last_activity=0.0))
        cache.put("fresh", self._idle("c2", "fresh", last_activity=90.0))
        assert cache.cleanup_inactive(now=100.0) == 1
        assert "idle" not in cache
        assert "fresh" in cache

    def test_skips_finalizing_sessions(self) -> None:
        cache = SessionCache(inactivity_threshold_seconds=30.0)
        session = self._idle("c1", "k", last_activity=0.0)
        session.finalizing = True
        cache.put("k", session)
        assert cache.cleanup_inactive(now=1000.0) == 0
        assert "k" in cache

    def test_skips_sessions_with_chunk_in_flight(self) -> None:
        cache = SessionCache(inactivity_threshold_seconds=30.0)
        session = self._idle("c1", "k", last_activity=0.0)
        session.chunks.append(ProcessingChunk(1))
        cache.put("k", session)
        assert cache.cleanup_inactive(now=1000.0) == 0
        assert cache.find_active("c1") == "k"

        session.chunks[1] = CompleteChunk(1, "url-1", (), 1.0)
        assert cache.cleanup_inactive(now=1000.0) == 1

    def test_uses_clock(self) -> None:
        cache = SessionCache(inactivity_threshold_seconds=10.0, clock=lambda: 50.0)
        cache.put("k", self._idle("c1", "k", last_activity=0.0))
        assert cache.cleanup_inactive() == 1


class TestSynchronisation:
    def test_lock_is_per_canvas(self) -> None:
        cache = SessionCache()
        assert cache.lock("c1") is cache.lock("c1")
        assert cache.lock("c1") is not cache.lock("c2")

    def test_condition_wakes_waiter(self) -> None:
        cache = SessionCache()
        session = _session("c1", "k")
        cache.put("k", session)

        async def scenario() -> bool:
            cond = cache.condition("c1")

            async def complete_later() -> None:
                await asyncio.sleep(0.01)
                async with cache.lock("c1"):
                    session.chunks[0] = CompleteChunk(0, "url", (), 1.0)
                    cache.notify("c1")

            task = asyncio.create_task(complete_later())
            async with cond:
                woke = await asyncio.wait_for(
                    cond.wait_for(lambda: session.processing_count == 0), timeout=1.0
                )
            await task
            return woke

        assert asyncio.run(scenario()) is True

    def test_notify_without_waiters_is_noop(self) -> None:
        SessionCache().notify("nobody")
