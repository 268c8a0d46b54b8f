"""End-of-recording finalize: drain chunks, merge audio, persist the transcript."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from typing import Protocol

import httpx

from src.pipeline_config import PipelineConfig
from src.speech.corrector import resolve_overlaps
from src.speech.errors import SpeechPipelineError
from src.speech.models import CompleteChunk, FinalizeResult, SpeakerSegment
from src.speech.processor import ObjectStore
from src.speech.session_cache import SessionCache
from src.speech.wav import merge_wav_buffers

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 30.0

_PUNCTUATION = re.compile(r"[^\w\s]")


class SegmentRepository(Protocol):
    def create_session(
        self, canvas_id: str, mentor_id: int | None, mentee_id: int | None, audio_url: str
    ) -> str: ...

    def insert_segments(
        self, session_id: str, segments: list[SpeakerSegment], batch_size: int = 1000
    ) -> int: ...


def extract_context_text(segments: list[SpeakerSegment], stoplist: frozenset[str]) -> str:
    """Join segment texts in time order, dropping fillers and fragments under 3 chars.

    Fillers are matched with punctuation stripped, so "Um." and "Yeah!" count.
    """
    texts = (s.text.strip() for s in sorted(segments, key=lambda s: s.start_time))
    return " ".join(
        t
        for t in texts
        if len(t) >= 3 and _PUNCTUATION.sub("", t).strip().lower() not in stoplist
    )


class SessionFinalizer:
    """Turns a canvas's cached chunks into one persisted recording.

    Args:
        cache: Shared session cache.
        store: Object store holding chunk audio.
        repository: Durable store for finalized sessions and segments.
        config: Wait, batch and stoplist tunables.
        http_client_factory: Builds the async client used for chunk downloads.
        clock: Monotonic clock for the completion wait.
    """

    def __init__(
        self,
        cache: SessionCache,
        store: ObjectStore,
        repository: SegmentRepository,
        config: PipelineConfig | None = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.store = store
        self.repository = repository
        self.config = config or PipelineConfig()
        self.http_client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True)
        )
        self.clock = clock

    # ------------------------------------------------------------------
    # Waiting for outstanding chunks
    # ------------------------------------------------------------------

    def _counts(self, canvas_id: str) -> tuple[int, int]:
        processing = complete = 0
        for key in self.cache.find_all(canvas_id):
            session = self.cache.get(key)
            if session is None:
                continue
            processing += session.processing_count
            complete += len(session.complete_chunks)
        return processing, complete

    async def wait_for_chunks(self, canvas_id: str) -> tuple[bool, bool]:
        """Wait until the canvas has no processing chunks, or time runs out.

        Must be called with the canvas lock held (via its condition). Wakes on
        every chunk state change and re-checks at least every poll interval.

        Returns:
            ``(ready, all_processed)``. ``ready`` is false when nothing can be
            finalized; ``all_processed`` is false for a partial result.
        """
        cond = self.cache.condition(canvas_id)
        max_wait = self.config.finalize_max_wait_seconds
        partial_after = max_wait * self.config.finalize_partial_ratio
        started = self.clock()

        while True:
            processing, complete = self._counts(canvas_id)
            elapsed = self.clock() - started

            if processing == 0 and complete > 0:
                logger.info("All %d chunks processed for canvas %s", complete, canvas_id)
                return True, True
            if processing == 0 and complete == 0:
                return False, False
            if elapsed > partial_after and complete > 0:
                logger.warning(
                    "Accepting partial result for canvas %s: %d complete, %d processing",
                    canvas_id,
                    complete,
                    processing,
                )
                return True, False
            if elapsed >= max_wait:
                logger.warning("Timed out waiting for chunks of canvas %s", canvas_id)
                return False, False

            timeout = min(self.config.finalize_poll_interval_seconds, max_wait - elapsed)
            try:
                await asyncio.wait_for(cond.wait(), timeout=timeout)
            except TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Audio merge
    # ------------------------------------------------------------------

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        response = await client.get(url)
        response.raise_for_status()
        return response.content

    async def merge_audio(
        self,
        chunks: list[CompleteChunk],
        canvas_id: str,
        mentor_id: int | None,
        mentee_id: int | None,
    ) -> tuple[str, list[str]]:
        """Merge chunk audio into one uploaded WAV.

        Returns:
            The URL to persist and the chunk URLs the merged artifact replaced.
            Any merge or upload failure falls back to the first chunk's URL.
        """
        urls = [c.audio_url for c in chunks if c.audio_url]
        if not urls:
            raise SpeechPipelineError(f"No chunk audio to merge for canvas {canvas_id}")
        if len(urls) == 1:
            return urls[0], []

        try:
            async with self.http_client_factory() as client:
                results = await asyncio.gather(
                    *(self._download(client, url) for url in urls), return_exceptions=True
                )

            buffers: list[bytes] = []
            downloaded: list[str] = []
            for url, result in zip(urls, results):
                if isinstance(result, BaseException):
                    logger.error("Chunk download failed for %s: %s", url, result)
                    continue
                buffers.append(result)
                downloaded.append(url)

            if not buffers:
                raise SpeechPipelineError("All chunk downloads failed")
            logger.info("Downloaded %d/%d chunks", len(buffers), len(urls))

            merged = merge_wav_buffers(buffers)
            if not merged:
                raise SpeechPipelineError("Merged audio is empty")

            key = self.store.generate_key("merged_session.wav", canvas_id, mentor_id, mentee_id)
            merged_url = await asyncio.to_thread(self.store.upload, merged, key, "audio/wav")
            logger.info("Merged %d chunks into %s (%d bytes)", len(buffers), key, len(merged))
            return merged_url, downloaded
        except Exception:
            logger.exception("Audio merge failed for canvas %s, using first chunk", canvas_id)
            return urls[0], []

    async def _cleanup_chunk_objects(self, urls: list[str]) -> None:
        if not urls:
            return
        try:
            result = await asyncio.to_thread(self.store.delete_many, urls)
        except Exception:
            logger.exception("Failed to delete %d chunk objects", len(urls))
            return
        errors = getattr(result, "errors", [])
        if errors:
            logger.warning("Chunk object cleanup reported errors: %s", errors)

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    async def finalize(
        self, canvas_id: str, mentor_id: int | None, mentee_id: int | None
    ) -> FinalizeResult:
        """Drain, merge and persist every cached session of *canvas_id*.

        Returns:
            A populated result, or an empty one (``session_id is None``) when
            no chunk completed in time.
        """
        logger.info("Finalizing canvas %s", canvas_id)
        async with self.cache.lock(canvas_id):
            ready, all_processed = await self.wait_for_chunks(canvas_id)
            if not ready:
                logger.warning("Nothing to finalize for canvas %s", canvas_id)
                return FinalizeResult(canvas_id=canvas_id)

            sessions = [
                s for s in (self.cache.get(k) for k in self.cache.find_all(canvas_id)) if s
            ]
            for session in sessions:
                session.finalizing = True
            sessions.sort(key=lambda s: (s.session_start_time, s.segment_index))
            chunks = [
                chunk
                for session in sessions
                for chunk in sorted(session.complete_chunks, key=lambda c: c.chunk_index)
            ]

        logger.info(
            "Merging %d chunks for canvas %s (order: %s)",
            len(chunks),
            canvas_id,
            ", ".join(str(c.chunk_index) for c in chunks),
        )

        try:
            audio_url, replaced = await self.merge_audio(chunks, canvas_id, mentor_id, mentee_id)

            segments = resolve_overlaps([s for c in chunks for s in c.speakers])
            segments = [s for s in segments if s.start_time >= 0 and s.end_time > s.start_time]

            session_id = await asyncio.to_thread(
                self.repository.create_session, canvas_id, mentor_id, mentee_id, audio_url
            )
            if segments:
                await asyncio.to_thread(
                    self.repository.insert_segments,
                    session_id,
                    segments,
                    self.config.segment_insert_batch_size,
                )
        except Exception:
            async with self.cache.lock(canvas_id):
                for session in sessions:
                    session.finalizing = False
            raise

        context_text = extract_context_text(segments, self.config.filler_stoplist)

        async with self.cache.lock(canvas_id):
            for key in self.cache.keys_for(canvas_id):
                self.cache.delete(key)
            self.cache.notify(canvas_id)

        await self._cleanup_chunk_objects(replaced)

        logger.info(
            "Finalized canvas %s as session %s: %d segments", canvas_id, session_id, len(segments)
        )
        return FinalizeResult(
            canvas_id=canvas_id,
            session_id=session_id,
            audio_url=audio_url,
            segments=segments,
            context_text=context_text,
            chunk_count=len(chunks),
            partial=not all_processed,
        )
