"""Chunk duration probing and recognizer-timestamp remapping."""

from __future__ import annotations

import io
import logging
import math
import wave
from dataclasses import replace

from pydub import AudioSegment

from src.speech.models import SpeakerSegment

logger = logging.getLogger(__name__)

# Fallback bitrates (bits per second) used when container metadata is unreadable
BITRATE_BY_MIME: dict[str, int] = {
    "audio/wav": 1_411_200,  # 16-bit stereo 44.1 kHz PCM
    "audio/x-wav": 1_411_200,
    "audio/wave": 1_411_200,
    "audio/mpeg": 128_000,
    "audio/mp3": 128_000,
    "audio/mp4": 128_000,
    "audio/m4a": 128_000,
    "video/mp4": 1_000_000,
    "audio/flac": 1_000_000,
    "audio/webm": 128_000,
    "video/webm": 128_000,
    "audio/ogg": 128_000,
}
DEFAULT_BITRATE = 128_000

EXTENSION_BY_MIME: dict[str, str] = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/m4a": "m4a",
    "video/mp4": "mp4",
    "audio/flac": "flac",
    "audio/webm": "webm",
    "video/webm": "webm",
    "audio/ogg": "ogg",
}


def _base_mime(mime_type: str) -> str:
    # "audio/webm;codecs=opus" -> "audio/webm"
    return (mime_type or "").split(";", 1)[0].strip().lower()


def extension_for(mime_type: str) -> str:
    """File extension used for storage keys and decoder hints."""
    return EXTENSION_BY_MIME.get(_base_mime(mime_type), "mp4")


def estimate_duration(data: bytes, mime_type: str) -> float:
    """Bitrate-based duration estimate keyed by mime family."""
    bitrate = BITRATE_BY_MIME.get(_base_mime(mime_type), DEFAULT_BITRATE)
    estimated = (len(data) * 8) / bitrate
    logger.info("Estimated duration %.3fs (%s, %d bps)", estimated, mime_type, bitrate)
    return estimated


def _wav_duration(data: bytes) -> float:
    with wave.open(io.BytesIO(data), "rb") as wf:
        rate = wf.getframerate()
        if rate <= 0:
            raise ValueError("WAV header reports a zero sample rate")
        return wf.getnframes() / float(rate)


def _container_duration(data: bytes, mime_type: str) -> float:
    fmt = extension_for(mime_type)
    if fmt == "wav":
        return _wav_duration(data)
    # Non-WAV containers are decoded by ffmpeg through pydub
    segment = AudioSegment.from_file(io.BytesIO(data), format=fmt)
    return float(segment.duration_seconds)


def probe_duration(data: bytes, mime_type: str) -> float:
    """Return the most accurate duration available for *data*, in seconds.

    Container metadata is tried first; on any failure the bitrate estimate is
    used. The result is always finite and non-negative.
    """
    if not data:
        return 0.0
    try:
        duration = _container_duration(data, mime_type)
        if not math.isfinite(duration) or duration < 0:
            raise ValueError(f"unusable container duration {duration!r}")
        logger.info("Exact duration %.3fs (%s)", duration, mime_type)
        return duration
    except Exception as exc:
        logger.warning("Duration extraction failed for %s: %s", mime_type, exc)

    estimated = estimate_duration(data, mime_type)
    if not math.isfinite(estimated) or estimated < 0:
        return 0.0
    return estimated


def map_timings_to_full_duration(
    segments: list[SpeakerSegment],
    stt_duration: float,
    full_duration: float,
    session_offset: float = 0.0,
) -> list[SpeakerSegment]:
    """Rescale recognizer-relative timings onto the probed duration and session timeline.

    Two scale factors are applied: ``stt_duration / max_end`` corrects the
    recognizer's internal clock, ``full_duration / stt_duration`` corrects for
    trimming or compression between what the recognizer saw and the real
    container length. The session offset is then added and both edges are
    rounded to one decimal place.

    Degenerate inputs return *segments* unchanged.
    """
    if not segments or stt_duration <= 0 or full_duration <= 0:
        logger.warning("Skipping timing remap: invalid timing data")
        return segments

    max_reported = max(s.end_time for s in segments)
    if max_reported <= 0:
        logger.warning("Skipping timing remap: recognizer reported no positive end time")
        return segments

    stt_scale = stt_duration / max_reported
    full_scale = full_duration / stt_duration
    logger.debug(
        "Timing remap: max=%.3f stt=%.3f full=%.3f stt_scale=%.3f full_scale=%.3f offset=%.3f",
        max_reported,
        stt_duration,
        full_duration,
        stt_scale,
        full_scale,
        session_offset,
    )

    mapped: list[SpeakerSegment] = []
    for seg in segments:
        start = round(seg.start_time * stt_scale * full_scale + session_offset, 1)
        end = round(seg.end_time * stt_scale * full_scale + session_offset, 1)
        if end <= start:
            # Sub-100ms words collapse under rounding
            end = round(start + 0.1, 1)
        mapped.append(replace(seg, start_time=start, end_time=end))
    return mapped
