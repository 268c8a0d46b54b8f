"""RIFF/WAV header parsing and chunk merging."""

from __future__ import annotations

import io
import logging
import struct
import wave
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CANONICAL_HEADER_SIZE = 44
RIFF_PREAMBLE_SIZE = 12  # "RIFF" + u32 size + "WAVE"


@dataclass(frozen=True)
class WavFormat:
    """PCM format parameters carried in the ``fmt `` sub-chunk."""

    channels: int = 1
    sample_rate: int = 16000
    bits_per_sample: int = 16

    @property
    def block_align(self) -> int:
        return self.channels * self.bits_per_sample // 8

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.block_align


def is_riff(data: bytes) -> bool:
    return len(data) >= 4 and data[:4] == b"RIFF"


def read_wav_format(data: bytes) -> WavFormat:
    """Read channel count, sample rate and bit depth from the fixed-offset fmt chunk.

    Raises:
        ValueError: If *data* is not a RIFF buffer long enough to hold a header.
    """
    if not is_riff(data) or len(data) < CANONICAL_HEADER_SIZE:
        raise ValueError("Not a RIFF/WAV buffer")
    channels, sample_rate = struct.unpack_from("<HI", data, 22)
    (bits_per_sample,) = struct.unpack_from("<H", data, 34)
    return WavFormat(channels=channels, sample_rate=sample_rate, bits_per_sample=bits_per_sample)


def extract_pcm_payload(data: bytes) -> bytes:
    """Return the audio payload of one buffer.

    RIFF buffers are walked sub-chunk by sub-chunk (4-byte id +
    little-endian u32 length) from the first one after the ``WAVE`` tag,
    skipping everything that is not ``data``. A ``data`` chunk whose length
    is zero or runs past the buffer (streaming writers) yields the rest of
    the buffer. Without a ``data`` chunk everything after the canonical
    44-byte header is payload. Non-RIFF buffers are payload as-is.
    """
    if not is_riff(data):
        return data

    pos = RIFF_PREAMBLE_SIZE
    while pos + 8 <= len(data):
        chunk_id = data[pos : pos + 4]
        (chunk_size,) = struct.unpack_from("<I", data, pos + 4)
        body = pos + 8
        if chunk_id == b"data":
            if chunk_size == 0 or body + chunk_size > len(data):
                return data[body:]
            return data[body : body + chunk_size]
        # RIFF sub-chunks are word aligned
        pos = body + chunk_size + (chunk_size & 1)

    return data[CANONICAL_HEADER_SIZE:]


def build_wav_header(payload_size: int, fmt: WavFormat) -> bytes:
    """Build a fresh canonical 44-byte RIFF/WAVE/fmt/data header."""
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + payload_size,
        b"WAVE",
        b"fmt ",
        16,  # PCM fmt chunk size
        1,  # PCM
        fmt.channels,
        fmt.sample_rate,
        fmt.byte_rate,
        fmt.block_align,
        fmt.bits_per_sample,
        b"data",
        payload_size,
    )


def merge_wav_buffers(buffers: list[bytes]) -> bytes:
    """Merge chunk audio into one WAV artifact.

    The format is taken from the first RIFF buffer only; chunks are assumed to
    share it. On any parse error the raw buffers are concatenated without
    header repair.
    """
    if not buffers:
        return b""
    if len(buffers) == 1:
        return buffers[0]

    try:
        fmt: WavFormat | None = None
        payloads: list[bytes] = []
        for buf in buffers:
            if is_riff(buf) and fmt is None:
                fmt = read_wav_format(buf)
            payloads.append(extract_pcm_payload(buf))

        fmt = fmt or WavFormat()
        payload = b"".join(payloads)
        header = build_wav_header(len(payload), fmt)
        logger.info(
            "Merged %d WAV buffers: %d payload bytes (%d ch, %d Hz, %d bit)",
            len(buffers),
            len(payload),
            fmt.channels,
            fmt.sample_rate,
            fmt.bits_per_sample,
        )
        return header + payload
    except (ValueError, struct.error) as exc:
        logger.warning("WAV merge failed, falling back to raw concatenation: %s", exc)
        return b"".join(buffers)


def split_wav(data: bytes, chunk_seconds: float) -> list[bytes]:
    """Cut a WAV recording into standalone WAV chunks of *chunk_seconds* each.

    Used to replay a finished recording through the chunk ingest endpoint.
    The last chunk holds the remainder.
    """
    if chunk_seconds <= 0:
        raise ValueError("chunk_seconds must be positive")

    with wave.open(io.BytesIO(data), "rb") as src:
        params = src.getparams()
        frames_per_chunk = max(1, int(params.framerate * chunk_seconds))
        chunks: list[bytes] = []
        while True:
            frames = src.readframes(frames_per_chunk)
            if not frames:
                break
            out = io.BytesIO()
            with wave.open(out, "wb") as dst:
                dst.setnchannels(params.nchannels)
                dst.setsampwidth(params.sampwidth)
                dst.setframerate(params.framerate)
                dst.writeframes(frames)
            chunks.append(out.getvalue())
    return chunks
