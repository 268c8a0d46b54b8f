"""Tests for duration probing and timing remap."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from src.speech.duration import (
    estimate_duration,
    extension_for,
    map_timings_to_full_duration,
    probe_duration,
)
from src.speech.models import SpeakerSegment
from tests.fakes import make_wav


class TestExtension:
    def test_known_types(self) -> None:
        assert extension_for("audio/wav") == "wav"
        assert extension_for("audio/mpeg") == "mp3"
        assert extension_for("audio/webm;codecs=opus") == "webm"

    def test_unknown_defaults_to_mp4(self) -> None:
        assert extension_for("application/octet-stream") == "mp4"
        assert extension_for("") == "mp4"


class TestProbe:
    def test_wav_exact(self) -> None:
        assert probe_duration(make_wav(2.0), "audio/wav") == pytest.approx(2.0)

    def test_empty_is_zero(self) -> None:
        assert probe_duration(b"", "audio/webm") == 0.0

    def test_garbage_falls_back_to_estimate(self) -> None:
        data = b"\x00" * 16000  # 128 kbps -> 1 s
        assert probe_duration(data, "audio/webm") == pytest.approx(1.0)

    def test_corrupt_wav_falls_back_to_wav_bitrate(self) -> None:
        data = b"\x00" * 176400
        assert probe_duration(data, "audio/wav") == pytest.approx(1.0)

    def test_container_uses_pydub(self) -> None:
        with patch("src.speech.duration.AudioSegment") as mock_segment:
            mock_segment.from_file.return_value.duration_seconds = 4.25
            assert probe_duration(b"\x1a\x45\xdf\xa3", "audio/webm") == pytest.approx(4.25)
            _, kwargs = mock_segment.from_file.call_args
            assert kwargs["format"] == "webm"

    def test_non_finite_container_duration_falls_back(self) -> None:
        with patch("src.speech.duration.AudioSegment") as mock_segment:
            mock_segment.from_file.return_value.duration_seconds = float("nan")
            assert probe_duration(b"\x00" * 16000, "audio/ogg") == pytest.approx(1.0)

    def test_estimate_unknown_mime(self) -> None:
        assert estimate_duration(b"\x00" * 32000, "audio/unknown") == pytest.approx(2.0)


class TestTimingRemap:
    def test_scales_and_offsets(self) -> None:
        segments = [SpeakerSegment("a", 0.0, 2.0), SpeakerSegment("b", 2.0, 4.0)]
        mapped = map_timings_to_full_duration(segments, 4.0, 8.0, session_offset=10.0)
        assert [(s.start_time, s.end_time) for s in mapped] == [(10.0, 14.0), (14.0, 18.0)]

    def test_corrects_recognizer_clock(self) -> None:
        segments = [SpeakerSegment("a", 0.0, 5.0)]
        mapped = map_timings_to_full_duration(segments, 10.0, 10.0)
        assert mapped[0].end_time == 10.0

    def test_rounds_to_one_decimal(self) -> None:
        segments = [SpeakerSegment("a", 0.333, 3.0)]
        mapped = map_timings_to_full_duration(segments, 3.0, 3.0)
        assert mapped[0].start_time == 0.3

    def test_idempotent_when_durations_match(self) -> None:
        segments = [SpeakerSegment("a", 0.5, 2.5), SpeakerSegment("b", 3.0, 6.0)]
        mapped = map_timings_to_full_duration(segments, 6.0, 6.0)
        assert [(s.start_time, s.end_time) for s in mapped] == [(0.5, 2.5), (3.0, 6.0)]

    def test_collapsed_segment_keeps_positive_length(self) -> None:
        segments = [SpeakerSegment("a", 1.01, 1.03), SpeakerSegment("b", 2.0, 10.0)]
        mapped = map_timings_to_full_duration(segments, 10.0, 10.0)
        assert mapped[0].end_time > mapped[0].start_time

    def test_preserves_speaker_and_text(self) -> None:
        segments = [SpeakerSegment("hello", 0.0, 1.0, speaker_tag=2)]
        mapped = map_timings_to_full_duration(segments, 1.0, 2.0)
        assert mapped[0].text == "hello"
        assert mapped[0].speaker_tag == 2

    @pytest.mark.parametrize(
        "stt, full",
        [(0.0, 5.0), (5.0, 0.0), (-1.0, 5.0)],
    )
    def test_degenerate_durations_unchanged(self, stt: float, full: float) -> None:
        segments = [SpeakerSegment("a", 0.0, 1.0)]
        assert map_timings_to_full_duration(segments, stt, full) is segments

    def test_no_positive_end_unchanged(self) -> None:
        segments = [SpeakerSegment("a", 0.0, 0.0)]
        assert map_timings_to_full_duration(segments, 5.0, 5.0) is segments

    def test_empty(self) -> None:
        assert map_timings_to_full_duration([], 5.0, 5.0) == []
