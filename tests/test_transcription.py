"""Tests for the AssemblyAI transcriber with the SDK mocked out."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import assemblyai as aai  # type: ignore[import-untyped]
import pytest

from src.speech.errors import InvalidAudioError, TranscriptionError
from src.transcription.assemblyai_client import (
    AssemblyAITranscriber,
    group_words_into_sentences,
    speaker_tag,
    utterances_to_segments,
)


def _word(text: str, start_ms: int, end_ms: int, speaker: str = "A", confidence: float = 0.9):
    return SimpleNamespace(
        text=text, start=start_ms, end=end_ms, speaker=speaker, confidence=confidence
    )


def _utterance(text: str, start_ms: int, end_ms: int, speaker: str):
    return SimpleNamespace(text=text, start=start_ms, end=end_ms, speaker=speaker)


def _transcript(**overrides):
    fields = {
        "status": aai.TranscriptStatus.completed,
        "error": None,
        "text": "hello there",
        "confidence": 0.91,
        "utterances": [],
        "words": [],
        "audio_duration": 12,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestSpeakerTag:
    @pytest.mark.parametrize(
        "label, tag",
        [("A", 1), ("B", 2), ("c", 3), ("2", 2), ("0", 1), (None, 1), ("", 1)],
    )
    def test_mapping(self, label: str | None, tag: int) -> None:
        assert speaker_tag(label) == tag


class TestUtterances:
    def test_shifted_by_offset(self) -> None:
        utterances = [
            _utterance("안녕하세요", 500, 2500, "A"),
            _utterance("  ", 2600, 2700, "B"),
            _utterance("네 반갑습니다", 3000, 4200, "B"),
        ]
        segments = utterances_to_segments(utterances, session_offset=10.0)
        assert [(s.text, s.start_time, s.end_time, s.speaker_tag) for s in segments] == [
            ("안녕하세요", 10.5, 12.5, 1),
            ("네 반갑습니다", 13.0, 14.2, 2),
        ]


class TestWordGrouping:
    def test_splits_on_speaker_change(self) -> None:
        words = [
            _word("I", 0, 200),
            _word("agree", 200, 600),
            _word("great", 700, 1100, speaker="B"),
        ]
        segments = group_words_into_sentences(words)
        assert [(s.text, s.speaker_tag) for s in segments] == [("I agree", 1), ("great", 2)]
        assert segments[1].start_time == 0.7

    def test_splits_on_long_pause(self) -> None:
        words = [_word("first", 0, 500), _word("second", 2100, 2600)]
        segments = group_words_into_sentences(words)
        assert [s.text for s in segments] == ["first", "second"]

    def test_short_pause_continues_sentence(self) -> None:
        words = [_word("first", 0, 500), _word("second", 1500, 2000)]
        assert [s.text for s in group_words_into_sentences(words)] == ["first second"]

    def test_splits_at_word_limit(self) -> None:
        words = [_word(f"w{i}", i * 100, i * 100 + 90) for i in range(120)]
        segments = group_words_into_sentences(words)
        assert [len(s.text.split()) for s in segments] == [50, 50, 20]

    def test_drops_low_confidence_words(self) -> None:
        words = [_word("keep", 0, 300), _word("noise", 300, 400, confidence=0.05)]
        assert [s.text for s in group_words_into_sentences(words)] == ["keep"]

    def test_empty(self) -> None:
        assert group_words_into_sentences([]) == []


class TestTranscriber:
    def test_unconfigured_raises(self) -> None:
        with pytest.raises(TranscriptionError):
            AssemblyAITranscriber(api_key="").transcribe("https://example.test/a.wav")

    @patch("src.transcription.assemblyai_client.aai.Transcriber")
    def test_diarized_path(self, mock_transcriber_cls: MagicMock) -> None:
        mock_transcriber_cls.return_value.transcribe.return_value = _transcript(
            utterances=[_utterance("hello there", 1000, 3000, "B")]
        )
        result = AssemblyAITranscriber(api_key="key", speech_model="universal").transcribe(
            "https://example.test/a.wav", session_offset=20.0, diarization_enabled=True
        )
        assert result.transcript == "hello there"
        assert result.confidence == pytest.approx(0.91)
        assert result.audio_duration == 12.0
        (seg,) = result.speakers
        assert (seg.start_time, seg.end_time, seg.speaker_tag) == (21.0, 23.0, 2)

        _, kwargs = mock_transcriber_cls.return_value.transcribe.call_args
        config = kwargs["config"]
        assert config.speaker_labels is True

    @patch("src.transcription.assemblyai_client.aai.Transcriber")
    def test_recognizer_path_is_chunk_relative(self, mock_transcriber_cls: MagicMock) -> None:
        mock_transcriber_cls.return_value.transcribe.return_value = _transcript(
            words=[_word("so", 0, 300), _word("we", 400, 700), _word("shipped it", 800, 1500)]
        )
        result = AssemblyAITranscriber(api_key="key").transcribe(
            "https://example.test/a.wav", session_offset=30.0, diarization_enabled=False
        )
        (seg,) = result.speakers
        assert seg.text == "so we shipped it"
        assert seg.start_time == 0.0
        assert seg.end_time == 1.5

    @patch("src.transcription.assemblyai_client.aai.Transcriber")
    def test_status_error_is_invalid_audio(self, mock_transcriber_cls: MagicMock) -> None:
        mock_transcriber_cls.return_value.transcribe.return_value = _transcript(
            status=aai.TranscriptStatus.error, error="File does not appear to contain audio"
        )
        with pytest.raises(InvalidAudioError, match="contain audio"):
            AssemblyAITranscriber(api_key="key").transcribe("https://example.test/a.wav")

    @patch("src.transcription.assemblyai_client.aai.Transcriber")
    def test_sdk_exception_is_transcription_error(self, mock_transcriber_cls: MagicMock) -> None:
        mock_transcriber_cls.return_value.transcribe.side_effect = ConnectionError("reset")
        with pytest.raises(TranscriptionError, match="unavailable"):
            AssemblyAITranscriber(api_key="key").transcribe("https://example.test/a.wav")

    @patch("src.transcription.assemblyai_client.aai.Transcriber")
    def test_missing_duration_is_none(self, mock_transcriber_cls: MagicMock) -> None:
        mock_transcriber_cls.return_value.transcribe.return_value = _transcript(
            audio_duration=None
        )
        result = AssemblyAITranscriber(api_key="key").transcribe("https://example.test/a.wav")
        assert result.audio_duration is None
        assert result.speakers == []
