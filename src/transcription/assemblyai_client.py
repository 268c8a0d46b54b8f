"""AssemblyAI transcription with speaker diarization or word-level timings."""

from __future__ import annotations

import logging
from typing import Any

import assemblyai as aai  # type: ignore[import-untyped]

from src.config import settings
from src.speech.corrector import merge_short_fragments
from src.speech.errors import InvalidAudioError, TranscriptionError
from src.speech.models import SpeakerSegment, TranscriptionResult

logger = logging.getLogger(__name__)

PAUSE_THRESHOLD_SECONDS = 1.5
MAX_WORDS_PER_SENTENCE = 50
MIN_WORD_CONFIDENCE = 0.1


def speaker_tag(label: Any) -> int:
    """Map AssemblyAI speaker labels ("A", "B", ...) to 1-based integer tags."""
    if label is None:
        return 1
    text = str(label).strip()
    if text.isdigit():
        return max(1, int(text))
    if text and text[0].isalpha():
        return ord(text[0].upper()) - ord("A") + 1
    return 1


def _ms_to_seconds(value: float | int | None) -> float:
    return (value or 0) / 1000.0


def utterances_to_segments(utterances: list[Any], session_offset: float) -> list[SpeakerSegment]:
    """Diarized path: one segment per utterance, shifted onto the session timeline."""
    segments: list[SpeakerSegment] = []
    for u in utterances:
        text = (u.text or "").strip()
        if not text:
            continue
        segments.append(
            SpeakerSegment(
                text=text,
                start_time=round(_ms_to_seconds(u.start) + session_offset, 3),
                end_time=round(_ms_to_seconds(u.end) + session_offset, 3),
                speaker_tag=speaker_tag(u.speaker),
            )
        )
    return segments


def group_words_into_sentences(words: list[Any]) -> list[SpeakerSegment]:
    """Recognizer path: group chunk-relative word timings into sentence segments.

    A new sentence starts on a speaker change, after a pause longer than
    1.5 s within the same speaker, or once 50 words have accumulated.
    Low-confidence and empty words are dropped first.
    """
    kept = [
        w
        for w in words
        if (w.text or "").strip()
        and (w.confidence is None or w.confidence >= MIN_WORD_CONFIDENCE)
    ]
    if not kept:
        return []

    sentences: list[SpeakerSegment] = []
    current: list[str] = []
    current_tag = speaker_tag(kept[0].speaker)
    start = _ms_to_seconds(kept[0].start)
    end = _ms_to_seconds(kept[0].end)
    prev_end = start

    for w in kept:
        tag = speaker_tag(w.speaker)
        word_start = _ms_to_seconds(w.start)
        word_end = _ms_to_seconds(w.end)

        speaker_changed = tag != current_tag
        long_pause = not speaker_changed and word_start - prev_end > PAUSE_THRESHOLD_SECONDS
        too_long = len(current) >= MAX_WORDS_PER_SENTENCE
        if current and (speaker_changed or long_pause or too_long):
            sentences.append(
                SpeakerSegment(" ".join(current), round(start, 1), round(end, 1), current_tag)
            )
            current = []
            current_tag = tag
            start = word_start

        current.append(w.text.strip())
        end = word_end
        prev_end = word_end

    if current:
        sentences.append(
            SpeakerSegment(" ".join(current), round(start, 1), round(end, 1), current_tag)
        )
    return sentences


class AssemblyAITranscriber:
    """Blocking AssemblyAI client; run ``transcribe`` in a worker thread from async code."""

    def __init__(
        self,
        api_key: str | None = None,
        speech_model: str | None = None,
        language_code: str | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.assemblyai_api_key
        self.speech_model = speech_model or settings.speech_model
        self.language_code = language_code or settings.language_code

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _config(self, diarization_enabled: bool) -> aai.TranscriptionConfig:
        return aai.TranscriptionConfig(
            speech_models=[self.speech_model],
            speaker_labels=diarization_enabled,
            language_code=self.language_code,
        )

    def transcribe(
        self,
        audio_url: str,
        session_offset: float = 0.0,
        diarization_enabled: bool = True,
    ) -> TranscriptionResult:
        """Transcribe the audio at *audio_url*.

        With diarization, utterance timings are returned already shifted by
        *session_offset*. Without it, word timings are grouped into
        sentences and left chunk-relative for later rescaling.

        Raises:
            InvalidAudioError: AssemblyAI rejected the audio content.
            TranscriptionError: Infrastructure failure (bad key, network, outage).
        """
        if not self.configured:
            raise TranscriptionError("Transcription is not configured (ASSEMBLYAI_API_KEY unset)")

        aai.settings.api_key = self.api_key
        transcriber = aai.Transcriber()
        try:
            transcript = transcriber.transcribe(audio_url, config=self._config(diarization_enabled))
        except Exception as exc:
            raise TranscriptionError(f"Transcription service unavailable: {exc}") from exc

        if transcript.status == aai.TranscriptStatus.error:
            raise InvalidAudioError(f"Transcription failed: {transcript.error}")

        if diarization_enabled:
            speakers = utterances_to_segments(transcript.utterances or [], session_offset)
        else:
            speakers = merge_short_fragments(group_words_into_sentences(transcript.words or []))

        confidence = float(transcript.confidence or 0.0)
        if confidence < 0.5:
            logger.warning("Low transcription confidence %.3f for %s", confidence, audio_url)

        audio_duration = transcript.audio_duration
        logger.info(
            "Transcribed %s: %d segments, confidence %.3f, diarized=%s",
            audio_url,
            len(speakers),
            confidence,
            diarization_enabled,
        )
        return TranscriptionResult(
            transcript=transcript.text or "",
            confidence=confidence,
            speakers=speakers,
            audio_duration=float(audio_duration) if audio_duration else None,
        )
