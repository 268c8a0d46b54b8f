"""Transcript correction: lexical clean-up, overlap resolution, sentence segmentation.

All public functions are pure: they take a list of ``SpeakerSegment`` and
return a new list, never mutating their input.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum

from src.speech.models import SpeakerSegment

logger = logging.getLogger(__name__)

# Overlaps at or below this are treated as recognizer jitter
MIN_OVERLAP_SECONDS = 0.3
MERGE_THRESHOLD = 0.7
ADJUST_THRESHOLD = 0.4
SEPARATION_GAP = 0.1

MAX_SEGMENT_CHARS = 100
SHORT_FRAGMENT_CHARS = 5
SHORT_FRAGMENT_GAP_SECONDS = 1.0

# Common mis-recognitions of interview/technical vocabulary. Keys are regex
# fragments matched on word boundaries, case-insensitively.
WORD_CORRECTIONS: dict[str, str] = {
    # Korean phonetic spellings of technical terms
    "에스티티": "STT",
    "티티에스": "TTS",
    "에이아이": "AI",
    "에이피아이": "API",
    "디비": "DB",
    "에스큐엘": "SQL",
    "에이치티엠엘": "HTML",
    "씨에스에스": "CSS",
    "제이에스": "JS",
    "자바스크립트": "JavaScript",
    "타입스크립트": "TypeScript",
    "리액트": "React",
    "앵귤러": "Angular",
    "노드제이에스": "Node.js",
    "파이썬": "Python",
    "스프링": "Spring",
    "장고": "Django",
    "에이더블유에스": "AWS",
    "도커": "Docker",
    "쿠버네티스": "Kubernetes",
    "깃허브": "GitHub",
    # Split or mis-cased English terms
    r"java\s+script": "JavaScript",
    r"type\s+script": "TypeScript",
    r"node\s*\.?\s*js": "Node.js",
    r"git\s+hub": "GitHub",
    r"post\s*gres": "Postgres",
    r"kuber\s*netes": "Kubernetes",
    # Stretched fillers
    r"u+h+m+": "um",
    r"u+m{2,}": "um",
    r"u{2,}h+": "uh",
    r"h+m{2,}": "hmm",
    "음+": "음",
    "어+": "어",
}

_CORRECTION_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(rf"\b{pattern}\b", re.IGNORECASE), replacement)
    for pattern, replacement in WORD_CORRECTIONS.items()
]
_WHITESPACE = re.compile(r"\s+")
_REPEATED_CHAR = re.compile(r"([^\d\s.])\1{2,}")
_TRAILING_ELLIPSIS = re.compile(r"(?<=\S)\.{2,}(?=\s|$)")

# Break candidates for sentence segmentation, strongest first. Each pattern's
# match end is the cut position.
_SENTENCE_END = re.compile(
    r"[.?!。？！](?=\s|$)|(?:습니다|니다|어요|아요|해요|예요|에요|네요|죠|다|요)(?=[\s,])"
)
_CONNECTIVE = re.compile(
    r"\s(?=(?:and|but|so|because|then|however|그리고|그래서|그런데|하지만|그러니까|그러면|근데)\s)",
    re.IGNORECASE,
)
_COMMA = re.compile(r"[,，、]")
_BREAK_PATTERNS = (_SENTENCE_END, _CONNECTIVE, _COMMA)


class Resolution(str, Enum):
    """How an overlapping pair is reconciled."""

    MERGE = "merge"
    ADJUST = "adjust"
    SEPARATE = "separate"


@dataclass(frozen=True)
class Overlap:
    """An overlapping adjacent pair in a time-sorted segment list."""

    index: int  # position of the earlier segment; the pair is (index, index + 1)
    duration: float
    confidence: float

    @property
    def resolution(self) -> Resolution:
        if self.confidence > MERGE_THRESHOLD:
            return Resolution.MERGE
        if self.confidence > ADJUST_THRESHOLD:
            return Resolution.ADJUST
        return Resolution.SEPARATE


# ------------------------------------------------------------------
# Lexical pass
# ------------------------------------------------------------------


def correct_text(text: str) -> str:
    """Apply vocabulary corrections, normalize whitespace and collapse long repeats.

    Characters repeated three or more times in a row are collapsed to two
    ("좋아아아요" -> "좋아아요", "sooo" -> "soo").
    """
    if not text:
        return ""

    corrected = text.strip()
    corrected = _TRAILING_ELLIPSIS.sub("", corrected)
    for pattern, replacement in _CORRECTION_PATTERNS:
        corrected = pattern.sub(replacement, corrected)

    corrected = _WHITESPACE.sub(" ", corrected)
    corrected = _REPEATED_CHAR.sub(r"\1\1", corrected)
    return corrected.strip()


# ------------------------------------------------------------------
# Overlap detection and resolution
# ------------------------------------------------------------------


def _sorted(segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
    return sorted(segments, key=lambda s: (s.start_time, s.end_time))


def _overlap_window(first: SpeakerSegment, second: SpeakerSegment) -> tuple[float, float]:
    return second.start_time, min(first.end_time, second.end_time)


def overlap_confidence(first: SpeakerSegment, second: SpeakerSegment, overlap: float) -> float:
    """Score how likely an overlapping pair is the same utterance recognized twice.

    Starts at 0.5; same speaker +0.3 (different -0.3); text lengths within
    30% of each other +0.2 (otherwise -0.2); overlap covering more than half
    of the first segment +0.2. Clamped to [0, 1].
    """
    score = 0.5
    score += 0.3 if first.speaker_tag == second.speaker_tag else -0.3

    longer = max(len(first.text), len(second.text))
    shorter = min(len(first.text), len(second.text))
    length_ratio = shorter / longer if longer else 1.0
    score += 0.2 if length_ratio > 0.7 else -0.2

    if first.duration > 0 and overlap > first.duration * 0.5:
        score += 0.2

    return max(0.0, min(1.0, round(score, 3)))


def detect_overlaps(segments: list[SpeakerSegment]) -> list[Overlap]:
    """Return overlaps longer than 0.3 s between adjacent segments of a time-sorted list."""
    overlaps: list[Overlap] = []
    for i in range(len(segments) - 1):
        first, second = segments[i], segments[i + 1]
        if first.end_time <= second.start_time:
            continue
        window_start, window_end = _overlap_window(first, second)
        duration = window_end - window_start
        if duration <= MIN_OVERLAP_SECONDS:
            continue
        overlaps.append(
            Overlap(index=i, duration=duration, confidence=overlap_confidence(first, second, duration))
        )
    return overlaps


def _join_without_duplicate(primary: str, other: str, other_first: bool) -> str:
    """Concatenate two texts, dropping the word duplicated at the seam."""
    head, tail = (other, primary) if other_first else (primary, other)
    head_words = head.split()
    tail_words = tail.split()
    if head_words and tail_words and head_words[-1].lower() == tail_words[0].lower():
        tail_words = tail_words[1:]
    return " ".join(head_words + tail_words)


def _merge_pair(first: SpeakerSegment, second: SpeakerSegment) -> SpeakerSegment:
    first_is_primary = len(first.text) >= len(second.text)
    primary = first if first_is_primary else second
    other = second if first_is_primary else first
    return SpeakerSegment(
        text=_join_without_duplicate(primary.text, other.text, other_first=not first_is_primary),
        start_time=min(first.start_time, second.start_time),
        end_time=max(first.end_time, second.end_time),
        speaker_tag=primary.speaker_tag,
    )


def _trim_residual_overlaps(segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
    """Clip any remaining overlap so consecutive segments never intersect."""
    result: list[SpeakerSegment] = []
    for seg in _sorted(segments):
        if not result or result[-1].end_time <= seg.start_time:
            result.append(seg)
            continue

        prev = result[-1]
        if seg.start_time > prev.start_time:
            result[-1] = replace(prev, end_time=seg.start_time)
            result.append(seg)
        elif prev.end_time < seg.end_time:
            result.append(replace(seg, start_time=prev.end_time))
        else:
            # Fully covered by the previous segment
            result[-1] = replace(prev, text=_join_without_duplicate(prev.text, seg.text, False))
    return result


def resolve_overlaps(segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
    """Detect and reconcile overlapping speaker segments.

    Pairs are handled from the last overlap backwards so that merges (which
    shrink the list) never shift the index of a pair still to be processed.
    The overlap window is re-measured at resolution time since a later merge
    may already have changed the second segment of a pair.

    Returns:
        A new time-sorted list in which no two consecutive segments overlap.
    """
    result = [replace(s) for s in _sorted(segments)]
    overlaps = detect_overlaps(result)
    if overlaps:
        logger.debug("Resolving %d overlaps across %d segments", len(overlaps), len(result))

    for overlap in reversed(overlaps):
        i = overlap.index
        first, second = result[i], result[i + 1]
        if first.end_time <= second.start_time:
            continue
        window_start, window_end = _overlap_window(first, second)
        midpoint = (window_start + window_end) / 2

        resolution = overlap.resolution
        if resolution is Resolution.MERGE:
            result[i : i + 2] = [_merge_pair(first, second)]
        elif resolution is Resolution.ADJUST:
            result[i] = replace(first, end_time=midpoint)
            result[i + 1] = replace(second, start_time=midpoint)
        else:
            half_gap = SEPARATION_GAP / 2
            result[i] = replace(first, end_time=midpoint - half_gap)
            result[i + 1] = replace(second, start_time=midpoint + half_gap)

    return _trim_residual_overlaps(result)


# ------------------------------------------------------------------
# Sentence segmentation
# ------------------------------------------------------------------


def _find_break(text: str, limit: int) -> int | None:
    """Return the rightmost cut position <= *limit*, preferring stronger breaks."""
    for pattern in _BREAK_PATTERNS:
        cuts = [m.end() for m in pattern.finditer(text) if 0 < m.end() <= limit]
        cuts = [c for c in cuts if text[:c].strip() and text[c:].strip()]
        if cuts:
            return max(cuts)
    return None


def split_text(text: str, limit: int = MAX_SEGMENT_CHARS) -> list[str]:
    """Split *text* into pieces of at most *limit* characters at meaningful breaks."""
    pieces: list[str] = []
    remaining = text.strip()
    while len(remaining) > limit:
        cut = _find_break(remaining, limit)
        if cut is None:
            cut = limit
        pieces.append(remaining[:cut].strip())
        remaining = remaining[cut:].strip()
    if remaining:
        pieces.append(remaining)
    return pieces


def split_long_segments(
    segments: list[SpeakerSegment], limit: int = MAX_SEGMENT_CHARS
) -> list[SpeakerSegment]:
    """Split over-long segments, apportioning time by each piece's character share."""
    result: list[SpeakerSegment] = []
    for seg in segments:
        if len(seg.text) <= limit:
            result.append(seg)
            continue

        pieces = split_text(seg.text, limit)
        total_chars = sum(len(p) for p in pieces)
        cursor = seg.start_time
        for n, piece in enumerate(pieces):
            if n == len(pieces) - 1:
                end = seg.end_time
            else:
                end = cursor + seg.duration * len(piece) / total_chars
            result.append(SpeakerSegment(piece, cursor, end, seg.speaker_tag))
            cursor = end
    return result


def merge_short_fragments(
    segments: list[SpeakerSegment],
    max_chars: int = SHORT_FRAGMENT_CHARS,
    max_gap: float = SHORT_FRAGMENT_GAP_SECONDS,
) -> list[SpeakerSegment]:
    """Fold very short fragments into the preceding segment when they follow closely.

    A fragment under *max_chars* characters that starts within *max_gap*
    seconds of the previous segment's end is treated as a continuation of
    it, even when the recognizer attributed it to a different speaker.
    """
    merged: list[SpeakerSegment] = []
    for seg in segments:
        if merged:
            prev = merged[-1]
            gap = seg.start_time - prev.end_time
            if len(seg.text) < max_chars and gap < max_gap:
                merged[-1] = replace(
                    prev,
                    text=f"{prev.text} {seg.text}".strip(),
                    end_time=max(prev.end_time, seg.end_time),
                )
                continue
        merged.append(seg)
    return merged


class TranscriptCorrector:
    """Runs the full correction chain over one chunk's (or one session's) segments."""

    def __init__(self, max_segment_chars: int = MAX_SEGMENT_CHARS) -> None:
        self.max_segment_chars = max_segment_chars

    def correct(self, segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
        """Lexical pass, drop empties, resolve overlaps, then segment sentences."""
        cleaned = [replace(s, text=correct_text(s.text)) for s in segments]
        cleaned = [s for s in cleaned if s.text and s.end_time > s.start_time]
        resolved = resolve_overlaps(cleaned)
        result = split_long_segments(resolved, self.max_segment_chars)
        logger.debug("Corrected %d segments -> %d", len(segments), len(result))
        return result

    def correct_text(self, text: str) -> str:
        return correct_text(text)

    def resolve_overlaps(self, segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
        return resolve_overlaps(segments)

    def detect_overlaps(self, segments: list[SpeakerSegment]) -> list[Overlap]:
        return detect_overlaps(_sorted(segments))

    def split_long_segments(self, segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
        return split_long_segments(segments, self.max_segment_chars)

    def merge_short_fragments(self, segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
        return merge_short_fragments(segments)
