"""Supabase table access for finalized interview sessions and their segments."""

from __future__ import annotations

import logging
from typing import Any

from postgrest import CountMethod
from supabase import Client

from src.speech.models import FinalizedSession, Participants, SpeakerSegment
from src.storage.object_store import get_supabase_client

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "interview_sessions"
SEGMENTS_TABLE = "speaker_segments"
DEFAULT_BATCH_SIZE = 1000


def _segment_from_row(row: dict[str, Any]) -> SpeakerSegment:
    return SpeakerSegment(
        text=row.get("text") or "",
        start_time=float(row["start_time"]),
        end_time=float(row["end_time"]),
        speaker_tag=int(row.get("speaker_tag") or 1),
    )


def _session_from_row(row: dict[str, Any], segments: list[SpeakerSegment]) -> FinalizedSession:
    return FinalizedSession(
        id=str(row["id"]),
        canvas_id=str(row["canvas_id"]),
        audio_url=row.get("audio_url") or "",
        mentor_id=row.get("mentor_id"),
        mentee_id=row.get("mentee_id"),
        created_at=row.get("created_at"),
        segments=segments,
    )


class SpeechRepository:
    """Durable store for finalized sessions. All methods are blocking."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    def create_session(
        self,
        canvas_id: str,
        mentor_id: int | None,
        mentee_id: int | None,
        audio_url: str,
    ) -> str:
        """Insert a finalized-session row and return its generated id."""
        result = (
            self.client.table(SESSIONS_TABLE)
            .insert(
                {
                    "canvas_id": canvas_id,
                    "mentor_id": mentor_id,
                    "mentee_id": mentee_id,
                    "audio_url": audio_url,
                }
            )
            .execute()
        )
        if not result.data:
            raise RuntimeError(f"Insert into {SESSIONS_TABLE} returned no row")
        return str(result.data[0]["id"])

    def insert_segments(
        self,
        session_id: str,
        segments: list[SpeakerSegment],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """Bulk-insert segments in fixed-size batches. Returns the number of rows sent."""
        rows = [
            {
                "session_id": session_id,
                "speaker_tag": seg.speaker_tag,
                "text": seg.text,
                "start_time": seg.start_time,
                "end_time": seg.end_time,
            }
            for seg in segments
        ]
        for i in range(0, len(rows), batch_size):
            self.client.table(SEGMENTS_TABLE).insert(rows[i : i + batch_size]).execute()
        logger.info("Stored %d segments for session %s", len(rows), session_id)
        return len(rows)

    def get_segments(self, session_id: str) -> list[SpeakerSegment]:
        result = (
            self.client.table(SEGMENTS_TABLE)
            .select("speaker_tag, text, start_time, end_time")
            .eq("session_id", session_id)
            .order("start_time")
            .execute()
        )
        return [_segment_from_row(r) for r in result.data or []]

    def get_session(self, session_id: str) -> FinalizedSession | None:
        result = self.client.table(SESSIONS_TABLE).select("*").eq("id", session_id).execute()
        if not result.data:
            return None
        return _session_from_row(result.data[0], self.get_segments(session_id))

    def list_sessions(
        self, canvas_id: str, page: int = 1, limit: int = 20
    ) -> tuple[list[FinalizedSession], int]:
        """Return one page of a canvas's finalized sessions (newest first) and the total count."""
        start = (page - 1) * limit
        result = (
            self.client.table(SESSIONS_TABLE)
            .select("*", count=CountMethod.exact)
            .eq("canvas_id", canvas_id)
            .order("created_at", desc=True)
            .range(start, start + limit - 1)
            .execute()
        )
        sessions = [
            _session_from_row(row, self.get_segments(str(row["id"]))) for row in result.data or []
        ]
        return sessions, result.count or 0

    def get_participants(self, canvas_id: str) -> Participants:
        """Resolve which canvas participant is the mentor and which the mentee.

        A participant with an approved mentor profile is the mentor; the
        first participant without one is the mentee.
        """
        members = (
            self.client.table("canvas_participants")
            .select("user_id")
            .eq("canvas_id", canvas_id)
            .execute()
        )
        user_ids = [int(r["user_id"]) for r in members.data or []]
        if not user_ids:
            return Participants()

        profiles = (
            self.client.table("mentor_profiles")
            .select("mentor_id, is_approved")
            .in_("mentor_id", user_ids)
            .execute()
        )
        approved = {int(r["mentor_id"]) for r in profiles.data or [] if r.get("is_approved")}

        mentor_id = next((uid for uid in user_ids if uid in approved), None)
        mentee_id = next((uid for uid in user_ids if uid not in approved), None)

        names: dict[int, str] = {}
        users = self.client.table("users").select("id, name").in_("id", user_ids).execute()
        for row in users.data or []:
            names[int(row["id"])] = row.get("name") or ""

        return Participants(
            mentor_id=mentor_id,
            mentee_id=mentee_id,
            mentor_name=names.get(mentor_id) if mentor_id is not None else None,
            mentee_name=names.get(mentee_id) if mentee_id is not None else None,
        )
