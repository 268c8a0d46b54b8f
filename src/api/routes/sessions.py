"""Read endpoints: session timing, participants, finalized transcripts, cleanup."""

from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.dependencies import get_pipeline, get_repository
from src.api.models import (
    CleanupResponse,
    ParticipantOut,
    ParticipantsResponse,
    SessionDetail,
    SessionListResponse,
    SessionTimeOut,
)
from src.api.routes.stt import session_time_out, speaker_segments_out
from src.speech.errors import ParticipantLookupError
from src.speech.finalizer import extract_context_text
from src.speech.models import FinalizedSession
from src.speech.pipeline import SpeechPipeline
from src.storage.repository import SpeechRepository

router = APIRouter()

PipelineDep = Annotated[SpeechPipeline, Depends(get_pipeline)]
RepositoryDep = Annotated[SpeechRepository, Depends(get_repository)]


def _session_detail(session: FinalizedSession, stoplist: frozenset[str]) -> SessionDetail:
    return SessionDetail(
        id=session.id,
        canvas_id=session.canvas_id,
        audio_url=session.audio_url,
        mentor_id=session.mentor_id,
        mentee_id=session.mentee_id,
        created_at=session.created_at,
        duration=session.duration,
        context_text=extract_context_text(session.segments, stoplist),
        segments=speaker_segments_out(session.segments, session.mentor_id, session.mentee_id),
    )


@router.get("/api/stt/canvases/{canvas_id}/time", response_model=SessionTimeOut)
async def get_session_time(canvas_id: str, pipeline: PipelineDep) -> SessionTimeOut:
    """Elapsed and remaining time of the canvas's active recording."""
    return session_time_out(pipeline.timer.get_time_info(canvas_id))


@router.get("/api/stt/canvases/{canvas_id}/participants", response_model=ParticipantsResponse)
async def get_participants(canvas_id: str, pipeline: PipelineDep) -> ParticipantsResponse:
    """Resolve the mentor and mentee of a canvas."""
    try:
        participants = await pipeline.resolve_participants(canvas_id)
    except ParticipantLookupError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if participants.mentor_id is None and participants.mentee_id is None:
        raise HTTPException(status_code=404, detail="No participants for canvas")
    return ParticipantsResponse(
        canvas_id=canvas_id,
        mentor=ParticipantOut(id=participants.mentor_id, name=participants.mentor_name),
        mentee=ParticipantOut(id=participants.mentee_id, name=participants.mentee_name),
    )


@router.get("/api/stt/canvases/{canvas_id}/sessions", response_model=SessionListResponse)
async def list_sessions(
    canvas_id: str,
    pipeline: PipelineDep,
    repository: RepositoryDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> SessionListResponse:
    """List a canvas's finalized sessions, newest first."""
    sessions, total = await asyncio.to_thread(repository.list_sessions, canvas_id, page, limit)
    stoplist = pipeline.finalizer.config.filler_stoplist
    return SessionListResponse(
        sessions=[_session_detail(s, stoplist) for s in sessions],
        total_count=total,
        page=page,
        limit=limit,
        has_more=page * limit < total,
    )


@router.get("/api/stt/sessions/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str, pipeline: PipelineDep, repository: RepositoryDep
) -> SessionDetail:
    """One finalized session with its ordered segments."""
    session = await asyncio.to_thread(repository.get_session, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _session_detail(session, pipeline.finalizer.config.filler_stoplist)


@router.post("/api/stt/cleanup", response_model=CleanupResponse)
async def cleanup(pipeline: PipelineDep) -> CleanupResponse:
    """Run the idle-session sweep immediately."""
    return CleanupResponse(cleaned_count=pipeline.cleanup())
