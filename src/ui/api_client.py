"""HTTP client wrapper for the interview speech FastAPI backend."""

from __future__ import annotations

import base64
import os

import httpx
import streamlit as st

API_URL = os.getenv("API_URL", "http://localhost:8000")


def check_health() -> bool:
    """Return True if the API server responds to /health."""
    try:
        r = httpx.get(f"{API_URL}/health", timeout=5.0)
        return r.status_code == 200
    except httpx.ConnectError:
        return False


def send_chunk(
    canvas_id: str,
    audio: bytes,
    chunk_index: int,
    mentor_id: int = 0,
    mentee_id: int = 0,
    mime_type: str = "audio/wav",
    is_final_chunk: bool = False,
    is_new_recording_session: bool = False,
    use_diarization: bool | None = None,
    base_url: str = API_URL,
) -> dict:  # type: ignore[type-arg]
    """Post one chunk to /api/stt/transcribe-with-context.

    Raises:
        httpx.HTTPError: On transport failure or a non-2xx response.
    """
    payload: dict[str, object] = {
        "canvasId": canvas_id,
        "mentorId": mentor_id,
        "menteeId": mentee_id,
        "audioData": base64.b64encode(audio).decode("ascii") if audio else None,
        "mimeType": mime_type,
        "chunkIndex": chunk_index,
        "isFinalChunk": is_final_chunk,
        "isNewRecordingSession": is_new_recording_session,
    }
    if use_diarization is not None:
        payload["useDiarization"] = use_diarization
    r = httpx.post(f"{base_url}/api/stt/transcribe-with-context", json=payload, timeout=180.0)
    r.raise_for_status()
    return r.json()  # type: ignore[no-any-return]


def upload_recording(
    canvas_id: str,
    chunks: list[bytes],
    mentor_id: int = 0,
    mentee_id: int = 0,
    use_diarization: bool | None = None,
) -> dict:  # type: ignore[type-arg]
    """Send a recording chunk by chunk; the last chunk triggers finalize."""
    result: dict = {}  # type: ignore[type-arg]
    try:
        for index, chunk in enumerate(chunks):
            result = send_chunk(
                canvas_id,
                chunk,
                index,
                mentor_id=mentor_id,
                mentee_id=mentee_id,
                is_final_chunk=index == len(chunks) - 1,
                is_new_recording_session=index == 0,
                use_diarization=use_diarization,
            )
        return result
    except httpx.HTTPError as e:
        st.error(f"Upload failed: {e}")
        return {}


def get_sessions(canvas_id: str, page: int = 1, limit: int = 20) -> dict:  # type: ignore[type-arg]
    """Fetch one page of finalized sessions for a canvas."""
    try:
        r = httpx.get(
            f"{API_URL}/api/stt/canvases/{canvas_id}/sessions",
            params={"page": page, "limit": limit},
            timeout=10.0,
        )
        r.raise_for_status()
        return r.json()  # type: ignore[no-any-return]
    except httpx.HTTPError:
        return {}


def get_session_detail(session_id: str) -> dict:  # type: ignore[type-arg]
    """Fetch one finalized session with its segments."""
    try:
        r = httpx.get(f"{API_URL}/api/stt/sessions/{session_id}", timeout=10.0)
        r.raise_for_status()
        return r.json()  # type: ignore[no-any-return]
    except httpx.HTTPError:
        return {}


def get_session_time(canvas_id: str) -> dict:  # type: ignore[type-arg]
    """Fetch elapsed/remaining time of the canvas's active recording."""
    try:
        r = httpx.get(f"{API_URL}/api/stt/canvases/{canvas_id}/time", timeout=10.0)
        r.raise_for_status()
        return r.json()  # type: ignore[no-any-return]
    except httpx.HTTPError:
        return {}
