"""Interview Speech -- Streamlit UI.

Multi-page application for replaying WAV recordings through the chunk
pipeline, browsing finalized transcripts and checking session time.
"""

from __future__ import annotations

import streamlit as st

from src.speech.wav import split_wav
from src.ui.api_client import (
    check_health,
    get_session_detail,
    get_session_time,
    get_sessions,
    upload_recording,
)


def _fmt_time(seconds: float) -> str:
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes):02d}:{secs:04.1f}"


def _render_segments(segments: list[dict]) -> None:  # type: ignore[type-arg]
    for seg in segments:
        start = _fmt_time(seg.get("startTime", 0.0))
        end = _fmt_time(seg.get("endTime", 0.0))
        speaker = "Mentor" if seg.get("speakerTag") == 1 else "Mentee"
        st.write(f"`{start}-{end}` **{speaker}:** {seg.get('text', '')}")


# ---------------------------------------------------------------------------
# Page config (must be first Streamlit call)
# ---------------------------------------------------------------------------
st.set_page_config(page_title="Interview Speech", layout="wide")

# ---------------------------------------------------------------------------
# Sidebar -- navigation + canvas + API status
# ---------------------------------------------------------------------------
with st.sidebar:
    st.title("Interview Speech")
    st.markdown("---")

    page = st.radio(
        "Navigate",
        ["Replay Recording", "Sessions", "Session Timer"],
        label_visibility="collapsed",
    )

    st.markdown("---")
    canvas_id: str = st.text_input("Canvas ID", value="demo-canvas", key="sidebar_canvas")

    st.markdown("---")

    # API connection indicator
    api_healthy = check_health()
    if api_healthy:
        st.markdown(":green_circle: API connected")
    else:
        st.markdown(":red_circle: API unreachable")

# ---------------------------------------------------------------------------
# Page: Replay Recording
# ---------------------------------------------------------------------------
if page == "Replay Recording":
    st.header("Replay Recording")
    st.write("Split a WAV recording into chunks and send them through the live pipeline.")

    uploaded_file = st.file_uploader("Choose a WAV file", type=["wav"])
    chunk_seconds = st.slider("Chunk length (seconds)", min_value=2, max_value=30, value=10)
    col_a, col_b = st.columns(2)
    mentor_id = col_a.number_input("Mentor ID", min_value=0, value=1, step=1)
    mentee_id = col_b.number_input("Mentee ID", min_value=0, value=2, step=1)
    diarize = st.checkbox("Speaker diarization", value=True)

    if st.button("Send", disabled=uploaded_file is None or not canvas_id):
        if not api_healthy:
            st.error("Cannot upload: the API server is not reachable.")
        elif uploaded_file is not None:
            try:
                chunks = split_wav(uploaded_file.getvalue(), float(chunk_seconds))
            except Exception as e:
                st.error(f"Could not read WAV file: {e}")
                chunks = []
            if chunks:
                with st.spinner(f"Sending {len(chunks)} chunks..."):
                    result = upload_recording(
                        canvas_id,
                        chunks,
                        mentor_id=int(mentor_id),
                        mentee_id=int(mentee_id),
                        use_diarization=diarize,
                    )
                if result:
                    if result.get("finalized"):
                        st.success(f"Recording finalized as session {result.get('sessionId')}.")
                    else:
                        st.warning("No chunks completed; nothing was finalized.")
                    if result.get("audioUrl"):
                        st.audio(result["audioUrl"])
                    if result.get("contextText"):
                        st.subheader("Transcript")
                        st.write(result["contextText"])
                    _render_segments(result.get("speakers", []))
            # Error case is already handled inside upload_recording via st.error

# ---------------------------------------------------------------------------
# Page: Sessions
# ---------------------------------------------------------------------------
elif page == "Sessions":
    st.header("Sessions")
    st.write("Browse finalized recordings for the selected canvas.")

    if not api_healthy:
        st.warning("The API server is not reachable. Cannot load sessions.")
    else:
        listing = get_sessions(canvas_id)
        sessions = listing.get("sessions", [])
        if not sessions:
            st.info("No finalized sessions for this canvas yet.")
        else:
            st.caption(f"{listing.get('totalCount', len(sessions))} sessions")
            for session in sessions:
                label = f"{session.get('createdAt', 'N/A')} -- {session.get('id', '')}"
                with st.expander(label):
                    col_a, col_b, col_c = st.columns(3)
                    col_a.metric("Duration", _fmt_time(session.get("duration", 0.0)))
                    col_b.metric("Segments", str(len(session.get("segments", []))))
                    col_c.metric("Mentor", str(session.get("mentorId", "N/A")))

                    detail = get_session_detail(session.get("id", "")) or session
                    if detail.get("audioUrl"):
                        st.audio(detail["audioUrl"])
                    if detail.get("contextText"):
                        st.write(detail["contextText"])
                    st.markdown("---")
                    _render_segments(detail.get("segments", []))

# ---------------------------------------------------------------------------
# Page: Session Timer
# ---------------------------------------------------------------------------
elif page == "Session Timer":
    st.header("Session Timer")

    if not api_healthy:
        st.warning("The API server is not reachable.")
    else:
        info = get_session_time(canvas_id)
        if not info or not info.get("sessionKey"):
            st.info("No active recording for this canvas.")
        else:
            col_a, col_b, col_c = st.columns(3)
            col_a.metric("Elapsed (min)", str(info.get("elapsedMinutes", 0)))
            col_b.metric("Remaining (min)", str(info.get("remainingMinutes", 0)))
            col_c.metric("Level", info.get("warningLevel", "none"))
            if info.get("isExpired"):
                st.error("Session time limit reached.")
