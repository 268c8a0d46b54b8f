"""Replay a WAV recording through the live chunk ingest endpoint."""

import argparse
import sys
from pathlib import Path

import httpx

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.speech.wav import split_wav
from src.ui.api_client import API_URL, send_chunk


def replay_recording(
    wav_path: str,
    canvas_id: str,
    chunk_seconds: float = 10.0,
    mentor_id: int = 1,
    mentee_id: int = 2,
    diarize: bool = True,
    base_url: str = API_URL,
) -> None:
    """Split *wav_path* into chunks and send them in order, finalizing on the last."""
    chunks = split_wav(Path(wav_path).read_bytes(), chunk_seconds)
    if not chunks:
        print(f"No audio frames in {wav_path}")
        return

    print(f"Sending {len(chunks)} chunks of {chunk_seconds}s to {base_url} (canvas {canvas_id})")
    result: dict = {}
    for index, chunk in enumerate(chunks):
        try:
            result = send_chunk(
                canvas_id,
                chunk,
                index,
                mentor_id=mentor_id,
                mentee_id=mentee_id,
                is_final_chunk=index == len(chunks) - 1,
                is_new_recording_session=index == 0,
                use_diarization=diarize,
                base_url=base_url,
            )
        except httpx.HTTPStatusError as e:
            print(f"  [{index + 1}/{len(chunks)}] ERROR {e.response.status_code}: {e.response.text}")
            continue
        speakers = result.get("speakers", [])
        print(
            f"  [{index + 1}/{len(chunks)}] offset {result.get('sessionOffset')}s, "
            f"{len(speakers)} segments"
        )

    if result.get("finalized"):
        print(f"\nFinalized session {result.get('sessionId')}: {result.get('audioUrl')}")
        print(result.get("contextText", ""))
    else:
        print("\nNothing was finalized.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("wav")
    parser.add_argument("--canvas", default="replay-canvas")
    parser.add_argument("--chunk-seconds", type=float, default=10.0)
    parser.add_argument("--mentor", type=int, default=1)
    parser.add_argument("--mentee", type=int, default=2)
    parser.add_argument("--no-diarization", action="store_true")
    parser.add_argument("--url", default=API_URL)
    args = parser.parse_args()
    replay_recording(
        args.wav,
        args.canvas,
        args.chunk_seconds,
        args.mentor,
        args.mentee,
        not args.no_diarization,
        args.url,
    )
