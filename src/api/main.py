import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import get_pipeline
from src.api.routes.sessions import router as sessions_router
from src.api.routes.stt import router as stt_router
from src.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _sweep_idle_sessions(app: FastAPI, interval: float) -> None:
    """Periodically drop sessions that stopped receiving chunks."""
    while True:
        await asyncio.sleep(interval)
        try:
            provider = app.dependency_overrides.get(get_pipeline, get_pipeline)
            provider().cleanup()
        except Exception:
            logger.exception("Idle session sweep failed")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    task = asyncio.create_task(_sweep_idle_sessions(app, settings.cleanup_interval_seconds))
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


app = FastAPI(
    title="Interview Speech API",
    description="Chunked live-interview transcription with speaker diarization",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:8501",
    ],
    allow_origin_regex=r"https://.*\.vercel\.app|http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(stt_router)
app.include_router(sessions_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
