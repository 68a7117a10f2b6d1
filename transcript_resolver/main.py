"""
Podcast Transcript Resolver - FastAPI Backend

Main application entry point with CORS and routing configuration.
"""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .routers import transcripts_router
from .services.transcriber import TranscriptionEngine

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: one shared HTTP client and engine."""
    logger.info("Starting Podcast Transcript Resolver API...")
    logger.info(f"Whisper API: {settings.WHISPER_API} (enabled={settings.WHISPER_ENABLED})")
    logger.info(
        f"Remote providers: openai={'yes' if settings.OPENAI_API_KEY else 'no'}, "
        f"fal={'yes' if settings.FAL_KEY else 'no'}"
    )
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        app.state.http_client = client
        app.state.engine = TranscriptionEngine(client)
        yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Podcast Transcript Resolver",
    description="Resolve podcast transcripts from feeds and platform pages, transcribing with Whisper when needed",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(transcripts_router)


@app.get("/")
async def root():
    """Service info."""
    return {
        "name": "Podcast Transcript Resolver",
        "version": "1.0.0",
        "status": "running",
        "whisper_model": settings.WHISPER_MODEL,
    }


@app.get("/health")
async def health(request: Request):
    """Detailed health check, including local Whisper API readiness."""
    engine: TranscriptionEngine = request.app.state.engine
    return {
        "status": "healthy",
        "config": {
            "whisper_api": settings.WHISPER_API,
            "whisper_ready": await engine.is_ready(),
            "ffmpeg_available": engine.is_chunking_available(),
            "openai_configured": bool(settings.OPENAI_API_KEY),
            "fal_configured": bool(settings.FAL_KEY),
            "yt_dlp_configured": bool(settings.YT_DLP_PATH),
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "transcript_resolver.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
    )
