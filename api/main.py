"""
FastAPI Main Application
========================

Main FastAPI application instance with middleware, routes, and lifespan
management. One ConsultationPipeline is built at startup and shared by all
requests through ``api.dependencies``.

Run with:
    uvicorn api.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware.error_handler import error_handler_middleware
from api.middleware.rate_limiter import setup_rate_limiting
from api.routes import consultations, health
from config import get_settings
from core.pipeline import create_pipeline


logger = logging.getLogger(__name__)

# Global application state - stores the pipeline and settings
app_state: Dict[str, Any] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan event handler for startup and shutdown.

    Startup configures logging and builds the pipeline. Network clients
    inside it are lazy, so startup does not touch Google Cloud or Ollama.
    """
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format
    )

    logger.info("Starting ConsultScribe API")
    logger.info(
        f"Speech location: {settings.speech_location}, bucket: {settings.audio_bucket}, "
        f"Ollama model: {settings.ollama_model}"
    )

    try:
        app_state["pipeline"] = create_pipeline(settings, use_mock=settings.use_mock_backends)
        app_state["settings"] = settings
        logger.info(f"API running at http://{settings.api_host}:{settings.api_port}")
    except Exception as e:
        logger.error(f"Failed to initialize pipeline: {e}")
        # get_pipeline reports 503 until a pipeline exists
        app_state["pipeline"] = None
        app_state["settings"] = settings

    yield

    logger.info("Shutting down ConsultScribe API")
    app_state.clear()


app = FastAPI(
    title="ConsultScribe API",
    description="""
    Multilingual consultation scribe - turn recorded consultations into
    speaker-labeled transcripts and SOAP notes.

    ## Features
    - Batch transcription for English, Hindi, Malayalam and Arabic
    - Native or LLM-based speaker diarization
    - Always-complete SOAP notes
    - Key insights, prescription drafts, translation and clinical Q&A
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware Setup (order matters - first added = outermost)
# =============================================================================

settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global error handling middleware
app.middleware("http")(error_handler_middleware)

# Rate limiting setup
setup_rate_limiting(app)


# =============================================================================
# Router Registration
# =============================================================================

app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(consultations.router, prefix="/api/v1", tags=["consultations"])


@app.get("/", tags=["root"])
async def root():
    """API information and links."""
    return {
        "message": "ConsultScribe API",
        "description": "Multilingual consultation transcription and SOAP notes",
        "version": "1.0.0",
        "docs": "/api/docs",
        "health": "/api/v1/health"
    }
