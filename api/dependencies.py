"""
Dependency Injection Functions
==============================

FastAPI dependencies for the pipeline and the clinical assistant. Both come
from the single pipeline built in the application lifespan, so every
request shares one set of storage, speech and LLM clients.
"""

from fastapi import Depends, HTTPException, status

from core.clinical_assistant import ClinicalAssistant
from core.pipeline import ConsultationPipeline


def get_pipeline() -> ConsultationPipeline:
    """
    Dependency to get the pipeline instance from app state.

    Returns:
        ConsultationPipeline: The configured pipeline instance

    Raises:
        HTTPException: 503 if the pipeline is not initialized
    """
    from api.main import app_state

    pipeline = app_state.get("pipeline")
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline not initialized. Service is starting up."
        )
    return pipeline


def get_assistant(
    pipeline: ConsultationPipeline = Depends(get_pipeline)
) -> ClinicalAssistant:
    """The clinical assistant sharing the pipeline's text generator."""
    return pipeline.assistant
