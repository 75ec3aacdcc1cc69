"""
API Response Models
===================

Pydantic models for API responses that are not domain models themselves.
Domain models (TranscriptionResult, SOAPNote, Prescription,
ConsultationResult) are returned directly.
"""

from typing import List

from pydantic import ConfigDict, Field

from models import CamelModel


class InsightsResponse(CamelModel):
    """Key insights; ``degraded`` is true when extraction failed."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "insights": ["Fever for three days", "Start paracetamol 500 mg"],
                "degraded": False
            }
        }
    )

    insights: List[str] = Field(default_factory=list)
    degraded: bool = Field(default=False, description="Insight extraction fell back")


class TranslationResponse(CamelModel):
    translated_text: str = Field(..., description="Translated text, or the input if translation failed")


class AnswerResponse(CamelModel):
    answer: str = Field(..., description="Assistant answer")


class ExtractTextResponse(CamelModel):
    text: str = Field(..., description="Extracted document text; empty for unsupported types")
