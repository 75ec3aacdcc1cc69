"""
API Request Models
==================

Pydantic models for JSON request bodies. Field names are accepted in both
camelCase (what the browser client sends) and snake_case.
"""

from typing import Any, List, Optional

from pydantic import AliasChoices, ConfigDict, Field, field_validator

from core.timing import to_millis
from models import CamelModel, PatientContext, Utterance


class UtteranceIn(CamelModel):
    """
    An utterance as sent by clients.

    Timing may arrive as ``startMs``/``endMs`` or the older ``start``/``end``;
    missing values default to 0.
    """

    speaker: str = Field(default="Unknown")
    text: str = Field(default="")
    start_ms: int = Field(default=0, validation_alias=AliasChoices("startMs", "start_ms", "start"))
    end_ms: int = Field(default=0, validation_alias=AliasChoices("endMs", "end_ms", "end"))

    @field_validator("speaker", mode="before")
    @classmethod
    def coerce_speaker(cls, v: Any) -> str:
        return "Unknown" if v is None else str(v)

    @field_validator("start_ms", "end_ms", mode="before")
    @classmethod
    def coerce_millis(cls, v: Any) -> int:
        return to_millis(v)

    def to_utterance(self) -> Utterance:
        return Utterance(
            speaker=self.speaker,
            text=self.text,
            start_ms=self.start_ms,
            end_ms=max(self.end_ms, self.start_ms),
        )


class GenerateSOAPRequest(CamelModel):
    """SOAP note generation from an existing transcript."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "text": "I have had a fever for three days.",
                "utterances": [
                    {"speaker": "Patient", "text": "I have had a fever for three days.",
                     "startMs": 0, "endMs": 2400}
                ]
            }
        }
    )

    text: str = Field(default="", description="Full transcript text")
    utterances: List[UtteranceIn] = Field(
        default_factory=list,
        description="Speaker-labeled turns; preferred over text when present"
    )


class InsightsRequest(CamelModel):
    """Key-insight extraction request."""

    text: str = Field(..., min_length=1, description="Transcript text")
    patient: Optional[PatientContext] = Field(
        default=None,
        validation_alias=AliasChoices("patient", "userData", "user_data"),
        description="Optional patient demographics"
    )


class PrescriptionRequest(CamelModel):
    """Prescription drafting request."""

    text: str = Field(..., min_length=1, description="Transcript text")


class TranslateRequest(CamelModel):
    """Translation request."""

    text: str = Field(..., min_length=1, description="Text to translate")
    target_language: str = Field(..., min_length=1, description="Target language name")


class AskRequest(CamelModel):
    """Free-form clinical question."""

    prompt: str = Field(..., min_length=1, description="The question")
    context: Optional[str] = Field(
        default=None,
        description="Clinical context from patient records (truncated if very long)"
    )
