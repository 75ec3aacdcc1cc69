"""
Domain Models for ConsultScribe
===============================

This module defines the core data structures used throughout the application.
We use Pydantic for several important reasons:

1. **Validation**: Automatically validates data types and constraints
2. **Serialization**: Easy conversion to/from JSON for the API
3. **Documentation**: Self-documenting with type hints
4. **Immutability**: Words and utterances are frozen value objects

Wire format: models exchanged with the browser client serialize with
camelCase aliases (``fullText``, ``startMs``, ``chiefComplaint``) while Python
code uses snake_case attribute names.

Design Principle: These models are "pure" - they have no dependencies on
external services, databases, or frameworks.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


T = TypeVar("T")


class CamelModel(BaseModel):
    """Base for models that travel to the browser client."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# Enumerations
# =============================================================================

class ProcessingStatus(str, Enum):
    """
    Status of a consultation as it moves through the pipeline.

    Using str, Enum allows JSON serialization while maintaining type safety.
    """
    PENDING = "pending"
    TRANSCRIBING = "transcribing"
    DIARIZING = "diarizing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class Language(str, Enum):
    """Consultation languages with a dedicated speech pipeline."""
    ENGLISH = "English"
    MALAYALAM = "Malayalam"
    HINDI = "Hindi"
    ARABIC = "Arabic"


class DiarizationStrategy(str, Enum):
    """How speaker turns are recovered for a language."""
    NATIVE = "native"
    LLM = "llm"


# =============================================================================
# Transcript Models
# =============================================================================

class Word(CamelModel):
    """
    A single recognized word with its timing in milliseconds.

    Produced only by the speech backend and never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Recognized word")
    start_ms: int = Field(..., description="Word start offset in milliseconds")
    end_ms: int = Field(..., description="Word end offset in milliseconds")


class Utterance(CamelModel):
    """
    One continuous speaker turn.

    ``start_ms`` is the start of its first word, ``end_ms`` the end of its
    last word, and ``text`` the space-joined words in order.
    """
    model_config = ConfigDict(frozen=True)

    speaker: str = Field(..., description="Speaker label (e.g. DOCTOR, Speaker B, Patient)")
    text: str = Field(..., description="Text spoken in this turn")
    start_ms: int = Field(..., description="Turn start in milliseconds")
    end_ms: int = Field(..., description="Turn end in milliseconds")

    def to_labeled_text(self) -> str:
        """
        Returns formatted text with speaker label.

        Example:
            "DOCTOR: How long have you had the fever?"
        """
        return f"{self.speaker}: {self.text}" if self.text else ""


class TranscriptionResult(CamelModel):
    """
    Output of transcription and diarization for one recording.

    ``full_text`` comes from the backend's per-segment transcripts, while
    utterance text is rebuilt from the word list. The two can differ in
    punctuation and casing.
    """
    full_text: str = Field(default="", description="Full transcript text")
    utterances: List[Utterance] = Field(
        default_factory=list,
        description="Speaker-labeled turns ordered by start time"
    )

    def get_formatted_transcript(self) -> str:
        """
        Returns the conversation as ``Speaker <label>: <text>`` lines.

        Falls back to the plain transcript when no utterances exist.
        """
        if self.utterances:
            lines = [u.to_labeled_text() for u in self.utterances if u.text.strip()]
            return "\n\n".join(lines)
        return self.full_text


class LanguagePipelineConfig(CamelModel):
    """
    Per-request speech pipeline decision.

    Computed once from the requested language label and never persisted.
    """
    model_config = ConfigDict(frozen=True)

    language: Language = Field(..., description="Resolved consultation language")
    language_name: str = Field(..., description="Human-readable language name for prompts")
    language_code: str = Field(..., description="BCP-47 code sent to the recognizer")
    recognizer_id: str = Field(..., description="Stable per-language recognizer id")
    model_name: str = Field(..., description="Speech model name")
    native_diarization_supported: bool = Field(..., description="Backend can tag speakers")
    diarization_strategy: DiarizationStrategy = Field(..., description="native or llm")


class BatchTranscriptionOutput(BaseModel):
    """
    Flat output of a batch recognition job.

    ``native_speaker_tags`` is aligned index-for-index with ``raw_words``.
    """
    raw_words: List[Word] = Field(default_factory=list)
    native_speaker_tags: List[Optional[str]] = Field(default_factory=list)
    per_segment_transcripts: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.raw_words and not self.per_segment_transcripts

    @property
    def full_text(self) -> str:
        """Per-segment transcripts joined with a single space."""
        return " ".join(t.strip() for t in self.per_segment_transcripts if t and t.strip())


class StageResult(BaseModel, Generic[T]):
    """
    Outcome of a best-effort stage.

    A degraded result still carries a usable value; ``reason`` says why the
    stage fell back.
    """
    value: T
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: Any) -> "StageResult":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: Any, reason: str) -> "StageResult":
        return cls(value=value, degraded=True, reason=reason)


# =============================================================================
# SOAP Note Models
# =============================================================================

NOT_RECORDED = "Not recorded"
NOT_DOCUMENTED = "Not documented"
NO_PLAN_DOCUMENTED = "No specific plan documented"
DEFAULT_TITLE = "Consultation Note"
DEFAULT_SUMMARY = "Consultation overview not available."


def _text_or_default(value: Any, default: str) -> str:
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _mapping(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


class Vitals(CamelModel):
    """Vital signs; every field defaults to "Not recorded"."""
    temperature: str = NOT_RECORDED
    blood_pressure: str = NOT_RECORDED
    pulse: str = NOT_RECORDED
    respiratory_rate: str = NOT_RECORDED


class SubjectiveSection(CamelModel):
    chief_complaint: str = NOT_DOCUMENTED
    history_of_present_illness: str = NOT_DOCUMENTED


class ObjectiveSection(CamelModel):
    vitals: Vitals = Field(default_factory=Vitals)
    appearance: List[str] = Field(default_factory=lambda: [NOT_RECORDED])


class SOAPNote(CamelModel):
    """
    SOAP Note - The standard medical documentation format.

    SOAP stands for:
    - Subjective: Patient's reported symptoms and history
    - Objective: Observable/measurable findings
    - Assessment: Diagnosis or differential diagnoses
    - Plan: Treatment plan and next steps

    Every leaf field always holds a non-empty value so the client never has
    to deal with a structurally incomplete note.
    """
    title: str = DEFAULT_TITLE
    summary: str = DEFAULT_SUMMARY
    subjective: SubjectiveSection = Field(default_factory=SubjectiveSection)
    objective: ObjectiveSection = Field(default_factory=ObjectiveSection)
    assessment: str = NOT_DOCUMENTED
    plan: str = NO_PLAN_DOCUMENTED

    @classmethod
    def from_generation(cls, raw: Any) -> "SOAPNote":
        """
        Build a complete note from whatever the model returned.

        Missing, null or blank fields receive their documented defaults.
        A plain string appearance becomes a one-element list, and
        ``actionPlan`` is accepted in place of ``plan``.
        """
        raw = _mapping(raw)
        subjective = _mapping(raw.get("subjective"))
        objective = _mapping(raw.get("objective"))
        vitals = _mapping(objective.get("vitals"))

        appearance_raw = objective.get("appearance")
        if isinstance(appearance_raw, str):
            appearance_raw = [appearance_raw]
        appearance = []
        if isinstance(appearance_raw, list):
            appearance = [
                _text_or_default(item, "") for item in appearance_raw
            ]
            appearance = [item for item in appearance if item]

        plan = _text_or_default(raw.get("plan"), "")
        if not plan:
            plan = _text_or_default(raw.get("actionPlan"), NO_PLAN_DOCUMENTED)

        return cls(
            title=_text_or_default(raw.get("title"), DEFAULT_TITLE),
            summary=_text_or_default(raw.get("summary"), DEFAULT_SUMMARY),
            subjective=SubjectiveSection(
                chief_complaint=_text_or_default(
                    subjective.get("chiefComplaint"), NOT_DOCUMENTED
                ),
                history_of_present_illness=_text_or_default(
                    subjective.get("historyOfPresentIllness"), NOT_DOCUMENTED
                ),
            ),
            objective=ObjectiveSection(
                vitals=Vitals(
                    temperature=_text_or_default(vitals.get("temperature"), NOT_RECORDED),
                    blood_pressure=_text_or_default(vitals.get("bloodPressure"), NOT_RECORDED),
                    pulse=_text_or_default(vitals.get("pulse"), NOT_RECORDED),
                    respiratory_rate=_text_or_default(vitals.get("respiratoryRate"), NOT_RECORDED),
                ),
                appearance=appearance or [NOT_RECORDED],
            ),
            assessment=_text_or_default(raw.get("assessment"), NOT_DOCUMENTED),
            plan=plan,
        )

    @classmethod
    def fallback(cls) -> "SOAPNote":
        """Fixed placeholder note used when generation fails outright."""
        return cls(
            title="Fallback Note (generation failed)",
            summary="The SOAP note could not be generated automatically. Review the transcript.",
            subjective=SubjectiveSection(
                chief_complaint="Patient complaint from consultation",
                history_of_present_illness="Consultation text available",
            ),
            objective=ObjectiveSection(
                vitals=Vitals(),
                appearance=["General appearance not noted"],
            ),
            assessment="Assessment based on consultation",
            plan="Follow-up and treatment plan",
        )

    def to_formatted_string(self) -> str:
        """Returns a plain-text rendering for the CLI and text exports."""
        vitals = self.objective.vitals
        return "\n".join([
            f"{self.title}",
            "=" * len(self.title),
            f"Summary: {self.summary}",
            "",
            "SUBJECTIVE",
            f"  Chief complaint: {self.subjective.chief_complaint}",
            f"  HPI: {self.subjective.history_of_present_illness}",
            "",
            "OBJECTIVE",
            f"  Temperature: {vitals.temperature}",
            f"  Blood pressure: {vitals.blood_pressure}",
            f"  Pulse: {vitals.pulse}",
            f"  Respiratory rate: {vitals.respiratory_rate}",
            f"  Appearance: {', '.join(self.objective.appearance)}",
            "",
            "ASSESSMENT",
            f"  {self.assessment}",
            "",
            "PLAN",
            f"  {self.plan}",
        ])


# =============================================================================
# Assistant Models
# =============================================================================

class Medication(CamelModel):
    name: str = ""
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""


class Prescription(CamelModel):
    """Drafted prescription; unknown fields are empty strings, never null."""
    medications: List[Medication] = Field(default_factory=list)
    notes: str = ""


class PatientContext(CamelModel):
    """Optional demographics passed to insight extraction."""
    age: Optional[str] = None
    gender: Optional[str] = None
    nationality: Optional[str] = None


# =============================================================================
# Aggregate
# =============================================================================

class ConsultationResult(CamelModel):
    """
    Complete result of processing one consultation recording.

    This is our main "aggregate" - it combines transcript, note and insights
    into a single unit that is easy to serialize for the API or the CLI.
    """
    id: str = Field(..., description="Unique identifier for this processing run")
    status: ProcessingStatus = Field(default=ProcessingStatus.PENDING)
    requested_language: str = Field(default="English")
    pipeline: Optional[LanguagePipelineConfig] = None
    transcript: Optional[TranscriptionResult] = None
    diarization_degraded: bool = False
    soap_note: Optional[SOAPNote] = None
    soap_degraded: bool = False
    insights: List[str] = Field(default_factory=list)
    insights_degraded: bool = False
    warnings: List[str] = Field(
        default_factory=list,
        description="Why any best-effort stage fell back"
    )
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    processing_time_seconds: Optional[float] = None
