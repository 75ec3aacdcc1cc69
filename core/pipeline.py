"""
Consultation Processing Pipeline
================================

The orchestration layer that turns one consultation recording into a
transcript, a SOAP note and key insights.

Architecture Pattern: Pipeline
------------------------------
Each stage transforms data and hands it to the next:

    Audio + language label
      -> [Language Selector]  LanguagePipelineConfig
      -> [Batch Job Runner]   words, speaker tags, segment transcripts
      -> [Diarization]        native grouping or diarization by text
      -> [SOAP Generator]     always-complete SOAP note
      -> [Clinical Assistant] key insights (best effort)

Failure policy:
1. Invalid input, storage and speech failures raise (fatal for the call)
2. Diarization, SOAP and insight failures degrade to a usable fallback and
   are reported in the result (``*_degraded`` flags and ``warnings``)
3. No stage is retried here; retries are the caller's concern
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from config import Settings, get_settings
from core.clinical_assistant import ClinicalAssistant
from core.language_selector import select_pipeline
from core.soap_generator import SOAPGenerator, fallback_soap_note
from core.speaker_diarizer import LLMDiarizer, group_by_speaker_tag
from core.speech_backend import MockSpeechBackend
from core.storage import MockObjectStorage
from core.text_generator import MockTextGenerator, TextGeneratorProtocol, create_text_generator
from core.transcriber import BatchTranscriptionRunner
from exceptions import (
    AudioTooLargeError,
    ConfigurationError,
    ConsultScribeError,
    EmptyAudioError,
    UnsupportedAudioFormatError,
)
from models import (
    ConsultationResult,
    DiarizationStrategy,
    LanguagePipelineConfig,
    PatientContext,
    ProcessingStatus,
    SOAPNote,
    StageResult,
    TranscriptionResult,
    Utterance,
)


logger = logging.getLogger(__name__)


# Type alias for progress callbacks: (status, message, percent)
ProgressCallback = Callable[[ProcessingStatus, str, int], None]


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lower-cased base MIME type; parameters are dropped, empty means WAV."""
    base = (mime_type or "").split(";")[0].strip().lower()
    return base or "audio/wav"


class ConsultationPipeline:
    """
    Main pipeline for processing consultation audio.

    All collaborators are constructor-injected. Anything not provided is
    created on first use, and the network clients inside them are lazy as
    well, so a pipeline can be built at process start without credentials.

    Usage:
        pipeline = ConsultationPipeline()
        result = pipeline.process(audio_bytes, "audio/webm", "Malayalam")
        print(result.soap_note.to_formatted_string())
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[BatchTranscriptionRunner] = None,
        text_generator: Optional[TextGeneratorProtocol] = None,
        soap_generator: Optional[SOAPGenerator] = None,
        llm_diarizer: Optional[LLMDiarizer] = None,
        assistant: Optional[ClinicalAssistant] = None,
    ):
        """
        Initialize the pipeline with optional dependencies.

        Args:
            settings: Application settings
            runner: Batch transcription runner (storage + speech backend)
            text_generator: Shared LLM backend for every generation stage
            soap_generator: SOAP note generator
            llm_diarizer: Diarization-by-text service
            assistant: Insights / prescription / translation / Q&A helper
        """
        self.settings = settings or get_settings()
        self._runner = runner
        self._text_generator = text_generator
        self._soap_generator = soap_generator
        self._llm_diarizer = llm_diarizer
        self._assistant = assistant

        logger.info("ConsultationPipeline initialized")

    @property
    def runner(self) -> BatchTranscriptionRunner:
        if self._runner is None:
            self._runner = BatchTranscriptionRunner(settings=self.settings)
        return self._runner

    @property
    def text_generator(self) -> TextGeneratorProtocol:
        if self._text_generator is None:
            self._text_generator = create_text_generator(settings=self.settings)
        return self._text_generator

    @property
    def soap_generator(self) -> SOAPGenerator:
        if self._soap_generator is None:
            self._soap_generator = SOAPGenerator(self.text_generator)
        return self._soap_generator

    @property
    def llm_diarizer(self) -> LLMDiarizer:
        if self._llm_diarizer is None:
            self._llm_diarizer = LLMDiarizer(self.text_generator)
        return self._llm_diarizer

    @property
    def assistant(self) -> ClinicalAssistant:
        if self._assistant is None:
            self._assistant = ClinicalAssistant(self.text_generator, settings=self.settings)
        return self._assistant

    # =========================================================================
    # Public API
    # =========================================================================

    def process(
        self,
        audio_bytes: bytes,
        mime_type: str,
        requested_language: str = "English",
        patient: Optional[PatientContext] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> ConsultationResult:
        """
        Transcribe, diarize and document one consultation.

        Args:
            audio_bytes: Raw audio
            mime_type: Declared MIME type
            requested_language: Free-text language label
            patient: Optional demographics for insight extraction
            progress_callback: Optional ``(status, message, percent)`` callback

        Returns:
            ConsultationResult with transcript, complete SOAP note and insights

        Raises:
            AudioError: Empty, oversized or unsupported audio
            StorageError: Upload failed
            TranscriptionError: Recognizer or batch job failed or timed out
        """
        job_id = str(uuid.uuid4())[:8]
        start_time = datetime.now()
        logger.info(f"[{job_id}] Starting consultation pipeline ({requested_language})")

        result = ConsultationResult(
            id=job_id,
            status=ProcessingStatus.PENDING,
            requested_language=requested_language or "",
        )

        try:
            config, transcript, diarization = self._run_transcription(
                audio_bytes, mime_type, requested_language, progress_callback
            )
        except ConsultScribeError as e:
            self._notify_progress(progress_callback, ProcessingStatus.FAILED, f"Error: {e.message}", 0)
            logger.error(f"[{job_id}] Pipeline failed: {e.message}")
            raise

        result.pipeline = config
        result.transcript = transcript
        result.diarization_degraded = diarization.degraded
        if diarization.degraded:
            result.warnings.append(diarization.reason or "diarization degraded")

        if not transcript.full_text.strip() and not transcript.utterances:
            logger.warning(f"[{job_id}] Empty transcript, skipping SOAP and insight generation")
            result.soap_note = fallback_soap_note()
            result.soap_degraded = True
            result.warnings.append("empty transcript")
        else:
            self._run_generation(result, transcript, patient, progress_callback)

        result.status = ProcessingStatus.COMPLETED
        result.completed_at = datetime.now()
        result.processing_time_seconds = (result.completed_at - start_time).total_seconds()

        self._notify_progress(
            progress_callback,
            ProcessingStatus.COMPLETED,
            f"Processing complete in {result.processing_time_seconds:.1f}s",
            100
        )
        logger.info(
            f"[{job_id}] Pipeline completed in {result.processing_time_seconds:.1f}s "
            f"({len(transcript.utterances)} utterances, {len(result.warnings)} warnings)"
        )
        return result

    def transcribe(
        self,
        audio_bytes: bytes,
        mime_type: str,
        requested_language: str = "English",
        progress_callback: Optional[ProgressCallback] = None
    ) -> TranscriptionResult:
        """Run the pipeline up to diarization and return the transcript."""
        _, transcript, _ = self._run_transcription(
            audio_bytes, mime_type, requested_language, progress_callback
        )
        return transcript

    def generate_soap_only(
        self,
        text: str,
        utterances: Optional[Sequence[Utterance]] = None
    ) -> StageResult[SOAPNote]:
        """Generate a SOAP note from an existing transcript."""
        return self.soap_generator.generate(text, utterances)

    async def aprocess(
        self,
        audio_bytes: bytes,
        mime_type: str,
        requested_language: str = "English",
        patient: Optional[PatientContext] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> ConsultationResult:
        """
        Async version of process() for FastAPI.

        The pipeline blocks on the batch job, so it runs in a worker thread
        to keep the event loop responsive.
        """
        return await asyncio.to_thread(
            self.process, audio_bytes, mime_type, requested_language, patient, progress_callback
        )

    async def atranscribe(
        self,
        audio_bytes: bytes,
        mime_type: str,
        requested_language: str = "English"
    ) -> TranscriptionResult:
        return await asyncio.to_thread(self.transcribe, audio_bytes, mime_type, requested_language)

    async def agenerate_soap_only(
        self,
        text: str,
        utterances: Optional[Sequence[Utterance]] = None
    ) -> StageResult[SOAPNote]:
        return await asyncio.to_thread(self.generate_soap_only, text, utterances)

    # =========================================================================
    # Stages
    # =========================================================================

    def validate_audio(self, audio_bytes: bytes, mime_type: Optional[str]) -> str:
        """
        Validate an upload and return its normalized MIME type.

        Raises:
            EmptyAudioError: No bytes
            UnsupportedAudioFormatError: MIME type not accepted
            AudioTooLargeError: Larger than the configured limit
        """
        if not audio_bytes:
            raise EmptyAudioError()

        normalized = normalize_mime_type(mime_type)
        supported = self.settings.supported_audio_mime_types
        if normalized not in supported:
            raise UnsupportedAudioFormatError(normalized, supported)

        max_bytes = self.settings.max_upload_size_mb * 1024 * 1024
        if len(audio_bytes) > max_bytes:
            raise AudioTooLargeError(len(audio_bytes), self.settings.max_upload_size_mb)

        return normalized

    def _run_transcription(
        self,
        audio_bytes: bytes,
        mime_type: str,
        requested_language: str,
        progress_callback: Optional[ProgressCallback]
    ) -> tuple[LanguagePipelineConfig, TranscriptionResult, StageResult[list[Utterance]]]:
        normalized_mime = self.validate_audio(audio_bytes, mime_type)
        config = select_pipeline(requested_language, self.settings.recognizer_prefix)

        self._notify_progress(
            progress_callback,
            ProcessingStatus.TRANSCRIBING,
            f"Transcribing {config.language_name} audio ({config.language_code})",
            10
        )
        output = self.runner.run_batch_transcription(audio_bytes, normalized_mime, config)

        self._notify_progress(
            progress_callback,
            ProcessingStatus.DIARIZING,
            f"Identifying speakers ({config.diarization_strategy.value})",
            60
        )
        if config.diarization_strategy == DiarizationStrategy.LLM:
            diarization = self.llm_diarizer.diarize_by_text(output.raw_words, config.language_name)
        else:
            diarization = StageResult.ok(group_by_speaker_tag(
                output.raw_words, output.native_speaker_tags, output.full_text
            ))

        transcript = TranscriptionResult(full_text=output.full_text, utterances=diarization.value)
        return config, transcript, diarization

    def _run_generation(
        self,
        result: ConsultationResult,
        transcript: TranscriptionResult,
        patient: Optional[PatientContext],
        progress_callback: Optional[ProgressCallback]
    ) -> None:
        self._notify_progress(
            progress_callback, ProcessingStatus.GENERATING, "Generating SOAP note", 70
        )
        soap = self.soap_generator.generate(transcript.full_text, transcript.utterances)
        result.soap_note = soap.value
        result.soap_degraded = soap.degraded
        if soap.degraded:
            result.warnings.append(soap.reason or "SOAP note degraded")

        self._notify_progress(
            progress_callback, ProcessingStatus.GENERATING, "Extracting key insights", 90
        )
        insight_text = transcript.full_text or transcript.get_formatted_transcript()
        insights = self.assistant.generate_insights(insight_text, patient)
        result.insights = insights.value
        result.insights_degraded = insights.degraded
        if insights.degraded:
            result.warnings.append(insights.reason or "insights degraded")

    def _notify_progress(
        self,
        callback: Optional[ProgressCallback],
        status: ProcessingStatus,
        message: str,
        progress: int = 0
    ) -> None:
        """
        Notify progress callback if provided.

        Callback errors are logged and never break the pipeline.
        """
        if callback:
            try:
                callback(status, message, progress)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")


# =============================================================================
# Output Helpers
# =============================================================================

def save_result_to_file(
    result: ConsultationResult,
    output_dir: str = "./output"
) -> dict[str, str]:
    """
    Save a consultation result to files.

    Saves:
    1. Full result as JSON (camelCase, same shape as the API)
    2. SOAP note as formatted text
    3. Speaker-labeled transcript as plain text

    Args:
        result: The ConsultationResult to save
        output_dir: Directory to save files in

    Returns:
        Dict of saved file paths
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    base_name = f"ConsultScribe_{result.id}"
    saved_files = {}

    json_path = output_path / f"{base_name}_result.json"
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(result.model_dump(mode="json", by_alias=True), f, indent=2, ensure_ascii=False)
    saved_files["json"] = str(json_path)

    if result.soap_note:
        soap_path = output_path / f"{base_name}_soap.txt"
        with open(soap_path, "w", encoding="utf-8") as f:
            f.write(result.soap_note.to_formatted_string())
        saved_files["soap"] = str(soap_path)

    if result.transcript:
        transcript_path = output_path / f"{base_name}_transcript.txt"
        with open(transcript_path, "w", encoding="utf-8") as f:
            f.write(result.transcript.get_formatted_transcript())
        saved_files["transcript"] = str(transcript_path)

    logger.info(f"Saved results to {output_dir}: {list(saved_files.keys())}")
    return saved_files


# =============================================================================
# Factory Function
# =============================================================================

def create_pipeline(
    settings: Optional[Settings] = None,
    use_mock: bool = False
) -> ConsultationPipeline:
    """
    Create a configured pipeline instance.

    With ``use_mock`` every external service is replaced by an in-memory
    fake, which is useful for local demos of the API without cloud
    credentials.

    Args:
        settings: Optional custom settings. Uses default if not provided.
        use_mock: Use in-memory storage, speech and text backends

    Returns:
        ConsultationPipeline
    """
    settings = settings or get_settings()

    if use_mock:
        logger.info("Creating pipeline with mock backends")
        runner = BatchTranscriptionRunner(
            settings=settings,
            storage=MockObjectStorage(),
            speech_backend=MockSpeechBackend(),
            sleep=lambda _: None,
        )
        return ConsultationPipeline(
            settings=settings,
            runner=runner,
            text_generator=MockTextGenerator(),
        )

    validate_cloud_settings(settings)
    return ConsultationPipeline(settings=settings)


def validate_cloud_settings(settings: Settings) -> None:
    """
    Reject settings the real backends cannot work with.

    Raises:
        ConfigurationError: On the first unusable setting
    """
    for name in ("gcp_project_id", "speech_location", "audio_bucket"):
        if not getattr(settings, name).strip():
            raise ConfigurationError(name, "must not be empty")
    if settings.diarization_min_speakers > settings.diarization_max_speakers:
        raise ConfigurationError(
            "diarization_min_speakers",
            f"{settings.diarization_min_speakers} is greater than "
            f"diarization_max_speakers ({settings.diarization_max_speakers})"
        )
