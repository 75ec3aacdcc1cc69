"""
Batch Transcription Job Runner
==============================

Turns raw consultation audio into a flat, time-ordered word list using a
batch speech-recognition job:

1. Upload the audio to object storage under ``audio-<epoch ms>-<random>.<ext>``
   (one bucket-creation retry if the bucket is missing)
2. Get or create the per-language recognizer resource
3. Submit the batch job and poll it with a bounded number of status checks
4. Flatten every segment's top alternative into words, speaker tags and
   per-segment transcripts, then sort the words globally by start time
5. Delete the uploaded object no matter how the call ends

Architecture Pattern: Protocol-based Services
---------------------------------------------
Storage and speech backends are injected, so tests run the full flow with
``MockObjectStorage`` and ``MockSpeechBackend``.
"""

import asyncio
import logging
import secrets
import time
from typing import Callable, Optional

from config import Settings, get_settings
from core.speech_backend import SpeechBackendProtocol, create_speech_backend
from core.storage import ObjectStorageProtocol, create_object_storage
from core.timing import to_millis
from exceptions import (
    BatchRecognitionError,
    BucketNotFoundError,
    ConsultScribeError,
    RecognizerAlreadyExistsError,
    RecognizerNotFoundError,
    RecognizerProvisioningError,
    StorageUploadError,
    TranscriptionTimeoutError,
)
from models import BatchTranscriptionOutput, LanguagePipelineConfig, Word


logger = logging.getLogger(__name__)


def extension_for_mime(mime_type: Optional[str]) -> str:
    """File extension for an audio MIME type: mp3, webm, else wav."""
    mime = (mime_type or "").lower()
    if "mpeg" in mime or "mp3" in mime:
        return "mp3"
    if "webm" in mime:
        return "webm"
    return "wav"


def build_object_key(mime_type: Optional[str], now_ms: Optional[int] = None) -> str:
    """Unique temporary object key, e.g. ``audio-1718000000000-k3f9a2.wav``."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"audio-{timestamp}-{secrets.token_hex(4)}.{extension_for_mime(mime_type)}"


def extract_batch_output(segments: list[dict]) -> BatchTranscriptionOutput:
    """
    Flatten batch result segments.

    Only each segment's top-ranked alternative is read. Words are sorted by
    start time (stable, so ties keep backend order) and their speaker tags
    move with them.
    """
    paired: list[tuple[Word, Optional[str]]] = []
    transcripts: list[str] = []

    for segment in segments:
        alternatives = segment.get("alternatives") or []
        if not alternatives:
            continue
        top = alternatives[0]

        transcript = (top.get("transcript") or "").strip()
        if transcript:
            transcripts.append(transcript)

        for raw in top.get("words") or []:
            text = (raw.get("word") or "").strip()
            if not text:
                continue
            start_ms = to_millis(raw.get("start_offset"))
            end_ms = max(to_millis(raw.get("end_offset")), start_ms)
            tag = raw.get("speaker_label")
            paired.append((
                Word(text=text, start_ms=start_ms, end_ms=end_ms),
                str(tag) if tag not in (None, "") else None,
            ))

    paired.sort(key=lambda item: item[0].start_ms)

    return BatchTranscriptionOutput(
        raw_words=[word for word, _ in paired],
        native_speaker_tags=[tag for _, tag in paired],
        per_segment_transcripts=transcripts,
    )


class BatchTranscriptionRunner:
    """
    Runs one batch recognition job end to end.

    The runner owns nothing long-lived except its injected clients; the
    recognizer resources it creates are shared across requests and are
    never deleted here.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[ObjectStorageProtocol] = None,
        speech_backend: Optional[SpeechBackendProtocol] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the runner.

        Args:
            settings: Application settings (uses defaults if not provided)
            storage: Object storage (Cloud Storage if not provided)
            speech_backend: Speech backend (Speech-to-Text v2 if not provided)
            sleep: Wait function between status checks (injected in tests)
        """
        self.settings = settings or get_settings()
        self.storage = storage or create_object_storage(self.settings.gcp_project_id)
        self.speech_backend = speech_backend or create_speech_backend(
            location=self.settings.speech_location,
            min_speakers=self.settings.diarization_min_speakers,
            max_speakers=self.settings.diarization_max_speakers,
        )
        self._sleep = sleep

    @property
    def location_path(self) -> str:
        return f"projects/{self.settings.gcp_project_id}/locations/{self.settings.speech_location}"

    def recognizer_name(self, recognizer_id: str) -> str:
        return f"{self.location_path}/recognizers/{recognizer_id}"

    # =========================================================================
    # Public API
    # =========================================================================

    def run_batch_transcription(
        self,
        audio_bytes: bytes,
        mime_type: str,
        config: LanguagePipelineConfig
    ) -> BatchTranscriptionOutput:
        """
        Transcribe audio with a batch recognition job.

        Blocks until the job finishes or the polling budget runs out.

        Args:
            audio_bytes: Raw audio
            mime_type: Declared MIME type (drives the object extension)
            config: Pipeline configuration from the language selector

        Returns:
            BatchTranscriptionOutput; empty when the job produced no results

        Raises:
            StorageUploadError: Upload failed after the bucket retry
            RecognizerProvisioningError: Recognizer lookup/creation failed
            BatchRecognitionError: The batch job failed
            TranscriptionTimeoutError: The job did not finish in time
        """
        bucket = self.settings.audio_bucket
        key = build_object_key(mime_type)
        file_uri = f"gs://{bucket}/{key}"

        logger.info(
            f"Starting batch transcription: {len(audio_bytes)} bytes, "
            f"{config.language_code} ({config.model_name})"
        )
        start_time = time.time()

        self._upload(bucket, key, audio_bytes, mime_type)
        try:
            recognizer = self._ensure_recognizer(config)
            results = self._recognize(recognizer, config, file_uri)
        finally:
            self._cleanup(bucket, key)

        segments = results.get(file_uri)
        if not segments:
            logger.warning(f"Batch job returned no results for {file_uri}")
            return BatchTranscriptionOutput()

        output = extract_batch_output(segments)
        logger.info(
            f"Batch transcription complete in {time.time() - start_time:.1f}s: "
            f"{len(output.raw_words)} words, "
            f"{len(output.per_segment_transcripts)} segments"
        )
        return output

    async def arun_batch_transcription(
        self,
        audio_bytes: bytes,
        mime_type: str,
        config: LanguagePipelineConfig
    ) -> BatchTranscriptionOutput:
        """
        Async version of run_batch_transcription().

        The job runs in a worker thread. Cancelling the awaiting task does
        not stop that thread, so the ``finally`` cleanup still runs.
        """
        return await asyncio.to_thread(
            self.run_batch_transcription, audio_bytes, mime_type, config
        )

    # =========================================================================
    # Steps
    # =========================================================================

    def _upload(self, bucket: str, key: str, data: bytes, mime_type: str) -> None:
        content_type = mime_type or "audio/wav"
        try:
            self.storage.put(bucket, key, data, content_type)
            return
        except BucketNotFoundError:
            logger.warning(
                f"Bucket {bucket} missing, creating it in {self.settings.bucket_region}"
            )
        except Exception as e:
            logger.error(f"Upload of {key} failed: {e}")
            raise StorageUploadError(bucket, key, str(e)) from e

        try:
            self.storage.create_bucket(bucket, self.settings.bucket_region)
            self.storage.put(bucket, key, data, content_type)
        except Exception as e:
            logger.error(f"Upload of {key} failed after creating bucket: {e}")
            raise StorageUploadError(bucket, key, str(e)) from e

    def _ensure_recognizer(self, config: LanguagePipelineConfig) -> str:
        """Get-or-create the recognizer; concurrent creation counts as success."""
        name = self.recognizer_name(config.recognizer_id)
        try:
            self.speech_backend.get_recognizer(name)
            logger.debug(f"Using existing recognizer {name}")
            return name
        except RecognizerNotFoundError:
            logger.info(f"Recognizer {name} not found, creating it")
        except Exception as e:
            raise RecognizerProvisioningError(name, str(e)) from e

        try:
            operation = self.speech_backend.create_recognizer(
                self.location_path,
                config.recognizer_id,
                config.language_code,
                config.model_name,
            )
            operation.result(timeout=self.settings.recognizer_create_timeout_seconds)
            logger.info(f"Created recognizer {name}")
        except RecognizerAlreadyExistsError:
            logger.info(f"Recognizer {name} was created concurrently, reusing it")
        except Exception as e:
            raise RecognizerProvisioningError(name, str(e)) from e
        return name

    def _recognize(
        self,
        recognizer: str,
        config: LanguagePipelineConfig,
        file_uri: str
    ) -> dict[str, list[dict]]:
        try:
            operation = self.speech_backend.batch_recognize(recognizer, config, file_uri)
        except ConsultScribeError:
            raise
        except Exception as e:
            raise BatchRecognitionError(file_uri, str(e)) from e

        interval = self.settings.batch_poll_interval_seconds
        max_attempts = self.settings.batch_max_poll_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                finished = operation.done()
            except ConsultScribeError:
                raise
            except Exception as e:
                logger.error(f"Status check for {file_uri} failed: {e}")
                raise BatchRecognitionError(file_uri, str(e)) from e
            if finished:
                logger.debug(f"Batch job done after {attempt} status checks")
                break
            if attempt < max_attempts:
                self._sleep(interval)
        else:
            logger.error(f"Batch job for {file_uri} timed out after {max_attempts} checks")
            raise TranscriptionTimeoutError(file_uri, max_attempts, interval)

        try:
            return operation.result() or {}
        except ConsultScribeError:
            raise
        except Exception as e:
            raise BatchRecognitionError(file_uri, str(e)) from e

    def _cleanup(self, bucket: str, key: str) -> None:
        try:
            self.storage.delete(bucket, key)
        except Exception as e:
            logger.warning(f"Failed to delete temporary audio gs://{bucket}/{key}: {e}")
