"""
Batch Speech Recognition Backend
================================

Thin adapter over Google Cloud Speech-to-Text v2. The job runner only sees
the ``SpeechBackendProtocol`` contract:

1. ``get_recognizer`` / ``create_recognizer`` manage the per-language
   recognizer resource (created once, reused by every request)
2. ``batch_recognize`` submits a job against a ``gs://`` URI and returns an
   operation handle with ``done()`` and ``result()``
3. ``result()`` yields plain dictionaries, so nothing outside this module
   touches protobuf types:

    {
        "gs://bucket/audio-1.wav": [
            {"alternatives": [{"transcript": "...", "words": [
                {"word": "hello", "start_offset": "0.100s",
                 "end_offset": "0.400s", "speaker_label": "1"}
            ]}]}
        ]
    }

Offsets stay in whatever encoding the backend produced; the runner
normalizes them with ``core.timing.to_millis``.

Backend errors from ``google.api_core`` are translated into our own
exception types at this boundary.
"""

import logging
from typing import Any, Optional, Protocol

from google.api_core import exceptions as gcp_exceptions
from google.api_core.client_options import ClientOptions
from google.cloud.speech_v2 import SpeechClient
from google.cloud.speech_v2.types import cloud_speech

from exceptions import (
    BatchRecognitionError,
    RecognizerAlreadyExistsError,
    RecognizerNotFoundError,
)
from models import LanguagePipelineConfig


logger = logging.getLogger(__name__)


class OperationProtocol(Protocol):
    """Handle for a long-running backend operation."""

    def done(self) -> bool:
        ...

    def result(self, timeout: Optional[float] = None) -> Any:
        ...


class SpeechBackendProtocol(Protocol):
    """Interface for a batch speech-recognition service."""

    def get_recognizer(self, name: str) -> Any:
        """
        Look up a recognizer by full resource name.

        Raises:
            RecognizerNotFoundError: If the recognizer does not exist
        """
        ...

    def create_recognizer(
        self,
        parent: str,
        recognizer_id: str,
        language_code: str,
        model: str
    ) -> OperationProtocol:
        """
        Start creating a recognizer.

        Raises:
            RecognizerAlreadyExistsError: If it was created concurrently
        """
        ...

    def batch_recognize(
        self,
        recognizer: str,
        config: LanguagePipelineConfig,
        file_uri: str
    ) -> OperationProtocol:
        """Submit a batch job; ``result()`` is ``{uri: [segment, ...]}``."""
        ...


# =============================================================================
# Google Cloud Speech-to-Text v2
# =============================================================================

class _BatchRecognizeOperation:
    """Wraps the google.api_core operation and flattens its response."""

    def __init__(self, operation: Any, file_uri: str):
        self._operation = operation
        self._file_uri = file_uri

    def done(self) -> bool:
        # Each status check is an API call
        try:
            return self._operation.done()
        except gcp_exceptions.GoogleAPICallError as e:
            raise BatchRecognitionError(self._file_uri, str(e)) from e

    def result(self, timeout: Optional[float] = None) -> dict[str, list[dict]]:
        try:
            response = self._operation.result(timeout=timeout)
        except gcp_exceptions.GoogleAPICallError as e:
            raise BatchRecognitionError(self._file_uri, str(e)) from e
        return flatten_batch_response(
            cloud_speech.BatchRecognizeResponse.to_dict(response)
        )


class _CreateRecognizerOperation:
    """
    Wraps recognizer creation.

    A concurrent create can surface ALREADY_EXISTS either from the initial
    call or from the operation result; both become
    ``RecognizerAlreadyExistsError``.
    """

    def __init__(self, operation: Any, name: str):
        self._operation = operation
        self._name = name

    def done(self) -> bool:
        return self._operation.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        try:
            return self._operation.result(timeout=timeout)
        except gcp_exceptions.AlreadyExists as e:
            raise RecognizerAlreadyExistsError(self._name) from e


def flatten_batch_response(response: dict) -> dict[str, list[dict]]:
    """
    Reduce a BatchRecognizeResponse dict to ``{uri: [segment, ...]}``.

    A file whose result carries an error and no transcript raises
    ``BatchRecognitionError``.
    """
    flattened: dict[str, list[dict]] = {}
    for uri, file_result in (response.get("results") or {}).items():
        transcript = (
            file_result.get("transcript")
            or (file_result.get("inline_result") or {}).get("transcript")
            or {}
        )
        segments = transcript.get("results") or []
        error = file_result.get("error") or {}
        if error.get("code") and not segments:
            raise BatchRecognitionError(uri, error.get("message") or f"code {error['code']}")
        flattened[uri] = segments
    return flattened


class GoogleSpeechV2Backend:
    """
    Speech-to-Text v2 backend using a regional endpoint.

    The ``SpeechClient`` is created on first use, so building the pipeline
    at process start does not require credentials.
    """

    def __init__(
        self,
        location: str = "us-central1",
        min_speakers: int = 2,
        max_speakers: int = 2,
        client: Optional[SpeechClient] = None
    ):
        self.location = location
        self.min_speakers = min_speakers
        self.max_speakers = max_speakers
        self._client = client

    @property
    def client(self) -> SpeechClient:
        if self._client is None:
            endpoint = (
                "speech.googleapis.com" if self.location == "global"
                else f"{self.location}-speech.googleapis.com"
            )
            logger.info(f"Creating Speech-to-Text v2 client ({endpoint})")
            self._client = SpeechClient(
                client_options=ClientOptions(api_endpoint=endpoint)
            )
        return self._client

    def get_recognizer(self, name: str) -> Any:
        try:
            return self.client.get_recognizer(name=name)
        except gcp_exceptions.NotFound as e:
            raise RecognizerNotFoundError(name) from e

    def create_recognizer(
        self,
        parent: str,
        recognizer_id: str,
        language_code: str,
        model: str
    ) -> _CreateRecognizerOperation:
        name = f"{parent}/recognizers/{recognizer_id}"
        recognizer = cloud_speech.Recognizer(
            default_recognition_config=cloud_speech.RecognitionConfig(
                auto_decoding_config=cloud_speech.AutoDetectDecodingConfig(),
                language_codes=[language_code],
                model=model,
            )
        )
        try:
            operation = self.client.create_recognizer(
                parent=parent,
                recognizer_id=recognizer_id,
                recognizer=recognizer,
            )
        except gcp_exceptions.AlreadyExists as e:
            raise RecognizerAlreadyExistsError(name) from e
        return _CreateRecognizerOperation(operation, name)

    def build_recognition_config(
        self,
        config: LanguagePipelineConfig
    ) -> cloud_speech.RecognitionConfig:
        """Per-request config; diarization is only requested where supported."""
        features = cloud_speech.RecognitionFeatures(
            enable_word_time_offsets=True,
            enable_automatic_punctuation=True,
        )
        if config.native_diarization_supported:
            features.diarization_config = cloud_speech.SpeakerDiarizationConfig(
                min_speaker_count=self.min_speakers,
                max_speaker_count=self.max_speakers,
            )
        return cloud_speech.RecognitionConfig(
            auto_decoding_config=cloud_speech.AutoDetectDecodingConfig(),
            language_codes=[config.language_code],
            model=config.model_name,
            features=features,
        )

    def batch_recognize(
        self,
        recognizer: str,
        config: LanguagePipelineConfig,
        file_uri: str
    ) -> _BatchRecognizeOperation:
        request = cloud_speech.BatchRecognizeRequest(
            recognizer=recognizer,
            config=self.build_recognition_config(config),
            files=[cloud_speech.BatchRecognizeFileMetadata(uri=file_uri)],
            recognition_output_config=cloud_speech.RecognitionOutputConfig(
                inline_response_config=cloud_speech.InlineOutputConfig(),
            ),
        )
        try:
            operation = self.client.batch_recognize(request=request)
        except gcp_exceptions.GoogleAPICallError as e:
            raise BatchRecognitionError(file_uri, str(e)) from e
        return _BatchRecognizeOperation(operation, file_uri)


# =============================================================================
# Mock Implementation
# =============================================================================

class MockOperation:
    """
    Scripted long-running operation.

    ``done()`` turns true after ``polls_until_done`` calls, or raises
    ``poll_error``; ``result()`` raises ``error`` if one is set.
    """

    def __init__(
        self,
        value: Any = None,
        polls_until_done: int = 0,
        error: Optional[Exception] = None,
        poll_error: Optional[Exception] = None
    ):
        self.value = value
        self.polls_until_done = polls_until_done
        self.error = error
        self.poll_error = poll_error
        self.poll_count = 0

    def done(self) -> bool:
        self.poll_count += 1
        if self.poll_error is not None:
            raise self.poll_error
        return self.poll_count > self.polls_until_done

    def result(self, timeout: Optional[float] = None) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


class MockSpeechBackend:
    """
    In-memory speech backend for testing.

    Usage in tests:
        backend = MockSpeechBackend(results={"*": [mock_segment(...)]})

    The ``"*"`` key answers for whatever URI the runner uploaded.
    """

    def __init__(
        self,
        results: Optional[dict[str, list[dict]]] = None,
        recognizer_exists: bool = True,
        get_error: Optional[Exception] = None,
        create_error: Optional[Exception] = None,
        batch_error: Optional[Exception] = None,
        poll_error: Optional[Exception] = None,
        polls_until_done: int = 0
    ):
        self.results = results or {}
        self.recognizers: set[str] = set()
        self.recognizer_exists = recognizer_exists
        self.get_error = get_error
        self.create_error = create_error
        self.batch_error = batch_error
        self.poll_error = poll_error
        self.polls_until_done = polls_until_done
        self.calls: list[tuple] = []
        self.last_operation: Optional[MockOperation] = None

    def get_recognizer(self, name: str) -> Any:
        self.calls.append(("get_recognizer", name))
        if self.get_error is not None:
            raise self.get_error
        if self.recognizer_exists or name in self.recognizers:
            return {"name": name}
        raise RecognizerNotFoundError(name)

    def create_recognizer(
        self,
        parent: str,
        recognizer_id: str,
        language_code: str,
        model: str
    ) -> MockOperation:
        self.calls.append(("create_recognizer", parent, recognizer_id, language_code, model))
        if self.create_error is not None:
            raise self.create_error
        name = f"{parent}/recognizers/{recognizer_id}"
        self.recognizers.add(name)
        return MockOperation(value={"name": name})

    def batch_recognize(
        self,
        recognizer: str,
        config: LanguagePipelineConfig,
        file_uri: str
    ) -> MockOperation:
        self.calls.append(("batch_recognize", recognizer, config.language_code, file_uri))
        value = {}
        if file_uri in self.results:
            value = {file_uri: self.results[file_uri]}
        elif "*" in self.results:
            value = {file_uri: self.results["*"]}
        self.last_operation = MockOperation(
            value=value,
            polls_until_done=self.polls_until_done,
            error=self.batch_error,
            poll_error=self.poll_error,
        )
        return self.last_operation


def mock_segment(
    words: list[tuple],
    transcript: Optional[str] = None,
    extra_alternatives: Optional[list[dict]] = None
) -> dict:
    """
    Build a result segment for ``MockSpeechBackend``.

    Args:
        words: ``(text, start, end)`` or ``(text, start, end, speaker_label)``
            tuples; offsets may be any encoding ``to_millis`` accepts
        transcript: Segment transcript (defaults to the joined words)
        extra_alternatives: Lower-ranked alternatives appended after the top one
    """
    word_dicts = []
    for item in words:
        word = {"word": item[0], "start_offset": item[1], "end_offset": item[2]}
        if len(item) > 3:
            word["speaker_label"] = item[3]
        word_dicts.append(word)
    top = {
        "transcript": transcript if transcript is not None else " ".join(w[0] for w in words),
        "words": word_dicts,
    }
    return {"alternatives": [top] + list(extra_alternatives or [])}


# =============================================================================
# Factory Function
# =============================================================================

def create_speech_backend(
    location: str = "us-central1",
    min_speakers: int = 2,
    max_speakers: int = 2,
    use_mock: bool = False
) -> SpeechBackendProtocol:
    """Create the Speech-to-Text v2 backend, or a mock for tests."""
    if use_mock:
        logger.info("Creating mock speech backend")
        return MockSpeechBackend()
    return GoogleSpeechV2Backend(
        location=location,
        min_speakers=min_speakers,
        max_speakers=max_speakers,
    )
