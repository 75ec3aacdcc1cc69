"""
Custom Exceptions for ConsultScribe
===================================

This module defines a hierarchy of custom exceptions that:

1. **Categorize Errors**: Different exception types for different problems
2. **Carry Context**: Include the failing stage and relevant identifiers
3. **Enable Recovery**: Allow calling code to handle specific errors
4. **Support APIs**: Map cleanly to HTTP status codes

Exception Hierarchy:
    ConsultScribeError (base)
    ├── AudioError
    │   ├── EmptyAudioError
    │   ├── UnsupportedAudioFormatError
    │   └── AudioTooLargeError
    ├── StorageError
    │   ├── BucketNotFoundError
    │   └── StorageUploadError
    ├── TranscriptionError
    │   ├── RecognizerNotFoundError
    │   ├── RecognizerAlreadyExistsError
    │   ├── RecognizerProvisioningError
    │   ├── BatchRecognitionError
    │   └── TranscriptionTimeoutError
    ├── GenerationError
    │   ├── TextGenerationError
    │   ├── OllamaConnectionError
    │   ├── PrescriptionGenerationError
    │   └── AssistantUnavailableError
    ├── DocumentExtractionError
    └── ConfigurationError
"""

from typing import Optional


class ConsultScribeError(Exception):
    """
    Base exception for all ConsultScribe errors.

    All custom exceptions inherit from this, allowing code to catch
    all ConsultScribe-related errors with a single except clause:

        try:
            pipeline.process(audio, "audio/wav", "English")
        except ConsultScribeError as e:
            logger.error(f"ConsultScribe error: {e}")

    Attributes:
        message: Human-readable error description
        details: Additional context (dict for API responses)
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for API responses.

        Returns a structured error that can be easily serialized to JSON.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# Audio-Related Errors
# =============================================================================

class AudioError(ConsultScribeError):
    """Base class for audio input errors."""
    pass


class EmptyAudioError(AudioError):
    """Raised when the uploaded recording has no bytes."""

    def __init__(self):
        super().__init__(
            message="No audio data provided",
            details={"stage": "input"}
        )


class UnsupportedAudioFormatError(AudioError):
    """Raised when the declared MIME type is not supported."""

    def __init__(self, mime_type: str, supported_types: list[str]):
        super().__init__(
            message=f"Unsupported audio format: {mime_type or 'unknown'}. Supported: {', '.join(supported_types)}",
            details={
                "stage": "input",
                "mime_type": mime_type,
                "supported_types": supported_types
            }
        )


class AudioTooLargeError(AudioError):
    """Raised when audio exceeds the configured upload size."""

    def __init__(self, size_bytes: int, max_size_mb: int):
        super().__init__(
            message=f"Audio too large: {size_bytes / (1024 * 1024):.1f}MB (max: {max_size_mb}MB)",
            details={
                "stage": "input",
                "size_bytes": size_bytes,
                "max_size_mb": max_size_mb
            }
        )


# =============================================================================
# Storage-Related Errors
# =============================================================================

class StorageError(ConsultScribeError):
    """Base class for object storage errors."""
    pass


class BucketNotFoundError(StorageError):
    """Raised by the storage layer when the target bucket does not exist."""

    def __init__(self, bucket: str):
        super().__init__(
            message=f"Bucket not found: {bucket}",
            details={
                "stage": "upload",
                "bucket": bucket
            }
        )


class StorageUploadError(StorageError):
    """Raised when the audio upload fails after the bucket-creation retry."""

    def __init__(self, bucket: str, key: str, reason: str):
        super().__init__(
            message=f"Audio upload to gs://{bucket}/{key} failed: {reason}",
            details={
                "stage": "upload",
                "bucket": bucket,
                "key": key,
                "reason": reason
            }
        )


# =============================================================================
# Transcription-Related Errors
# =============================================================================

class TranscriptionError(ConsultScribeError):
    """Base class for transcription errors."""
    pass


class RecognizerNotFoundError(TranscriptionError):
    """Raised by the speech backend when a recognizer lookup finds nothing."""

    def __init__(self, recognizer_name: str):
        super().__init__(
            message=f"Recognizer not found: {recognizer_name}",
            details={
                "stage": "recognizer",
                "recognizer": recognizer_name
            }
        )


class RecognizerAlreadyExistsError(TranscriptionError):
    """Raised when a concurrent request created the recognizer first."""

    def __init__(self, recognizer_name: str):
        super().__init__(
            message=f"Recognizer already exists: {recognizer_name}",
            details={
                "stage": "recognizer",
                "recognizer": recognizer_name
            }
        )


class RecognizerProvisioningError(TranscriptionError):
    """Raised when the recognizer cannot be looked up or created."""

    def __init__(self, recognizer_name: str, reason: str):
        super().__init__(
            message=f"Recognizer provisioning failed for {recognizer_name}: {reason}",
            details={
                "stage": "recognizer",
                "recognizer": recognizer_name,
                "reason": reason
            }
        )


class BatchRecognitionError(TranscriptionError):
    """Raised when the batch recognition job fails."""

    def __init__(self, file_uri: str, reason: str):
        super().__init__(
            message=f"Batch recognition failed for {file_uri}: {reason}",
            details={
                "stage": "batch_recognize",
                "file_uri": file_uri,
                "reason": reason
            }
        )


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when the batch job does not finish within the polling budget."""

    def __init__(self, file_uri: str, attempts: int, interval_seconds: float):
        super().__init__(
            message=(
                f"Batch recognition for {file_uri} did not complete after "
                f"{attempts} status checks ({attempts * interval_seconds:.0f}s)"
            ),
            details={
                "stage": "batch_recognize",
                "file_uri": file_uri,
                "attempts": attempts,
                "interval_seconds": interval_seconds
            }
        )


# =============================================================================
# Generation-Related Errors
# =============================================================================

class GenerationError(ConsultScribeError):
    """Base class for text generation errors."""
    pass


class TextGenerationError(GenerationError):
    """Raised when the text-generation backend fails or returns garbage."""

    def __init__(self, reason: str, task: str = "generation"):
        super().__init__(
            message=f"Text generation failed ({task}): {reason}",
            details={
                "stage": task,
                "reason": reason
            }
        )


class OllamaConnectionError(GenerationError):
    """Raised when we can't connect to Ollama."""

    def __init__(self, url: str, original_error: str):
        super().__init__(
            message=f"Cannot connect to Ollama at {url}: {original_error}",
            details={
                "stage": "generation",
                "ollama_url": url,
                "original_error": original_error,
                "hint": "Make sure Ollama is running: 'ollama serve'"
            }
        )


class PrescriptionGenerationError(GenerationError):
    """Raised when a prescription draft cannot be produced."""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Failed to generate prescription: {reason}",
            details={
                "stage": "prescription",
                "reason": reason
            }
        )


class AssistantUnavailableError(GenerationError):
    """Raised when free-form question answering fails."""

    def __init__(self, reason: str):
        super().__init__(
            message="AI service unavailable",
            details={
                "stage": "question_answering",
                "reason": reason
            }
        )


# =============================================================================
# Document Errors
# =============================================================================

class DocumentExtractionError(ConsultScribeError):
    """Raised when an uploaded PDF or DOCX cannot be parsed."""

    def __init__(self, filename: str, mime_type: str, reason: str):
        super().__init__(
            message=f"Failed to extract text from {filename} ({mime_type}): {reason}",
            details={
                "stage": "document_extraction",
                "filename": filename,
                "mime_type": mime_type,
                "reason": reason
            }
        )


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ConsultScribeError):
    """Raised when there's a configuration problem."""

    def __init__(self, setting_name: str, issue: str):
        super().__init__(
            message=f"Configuration error for '{setting_name}': {issue}",
            details={
                "stage": "configuration",
                "setting_name": setting_name,
                "issue": issue
            }
        )
