"""
Configuration Management for ConsultScribe
==========================================

Every tunable of the service lives in one pydantic-settings model:

1. **Google Cloud**: project, speech location, audio bucket, recognizer ids
2. **Batch jobs**: polling interval and budget, recognizer creation timeout
3. **Ollama**: the single text-generation backend behind every LLM stage
4. **Limits**: upload size, accepted MIME types, assistant context size
5. **API and logging**: bind address, CORS, rate limit, log format

Settings are read once per process (``get_settings`` is cached); tests build
isolated instances with ``get_settings_for_testing``.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with CONSULTSCRIBE_ to avoid conflicts.
    Example: CONSULTSCRIBE_AUDIO_BUCKET=my-consult-audio

    Priority order (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values defined here
    """

    model_config = SettingsConfigDict(
        env_prefix="CONSULTSCRIBE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =================================================================
    # Google Cloud Configuration
    # =================================================================
    gcp_project_id: str = Field(
        default="consultscribe-dev",
        description="Google Cloud project that owns the bucket and recognizers"
    )

    speech_location: str = Field(
        default="us-central1",
        description="""
        Speech-to-Text v2 location for recognizers and batch jobs.

        Chirp models are only served from regional endpoints, so 'global'
        is not a safe default for Malayalam and Arabic.
        """
    )

    audio_bucket: str = Field(
        default="consultscribe-audio-uploads",
        description="Cloud Storage bucket for temporary consultation audio"
    )

    bucket_region: str = Field(
        default="us-central1",
        description="Region used when the audio bucket has to be created on first use"
    )

    recognizer_prefix: str = Field(
        default="consultscribe",
        description="Prefix for per-language recognizer ids (e.g. consultscribe-ml-in)"
    )

    # =================================================================
    # Batch Job Polling
    # =================================================================
    batch_poll_interval_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds to wait between batch job status checks"
    )

    batch_max_poll_attempts: int = Field(
        default=300,
        ge=1,
        description="""
        Maximum number of status checks before the batch job is reported as
        timed out. With the default interval this is a 10 minute budget.
        """
    )

    recognizer_create_timeout_seconds: int = Field(
        default=120,
        description="Timeout in seconds while waiting for recognizer creation"
    )

    # =================================================================
    # Speaker Diarization Configuration
    # =================================================================
    diarization_min_speakers: int = Field(
        default=2,
        description="Minimum number of speakers for native diarization"
    )

    diarization_max_speakers: int = Field(
        default=2,
        description="Maximum number of speakers for native diarization"
    )

    # =================================================================
    # Ollama Configuration
    # =================================================================
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server URL. Default is local installation."
    )

    ollama_model: str = Field(
        default="llama3.1",
        description="""
        Ollama model used for SOAP notes, insights, prescriptions,
        translation, question answering and diarization-by-text.

        Multilingual transcripts (Malayalam, Arabic, Hindi) need a model
        with reasonable coverage of those languages.
        """
    )

    ollama_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="""
        Temperature for text generation (0.0 - 2.0)

        For medical documentation, lower is better for consistency.
        """
    )

    ollama_timeout: int = Field(
        default=120,
        description="Timeout in seconds for Ollama requests"
    )

    ollama_context_window: int = Field(
        default=8192,
        description="Context window size for Ollama model (tokens)"
    )

    # =================================================================
    # Processing Configuration
    # =================================================================
    max_upload_size_mb: int = Field(
        default=50,
        description="Maximum size of an uploaded consultation recording"
    )

    supported_audio_mime_types: list[str] = Field(
        default=[
            "audio/wav",
            "audio/x-wav",
            "audio/wave",
            "audio/mpeg",
            "audio/mp3",
            "audio/webm",
            "audio/ogg",
            "audio/mp4",
            "audio/m4a",
            "audio/flac",
            "video/webm",
        ],
        description="MIME types accepted for transcription"
    )

    assistant_context_max_chars: int = Field(
        default=20000,
        description="Clinical context longer than this is truncated before question answering"
    )

    output_dir: str = Field(
        default="./output",
        description="Directory for CLI output files"
    )

    # =================================================================
    # API Configuration
    # =================================================================
    api_host: str = Field(default="0.0.0.0", description="API bind host")
    api_port: int = Field(default=8000, description="API bind port")
    api_debug: bool = Field(
        default=False,
        description="Include exception details in 500 responses"
    )

    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Origins allowed to call the API from a browser"
    )

    cors_allow_credentials: bool = Field(default=True)

    rate_limit: str = Field(
        default="20/minute",
        description="slowapi rate limit applied to the processing endpoints"
    )

    use_mock_backends: bool = Field(
        default=False,
        description="Serve the API with in-memory storage, speech and LLM fakes (local demos)"
    )

    # =================================================================
    # Logging Configuration
    # =================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Python logging format string"
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached singleton).

    Using lru_cache ensures we only parse environment variables once.
    For testing, you can clear the cache:
        get_settings.cache_clear()

    Returns:
        Settings: Application settings instance
    """
    return Settings()


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a Settings instance with custom values for testing.

    Example:
        settings = get_settings_for_testing(
            batch_poll_interval_seconds=0,
            batch_max_poll_attempts=3
        )

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: New Settings instance with overrides applied
    """
    return Settings(**overrides)
