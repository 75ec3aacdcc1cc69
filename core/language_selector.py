"""
Speech Backend Selector
=======================

Decides, before any network call, how a consultation in a given language is
transcribed:

1. Which language code and speech model the recognizer uses
2. Which recognizer resource holds that configuration (one per language, so
   settings never bleed from one language's batch job into another)
3. Whether speaker turns come from the backend's native diarization or from
   the LLM text-splitting fallback

The free-text label from the client ("Malayalam", "ml-IN", "English") is
resolved once into a ``Language`` and never re-parsed downstream.
"""

import logging
from typing import Optional

from models import DiarizationStrategy, Language, LanguagePipelineConfig


logger = logging.getLogger(__name__)

DEFAULT_RECOGNIZER_PREFIX = "consultscribe"


# Language -> (language code, speech model, diarization strategy)
# Chirp 2 has the better Malayalam/Arabic accuracy but no speaker diarization.
LANGUAGE_PROFILES: dict[Language, tuple[str, str, DiarizationStrategy]] = {
    Language.MALAYALAM: ("ml-IN", "chirp_2", DiarizationStrategy.LLM),
    Language.ARABIC: ("ar-BH", "chirp_2", DiarizationStrategy.LLM),
    Language.HINDI: ("hi-IN", "long", DiarizationStrategy.NATIVE),
    Language.ENGLISH: ("en-US", "long", DiarizationStrategy.NATIVE),
}


def resolve_language(label: Optional[str]) -> Language:
    """
    Resolve a free-text language label.

    Case-insensitive substring policy, checked in order:
    "malayalam" or exactly "ml-in", then "arabic"/"ar", then "hindi"/"hi",
    otherwise English. The short "ar"/"hi" checks are plain substring
    matches, so any label containing them resolves to Arabic or Hindi.

    Args:
        label: Language label as sent by the client (may be empty)

    Returns:
        The resolved Language
    """
    normalized = (label or "").strip().lower()

    if "malayalam" in normalized or normalized == "ml-in":
        return Language.MALAYALAM
    if "arabic" in normalized or "ar" in normalized:
        return Language.ARABIC
    if "hindi" in normalized or "hi" in normalized:
        return Language.HINDI
    return Language.ENGLISH


def recognizer_id_for(language_code: str, prefix: str = DEFAULT_RECOGNIZER_PREFIX) -> str:
    """Stable recognizer id for a language code, e.g. ``consultscribe-ml-in``."""
    return f"{prefix}-{language_code.lower()}"


def select_pipeline(
    requested_language: Optional[str],
    recognizer_prefix: str = DEFAULT_RECOGNIZER_PREFIX,
) -> LanguagePipelineConfig:
    """
    Build the pipeline configuration for a requested language.

    Pure and deterministic: the same label always yields an equal config.

    Args:
        requested_language: Free-text label ("Malayalam", "ml-IN", "English")
        recognizer_prefix: Prefix for the recognizer id

    Returns:
        LanguagePipelineConfig for the resolved language
    """
    language = resolve_language(requested_language)
    language_code, model_name, strategy = LANGUAGE_PROFILES[language]

    config = LanguagePipelineConfig(
        language=language,
        language_name=language.value,
        language_code=language_code,
        recognizer_id=recognizer_id_for(language_code, recognizer_prefix),
        model_name=model_name,
        native_diarization_supported=strategy == DiarizationStrategy.NATIVE,
        diarization_strategy=strategy,
    )

    logger.debug(
        f"Selected pipeline for '{requested_language}': {config.language_code}, "
        f"model={config.model_name}, diarization={config.diarization_strategy.value}"
    )
    return config
