"""
Clinical Assistant
==================

The LLM-backed helpers a clinician uses around a finished transcript:

1. **Key insights**: 3-5 short, strictly factual bullet points (best effort)
2. **Prescription draft**: medications plus free-text notes (fails loudly)
3. **Translation**: plain-text medical translation (falls back to the input)
4. **Question answering**: free-form questions over the patient's clinical
   context (fails loudly with a service-unavailable error)

Each helper has a different failure contract because each is consumed
differently: insights are decoration on the consultation view, while an
empty prescription or a fabricated answer would be misleading.
"""

import logging
from typing import Any, Optional

from config import Settings, get_settings
from core.prompts import (
    get_insights_prompt,
    get_prescription_prompt,
    get_question_prompt,
    get_translation_prompt,
)
from core.text_generator import TextGeneratorProtocol, parse_json_response
from exceptions import AssistantUnavailableError, PrescriptionGenerationError
from models import Medication, PatientContext, Prescription, StageResult


logger = logging.getLogger(__name__)

NO_ANSWER = "No specific answer found."
TRUNCATION_MARKER = "... (truncated)"


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


class ClinicalAssistant:
    """Insights, prescriptions, translation and Q&A over one text generator."""

    def __init__(
        self,
        text_generator: TextGeneratorProtocol,
        settings: Optional[Settings] = None
    ):
        self.text_generator = text_generator
        self.settings = settings or get_settings()

    def generate_insights(
        self,
        text: str,
        patient: Optional[PatientContext] = None
    ) -> StageResult[list[str]]:
        """
        Extract key clinical insights.

        Never raises; a failure yields an empty, degraded result.
        """
        if not (text or "").strip():
            return StageResult.ok([])

        try:
            system_prompt, user_prompt = get_insights_prompt(text, patient)
            response = self.text_generator.generate(system_prompt, user_prompt, json_mode=True)
            parsed = parse_json_response(response)
        except Exception as e:
            logger.warning(f"Insight generation failed: {e}")
            return StageResult.fallback([], f"insight generation failed: {e}")

        raw_insights = parsed.get("insights") if isinstance(parsed, dict) else parsed
        if not isinstance(raw_insights, list):
            logger.warning("Insight response had no 'insights' array")
            return StageResult.fallback([], "malformed insight response")

        insights = [_as_text(item) for item in raw_insights]
        insights = [item for item in insights if item]
        logger.info(f"Generated {len(insights)} insights")
        return StageResult.ok(insights)

    def generate_prescription(self, text: str) -> Prescription:
        """
        Draft a prescription from a consultation transcript.

        Raises:
            PrescriptionGenerationError: If generation or parsing fails
        """
        try:
            system_prompt, user_prompt = get_prescription_prompt(text)
            response = self.text_generator.generate(system_prompt, user_prompt, json_mode=True)
            parsed = parse_json_response(response)
        except Exception as e:
            logger.error(f"Prescription generation failed: {e}")
            raise PrescriptionGenerationError(str(e)) from e

        if not isinstance(parsed, dict):
            raise PrescriptionGenerationError("response was not a JSON object")

        medications = []
        for item in parsed.get("medications") or []:
            if not isinstance(item, dict):
                continue
            medications.append(Medication(
                name=_as_text(item.get("name")),
                dosage=_as_text(item.get("dosage")),
                frequency=_as_text(item.get("frequency")),
                duration=_as_text(item.get("duration")),
                instructions=_as_text(item.get("instructions")),
            ))

        prescription = Prescription(medications=medications, notes=_as_text(parsed.get("notes")))
        logger.info(f"Drafted prescription with {len(medications)} medications")
        return prescription

    def translate(self, text: str, target_language: str) -> str:
        """Translate medical text; on any failure the original text is returned."""
        try:
            system_prompt, user_prompt = get_translation_prompt(text, target_language)
            translated = self.text_generator.generate(system_prompt, user_prompt).strip()
        except Exception as e:
            logger.warning(f"Translation to {target_language} failed, returning original: {e}")
            return text

        if not translated:
            logger.warning(f"Empty translation to {target_language}, returning original")
            return text
        return translated

    def answer_question(self, prompt: str, context: Optional[str] = None) -> str:
        """
        Answer a free-form question over optional clinical context.

        Raises:
            AssistantUnavailableError: If the backend fails
        """
        context = context or ""
        limit = self.settings.assistant_context_max_chars
        if len(context) > limit:
            logger.debug(f"Truncating clinical context from {len(context)} to {limit} chars")
            context = context[:limit] + TRUNCATION_MARKER

        try:
            system_prompt, user_prompt = get_question_prompt(prompt, context)
            answer = self.text_generator.generate(system_prompt, user_prompt)
        except Exception as e:
            logger.error(f"Question answering failed: {e}")
            raise AssistantUnavailableError(str(e)) from e

        return answer.strip() or NO_ANSWER
