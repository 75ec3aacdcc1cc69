"""
SOAP Note Generator for ConsultScribe
=====================================

Converts a speaker-labeled consultation transcript into a structured SOAP
note using the text-generation backend in JSON mode.

Guarantee
---------
``generate`` always returns a complete note:

1. Fields the model omits or leaves blank receive documented defaults
   ("Not recorded", "Not documented", "No specific plan documented")
2. If generation fails outright (network error, invalid JSON, a JSON value
   that is not an object) the fixed fallback note is returned instead, and
   the result is marked degraded

Callers therefore never have to handle a structurally incomplete note.
"""

import logging
from typing import Optional, Sequence

from core.prompts import get_soap_prompt
from core.text_generator import TextGeneratorProtocol, parse_json_response
from models import SOAPNote, StageResult, Utterance


logger = logging.getLogger(__name__)


def fallback_soap_note() -> SOAPNote:
    """The clearly-labeled placeholder note used when generation fails."""
    return SOAPNote.fallback()


class SOAPGenerator:
    """
    SOAP note generation on top of any ``TextGeneratorProtocol``.

    Usage:
        generator = SOAPGenerator(OllamaTextGenerator())
        result = generator.generate(transcript.full_text, transcript.utterances)
        note = result.value  # always complete
    """

    def __init__(self, text_generator: TextGeneratorProtocol):
        self.text_generator = text_generator

    def generate(
        self,
        text: str,
        utterances: Optional[Sequence[Utterance]] = None
    ) -> StageResult[SOAPNote]:
        """
        Generate a SOAP note from a transcript.

        Args:
            text: Full transcript text
            utterances: Speaker-labeled turns (preferred over ``text`` when present)

        Returns:
            StageResult with a complete SOAPNote; degraded when the fallback
            note was used
        """
        utterances = list(utterances or [])
        if not (text or "").strip() and not any(u.text.strip() for u in utterances):
            logger.warning("Empty transcript, returning fallback SOAP note")
            return StageResult.fallback(fallback_soap_note(), "empty transcript")

        logger.info(
            f"Generating SOAP note ({len(text or '')} chars, {len(utterances)} utterances)"
        )

        try:
            system_prompt, user_prompt = get_soap_prompt(text or "", utterances)
            response = self.text_generator.generate(system_prompt, user_prompt, json_mode=True)
            raw = parse_json_response(response)
            if not isinstance(raw, dict):
                raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
        except Exception as e:
            logger.warning(f"SOAP generation failed, using fallback note: {e}")
            return StageResult.fallback(fallback_soap_note(), f"SOAP generation failed: {e}")

        note = SOAPNote.from_generation(raw)
        logger.info(f"SOAP note generated: {note.title}")
        return StageResult.ok(note)
