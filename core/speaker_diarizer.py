"""
Speaker Diarization
===================

Turns a flat, time-ordered word list into speaker-labeled utterances. Which
path runs depends on the language's diarization strategy:

1. **Native grouping** (English, Hindi): the speech backend tagged each word
   with a speaker. Consecutive words with the same tag become one utterance.
2. **Diarization by text** (Malayalam, Arabic): the backend model has no
   speaker tags, so the text-generation backend splits the transcript into
   Doctor / Patient / Caregiver turns and each turn is re-aligned onto the
   word timeline by its word count.

Speaker label policy
--------------------
Backend tags are normalized once by ``canonical_speaker_label``:

    "1" -> "Speaker A" -> "DOCTOR"
    "2" -> "Speaker B"
    "b" -> "Speaker B"
    "30" -> "Speaker 30"

Only "Speaker A" receives a semantic role. Diarization by text uses its own
closed vocabulary (Doctor, Patient, Caregiver, Unknown).
"""

import logging
from typing import Any, Optional, Sequence

from core.prompts import get_diarization_prompt
from core.text_generator import TextGeneratorProtocol, parse_json_response
from models import StageResult, Utterance, Word


logger = logging.getLogger(__name__)

DEFAULT_SPEAKER_TAG = "1"
DOCTOR_LABEL = "DOCTOR"
FIRST_SPEAKER_LABEL = "Speaker A"
UNKNOWN_SPEAKER = "Unknown"

ROLE_VOCABULARY = {
    "doctor": "Doctor",
    "patient": "Patient",
    "caregiver": "Caregiver",
}


def _utterance_from_words(speaker: str, words: Sequence[Word]) -> Utterance:
    return Utterance(
        speaker=speaker,
        text=" ".join(w.text for w in words),
        start_ms=words[0].start_ms,
        end_ms=words[-1].end_ms,
    )


# =============================================================================
# Native Diarization Grouper
# =============================================================================

def canonical_speaker_label(tag: Optional[Any]) -> str:
    """
    Map a raw backend speaker tag to its display label.

    Numeric tags 1..26 become ``Speaker <A..Z>``, other numbers
    ``Speaker <n>``, a single letter ``Speaker <LETTER>``. Anything else is
    kept as-is. The result "Speaker A" is then rewritten to "DOCTOR".
    """
    raw = str(tag).strip() if tag is not None else ""
    if not raw:
        raw = DEFAULT_SPEAKER_TAG

    if raw.isdecimal():
        number = int(raw)
        label = f"Speaker {chr(64 + number)}" if 1 <= number <= 26 else f"Speaker {number}"
    elif len(raw) == 1 and raw.isalpha():
        label = f"Speaker {raw.upper()}"
    else:
        label = raw

    return DOCTOR_LABEL if label == FIRST_SPEAKER_LABEL else label


def group_by_speaker_tag(
    words: Sequence[Word],
    speaker_tags: Sequence[Optional[str]],
    full_text: str = ""
) -> list[Utterance]:
    """
    Merge consecutive same-speaker words into utterances.

    Args:
        words: Recognized words
        speaker_tags: Backend tags aligned with ``words``; missing entries
            default to "1"
        full_text: Backend transcript, used only when no words exist

    Returns:
        Utterances ordered by start time. Every input word appears in
        exactly one utterance.
    """
    tags = list(speaker_tags or [])
    paired = [
        (word, tags[i] if i < len(tags) else None)
        for i, word in enumerate(words)
    ]
    paired.sort(key=lambda item: item[0].start_ms)

    utterances: list[Utterance] = []
    current_label: Optional[str] = None
    current_words: list[Word] = []

    for word, tag in paired:
        label = canonical_speaker_label(tag)
        if current_words and label != current_label:
            utterances.append(_utterance_from_words(current_label, current_words))
            current_words = []
        current_label = label
        current_words.append(word)

    if current_words:
        utterances.append(_utterance_from_words(current_label, current_words))

    if not utterances and full_text.strip():
        return [Utterance(speaker=FIRST_SPEAKER_LABEL, text=full_text.strip(), start_ms=0, end_ms=0)]

    logger.debug(f"Grouped {len(words)} words into {len(utterances)} utterances")
    return utterances


# =============================================================================
# LLM Diarization Fallback
# =============================================================================

def normalize_role_label(speaker: Any) -> str:
    """Map a model-returned speaker to Doctor / Patient / Caregiver / Unknown."""
    return ROLE_VOCABULARY.get(str(speaker or "").strip().lower(), UNKNOWN_SPEAKER)


def extract_segments(parsed: Any) -> list[dict]:
    """Accept a bare JSON array or an object wrapping ``segments``/``turns``."""
    if isinstance(parsed, dict):
        parsed = parsed.get("segments") or parsed.get("turns") or []
    if not isinstance(parsed, list):
        return []
    return [item for item in parsed if isinstance(item, dict)]


class LLMDiarizer:
    """
    Diarization by text for languages without native speaker tags.

    Never raises: any failure produces a single "Unknown" utterance that
    spans the whole recording, reported as a degraded result.
    """

    def __init__(self, text_generator: TextGeneratorProtocol):
        self.text_generator = text_generator

    def diarize_by_text(
        self,
        words: Sequence[Word],
        language_name: str
    ) -> StageResult[list[Utterance]]:
        """
        Split an unlabeled word list into speaker turns.

        Args:
            words: Time-ordered recognized words
            language_name: Human-readable transcript language for the prompt

        Returns:
            StageResult whose value is the list of utterances
        """
        if not words:
            return StageResult.ok([])

        full_text = " ".join(w.text for w in words)
        logger.info(f"Diarizing {len(words)} {language_name} words by text")

        try:
            system_prompt, user_prompt = get_diarization_prompt(full_text, language_name)
            response = self.text_generator.generate(system_prompt, user_prompt, json_mode=True)
            segments = extract_segments(parse_json_response(response))
        except Exception as e:
            logger.warning(f"Diarization by text failed, using single utterance: {e}")
            return self._fallback(words, full_text, f"diarization failed: {e}")

        utterances = self._realign(words, segments)
        if not utterances:
            logger.warning("Diarization by text returned no usable segments")
            return self._fallback(words, full_text, "no segments returned")

        logger.info(f"Diarization by text produced {len(utterances)} utterances")
        return StageResult.ok(utterances)

    def _fallback(
        self,
        words: Sequence[Word],
        full_text: str,
        reason: str
    ) -> StageResult[list[Utterance]]:
        utterance = Utterance(
            speaker=UNKNOWN_SPEAKER,
            text=full_text,
            start_ms=words[0].start_ms,
            end_ms=words[-1].end_ms,
        )
        return StageResult.fallback([utterance], reason)

    def _realign(self, words: Sequence[Word], segments: list[dict]) -> list[Utterance]:
        """
        Map each segment onto the next N words, N being its token count.

        Utterance text is rebuilt from the consumed words. Token mismatches
        are logged, not repaired; words left after the last segment are
        appended to the final utterance.
        """
        utterances: list[Utterance] = []
        position = 0
        mismatches = 0

        for segment in segments:
            tokens = str(segment.get("text") or "").split()
            if not tokens:
                continue
            if position >= len(words):
                break

            consumed = words[position:position + len(tokens)]
            position += len(consumed)
            if tokens[:len(consumed)] != [w.text for w in consumed] or len(tokens) != len(consumed):
                mismatches += 1

            utterances.append(
                _utterance_from_words(normalize_role_label(segment.get("speaker")), consumed)
            )

        if utterances and position < len(words):
            leftover = words[position:]
            last = utterances[-1]
            logger.warning(f"{len(leftover)} words not covered by segments, appending to last turn")
            utterances[-1] = Utterance(
                speaker=last.speaker,
                text=" ".join([last.text] + [w.text for w in leftover]),
                start_ms=last.start_ms,
                end_ms=leftover[-1].end_ms,
            )

        if mismatches:
            logger.warning(
                f"{mismatches} of {len(utterances)} segments did not reproduce the "
                f"transcript verbatim; timings may drift"
            )
        return utterances
