import json

import pytest

from core.soap_generator import SOAPGenerator, fallback_soap_note
from core.text_generator import MockTextGenerator, parse_json_response
from exceptions import OllamaConnectionError
from models import SOAPNote, Utterance


FULL_NOTE = {
    "title": "Acute Febrile Illness",
    "summary": "Three days of fever.",
    "subjective": {
        "chiefComplaint": "Fever",
        "historyOfPresentIllness": "Fever for three days with chills.",
    },
    "objective": {
        "vitals": {"temperature": "38.5 C", "bloodPressure": "120/80", "pulse": "96", "respiratoryRate": "18"},
        "appearance": ["Flushed", "Alert"],
    },
    "assessment": "Likely viral fever.",
    "plan": "Paracetamol 500 mg, fluids, review in 3 days.",
}


class TestParseJsonResponse:

    def test_code_fences_stripped(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_empty_response(self):
        with pytest.raises(ValueError):
            parse_json_response("  ")


class TestSOAPNoteDefaults:

    def test_empty_object_gets_every_default(self):
        note = SOAPNote.from_generation({})

        assert note.title == "Consultation Note"
        assert note.subjective.chief_complaint == "Not documented"
        assert note.subjective.history_of_present_illness == "Not documented"
        assert note.objective.vitals.temperature == "Not recorded"
        assert note.objective.vitals.respiratory_rate == "Not recorded"
        assert note.objective.appearance == ["Not recorded"]
        assert note.assessment == "Not documented"
        assert note.plan == "No specific plan documented"

    def test_blank_and_null_fields_are_defaulted(self):
        note = SOAPNote.from_generation({
            "title": "  ",
            "subjective": {"chiefComplaint": None},
            "objective": {"vitals": {"pulse": ""}, "appearance": "Pale"},
            "actionPlan": "Rest",
        })

        assert note.title == "Consultation Note"
        assert note.subjective.chief_complaint == "Not documented"
        assert note.objective.vitals.pulse == "Not recorded"
        assert note.objective.appearance == ["Pale"]
        assert note.plan == "Rest"

    def test_camel_case_serialization(self):
        payload = SOAPNote.from_generation(FULL_NOTE).model_dump(by_alias=True)

        assert payload["subjective"]["chiefComplaint"] == "Fever"
        assert payload["objective"]["vitals"]["bloodPressure"] == "120/80"


class TestSOAPGenerator:

    def test_generates_complete_note(self):
        generator = MockTextGenerator(responses=[json.dumps(FULL_NOTE)])

        result = SOAPGenerator(generator).generate("fever for three days")

        assert not result.degraded
        assert result.value.title == "Acute Febrile Illness"
        assert result.value.objective.appearance == ["Flushed", "Alert"]
        assert generator.calls[0]["json_mode"] is True

    def test_utterances_preferred_in_prompt(self):
        generator = MockTextGenerator(responses=["{}"])
        utterances = [
            Utterance(speaker="DOCTOR", text="What brings you in?", start_ms=0, end_ms=900),
            Utterance(speaker="Speaker B", text="A cough.", start_ms=1000, end_ms=1500),
        ]

        SOAPGenerator(generator).generate("what brings you in a cough", utterances)

        prompt = generator.calls[0]["user_prompt"]
        assert "Speaker DOCTOR: What brings you in?" in prompt
        assert "A cough." in prompt

    def test_backend_failure_returns_fallback_note(self):
        generator = MockTextGenerator(responses=[OllamaConnectionError("http://localhost:11434", "refused")])

        result = SOAPGenerator(generator).generate("fever")

        assert result.degraded
        assert result.value == fallback_soap_note()
        assert result.value.title.startswith("Fallback Note")

    def test_non_object_json_returns_fallback_note(self):
        generator = MockTextGenerator(responses=['["not", "a", "note"]'])

        result = SOAPGenerator(generator).generate("fever")

        assert result.degraded
        assert result.value.plan == "Follow-up and treatment plan"

    def test_empty_transcript_skips_backend(self):
        generator = MockTextGenerator()

        result = SOAPGenerator(generator).generate("   ", [])

        assert result.degraded
        assert result.reason == "empty transcript"
        assert generator.call_count == 0

    def test_fallback_note_is_complete(self):
        note = fallback_soap_note()

        for value in (note.title, note.summary, note.subjective.chief_complaint,
                      note.subjective.history_of_present_illness, note.assessment, note.plan):
            assert value.strip()
        assert note.objective.appearance
