import json

import pytest

from core.clinical_assistant import NO_ANSWER, TRUNCATION_MARKER, ClinicalAssistant
from core.text_generator import MockTextGenerator
from exceptions import AssistantUnavailableError, PrescriptionGenerationError, TextGenerationError
from models import PatientContext


@pytest.fixture
def make_assistant(settings):
    def _make(*responses):
        generator = MockTextGenerator(responses=list(responses))
        return ClinicalAssistant(generator, settings=settings), generator
    return _make


class TestInsights:

    def test_insights_extracted(self, make_assistant):
        assistant, generator = make_assistant(json.dumps({"insights": [" Fever 3 days ", "", "Cough"]}))

        result = assistant.generate_insights(
            "fever and cough", PatientContext(age="34", gender="F", nationality="Indian")
        )

        assert result.value == ["Fever 3 days", "Cough"]
        assert not result.degraded
        prompt = generator.calls[0]["user_prompt"]
        assert prompt.startswith("Patient Context: Age 34, Gender F, Nationality Indian.")
        assert prompt.endswith("Transcript: fever and cough")

    def test_unknown_demographics(self, make_assistant):
        assistant, generator = make_assistant('{"insights": []}')

        assistant.generate_insights("fever")

        assert "Age Unknown, Gender Unknown, Nationality Unknown" in generator.calls[0]["user_prompt"]

    def test_bare_array_accepted(self, make_assistant):
        assistant, _ = make_assistant('["Fever"]')

        assert assistant.generate_insights("fever").value == ["Fever"]

    def test_failure_degrades_to_empty_list(self, make_assistant):
        assistant, _ = make_assistant(TextGenerationError("timeout"))

        result = assistant.generate_insights("fever")

        assert result.value == []
        assert result.degraded

    def test_malformed_response(self, make_assistant):
        assistant, _ = make_assistant('{"insights": "Fever"}')

        result = assistant.generate_insights("fever")

        assert result.value == []
        assert result.reason == "malformed insight response"

    def test_empty_text_skips_backend(self, make_assistant):
        assistant, generator = make_assistant()

        assert assistant.generate_insights("  ").value == []
        assert generator.call_count == 0


class TestPrescription:

    def test_medications_parsed(self, make_assistant):
        assistant, _ = make_assistant(json.dumps({
            "medications": [
                {"name": "Paracetamol", "dosage": "500 mg", "frequency": "TID", "duration": "5 days",
                 "instructions": "After food"},
                {"name": "ORS", "dosage": None},
                "junk",
            ],
            "notes": "Viral fever",
        }))

        prescription = assistant.generate_prescription("take paracetamol")

        assert [m.name for m in prescription.medications] == ["Paracetamol", "ORS"]
        assert prescription.medications[0].instructions == "After food"
        assert prescription.medications[1].dosage == ""
        assert prescription.notes == "Viral fever"

    def test_empty_object_is_empty_prescription(self, make_assistant):
        assistant, _ = make_assistant("{}")

        prescription = assistant.generate_prescription("chat about the weather")

        assert prescription.medications == []
        assert prescription.notes == ""

    def test_failure_raises(self, make_assistant):
        assistant, _ = make_assistant("not json")

        with pytest.raises(PrescriptionGenerationError):
            assistant.generate_prescription("take paracetamol")

    def test_non_object_raises(self, make_assistant):
        assistant, _ = make_assistant("[]")

        with pytest.raises(PrescriptionGenerationError):
            assistant.generate_prescription("take paracetamol")


class TestTranslation:

    def test_translated_text_returned(self, make_assistant):
        assistant, generator = make_assistant("  പനി  ")

        assert assistant.translate("fever", "Malayalam") == "പനി"
        assert generator.calls[0]["json_mode"] is False
        assert "Malayalam" in generator.calls[0]["user_prompt"]

    def test_failure_returns_original(self, make_assistant):
        assistant, _ = make_assistant(TextGenerationError("down"))

        assert assistant.translate("fever", "Hindi") == "fever"

    def test_empty_response_returns_original(self, make_assistant):
        assistant, _ = make_assistant("   ")

        assert assistant.translate("fever", "Arabic") == "fever"


class TestQuestionAnswering:

    def test_context_in_system_prompt(self, make_assistant):
        assistant, generator = make_assistant("Amoxicillin allergy.")

        answer = assistant.answer_question("Any allergies?", "Allergic to amoxicillin")

        assert answer == "Amoxicillin allergy."
        call = generator.calls[0]
        assert "CLINICAL CONTEXT FROM PATIENT RECORDS:\nAllergic to amoxicillin" in call["system_prompt"]
        assert call["user_prompt"] == "Any allergies?"

    def test_long_context_truncated(self, make_assistant, settings):
        assistant, generator = make_assistant("ok")
        limit = settings.assistant_context_max_chars

        assistant.answer_question("Summary?", "x" * (limit + 500))

        system_prompt = generator.calls[0]["system_prompt"]
        assert system_prompt.endswith("x" * limit + TRUNCATION_MARKER)

    def test_empty_answer(self, make_assistant):
        assistant, _ = make_assistant("   ")

        assert assistant.answer_question("Anything?") == NO_ANSWER

    def test_failure_raises_unavailable(self, make_assistant):
        assistant, _ = make_assistant(TextGenerationError("down"))

        with pytest.raises(AssistantUnavailableError) as exc_info:
            assistant.answer_question("Anything?")

        assert exc_info.value.message == "AI service unavailable"
