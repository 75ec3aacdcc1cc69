"""
Clinical Prompts for ConsultScribe
==================================

All prompts sent to the text-generation backend live here. Each builder
returns a ``(system_prompt, user_prompt)`` tuple so the generator can keep
the role definition and the task input in separate chat messages.

Prompt design rules shared by every task:

1. **No hallucinations**: only extract what is explicitly said
2. **Fixed schemas**: JSON tasks spell out the exact keys they expect
3. **Multilingual input**: transcripts may be Malayalam, Arabic, Hindi or
   English; clinical output is written in professional English unless the
   task is translation
"""

from typing import Optional

from models import PatientContext, Utterance


# =============================================================================
# SOAP Note
# =============================================================================

SOAP_SYSTEM_PROMPT = """You are an expert medical scribe.
Your task is to extract medical info from a consultation transcript.

CRITICAL INSTRUCTIONS:
1. **NO HALLUCINATIONS**: If a symptom, vital, or diagnosis is NOT in the transcript, DO NOT INVENT IT.
   - If the transcript is not medical (e.g. random text about the weather or politics), return a JSON where the title is "Non-Medical Content" and the summary is "The transcript does not contain medical information.".
2. **STRICT EXTRACTION**:
   - Vitals: Only output values if explicitly spoken. Otherwise "Not recorded".
   - Diagnosis: Only list what is discussed.
3. **LANGUAGE**: The transcript may be in Malayalam, Arabic, Hindi, or English. Translate the *meaning* into professional English for the SOAP note.

Return a JSON object with this exact structure:
{
  "title": "Short title or 'Non-Medical Content'",
  "summary": "Brief summary of the medical problem. If unrelated to health, state that.",
  "subjective": {
    "chiefComplaint": "Main complaint in the patient's words",
    "historyOfPresentIllness": "Onset, duration, severity, associated symptoms"
  },
  "objective": {
    "vitals": {
      "temperature": "38°C or Not recorded",
      "bloodPressure": "120/80 or Not recorded",
      "pulse": "72 bpm or Not recorded",
      "respiratoryRate": "16/min or Not recorded"
    },
    "appearance": ["alert"]
  },
  "assessment": "Diagnosis or 'No diagnosis'",
  "plan": "Plan or 'No plan'"
}"""


def format_conversation(utterances: list[Utterance]) -> str:
    """Render utterances as ``Speaker <label>: <text>`` blocks."""
    return "\n\n".join(
        f"Speaker {u.speaker}: {u.text}" for u in utterances if u.text.strip()
    )


def get_soap_prompt(text: str, utterances: Optional[list[Utterance]] = None) -> tuple[str, str]:
    """
    Build the SOAP note prompt.

    The speaker-labeled conversation is preferred; the plain transcript is
    used when there are no utterances.
    """
    conversation = format_conversation(utterances or []) or text
    return SOAP_SYSTEM_PROMPT, f"Consultation Transcript:\n{conversation}"


# =============================================================================
# Key Insights
# =============================================================================

INSIGHTS_SYSTEM_PROMPT = """You are an expert medical consultant. Extract 3-5 concise, high-value medical insights.

CRITICAL RULES:
1. **NO HALLUCINATION**: If the transcript contains NO medical information, return an empty array.
2. **STRICT FACTUALITY**: Only generate insights based on what is EXPLICITLY said. Do not infer symptoms that aren't there.
3. **FOCUS**:
   - Critical Vitals/Labs (only if stated)
   - New Diagnosis/Risks (only if stated)
   - Medication Changes
   - Immediate Action Items
4. **FORMAT**: Keep each insight under 12 words. Direct and punchy.
5. **LANGUAGE**: Parse the meaning of the input (English/Malayalam/Hindi/Arabic) but output insights in English.

Return ONLY a JSON object with a property "insights" containing an array of strings."""


def get_insights_prompt(text: str, patient: Optional[PatientContext] = None) -> tuple[str, str]:
    """Build the key-insights prompt, prefixed with patient demographics."""
    patient = patient or PatientContext()
    context = (
        f"Patient Context: Age {patient.age or 'Unknown'}, "
        f"Gender {patient.gender or 'Unknown'}, "
        f"Nationality {patient.nationality or 'Unknown'}."
    )
    return INSIGHTS_SYSTEM_PROMPT, f"{context} Transcript: {text}"


# =============================================================================
# Prescription
# =============================================================================

PRESCRIPTION_SYSTEM_PROMPT = """You are an expert medical practitioner. Your task is to draft a prescription based on the consultation transcript.

1. **EXTRACT** any medications explicitly mentioned or prescribed.
2. **SUGGEST** appropriate standard medications if the transcript describes a condition but no specific drugs are mentioned.

Return a strictly formatted JSON object with the following schema:
{
  "medications": [
    {
      "name": "string",
      "dosage": "string",
      "frequency": "string",
      "duration": "string",
      "instructions": "string"
    }
  ],
  "notes": "string"
}

Important:
- "notes" must be a SINGLE string containing diagnosis or advice. Do not return an array or object for notes.
- If a field is unknown, use an empty string "", do NOT use null.
- Ensure the JSON is valid."""


def get_prescription_prompt(text: str) -> tuple[str, str]:
    return PRESCRIPTION_SYSTEM_PROMPT, f"Transcript:\n{text}"


# =============================================================================
# Translation and Question Answering
# =============================================================================

TRANSLATION_SYSTEM_PROMPT = "You are a professional medical translator."


def get_translation_prompt(text: str, target_language: str) -> tuple[str, str]:
    user_prompt = (
        f"Translate the following medical text accurately into {target_language}. "
        "Maintain professional medical terminology. Return ONLY the translated text. "
        f'Do not add any conversational filler.\n\nText:\n"{text}"'
    )
    return TRANSLATION_SYSTEM_PROMPT, user_prompt


def get_question_prompt(question: str, context: str = "") -> tuple[str, str]:
    """
    Build the free-form clinical question prompt.

    ``context`` is expected to be truncated by the caller already.
    """
    if context:
        system_prompt = (
            "You are a helpful medical assistant. Answer the user question based on "
            "the provided clinical context.\n\n"
            f"CLINICAL CONTEXT FROM PATIENT RECORDS:\n{context}"
        )
    else:
        system_prompt = (
            "You are a helpful medical assistant. Answer the user question based on "
            "the provided clinical context if available."
        )
    return system_prompt, question


# =============================================================================
# Diarization by Text
# =============================================================================

DIARIZATION_SYSTEM_PROMPT = """You are an expert medical transcription assistant.
You segment raw consultation transcripts into speaker turns.
You never change, add, or remove words."""


def get_diarization_prompt(text: str, language_name: str) -> tuple[str, str]:
    """
    Build the prompt that splits an unlabeled transcript into turns.

    The model must reproduce the input verbatim, since each returned
    segment is re-aligned onto the word timeline by its word count.
    """
    user_prompt = f"""I will provide a raw transcript of a consultation in {language_name}.
The transcript currently has NO speaker labels.

Your task is to SEGMENT the text into turns for:
- "Doctor"
- "Patient"
- "Caregiver" (if applicable)

INPUT TEXT ({language_name}):
"{text}"

INSTRUCTIONS:
1. Split the text into logical turns based on context.
2. Return a JSON object {{"segments": [{{"speaker": "Doctor" | "Patient" | "Caregiver", "text": "..."}}]}}.
3. CRITICAL: Do NOT change, add, or remove words. The text in the segments must MATCH the input text exactly, in order."""
    return DIARIZATION_SYSTEM_PROMPT, user_prompt
