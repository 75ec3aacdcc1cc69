"""
Core Processing Module
======================

Contains the consultation pipeline and its stages:
- timing: backend duration normalization
- language_selector: per-language speech configuration
- storage / speech_backend: Cloud Storage and Speech-to-Text v2 adapters
- transcriber: batch transcription job runner
- speaker_diarizer: native grouping and diarization by text
- soap_generator: always-complete SOAP notes
- clinical_assistant: insights, prescriptions, translation, Q&A
- documents: text extraction from patient PDF, DOCX and text files
- text_generator: Ollama text generation via LangChain
- pipeline: main orchestration
"""

from core.clinical_assistant import ClinicalAssistant
from core.documents import extract_document_text
from core.language_selector import resolve_language, select_pipeline
from core.pipeline import ConsultationPipeline, create_pipeline, save_result_to_file
from core.soap_generator import SOAPGenerator, fallback_soap_note
from core.speaker_diarizer import LLMDiarizer, canonical_speaker_label, group_by_speaker_tag
from core.text_generator import OllamaTextGenerator, create_text_generator
from core.timing import to_millis
from core.transcriber import BatchTranscriptionRunner

__all__ = [
    'ClinicalAssistant',
    'extract_document_text',
    'resolve_language',
    'select_pipeline',
    'ConsultationPipeline',
    'create_pipeline',
    'save_result_to_file',
    'SOAPGenerator',
    'fallback_soap_note',
    'LLMDiarizer',
    'canonical_speaker_label',
    'group_by_speaker_tag',
    'OllamaTextGenerator',
    'create_text_generator',
    'to_millis',
    'BatchTranscriptionRunner',
]
