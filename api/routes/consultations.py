"""
Consultation Endpoints
======================

Synchronous processing endpoints used by the scribe UI:

- ``POST /transcribe``: audio -> speaker-labeled transcript
- ``POST /process``: audio -> transcript, SOAP note and insights
- ``POST /generate-soap``: transcript -> SOAP note (always complete)
- ``POST /generate-insights``: transcript -> key insights
- ``POST /generate-prescription``: transcript -> prescription draft
- ``POST /translate``: medical text -> target language
- ``POST /ask``: free-form question over clinical context
- ``POST /extract-text``: patient document (PDF, DOCX, text) -> plain text

Blocking work (batch speech jobs, LLM calls) runs in worker threads so the
event loop stays responsive. Errors are rendered by the global error
handler middleware.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile, status

from api.dependencies import get_assistant, get_pipeline
from api.middleware.rate_limiter import PROCESSING_RATE_LIMIT, limiter
from api.models.requests import (
    AskRequest,
    GenerateSOAPRequest,
    InsightsRequest,
    PrescriptionRequest,
    TranslateRequest,
)
from api.models.responses import AnswerResponse, ExtractTextResponse, InsightsResponse, TranslationResponse
from core.clinical_assistant import ClinicalAssistant
from core.documents import extract_document_text
from core.pipeline import ConsultationPipeline
from models import ConsultationResult, PatientContext, Prescription, SOAPNote, TranscriptionResult


logger = logging.getLogger(__name__)

router = APIRouter()

DEGRADED_HEADER = "X-ConsultScribe-Degraded"


@router.post(
    "/transcribe",
    response_model=TranscriptionResult,
    summary="Transcribe a consultation recording",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def transcribe(
    request: Request,
    audio: UploadFile = File(..., description="Consultation recording"),
    language: str = Form(default="English", description="Language label, e.g. Malayalam or ml-IN"),
    pipeline: ConsultationPipeline = Depends(get_pipeline),
) -> TranscriptionResult:
    audio_bytes = await audio.read()
    logger.info(f"Transcribe request: {len(audio_bytes)} bytes, {audio.content_type}, {language}")
    return await pipeline.atranscribe(audio_bytes, audio.content_type or "", language)


@router.post(
    "/process",
    response_model=ConsultationResult,
    summary="Transcribe and document a consultation",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def process_consultation(
    request: Request,
    audio: UploadFile = File(..., description="Consultation recording"),
    language: str = Form(default="English"),
    age: Optional[str] = Form(default=None),
    gender: Optional[str] = Form(default=None),
    nationality: Optional[str] = Form(default=None),
    pipeline: ConsultationPipeline = Depends(get_pipeline),
) -> ConsultationResult:
    audio_bytes = await audio.read()
    patient = PatientContext(age=age, gender=gender, nationality=nationality)
    logger.info(f"Process request: {len(audio_bytes)} bytes, {audio.content_type}, {language}")
    return await pipeline.aprocess(audio_bytes, audio.content_type or "", language, patient)


@router.post(
    "/generate-soap",
    response_model=SOAPNote,
    summary="Generate a SOAP note from a transcript",
    description="Always returns a complete note. The degraded header is set when the fallback note was used.",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def generate_soap(
    request: Request,
    body: GenerateSOAPRequest,
    response: Response,
    pipeline: ConsultationPipeline = Depends(get_pipeline),
) -> SOAPNote:
    utterances = [u.to_utterance() for u in body.utterances]
    if not body.text.strip() and not any(u.text.strip() for u in utterances):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing text or utterances"
        )

    result = await pipeline.agenerate_soap_only(body.text, utterances)
    if result.degraded:
        response.headers[DEGRADED_HEADER] = "true"
    return result.value


@router.post(
    "/generate-insights",
    response_model=InsightsResponse,
    summary="Extract key clinical insights",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def generate_insights(
    request: Request,
    body: InsightsRequest,
    assistant: ClinicalAssistant = Depends(get_assistant),
) -> InsightsResponse:
    result = await asyncio.to_thread(assistant.generate_insights, body.text, body.patient)
    return InsightsResponse(insights=result.value, degraded=result.degraded)


@router.post(
    "/generate-prescription",
    response_model=Prescription,
    summary="Draft a prescription from a transcript",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def generate_prescription(
    request: Request,
    body: PrescriptionRequest,
    assistant: ClinicalAssistant = Depends(get_assistant),
) -> Prescription:
    return await asyncio.to_thread(assistant.generate_prescription, body.text)


@router.post(
    "/translate",
    response_model=TranslationResponse,
    summary="Translate medical text",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def translate(
    request: Request,
    body: TranslateRequest,
    assistant: ClinicalAssistant = Depends(get_assistant),
) -> TranslationResponse:
    translated = await asyncio.to_thread(assistant.translate, body.text, body.target_language)
    return TranslationResponse(translated_text=translated)


@router.post(
    "/ask",
    response_model=AnswerResponse,
    summary="Ask a clinical question",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def ask(
    request: Request,
    body: AskRequest,
    assistant: ClinicalAssistant = Depends(get_assistant),
) -> AnswerResponse:
    answer = await asyncio.to_thread(assistant.answer_question, body.prompt, body.context)
    return AnswerResponse(answer=answer)


@router.post(
    "/extract-text",
    response_model=ExtractTextResponse,
    summary="Extract text from a patient document",
    description="PDF, DOCX and text files are read; other types return empty text.",
)
@limiter.limit(PROCESSING_RATE_LIMIT)
async def extract_text(
    request: Request,
    file: UploadFile = File(..., description="Patient record document"),
) -> ExtractTextResponse:
    data = await file.read()
    text = await asyncio.to_thread(
        extract_document_text, data, file.content_type or "", file.filename or "document"
    )
    return ExtractTextResponse(text=text)
