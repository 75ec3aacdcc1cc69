"""
Global Error Handler Middleware
===============================

Maps ConsultScribe exceptions to HTTP status codes and renders them with
``ConsultScribeError.to_dict()``.

Status policy:
- Client mistakes (empty, oversized, unsupported audio): 400 / 413 / 415
- Upstream cloud failures (storage, speech): 502, timeouts 504
- Text generation backend unreachable or unusable: 503
- Unparseable patient documents: 422
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from config import get_settings
from exceptions import (
    AssistantUnavailableError,
    AudioTooLargeError,
    ConfigurationError,
    DocumentExtractionError,
    ConsultScribeError,
    EmptyAudioError,
    GenerationError,
    OllamaConnectionError,
    StorageError,
    TranscriptionError,
    TranscriptionTimeoutError,
    UnsupportedAudioFormatError,
)


logger = logging.getLogger(__name__)


# Most specific class first; lookup walks the exception's MRO
EXCEPTION_STATUS_MAP = {
    EmptyAudioError: status.HTTP_400_BAD_REQUEST,
    UnsupportedAudioFormatError: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    AudioTooLargeError: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    StorageError: status.HTTP_502_BAD_GATEWAY,
    TranscriptionTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    TranscriptionError: status.HTTP_502_BAD_GATEWAY,
    OllamaConnectionError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AssistantUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    GenerationError: status.HTTP_502_BAD_GATEWAY,
    DocumentExtractionError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for_exception(error: ConsultScribeError) -> int:
    """HTTP status for an exception, inherited from the closest mapped base."""
    for cls in type(error).__mro__:
        if cls in EXCEPTION_STATUS_MAP:
            return EXCEPTION_STATUS_MAP[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def error_handler_middleware(request: Request, call_next):
    """
    Global error handling middleware.

    Args:
        request: The incoming request
        call_next: The next middleware/route handler

    Returns:
        Response or JSONResponse with error details
    """
    try:
        return await call_next(request)
    except ConsultScribeError as e:
        status_code = status_for_exception(e)
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {e.message}")
        return JSONResponse(status_code=status_code, content=e.to_dict())
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        settings = get_settings()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error_type": "InternalServerError",
                "message": "An unexpected error occurred",
                "details": {"error": str(e)} if settings.api_debug else {}
            }
        )
