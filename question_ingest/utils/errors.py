from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    # 4xx - Client errors
    VALIDATION_ERROR = "E4220"

    # 5xx - Service errors
    SERVICE_ERROR = "E5000"
    LLM_TIMEOUT = "E5002"
    LLM_UNAVAILABLE = "E5003"
    LLM_BAD_OUTPUT = "E5004"


class QuestionIngestError(Exception):
    """Base error for the question ingestion pipeline."""

    code: ErrorCode = ErrorCode.SERVICE_ERROR


class LLMCallError(QuestionIngestError):
    """Transport failure or empty completion from the LLM client."""

    code = ErrorCode.LLM_UNAVAILABLE


class LLMTimeoutError(LLMCallError):
    """The LLM call timed out on every attempt."""

    code = ErrorCode.LLM_TIMEOUT


class LLMResponseParseError(QuestionIngestError):
    """Completion text could not be parsed as JSON, even after repair."""

    code = ErrorCode.LLM_BAD_OUTPUT

    def __init__(self, message: str, *, content_tail: str = "") -> None:
        super().__init__(message)
        self.content_tail = content_tail


class SchemaValidationError(QuestionIngestError):
    """Parsed JSON does not match the expected schema."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, *, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class GenerationError(QuestionIngestError):
    """Route solver's primary generation failed; there is no safe fallback."""

    def __init__(self, message: str, *, question_id: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.question_id = question_id
        self.cause = cause
        if isinstance(cause, QuestionIngestError):
            self.code = cause.code


def build_error_payload(
    *,
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Canonical error shape for route handlers.

    - keep `error` as the primary string message
    - also include `message` as an alias for readability
    """
    payload: Dict[str, Any] = {"code": code.value, "error": str(message), "message": str(message)}
    if details is not None:
        payload["details"] = details
    if request_id:
        payload["request_id"] = str(request_id)
    return payload


def error_payload_for_exception(exc: BaseException, *, request_id: Optional[str] = None) -> Dict[str, Any]:
    if isinstance(exc, GenerationError):
        return build_error_payload(
            code=exc.code,
            message=str(exc),
            details={"question_id": exc.question_id},
            request_id=request_id,
        )
    if isinstance(exc, SchemaValidationError):
        return build_error_payload(
            code=exc.code,
            message=str(exc),
            details={"errors": exc.errors},
            request_id=request_id,
        )
    if isinstance(exc, QuestionIngestError):
        return build_error_payload(code=exc.code, message=str(exc), request_id=request_id)
    return build_error_payload(code=ErrorCode.SERVICE_ERROR, message=str(exc), request_id=request_id)
