import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from facepunch.core.errors import (
    AttendanceError,
    ErrorKind,
    RecognitionErrorCode,
    RecognitionServiceError,
)

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNPROCESSABLE: 422,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.INTERNAL: 500,
}


@dataclass
class ClassifiedError:
    status_code: int
    kind: ErrorKind
    body: Dict[str, Any]


def _body(error: str, details=None, suggestion=None, solution=None) -> Dict[str, Any]:
    body = {"error": error}
    if details:
        body["details"] = details
    if suggestion:
        body["suggestion"] = suggestion
    if solution:
        body["solution"] = solution
    return body


def _classify_recognition(exc: RecognitionServiceError) -> ClassifiedError:
    if exc.code == RecognitionErrorCode.NO_FACE:
        return ClassifiedError(
            status_code=422,
            kind=ErrorKind.UNPROCESSABLE,
            body=_body(
                "No face detected in the image",
                details=exc.details or exc.message,
                suggestion="Ensure the employee's face is centered and well lit, then retry.",
            ),
        )

    if exc.code == RecognitionErrorCode.RESOURCE_NOT_FOUND:
        return ClassifiedError(
            status_code=500,
            kind=ErrorKind.INTERNAL,
            body=_body(
                "Face collection not found",
                details=exc.details or exc.message,
                solution="Recreate the collection or verify FACE_COLLECTION in the backend .env file.",
            ),
        )

    return ClassifiedError(
        status_code=exc.upstream_status or STATUS_BY_KIND[ErrorKind.UPSTREAM],
        kind=ErrorKind.UPSTREAM,
        body=_body("Face recognition failed", details=exc.details or exc.message),
    )


def classify(exc: BaseException) -> ClassifiedError:
    """Map any failure from the punch pipeline to a status code and error payload"""
    if isinstance(exc, RecognitionServiceError):
        return _classify_recognition(exc)

    if isinstance(exc, AttendanceError):
        return ClassifiedError(
            status_code=STATUS_BY_KIND[exc.kind],
            kind=exc.kind,
            body=_body(exc.message, exc.details, exc.suggestion, exc.solution),
        )

    if isinstance(exc, SQLAlchemyError):
        logger.error(f"Unhandled database error: {exc}")
        return ClassifiedError(
            status_code=500,
            kind=ErrorKind.INTERNAL,
            body=_body("Database operation failed"),
        )

    if isinstance(exc, asyncio.TimeoutError):
        return ClassifiedError(
            status_code=504,
            kind=ErrorKind.UPSTREAM,
            body=_body("Upstream call timed out"),
        )

    logger.error(f"Unexpected error: {exc!r}")
    return ClassifiedError(
        status_code=500,
        kind=ErrorKind.INTERNAL,
        body=_body("Internal server error", details=str(exc) or None),
    )


def describe(exc: BaseException) -> str:
    """One-line message for a failure, used in per-face group results"""
    classified = classify(exc)
    return classified.body.get("details") or classified.body["error"]
