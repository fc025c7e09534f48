from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification used by the HTTP boundary to pick a status code"""
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNPROCESSABLE = "unprocessable"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


class RecognitionErrorCode(str, Enum):
    NO_FACE = "no_face"
    RESOURCE_NOT_FOUND = "resource_not_found"
    INVALID_IMAGE = "invalid_image"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"


class AttendanceError(Exception):
    """Base class for every failure the punch pipeline reports to its caller"""
    kind = ErrorKind.INTERNAL
    default_message = "Attendance operation failed"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None,
                 suggestion: Optional[str] = None, solution: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        self.suggestion = suggestion
        self.solution = solution
        super().__init__(self.message)


# Validation

class ValidationError(AttendanceError):
    kind = ErrorKind.VALIDATION
    default_message = "Invalid request"


class EvidenceRequired(ValidationError):
    default_message = "Attendance image is required for face verification"


class InvalidImage(ValidationError):
    default_message = "Unable to read image dimensions for face processing"


class ImageProcessingError(AttendanceError):
    kind = ErrorKind.INTERNAL
    default_message = "Image processing failed"


class ConfigurationError(AttendanceError):
    kind = ErrorKind.INTERNAL
    default_message = "Service is not configured"


# Legality

class PunchNotAllowed(AttendanceError):
    kind = ErrorKind.CONFLICT


class AlreadyPunchedIn(PunchNotAllowed):
    default_message = "Already punched in today"


class AlreadyPunchedOut(PunchNotAllowed):
    default_message = "Already punched out today"


class PunchInRequired(PunchNotAllowed):
    default_message = "Must punch in first"


class RecordNotFound(AttendanceError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Attendance record not found"


# Identity and enrollment

class EmployeeNotFound(AttendanceError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Employee not found"


class EmployeeNotRegistered(AttendanceError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Employee not registered in system"


class EvidenceNotFound(AttendanceError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Image not found"


class EnrollmentMissing(AttendanceError):
    kind = ErrorKind.UNPROCESSABLE
    default_message = "Employee face enrollment is missing"


class EnrollmentUnresolvable(AttendanceError):
    kind = ErrorKind.INTERNAL
    default_message = "Unable to resolve stored face image"


# Recognition outcomes

class NoFacesDetected(AttendanceError):
    kind = ErrorKind.UNPROCESSABLE
    default_message = "No faces detected in the image"


class NoMatchingEmployee(AttendanceError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "No matching employee found"


class FaceMismatch(AttendanceError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Captured face does not match enrolled face"

    def __init__(self, similarity: float, threshold: float):
        self.similarity = similarity
        self.threshold = threshold
        super().__init__(
            details=f"Similarity {similarity:.2f}% below threshold {threshold}%"
        )


# Upstream services

class RecognitionServiceError(AttendanceError):
    kind = ErrorKind.UPSTREAM
    default_message = "Face recognition failed"

    def __init__(self, message: Optional[str] = None,
                 code: RecognitionErrorCode = RecognitionErrorCode.INTERNAL,
                 upstream_status: Optional[int] = None, details: Optional[str] = None):
        self.code = code
        self.upstream_status = upstream_status
        super().__init__(message, details=details)


class StorageError(AttendanceError):
    kind = ErrorKind.UPSTREAM
    default_message = "Object storage operation failed"


# Data layer

class DataLayerError(AttendanceError):
    kind = ErrorKind.INTERNAL
    default_message = "Database operation failed"


class PunchConflict(DataLayerError):
    """Conditional update matched no row"""
    default_message = "Attendance record changed before the punch was written"


class UpdateFailed(DataLayerError):
    default_message = "Attendance update failed"
