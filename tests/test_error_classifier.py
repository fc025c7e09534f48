import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from facepunch.core.classifier import classify, describe
from facepunch.core.errors import (
    AlreadyPunchedIn,
    AlreadyPunchedOut,
    ConfigurationError,
    DataLayerError,
    EmployeeNotFound,
    EmployeeNotRegistered,
    EnrollmentMissing,
    EnrollmentUnresolvable,
    ErrorKind,
    EvidenceNotFound,
    EvidenceRequired,
    FaceMismatch,
    ImageProcessingError,
    InvalidImage,
    NoFacesDetected,
    NoMatchingEmployee,
    PunchConflict,
    PunchInRequired,
    RecognitionErrorCode,
    RecognitionServiceError,
    RecordNotFound,
    StorageError,
    UpdateFailed,
    ValidationError,
)


@pytest.mark.parametrize("error, status", [
    (ValidationError(), 400),
    (EvidenceRequired(), 400),
    (InvalidImage(), 400),
    (ImageProcessingError(), 500),
    (FaceMismatch(42.0, 90.0), 401),
    (NoMatchingEmployee(), 401),
    (RecordNotFound(), 404),
    (EmployeeNotFound(), 404),
    (EmployeeNotRegistered(), 404),
    (EvidenceNotFound(), 404),
    (AlreadyPunchedIn(), 409),
    (AlreadyPunchedOut(), 409),
    (PunchInRequired(), 409),
    (EnrollmentMissing(), 422),
    (NoFacesDetected(), 422),
    (StorageError(), 502),
    (EnrollmentUnresolvable(), 500),
    (ConfigurationError(), 500),
    (DataLayerError(), 500),
    (UpdateFailed(), 500),
    (PunchConflict(), 500),
])
def test_status_by_error(error, status):
    assert classify(error).status_code == status


def test_body_carries_guidance():
    classified = classify(NoMatchingEmployee(suggestion="Use manual attendance if face recognition fails"))

    assert classified.kind == ErrorKind.UNAUTHORIZED
    assert classified.body == {
        "error": "No matching employee found",
        "suggestion": "Use manual attendance if face recognition fails",
    }


def test_face_mismatch_details():
    body = classify(FaceMismatch(72.456, 90.0)).body

    assert body["error"] == "Captured face does not match enrolled face"
    assert body["details"] == "Similarity 72.46% below threshold 90.0%"


def test_no_face_is_unprocessable():
    error = RecognitionServiceError("There are no faces in the image", code=RecognitionErrorCode.NO_FACE,
                                    upstream_status=400)
    classified = classify(error)

    assert classified.status_code == 422
    assert classified.body["error"] == "No face detected in the image"
    assert classified.body["suggestion"]


def test_missing_collection_is_a_configuration_fault():
    error = RecognitionServiceError("Collection employees not found",
                                    code=RecognitionErrorCode.RESOURCE_NOT_FOUND, upstream_status=404)
    classified = classify(error)

    assert classified.status_code == 500
    assert "FACE_COLLECTION" in classified.body["solution"]


def test_other_recognition_errors_keep_upstream_status():
    unavailable = RecognitionServiceError("Face engine not ready", code=RecognitionErrorCode.UNAVAILABLE,
                                          upstream_status=503)
    assert classify(unavailable).status_code == 503
    assert classify(RecognitionServiceError()).status_code == 502


def test_classification_ignores_message_text():
    error = RecognitionServiceError("No face detected", code=RecognitionErrorCode.INTERNAL)
    assert classify(error).status_code == 502


def test_foreign_errors():
    db_error = OperationalError("SELECT 1", {}, Exception("gone away"))
    assert classify(db_error).status_code == 500
    assert classify(db_error).body == {"error": "Database operation failed"}

    assert classify(asyncio.TimeoutError()).status_code == 504

    unexpected = classify(RuntimeError("boom"))
    assert unexpected.status_code == 500
    assert unexpected.body["error"] == "Internal server error"


def test_describe():
    assert describe(FaceMismatch(10.0, 90.0)) == "Similarity 10.00% below threshold 90.0%"
    assert describe(AlreadyPunchedIn()) == "Already punched in today"
