import logging
from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse

from facepunch.core.errors import ValidationError
from facepunch.core.inputs import CaptureMode, decode_capture_mode, normalize_id, parse_location, parse_threshold
from facepunch.core.punch import GroupCaptureResult, PunchDirection, PunchResult, derive_state
from facepunch.dependencies import get_attendance_service, get_recognition_service
from facepunch.schemas.attendance import (
    AttendanceResponse,
    ErrorResponse,
    FacePunchResponse,
    GroupFaceResult,
    GroupPunchResponse,
    OpenAttendanceRequest,
    PunchResponse,
)
from facepunch.services.attendance_service import AttendanceService
from facepunch.services.recognition import RecognitionService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/attendance",
    tags=["attendance"],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)

ALLOWED_IMAGE_TYPES = {'image/jpeg', 'image/jpg', 'image/png', 'image/webp'}
MIN_IMAGE_BYTES = 100
MAX_IMAGE_BYTES = 10 * 1024 * 1024


async def read_image(image: Optional[UploadFile], required: bool) -> Optional[bytes]:
    """Read and sanity-check an uploaded image"""
    if image is None:
        if required:
            raise ValidationError("Face image is required")
        return None

    if image.content_type and image.content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(
            f"Unsupported file type '{image.content_type}'. Use JPEG, PNG, or WebP"
        )

    data = await image.read()
    logger.info(f"Image read: {len(data)} bytes")

    if len(data) < MIN_IMAGE_BYTES:
        raise ValidationError("Image file too small or corrupted")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Image file too large (max 10MB)")
    return data


def attendance_response(record, face_match=None) -> AttendanceResponse:
    duration = record.duration
    update = dict(
        state=derive_state(record.punch_in_time, record.punch_out_time).value,
        duration_minutes=duration.total_seconds() / 60 if duration is not None else None,
    )
    if face_match is not None:
        update.update(
            face_similarity=face_match.similarity,
            face_match_threshold=face_match.threshold,
        )
    return AttendanceResponse.model_validate(record, from_attributes=True).model_copy(update=update)


def group_response(result: GroupCaptureResult) -> GroupPunchResponse:
    return GroupPunchResponse(
        success=result.success,
        punch_type=result.direction.value,
        total_faces=result.total_faces,
        punched_count=result.punched_count,
        results=[
            GroupFaceResult(
                faceIndex=r.face_index,
                status=r.status.value,
                message=r.message,
                employeeId=r.employee_id,
                employeeName=r.employee_name,
                similarity=r.similarity,
                attendanceId=r.attendance_id,
                punchedAt=r.punched_at,
            )
            for r in result.results
        ],
    )


@router.get("/health")
async def health_check(recognition: RecognitionService = Depends(get_recognition_service)):
    """Status of the face recognition engine"""
    engine_status = recognition.engine.get_status()
    return {
        "status": engine_status["status"],
        "message": f"Face recognition service is {engine_status['status']}",
        "details": engine_status,
        "timestamp": datetime.now().isoformat()
    }


@router.post("", response_model=AttendanceResponse)
async def open_attendance(
        request: OpenAttendanceRequest,
        service: AttendanceService = Depends(get_attendance_service),
):
    """Get or create today's attendance record for an employee"""
    record = await service.open_today(request.emp_id)
    return attendance_response(record)


@router.put("", response_model=PunchResponse)
async def manual_punch(
        attendance_id: Optional[str] = Form(None),
        punch_type: Optional[str] = Form(None),
        latitude: Optional[str] = Form(None),
        longitude: Optional[str] = Form(None),
        address: Optional[str] = Form(None),
        userId: Optional[str] = Form(None),
        image: Optional[UploadFile] = File(None),
        service: AttendanceService = Depends(get_attendance_service),
):
    """
    Manual punch in/out on an existing attendance record.

    No face verification is done; an attached image is stored as evidence.
    """
    if not attendance_id or not punch_type:
        raise ValidationError("Missing required fields")

    direction = PunchDirection.parse(punch_type)
    location = parse_location(latitude, longitude, address, required=True)
    image_bytes = await read_image(image, required=False)

    result: PunchResult = await service.punch_manual(attendance_id, direction, image_bytes, userId, location)
    return PunchResponse(
        message=f"Punch {direction.value} updated successfully",
        attendance=attendance_response(result.record, result.face_match),
    )


@router.get("/image")
async def get_attendance_image(
        attendance_id: Optional[str] = Query(None),
        punch_type: Optional[str] = Query(None),
        service: AttendanceService = Depends(get_attendance_service),
):
    """Stream the evidence image stored for a punch"""
    if not attendance_id or not punch_type:
        raise ValidationError("Missing required parameters")

    evidence = await service.evidence(attendance_id, PunchDirection.parse(punch_type))
    return FileResponse(
        service.storage.path_for(evidence.key),
        media_type="image/jpeg",
        headers={"Content-Disposition": f'inline; filename="{evidence.download_name}"'},
    )


@router.post("/face-attendance", response_model=Union[FacePunchResponse, GroupPunchResponse])
async def face_attendance(
        image: Optional[UploadFile] = File(None, description="Face image for attendance"),
        punch_type: Optional[str] = Form(None),
        latitude: Optional[str] = Form(None),
        longitude: Optional[str] = Form(None),
        address: Optional[str] = Form(None),
        userId: Optional[str] = Form(None),
        emp_id: Optional[str] = Form(None),
        employeeId: Optional[str] = Form(None),
        groupMode: Optional[str] = Form(None),
        group_mode: Optional[str] = Form(None),
        mode: Optional[str] = Form(None),
        faceMatchThreshold: Optional[str] = Form(None),
        service: AttendanceService = Depends(get_attendance_service),
):
    """
    Face-based punch.

    - single mode: identify the employee from the face and punch them
    - group mode (`groupMode`, `group_mode` or `mode`): punch every employee
      recognised in the photo; each face gets its own result
    """
    image_bytes = await read_image(image, required=True)

    direction = PunchDirection.parse(punch_type)
    threshold = parse_threshold(faceMatchThreshold, service.default_threshold)
    location = parse_location(latitude, longitude, address)
    capture_mode = decode_capture_mode(groupMode, group_mode, mode)

    logger.info(f"Face attendance request: mode={capture_mode.value}, punch={direction.value}, threshold={threshold}")

    if capture_mode == CaptureMode.GROUP:
        result = await service.punch_group(image_bytes, direction, threshold, location, userId)
        return group_response(result)

    outcome = await service.punch_single(
        image_bytes,
        direction,
        threshold,
        location,
        userId,
        requested_emp_id=normalize_id(emp_id if emp_id is not None else employeeId),
    )
    face_match = outcome.punch.face_match
    return FacePunchResponse(
        success=True,
        employee=outcome.employee_name,
        punch_type=direction.value,
        face_similarity=face_match.similarity if face_match else None,
        face_match_threshold=face_match.threshold if face_match else outcome.threshold,
        time=outcome.punch.punched_at,
        attendance_id=outcome.punch.record.attendance_id,
    )
