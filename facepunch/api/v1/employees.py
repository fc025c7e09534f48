import logging

from fastapi import APIRouter, Depends, File, UploadFile

from facepunch.api.v1.attendance import read_image
from facepunch.schemas.attendance import ErrorResponse, FaceEnrollmentResponse
from facepunch.services.attendance_service import AttendanceService
from facepunch.dependencies import get_attendance_service

logger = logging.getLogger(__name__)

employee_router = APIRouter(
    prefix="/employees",
    tags=["employees"],
    responses={404: {"model": ErrorResponse}},
)


@employee_router.post("/{emp_id}/face", response_model=FaceEnrollmentResponse)
async def enroll_employee_face(
        emp_id: int,
        photo: UploadFile = File(..., description="Front-facing photo of the employee"),
        service: AttendanceService = Depends(get_attendance_service),
):
    """
    Store the employee's reference face.

    The photo becomes the image punches are verified against and is indexed
    in the face collection under the employee id.
    """
    logger.info(f"Face enrollment request for employee {emp_id}")
    photo_bytes = await read_image(photo, required=True)

    employee = await service.enroll(emp_id, photo_bytes)
    return FaceEnrollmentResponse(
        success=True,
        message="Face enrolled successfully",
        emp_id=employee.emp_id,
        face_id=employee.face_id,
        face_enrolled_at=employee.face_enrolled_at,
    )
