from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict


class AttendanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attendance_id: int
    emp_id: int
    date: date
    ward_id: Optional[int] = None
    department_id: Optional[int] = None
    punch_in_time: Optional[datetime] = None
    punch_out_time: Optional[datetime] = None
    punch_in_image: Optional[str] = None
    punch_out_image: Optional[str] = None
    latitude_in: Optional[float] = None
    longitude_in: Optional[float] = None
    in_address: Optional[str] = None
    latitude_out: Optional[float] = None
    longitude_out: Optional[float] = None
    out_address: Optional[str] = None
    punched_in_by: Optional[int] = None
    punched_out_by: Optional[int] = None
    state: Optional[str] = None
    duration_minutes: Optional[float] = None
    face_similarity: Optional[float] = None
    face_match_threshold: Optional[float] = None


class OpenAttendanceRequest(BaseModel):
    # decoded by AttendanceService.open_today
    emp_id: Optional[Any] = None


class PunchResponse(BaseModel):
    message: str
    attendance: AttendanceResponse


class FacePunchResponse(BaseModel):
    success: bool
    employee: str
    punch_type: str
    face_similarity: Optional[float] = None
    face_match_threshold: float
    time: Optional[datetime] = None
    attendance_id: int


class GroupFaceResult(BaseModel):
    faceIndex: int
    status: str
    message: Optional[str] = None
    employeeId: Optional[int] = None
    employeeName: Optional[str] = None
    similarity: Optional[float] = None
    attendanceId: Optional[int] = None
    punchedAt: Optional[datetime] = None


class GroupPunchResponse(BaseModel):
    success: bool
    mode: str = "group"
    punch_type: str
    total_faces: int
    punched_count: int
    results: List[GroupFaceResult]


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
    suggestion: Optional[str] = None
    solution: Optional[str] = None


class FaceEnrollmentResponse(BaseModel):
    success: bool
    message: str
    emp_id: int
    face_id: Optional[str] = None
    face_enrolled_at: Optional[datetime] = None
