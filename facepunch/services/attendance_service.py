import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from facepunch.core.errors import (
    ConfigurationError,
    EmployeeNotFound,
    EmployeeNotRegistered,
    EvidenceNotFound,
    NoMatchingEmployee,
    RecordNotFound,
    ValidationError,
)
from facepunch.core.inputs import normalize_id
from facepunch.core.punch import (
    GroupCaptureResult,
    Location,
    PunchDirection,
    PunchResult,
    check_punch_legality,
)
from facepunch.crud.attendance import get_attendance, get_or_create_attendance
from facepunch.crud.employee import get_employee, record_enrollment
from facepunch.models.attendance import AttendanceRecord
from facepunch.models.employee import Employee
from facepunch.services.group_capture import GroupCaptureOrchestrator
from facepunch.services.identity import IdentityResolver
from facepunch.services.imaging import ImageProcessor
from facepunch.services.punch_processor import PunchProcessor
from facepunch.services.recognition import RecognitionService
from facepunch.services.storage import ObjectStore
from facepunch.services.verification import FaceVerifier

logger = logging.getLogger(__name__)


@dataclass
class FacePunchOutcome:
    employee_id: int
    employee_name: str
    punch: PunchResult
    threshold: float


@dataclass
class Evidence:
    key: str
    download_name: str


class AttendanceService:
    """
    Entry points of the punch pipeline for one request.

    Wires the store, resolver, verifier, processor and group orchestrator
    around a single database session.
    """

    def __init__(self, db: AsyncSession, storage: ObjectStore, recognition: RecognitionService,
                 images: Optional[ImageProcessor] = None, session_factory: Optional[Callable] = None,
                 collection_id: Optional[str] = None, default_threshold: float = 60.0,
                 today: Callable[[], date] = date.today):
        self.db = db
        self.storage = storage
        self.recognition = recognition
        self.images = images or ImageProcessor()
        self.collection_id = collection_id
        self.default_threshold = default_threshold
        self.today = today

        self.resolver = IdentityResolver(db, session_factory)
        self.verifier = FaceVerifier(db, storage, recognition)
        self.processor = PunchProcessor(db, storage, self.verifier, default_threshold)
        self.group = GroupCaptureOrchestrator(
            db, recognition, self.images, self.resolver, self.processor, today=today
        )

    async def _ready_collection(self) -> str:
        if not self.collection_id:
            raise ConfigurationError(
                "Face collection is not configured",
                details="Set FACE_COLLECTION or FACE_COLLECTION_ID in the backend .env file.",
            )
        await self.recognition.ensure_collection(self.collection_id)
        return self.collection_id

    async def open_today(self, emp_id: Any) -> AttendanceRecord:
        """Today's attendance record for an employee, created if needed"""
        employee_id = normalize_id(emp_id)
        if employee_id is None:
            raise ValidationError("Employee ID is required")
        return await get_or_create_attendance(self.db, employee_id, self.today())

    async def punch_manual(self, attendance_id: Any, direction: PunchDirection, image: Optional[bytes],
                           acting_user_id: Any, location: Location) -> PunchResult:
        """Punch without biometric verification; the image, if any, is kept as evidence only"""
        record_id = normalize_id(attendance_id)
        if record_id is None:
            raise ValidationError("Missing required fields", details="attendance_id is required")

        record = await get_attendance(self.db, record_id)
        check_punch_legality(record, direction)

        logger.warning(f"Manual punch {direction.value} on attendance {record_id} "
                       f"by user {acting_user_id!r} without face verification")
        return await self.processor.apply(
            record_id,
            direction,
            image,
            acting_user_id,
            location,
            employee_id=record.emp_id,
            require_face_match=False,
        )

    async def punch_single(self, image: bytes, direction: PunchDirection, threshold: float,
                           location: Location, acting_user_id: Any,
                           requested_emp_id: Optional[int] = None) -> FacePunchOutcome:
        """Identify the employee from the image and punch with face verification"""
        if not image:
            raise ValidationError("Face image is required")
        collection_id = await self._ready_collection()

        matches = await self.recognition.search_faces_by_image(collection_id, image, 1, threshold)
        if not matches:
            raise NoMatchingEmployee(suggestion="Use manual attendance if face recognition fails")

        best = matches[0]
        employee = await self.resolver.resolve(
            face_id=best.face_id,
            candidate_emp_id=normalize_id(best.external_image_id),
            requested_emp_id=requested_emp_id,
        )
        if employee is None:
            raise EmployeeNotRegistered(solution="Register face first via /employees/{emp_id}/face")

        # plain values; a rolled back session expires the ORM rows
        employee_id, employee_name = employee.emp_id, employee.name
        attendance = await get_or_create_attendance(self.db, employee_id, self.today())
        check_punch_legality(attendance, direction)

        punch = await self.processor.apply(
            attendance.attendance_id,
            direction,
            image,
            acting_user_id,
            location,
            employee_id=employee_id,
            require_face_match=True,
            threshold=threshold,
        )
        return FacePunchOutcome(employee_id=employee_id, employee_name=employee_name, punch=punch,
                                threshold=threshold)

    async def punch_group(self, image: bytes, direction: PunchDirection, threshold: float,
                          location: Location, acting_user_id: Any) -> GroupCaptureResult:
        if not image:
            raise ValidationError("Face image is required")
        collection_id = await self._ready_collection()
        return await self.group.run(image, direction, threshold, location, acting_user_id, collection_id)

    async def evidence(self, attendance_id: Any, direction: PunchDirection) -> Evidence:
        record_id = normalize_id(attendance_id)
        if record_id is None:
            raise ValidationError("Missing required parameters")

        record = await get_attendance(self.db, record_id)
        if record is None:
            raise RecordNotFound()

        reference = record.punch_in_image if direction == PunchDirection.IN else record.punch_out_image
        key = self.storage.resolve_key(reference)
        if not key or not await self.storage.exists(key):
            raise EvidenceNotFound()

        return Evidence(key=key, download_name=f"attendance_{record_id}_{direction.value}.jpg")

    async def enroll(self, emp_id: int, image: bytes) -> Employee:
        """Store a reference face for an employee and index it in the collection"""
        if not image:
            raise ValidationError("Face image is required")

        employee = await get_employee(self.db, emp_id)
        if employee is None:
            raise EmployeeNotFound(details=f"No employee with id {emp_id}")

        collection_id = await self._ready_collection()
        stored = await self.storage.put(image, f"faces/employee_{emp_id}.jpg")
        face_id = await self.recognition.index_face(collection_id, image, str(emp_id))

        employee = await record_enrollment(self.db, emp_id, stored.url, face_id)
        logger.info(f"Enrolled face {face_id} for employee {emp_id}")
        return employee

    async def close(self) -> None:
        await self.resolver.drain()
