import logging
from datetime import date
from typing import Any, Callable, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from facepunch.core.classifier import describe
from facepunch.core.errors import AttendanceError, InvalidImage, NoFacesDetected, PunchNotAllowed
from facepunch.core.inputs import normalize_id
from facepunch.core.punch import (
    FaceStatus,
    GroupCaptureResult,
    GroupFaceOutcome,
    Location,
    PunchDirection,
    check_punch_legality,
)
from facepunch.crud.attendance import get_or_create_attendance
from facepunch.services.identity import IdentityResolver
from facepunch.services.imaging import ImageProcessor, compute_crop_region
from facepunch.services.punch_processor import PunchProcessor
from facepunch.services.recognition import RecognitionService

logger = logging.getLogger(__name__)

GROUP_SEARCH_MAX_FACES = 3


class GroupCaptureOrchestrator:
    """
    Punches every recognisable employee in one photograph.

    Faces are handled one at a time in detection order. Each face gets its own
    outcome; a failure on one face never stops the others, and an employee is
    punched at most once per photograph.
    """

    def __init__(self, db: AsyncSession, recognition: RecognitionService, images: ImageProcessor,
                 resolver: IdentityResolver, processor: PunchProcessor,
                 today: Callable[[], date] = date.today):
        self.db = db
        self.recognition = recognition
        self.images = images
        self.resolver = resolver
        self.processor = processor
        self.today = today

    async def run(self, image: bytes, direction: PunchDirection, threshold: float, location: Location,
                  acting_user_id: Any, collection_id: str) -> GroupCaptureResult:
        detected = await self.recognition.detect_faces(image)
        if not detected:
            raise NoFacesDetected(suggestion="Ensure group members are clearly visible and retry.")

        size = await self.images.metadata(image)
        if not size.width or not size.height:
            raise InvalidImage()

        logger.info(f"Group capture: {len(detected)} face(s) in {size.width}x{size.height} image, punch {direction.value}")

        result = GroupCaptureResult(direction=direction, total_faces=len(detected))
        processed: Set[int] = set()
        attendance_date = self.today()

        for index, face in enumerate(detected, start=1):
            outcome = await self._process_face(
                index, face.bounding_box, image, size, direction, threshold,
                location, acting_user_id, collection_id, attendance_date, processed,
            )
            logger.info(f"Group capture face {index}: {outcome.status.value}"
                        + (f" (employee {outcome.employee_id})" if outcome.employee_id else ""))
            result.results.append(outcome)

        logger.info(f"Group capture finished: {result.punched_count}/{result.total_faces} punched")
        return result

    async def _process_face(self, index, box, image, size, direction, threshold, location,
                            acting_user_id, collection_id, attendance_date, processed) -> GroupFaceOutcome:
        region = compute_crop_region(box, size.width, size.height)
        if region is None:
            return GroupFaceOutcome(
                face_index=index,
                status=FaceStatus.SKIPPED,
                message="Unable to crop the detected face region (uncroppable).",
            )

        try:
            face_image = await self.images.crop_face(image, region)
        except AttendanceError as e:
            logger.error(f"Group capture face {index}: crop failed: {e.details or e.message}")
            return GroupFaceOutcome(
                face_index=index,
                status=FaceStatus.ERROR,
                message="Unable to process the detected face region.",
            )

        similarity: Optional[float] = None
        emp_id: Optional[int] = None
        emp_name: Optional[str] = None
        try:
            matches = await self.recognition.search_faces_by_image(
                collection_id, face_image, GROUP_SEARCH_MAX_FACES, threshold
            )
            if not matches:
                return GroupFaceOutcome(
                    face_index=index,
                    status=FaceStatus.UNMATCHED,
                    message="No matching employee found.",
                )

            best = matches[0]
            similarity = best.similarity
            employee = await self.resolver.resolve(
                face_id=best.face_id,
                candidate_emp_id=normalize_id(best.external_image_id),
            )
            if employee is None:
                return GroupFaceOutcome(
                    face_index=index,
                    status=FaceStatus.UNMATCHED,
                    similarity=similarity,
                    message="Matched face is not linked to any employee record.",
                )

            # plain values survive a rollback that expires the ORM instance
            emp_id, emp_name = employee.emp_id, employee.name

            if emp_id in processed:
                return GroupFaceOutcome(
                    face_index=index,
                    status=FaceStatus.DUPLICATE,
                    employee_id=emp_id,
                    employee_name=emp_name,
                    similarity=similarity,
                    message="Employee already processed in this capture.",
                )

            attendance = await get_or_create_attendance(self.db, emp_id, attendance_date)
            try:
                check_punch_legality(attendance, direction)
            except PunchNotAllowed as e:
                processed.add(emp_id)
                return GroupFaceOutcome(
                    face_index=index,
                    status=FaceStatus.SKIPPED,
                    employee_id=emp_id,
                    employee_name=emp_name,
                    similarity=similarity,
                    attendance_id=attendance.attendance_id,
                    message=e.message,
                )

            attendance_id = attendance.attendance_id
            punch = await self.processor.apply(
                attendance_id,
                direction,
                face_image,
                acting_user_id,
                location,
                employee_id=emp_id,
                require_face_match=True,
                threshold=threshold,
            )
            processed.add(emp_id)

            return GroupFaceOutcome(
                face_index=index,
                status=FaceStatus.PUNCHED,
                employee_id=emp_id,
                employee_name=emp_name,
                similarity=punch.face_match.similarity if punch.face_match else similarity,
                attendance_id=attendance_id,
                punched_at=punch.punched_at,
            )

        except AttendanceError as e:
            logger.error(f"Group capture face {index}: {e.message} {e.details or ''}".rstrip())
            return GroupFaceOutcome(
                face_index=index,
                status=FaceStatus.ERROR,
                employee_id=emp_id,
                employee_name=emp_name,
                similarity=similarity,
                message=describe(e),
            )
