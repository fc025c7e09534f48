import logging

from sqlalchemy.ext.asyncio import AsyncSession

from facepunch.core.errors import (
    EmployeeNotFound,
    EnrollmentMissing,
    EnrollmentUnresolvable,
    FaceMismatch,
)
from facepunch.core.punch import FaceMatchOutcome
from facepunch.crud.employee import get_employee
from facepunch.services.recognition import RecognitionService
from facepunch.services.storage import ObjectStore

logger = logging.getLogger(__name__)


class FaceVerifier:
    """Checks a captured image against an employee's enrolled reference face"""

    def __init__(self, db: AsyncSession, storage: ObjectStore, recognition: RecognitionService):
        self.db = db
        self.storage = storage
        self.recognition = recognition

    async def verify(self, emp_id: int, captured_key: str, threshold: float) -> FaceMatchOutcome:
        employee = await get_employee(self.db, emp_id)
        if employee is None:
            raise EmployeeNotFound("Employee not found for face verification")

        if not employee.face_image_ref:
            raise EnrollmentMissing(
                details="Ask the employee to store their face before marking attendance."
            )

        reference_key = self.storage.resolve_key(employee.face_image_ref)
        if not reference_key or not await self.storage.exists(reference_key):
            logger.error(f"Enrolled face for employee {emp_id} not found at {employee.face_image_ref}")
            raise EnrollmentUnresolvable(details=employee.face_image_ref)

        reference = await self.storage.get(reference_key)
        captured = await self.storage.get(captured_key)

        similarity = await self.recognition.compare_faces(reference, captured)
        if similarity is None or similarity < threshold:
            # no face in the capture counts as a zero score
            observed = 0.0 if similarity is None else similarity
            logger.warning(f"Face mismatch for employee {emp_id}: {observed:.2f} < {threshold}")
            raise FaceMismatch(similarity=observed, threshold=threshold)

        logger.info(f"Face verified for employee {emp_id}: {similarity:.2f} >= {threshold}")
        return FaceMatchOutcome(similarity=similarity, threshold=threshold, employee_id=emp_id)
