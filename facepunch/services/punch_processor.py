import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from facepunch.core.errors import DataLayerError, EvidenceRequired, PunchConflict, RecordNotFound, UpdateFailed
from facepunch.core.inputs import normalize_id
from facepunch.core.punch import Location, PunchDirection, PunchResult
from facepunch.crud.attendance import PunchFields, apply_punch, get_attendance
from facepunch.crud.employee import user_exists
from facepunch.services.storage import ObjectStore
from facepunch.services.verification import FaceVerifier

logger = logging.getLogger(__name__)


def evidence_name(attendance_id: int, direction: PunchDirection) -> str:
    return f"attendance/attendance_{attendance_id}_{direction.value}.jpg"


class PunchProcessor:
    """Uploads evidence, verifies the face when required, and writes the punch"""

    def __init__(self, db: AsyncSession, storage: ObjectStore, verifier: FaceVerifier,
                 default_threshold: float):
        self.db = db
        self.storage = storage
        self.verifier = verifier
        self.default_threshold = default_threshold

    async def resolve_actor(self, raw_user_id: Any) -> Optional[int]:
        """Known user id for the actor, or None; never fails the punch"""
        user_id = normalize_id(raw_user_id)
        if user_id is None:
            return None
        try:
            if await user_exists(self.db, user_id):
                return user_id
        except DataLayerError as e:
            logger.error(f"Actor lookup for user {user_id} failed: {e.details or e.message}")
        return None

    async def apply(self, attendance_id: int, direction: PunchDirection, image: Optional[bytes],
                    acting_user_id: Any, location: Location, employee_id: Optional[int] = None,
                    require_face_match: bool = False, threshold: Optional[float] = None) -> PunchResult:
        threshold = self.default_threshold if threshold is None else threshold

        uploaded = None
        if image:
            uploaded = await self.storage.put(image, evidence_name(attendance_id, direction))

        face_match = None
        if require_face_match:
            if uploaded is None:
                raise EvidenceRequired()

            if employee_id is None:
                record = await get_attendance(self.db, attendance_id)
                if record is None:
                    raise RecordNotFound()
                employee_id = record.emp_id

            face_match = await self.verifier.verify(employee_id, uploaded.key, threshold)

        actor_id = await self.resolve_actor(acting_user_id)

        fields = PunchFields(
            location=location,
            image_url=uploaded.url if uploaded else None,
            actor_id=actor_id,
        )
        try:
            record = await apply_punch(self.db, attendance_id, direction, fields)
        except PunchConflict as e:
            logger.error(f"Punch {direction.value} on attendance {attendance_id} lost a concurrent update")
            raise UpdateFailed(details=e.details)

        logger.info(f"Punch {direction.value} recorded on attendance {attendance_id}"
                    + (f" (similarity {face_match.similarity:.2f})" if face_match else ""))
        return PunchResult(record=record, direction=direction, face_match=face_match)
