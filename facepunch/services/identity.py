import asyncio
import logging
from typing import Callable, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from facepunch.crud.employee import get_employee, get_employee_by_face_id, link_face_id
from facepunch.models.employee import Employee

logger = logging.getLogger(__name__)


class IdentityResolver:
    """
    Maps recognition results and claimed ids to employees.

    Lookup order: cached face id, then the candidate id tagged on the matched
    face, then the id the caller asked for. A successful lookup with a face id
    schedules a background write of that face id onto the employee, in its own
    session, so the next lookup takes the first path.
    """

    def __init__(self, db: AsyncSession, session_factory: Optional[Callable] = None):
        self.db = db
        self.session_factory = session_factory
        self._pending: Set[asyncio.Task] = set()

    async def resolve(self, face_id: Optional[str] = None, candidate_emp_id: Optional[int] = None,
                      requested_emp_id: Optional[int] = None) -> Optional[Employee]:
        employee = None

        if face_id:
            employee = await get_employee_by_face_id(self.db, face_id)

        if employee is None and candidate_emp_id is not None:
            employee = await get_employee(self.db, candidate_emp_id)

        if employee is None and requested_emp_id is not None:
            employee = await get_employee(self.db, requested_emp_id)

        if employee is not None and face_id and employee.face_id != face_id:
            self._schedule_face_link(employee.emp_id, face_id)

        return employee

    def _schedule_face_link(self, emp_id: int, face_id: str) -> None:
        if self.session_factory is None:
            return
        task = asyncio.create_task(self._link_face(emp_id, face_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _link_face(self, emp_id: int, face_id: str) -> None:
        try:
            async with self.session_factory() as session:
                changed = await link_face_id(session, emp_id, face_id)
            if changed:
                logger.info(f"Linked face {face_id} to employee {emp_id}")
        except Exception as e:
            logger.error(f"Updating face id for employee {emp_id} failed: {e}")

    async def drain(self) -> None:
        """Wait for scheduled face-id writes to finish"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
