import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from facepunch.core.errors import EmployeeNotFound, PunchConflict
from facepunch.core.punch import Location, PunchDirection
from facepunch.models.attendance import AttendanceRecord
from facepunch.models.employee import Employee
from facepunch.utils.bounded import data_layer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PunchFields:
    location: Location
    image_url: Optional[str] = None
    actor_id: Optional[int] = None


# column names written by each direction
PUNCH_COLUMNS = {
    PunchDirection.IN: {
        "time": "punch_in_time",
        "latitude": "latitude_in",
        "longitude": "longitude_in",
        "address": "in_address",
        "image": "punch_in_image",
        "actor": "punched_in_by",
    },
    PunchDirection.OUT: {
        "time": "punch_out_time",
        "latitude": "latitude_out",
        "longitude": "longitude_out",
        "address": "out_address",
        "image": "punch_out_image",
        "actor": "punched_out_by",
    },
}


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


async def _select_for_day(db: AsyncSession, emp_id: int, attendance_date: date) -> Optional[AttendanceRecord]:
    result = await db.execute(
        select(AttendanceRecord).where(
            AttendanceRecord.emp_id == emp_id,
            AttendanceRecord.date == attendance_date
        )
    )
    return result.scalar_one_or_none()


@data_layer
async def get_attendance(db: AsyncSession, attendance_id: int) -> Optional[AttendanceRecord]:
    return await db.get(AttendanceRecord, attendance_id, populate_existing=True)


@data_layer
async def get_attendance_for_day(db: AsyncSession, emp_id: int, attendance_date: date) -> Optional[AttendanceRecord]:
    return await _select_for_day(db, emp_id, attendance_date)


@data_layer
async def get_or_create_attendance(db: AsyncSession, emp_id: int, attendance_date: date) -> AttendanceRecord:
    """
    Today's attendance row for an employee, created on first use.

    The new row carries the employee's ward and department as they are now.
    Losing an insert race to another request returns the row that request created.
    """
    record = await _select_for_day(db, emp_id, attendance_date)
    if record is not None:
        return record

    employee = await db.get(Employee, emp_id)
    if employee is None:
        raise EmployeeNotFound(details=f"No employee with id {emp_id}")

    record = AttendanceRecord(
        emp_id=emp_id,
        date=attendance_date,
        ward_id=employee.ward_id,
        department_id=employee.department_id,
    )
    db.add(record)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info(f"Attendance for employee {emp_id} on {attendance_date} created concurrently, re-reading")
        existing = await _select_for_day(db, emp_id, attendance_date)
        if existing is None:
            raise
        return existing

    await db.refresh(record)
    logger.info(f"Created attendance {record.attendance_id} for employee {emp_id} on {attendance_date}")
    return record


@data_layer
async def apply_punch(db: AsyncSession, attendance_id: int, direction: PunchDirection,
                      fields: PunchFields) -> AttendanceRecord:
    """
    Write one punch with a single conditional UPDATE.

    The WHERE clause repeats the legality precondition, so a row changed by a
    concurrent request since it was checked matches nothing and PunchConflict
    is raised instead of overwriting it.
    """
    columns = PUNCH_COLUMNS[direction]
    values = {
        columns["time"]: _now(),
        columns["latitude"]: fields.location.latitude,
        columns["longitude"]: fields.location.longitude,
        columns["address"]: fields.location.address,
        columns["image"]: fields.image_url,
        columns["actor"]: fields.actor_id,
    }

    stmt = update(AttendanceRecord).where(AttendanceRecord.attendance_id == attendance_id)
    if direction == PunchDirection.IN:
        stmt = stmt.where(AttendanceRecord.punch_in_time.is_(None))
    else:
        stmt = stmt.where(
            AttendanceRecord.punch_in_time.isnot(None),
            AttendanceRecord.punch_out_time.is_(None)
        )

    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if result.rowcount == 0:
        await db.rollback()
        raise PunchConflict(details=f"attendance {attendance_id}, punch {direction.value}")

    await db.commit()
    return await db.get(AttendanceRecord, attendance_id, populate_existing=True)
