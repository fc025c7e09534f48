from datetime import datetime
from typing import Optional

from sqlalchemy import update, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from facepunch.models.employee import Employee, User
from facepunch.utils.bounded import data_layer


@data_layer
async def get_employee(db: AsyncSession, emp_id: int) -> Optional[Employee]:
    result = await db.execute(select(Employee).where(Employee.emp_id == emp_id))
    return result.scalar_one_or_none()


@data_layer
async def get_employee_by_face_id(db: AsyncSession, face_id: str) -> Optional[Employee]:
    result = await db.execute(select(Employee).where(Employee.face_id == face_id))
    return result.scalars().first()


@data_layer
async def link_face_id(db: AsyncSession, emp_id: int, face_id: str) -> int:
    """
    Point the employee's cached face id at `face_id` unless it already does.

    Returns the number of rows changed.
    """
    result = await db.execute(
        update(Employee)
        .where(
            Employee.emp_id == emp_id,
            or_(Employee.face_id.is_(None), Employee.face_id != face_id)
        )
        .values(face_id=face_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount


@data_layer
async def user_exists(db: AsyncSession, user_id: int) -> bool:
    result = await db.execute(select(User.user_id).where(User.user_id == user_id))
    return result.scalar_one_or_none() is not None


@data_layer
async def record_enrollment(db: AsyncSession, emp_id: int, image_ref: str, face_id: str) -> Optional[Employee]:
    employee = await db.get(Employee, emp_id)
    if employee is None:
        return None

    employee.face_image_ref = image_ref
    employee.face_id = face_id
    employee.face_enrolled_at = datetime.now()

    await db.commit()
    await db.refresh(employee)
    return employee
