import pytest

from conftest import TODAY
from facepunch.core.errors import DataLayerError, EmployeeNotFound, PunchConflict
from facepunch.core.punch import AttendanceState, Location, PunchDirection, derive_state
from facepunch.crud.attendance import (
    PunchFields,
    apply_punch,
    get_attendance,
    get_attendance_for_day,
    get_or_create_attendance,
)
from facepunch.crud.employee import get_employee, link_face_id, record_enrollment, user_exists
from facepunch.models.employee import User
from facepunch.utils.bounded import data_layer

GATE = Location(latitude=12.97, longitude=77.59, address="Main gate")


async def test_get_or_create_is_idempotent(db):
    first = await get_or_create_attendance(db, 1, TODAY)
    second = await get_or_create_attendance(db, 1, TODAY)

    assert first.attendance_id == second.attendance_id
    assert first.punch_in_time is None and first.punch_out_time is None


async def test_new_record_snapshots_ward_and_department(db):
    record = await get_or_create_attendance(db, 2, TODAY)

    assert record.emp_id == 2
    assert record.date == TODAY
    assert record.ward_id == 8
    assert record.department_id == 3


async def test_record_from_another_session_is_reused(db, session_factory):
    async with session_factory() as other:
        created = await get_or_create_attendance(other, 1, TODAY)

    found = await get_or_create_attendance(db, 1, TODAY)
    assert found.attendance_id == created.attendance_id


async def test_unknown_employee(db):
    with pytest.raises(EmployeeNotFound):
        await get_or_create_attendance(db, 999, TODAY)
    assert await get_attendance_for_day(db, 999, TODAY) is None


async def test_punch_round_trip_walks_the_states(db):
    record = await get_or_create_attendance(db, 1, TODAY)
    assert derive_state(record.punch_in_time, record.punch_out_time) == AttendanceState.NOT_MARKED

    record = await apply_punch(db, record.attendance_id, PunchDirection.IN,
                               PunchFields(GATE, image_url="/uploads/in.jpg", actor_id=10))
    assert derive_state(record.punch_in_time, record.punch_out_time) == AttendanceState.IN_PROGRESS
    assert record.latitude_in == pytest.approx(12.97)
    assert record.in_address == "Main gate"
    assert record.punch_in_image == "/uploads/in.jpg"
    assert record.punched_in_by == 10

    record = await apply_punch(db, record.attendance_id, PunchDirection.OUT,
                               PunchFields(Location(13.0, 77.6, "Depot")))
    assert derive_state(record.punch_in_time, record.punch_out_time) == AttendanceState.MARKED
    assert record.out_address == "Depot"
    assert record.punched_out_by is None
    assert record.punch_out_time >= record.punch_in_time
    assert record.duration is not None


async def test_second_punch_in_conflicts_and_keeps_first(db):
    record = await get_or_create_attendance(db, 1, TODAY)
    attendance_id = record.attendance_id
    first = await apply_punch(db, attendance_id, PunchDirection.IN, PunchFields(GATE))
    punched_at = first.punch_in_time

    with pytest.raises(PunchConflict):
        await apply_punch(db, attendance_id, PunchDirection.IN,
                          PunchFields(Location(1.0, 1.0, "Elsewhere")))

    reloaded = await get_attendance(db, attendance_id)
    assert reloaded.punch_in_time == punched_at
    assert reloaded.in_address == "Main gate"


async def test_punch_out_without_punch_in_conflicts(db):
    record = await get_or_create_attendance(db, 1, TODAY)
    attendance_id = record.attendance_id

    with pytest.raises(PunchConflict):
        await apply_punch(db, attendance_id, PunchDirection.OUT, PunchFields(GATE))

    reloaded = await get_attendance(db, attendance_id)
    assert reloaded.punch_out_time is None


async def test_punch_on_missing_record_conflicts(db):
    with pytest.raises(PunchConflict):
        await apply_punch(db, 12345, PunchDirection.IN, PunchFields(GATE))


async def test_link_face_id_only_changes_stale_cache(db):
    assert await link_face_id(db, 1, "face-1") == 0
    assert await link_face_id(db, 2, "face-2") == 1

    employee = await get_employee(db, 2)
    await db.refresh(employee)
    assert employee.face_id == "face-2"


async def test_user_exists(db):
    assert await user_exists(db, 10) is True
    assert await user_exists(db, 11) is False


async def test_record_enrollment(db):
    employee = await record_enrollment(db, 3, "/uploads/faces/employee_3.jpg", "face-3")

    assert employee.face_image_ref == "/uploads/faces/employee_3.jpg"
    assert employee.face_id == "face-3"
    assert employee.face_enrolled_at is not None
    assert await record_enrollment(db, 999, "x.jpg", "face-x") is None


@data_layer
async def add_user(db, user_id):
    db.add(User(user_id=user_id, username="duplicate"))
    await db.flush()


async def test_failed_write_leaves_session_usable(db):
    with pytest.raises(DataLayerError):
        await add_user(db, 10)

    assert await user_exists(db, 10) is True
    assert await user_exists(db, 77) is False
