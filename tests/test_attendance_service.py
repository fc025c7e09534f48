import pytest

from conftest import TODAY, make_image
from facepunch.core.errors import (
    AlreadyPunchedIn,
    AlreadyPunchedOut,
    ConfigurationError,
    EmployeeNotFound,
    EmployeeNotRegistered,
    EvidenceNotFound,
    EvidenceRequired,
    FaceMismatch,
    NoMatchingEmployee,
    PunchInRequired,
    RecordNotFound,
    UpdateFailed,
    ValidationError,
)
from facepunch.core.punch import Location, PunchDirection
from facepunch.crud.attendance import get_attendance, get_attendance_for_day, get_or_create_attendance
from facepunch.services.attendance_service import AttendanceService
from facepunch.services.punch_processor import evidence_name
from facepunch.services.recognition import FaceMatch

GATE = Location(latitude=12.97, longitude=77.59, address="Main gate")


async def test_face_punch_in_above_threshold(service, recognition, storage, db):
    recognition.search_results = [[FaceMatch("face-1", "1", 97.0)]]
    recognition.compare_similarity = 95.0

    outcome = await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, "10")

    record = outcome.punch.record
    assert outcome.employee_id == 1
    assert outcome.punch.face_match.similarity == 95.0
    assert outcome.punch.face_match.threshold == 90.0
    assert record.punch_in_time is not None
    assert record.punch_out_time is None
    assert record.punched_in_by == 10
    assert record.in_address == "Main gate"
    assert record.punch_in_image == f"/uploads/{evidence_name(record.attendance_id, PunchDirection.IN)}"
    assert await storage.exists(evidence_name(record.attendance_id, PunchDirection.IN))
    assert ("search", "employees", 1, 90.0) in recognition.calls


async def test_face_mismatch_leaves_record_untouched(service, recognition, db):
    recognition.search_results = [[FaceMatch("face-1", "1", 97.0)]]
    recognition.compare_similarity = 80.0

    with pytest.raises(FaceMismatch):
        await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None)

    record = await get_attendance_for_day(db, 1, TODAY)
    await db.refresh(record)
    assert record.punch_in_time is None
    assert record.punch_in_image is None


async def test_punch_out_before_punch_in_stops_before_recognition_compare(service, recognition, db):
    recognition.search_results = [[FaceMatch("face-1", "1", 97.0)]]

    with pytest.raises(PunchInRequired):
        await service.punch_single(make_image(), PunchDirection.OUT, 90.0, GATE, None)

    assert recognition.count("compare") == 0


async def test_face_punch_in_then_out(service, recognition):
    recognition.search_results = [[FaceMatch("face-1", "1", 97.0)], [FaceMatch("face-1", "1", 96.0)]]

    first = await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None)
    second = await service.punch_single(make_image(), PunchDirection.OUT, 90.0, GATE, None)

    assert first.punch.record.attendance_id == second.punch.record.attendance_id
    assert second.punch.record.punch_out_time >= second.punch.record.punch_in_time


async def test_second_face_punch_in_is_rejected(service, recognition):
    recognition.search_results = [[FaceMatch("face-1", "1", 97.0)], [FaceMatch("face-1", "1", 97.0)]]

    await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None)
    with pytest.raises(AlreadyPunchedIn):
        await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None)


async def test_no_match_in_collection(service, recognition):
    recognition.search_results = [[FaceMatch("face-1", "1", 60.0)]]

    with pytest.raises(NoMatchingEmployee) as exc:
        await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None)

    assert exc.value.suggestion == "Use manual attendance if face recognition fails"


async def test_match_without_employee(service, recognition):
    recognition.search_results = [[FaceMatch("face-ghost", "999", 97.0)]]

    with pytest.raises(EmployeeNotRegistered) as exc:
        await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None)

    assert "/employees/{emp_id}/face" in exc.value.solution


async def test_requested_employee_is_the_fallback(service, recognition, session_factory):
    recognition.search_results = [[FaceMatch("face-2", "not-a-number", 97.0)]]

    outcome = await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None,
                                         requested_emp_id=2)
    await service.close()

    assert outcome.employee_id == 2
    assert outcome.punch.record.ward_id == 8


async def test_unknown_actor_is_dropped(service, recognition):
    recognition.search_results = [[FaceMatch("face-1", "1", 97.0)]]

    outcome = await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, "77")

    assert outcome.punch.record.punched_in_by is None


async def test_missing_collection_configuration(db, storage, recognition, session_factory):
    service = AttendanceService(db, storage, recognition, session_factory=session_factory,
                                collection_id=None, today=lambda: TODAY)

    with pytest.raises(ConfigurationError):
        await service.punch_single(make_image(), PunchDirection.IN, 90.0, GATE, None)
    assert recognition.count("search") == 0


async def test_open_today(service):
    record = await service.open_today("2")
    again = await service.open_today(2)

    assert record.attendance_id == again.attendance_id
    assert record.date == TODAY

    with pytest.raises(ValidationError):
        await service.open_today(None)
    with pytest.raises(EmployeeNotFound):
        await service.open_today(999)


async def test_manual_punch_round_trip(service, recognition, storage):
    record = await service.open_today(3)
    attendance_id = record.attendance_id

    punched_in = await service.punch_manual(str(attendance_id), PunchDirection.IN, None, "10", GATE)
    assert punched_in.face_match is None
    assert punched_in.record.punched_in_by == 10
    assert punched_in.record.punch_in_image is None

    punched_out = await service.punch_manual(attendance_id, PunchDirection.OUT, make_image(), None,
                                             Location(13.0, 77.6, "Depot"))
    assert punched_out.record.punch_out_image == f"/uploads/{evidence_name(attendance_id, PunchDirection.OUT)}"
    assert recognition.count("compare") == 0

    with pytest.raises(AlreadyPunchedOut):
        await service.punch_manual(attendance_id, PunchDirection.OUT, None, None, GATE)


async def test_manual_punch_on_missing_record(service):
    with pytest.raises(RecordNotFound):
        await service.punch_manual("4242", PunchDirection.IN, None, None, GATE)
    with pytest.raises(ValidationError):
        await service.punch_manual("", PunchDirection.IN, None, None, GATE)


async def test_verification_requires_evidence(service, db):
    record = await get_or_create_attendance(db, 1, TODAY)

    with pytest.raises(EvidenceRequired):
        await service.processor.apply(record.attendance_id, PunchDirection.IN, None, None, GATE,
                                      employee_id=1, require_face_match=True)


async def test_verification_looks_up_employee_from_record(service, recognition, db):
    record = await get_or_create_attendance(db, 1, TODAY)

    result = await service.processor.apply(record.attendance_id, PunchDirection.IN, make_image(), None, GATE,
                                           require_face_match=True, threshold=90.0)

    assert result.face_match.employee_id == 1


async def test_lost_race_is_an_update_failure(service, db):
    record = await get_or_create_attendance(db, 1, TODAY)
    attendance_id = record.attendance_id
    await service.processor.apply(attendance_id, PunchDirection.IN, None, None, GATE)

    with pytest.raises(UpdateFailed):
        await service.processor.apply(attendance_id, PunchDirection.IN, None, None, GATE)

    reloaded = await get_attendance(db, attendance_id)
    assert reloaded.punch_in_time is not None


async def test_evidence_lookup(service):
    record = await service.open_today(3)
    attendance_id = record.attendance_id
    await service.punch_manual(attendance_id, PunchDirection.IN, make_image(), None, GATE)

    evidence = await service.evidence(str(attendance_id), PunchDirection.IN)
    assert evidence.key == evidence_name(attendance_id, PunchDirection.IN)
    assert evidence.download_name == f"attendance_{attendance_id}_IN.jpg"

    with pytest.raises(EvidenceNotFound):
        await service.evidence(attendance_id, PunchDirection.OUT)
    with pytest.raises(RecordNotFound):
        await service.evidence(4242, PunchDirection.IN)


async def test_enroll(service, recognition, storage):
    employee = await service.enroll(3, make_image())

    assert employee.face_image_ref == "/uploads/faces/employee_3.jpg"
    assert employee.face_id == "face-enrolled-3"
    assert await storage.exists("faces/employee_3.jpg")
    assert ("index", "employees", "3") in recognition.calls
    assert "employees" in recognition.collections

    with pytest.raises(EmployeeNotFound):
        await service.enroll(999, make_image())
