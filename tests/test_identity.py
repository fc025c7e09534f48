from facepunch.crud.employee import get_employee
from facepunch.services.identity import IdentityResolver


async def cached_face_id(session_factory, emp_id):
    async with session_factory() as session:
        employee = await get_employee(session, emp_id)
        return employee.face_id


async def test_cached_face_id_wins(db, session_factory):
    resolver = IdentityResolver(db, session_factory)

    employee = await resolver.resolve(face_id="face-1", candidate_emp_id=2, requested_emp_id=3)
    await resolver.drain()

    assert employee.emp_id == 1
    assert await cached_face_id(session_factory, 1) == "face-1"


async def test_candidate_id_is_used_and_cache_repaired(db, session_factory):
    resolver = IdentityResolver(db, session_factory)

    employee = await resolver.resolve(face_id="face-2", candidate_emp_id=2)
    await resolver.drain()

    assert employee.emp_id == 2
    assert await cached_face_id(session_factory, 2) == "face-2"


async def test_requested_id_is_the_last_resort(db, session_factory):
    resolver = IdentityResolver(db, session_factory)

    employee = await resolver.resolve(face_id="face-unknown", candidate_emp_id=999, requested_emp_id=3)
    await resolver.drain()

    assert employee.emp_id == 3
    assert await cached_face_id(session_factory, 3) == "face-unknown"


async def test_stale_cache_is_replaced(db, session_factory):
    resolver = IdentityResolver(db, session_factory)

    employee = await resolver.resolve(face_id="face-1-new", candidate_emp_id=1)
    await resolver.drain()

    assert employee.emp_id == 1
    assert await cached_face_id(session_factory, 1) == "face-1-new"


async def test_unresolved_identity(db, session_factory):
    resolver = IdentityResolver(db, session_factory)

    assert await resolver.resolve(face_id="face-ghost", candidate_emp_id=None) is None
    assert await resolver.resolve() is None
    await resolver.drain()


async def test_no_repair_without_session_factory(db, session_factory):
    resolver = IdentityResolver(db)

    employee = await resolver.resolve(face_id="face-2", candidate_emp_id=2)
    await resolver.drain()

    assert employee.emp_id == 2
    assert await cached_face_id(session_factory, 2) is None
