import io
import os
from datetime import date

os.environ["LOG_FILE"] = ""

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from facepunch.database import Base
from facepunch.models.attendance import AttendanceRecord  # noqa: F401
from facepunch.models.employee import Employee, User
from facepunch.models.face import EnrolledFace  # noqa: F401
from facepunch.services.attendance_service import AttendanceService
from facepunch.services.storage import ObjectStore

TODAY = date(2026, 10, 19)
COLLECTION = "employees"


def make_image(width=320, height=240, color=(120, 130, 140)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


class FakeEngine:
    def get_status(self):
        return {"status": "ready", "model": "fake", "error": None}

    def is_ready(self):
        return True


class FakeRecognition:
    """
    Scripted recognition service.

    `search_results` is consumed one entry per search call; an entry that is
    an exception is raised instead. `compare_similarity` is returned for every
    comparison (a list is consumed per call; None means no face in the target).
    """

    def __init__(self):
        self.engine = FakeEngine()
        self.faces = []
        self.search_results = []
        self.compare_similarity = 95.0
        self.calls = []
        self.collections = set()

    async def ensure_collection(self, collection_id):
        self.collections.add(collection_id)

    async def detect_faces(self, image_bytes):
        self.calls.append(("detect",))
        return list(self.faces)

    async def search_faces_by_image(self, collection_id, image_bytes, max_faces=1, threshold=80.0):
        self.calls.append(("search", collection_id, max_faces, threshold))
        result = self.search_results.pop(0) if self.search_results else []
        if isinstance(result, Exception):
            raise result
        return [m for m in result if m.similarity >= threshold][:max_faces]

    async def compare_faces(self, source_bytes, target_bytes):
        self.calls.append(("compare",))
        similarity = self.compare_similarity
        if isinstance(similarity, list):
            similarity = similarity.pop(0)
        if isinstance(similarity, Exception):
            raise similarity
        return similarity

    async def index_face(self, collection_id, image_bytes, external_image_id=None):
        self.calls.append(("index", collection_id, external_image_id))
        return f"face-enrolled-{external_image_id}"

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


async def seed_directory(session_factory):
    async with session_factory() as session:
        session.add_all([
            Employee(emp_id=1, name="Asha Rao", emp_code="E001", ward_id=7, department_id=3,
                     face_image_ref="/uploads/faces/employee_1.jpg", face_id="face-1"),
            Employee(emp_id=2, name="Ravi Kumar", emp_code="E002", ward_id=8, department_id=3,
                     face_image_ref="/uploads/faces/employee_2.jpg", face_id=None),
            Employee(emp_id=3, name="Meena Das", emp_code="E003", ward_id=7, department_id=4),
            Employee(emp_id=4, name="Karan Shah", emp_code="E004", ward_id=9, department_id=4,
                     face_image_ref="/uploads/faces/missing.jpg"),
            User(user_id=10, username="supervisor"),
        ])
        await session.commit()


async def create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'attendance.db'}", poolclass=NullPool)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def directory(session_factory):
    await seed_directory(session_factory)


@pytest.fixture
async def db(session_factory, directory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def storage(tmp_path):
    store = ObjectStore(str(tmp_path / "uploads"), url_prefix="/uploads", timeout=5.0)
    await store.put(make_image(color=(200, 180, 160)), "faces/employee_1.jpg")
    await store.put(make_image(color=(90, 80, 70)), "faces/employee_2.jpg")
    return store


@pytest.fixture
def recognition():
    return FakeRecognition()


@pytest.fixture
def service(db, storage, recognition, session_factory):
    return AttendanceService(
        db,
        storage=storage,
        recognition=recognition,
        session_factory=session_factory,
        collection_id=COLLECTION,
        default_threshold=90.0,
        today=lambda: TODAY,
    )
