from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from facepunch.config import get_settings
from facepunch.database import database
from facepunch.services.attendance_service import AttendanceService
from facepunch.services.imaging import ImageProcessor
from facepunch.services.recognition import RecognitionService, get_face_engine
from facepunch.services.storage import get_object_store

_recognition_service = None


async def get_db() -> AsyncSession:
    """
    Dependency function that yields db sessions
    """
    async with database.get_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_recognition_service() -> RecognitionService:
    global _recognition_service
    if _recognition_service is None:
        _recognition_service = RecognitionService(
            get_face_engine(),
            database.get_session,
            timeout=get_settings().recognition_timeout,
        )
    return _recognition_service


async def get_attendance_service(
        db: AsyncSession = Depends(get_db),
        recognition: RecognitionService = Depends(get_recognition_service),
) -> AttendanceService:
    settings = get_settings()
    service = AttendanceService(
        db,
        storage=get_object_store(),
        recognition=recognition,
        images=ImageProcessor(timeout=settings.image_timeout),
        session_factory=database.get_session,
        collection_id=settings.face_collection,
        default_threshold=settings.face_match_threshold,
    )
    try:
        yield service
    finally:
        await service.close()
