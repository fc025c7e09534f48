import asyncio
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from facepunch.api.v1.attendance import router
from facepunch.api.v1.employees import employee_router
from facepunch.config import get_settings
from facepunch.core.classifier import classify
from facepunch.core.errors import AttendanceError, ValidationError
from facepunch.database import database
from facepunch.dependencies import get_recognition_service


def configure_logging():
    settings = get_settings()
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding='utf-8'))

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting attendance service...")
    settings = get_settings()

    if not await database.connect():
        raise RuntimeError("Database connection failed")
    await database.create_tables()

    recognition = get_recognition_service()
    logger.info("Initializing face recognition engine...")
    await asyncio.to_thread(recognition.engine.initialize)
    if recognition.engine.is_ready():
        logger.info(f"Face engine status: {recognition.engine.get_status()}")
        if settings.face_collection:
            await recognition.ensure_collection(settings.face_collection)
        else:
            logger.warning("FACE_COLLECTION is not set; face attendance will be rejected")
    else:
        logger.error(f"Face engine not ready: {recognition.engine.get_status()}")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await database.disconnect()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Face Attendance API",
    description="Geotagged punch in/out with face verification",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(employee_router)


@app.exception_handler(AttendanceError)
async def attendance_error_handler(request: Request, exc: AttendanceError):
    classified = classify(exc)
    logger.warning(f"{request.method} {request.url.path} -> {classified.status_code}: {classified.body['error']}")
    return JSONResponse(status_code=classified.status_code, content=classified.body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
    return await attendance_error_handler(request, ValidationError("Invalid request", details=f"Invalid fields: {fields}"))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    classified = classify(exc)
    return JSONResponse(status_code=classified.status_code, content=classified.body)


@app.get("/")
async def root():
    return {
        "message": "Face Attendance API",
        "version": "1.0.0",
        "endpoints": {
            "attendance": "/attendance",
            "face_attendance": "/attendance/face-attendance",
            "enrollment": "/employees/{emp_id}/face",
            "health": "/health",
        }
    }


@app.get("/health")
async def health_check():
    db_status = await database.check_connection()
    face_status = get_recognition_service().engine.get_status().get("status", "unknown")

    return {
        "status": "healthy" if db_status and face_status == "ready" else "degraded",
        "database": "connected" if db_status else "disconnected",
        "face_service": face_status
    }


if __name__ == "__main__":
    uvicorn.run("facepunch.main:app", host="0.0.0.0", port=8000)
