import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Runtime configuration read from the environment (.env supported)"""
    database_url: str
    db_echo: bool = False
    face_collection: Optional[str] = None
    face_match_threshold: float = 60.0
    upload_dir: str = "uploads"
    upload_url_prefix: str = "/uploads"
    recognition_timeout: float = 15.0
    storage_timeout: float = 10.0
    image_timeout: float = 10.0
    db_timeout: float = 10.0
    face_model_name: str = "buffalo_s"
    face_model_dir: str = "./.insightface_models"
    face_detection_threshold: float = 0.35
    log_level: str = "INFO"
    log_file: Optional[str] = "app.log"

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            db_host = os.getenv("DB_HOST", "localhost")
            db_port = os.getenv("DB_PORT", "3306")
            db_user = os.getenv("DB_USER", "root")
            db_password = os.getenv("DB_PASSWORD", "")
            db_name = os.getenv("DB_NAME", "attendance")
            database_url = f"mysql+aiomysql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"

        collection = (
            (os.getenv("FACE_COLLECTION") or "").strip()
            or (os.getenv("FACE_COLLECTION_ID") or "").strip()
        )

        return cls(
            database_url=database_url,
            db_echo=_env_bool("DB_ECHO"),
            face_collection=collection or None,
            face_match_threshold=_env_float("FACE_MATCH_THRESHOLD", 60.0),
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            upload_url_prefix=os.getenv("UPLOAD_URL_PREFIX", "/uploads"),
            recognition_timeout=_env_float("RECOGNITION_TIMEOUT_SECONDS", 15.0),
            storage_timeout=_env_float("STORAGE_TIMEOUT_SECONDS", 10.0),
            image_timeout=_env_float("IMAGE_TIMEOUT_SECONDS", 10.0),
            db_timeout=_env_float("DB_TIMEOUT_SECONDS", 10.0),
            face_model_name=os.getenv("FACE_MODEL_NAME", "buffalo_s"),
            face_model_dir=os.getenv("FACE_MODEL_DIR", "./.insightface_models"),
            face_detection_threshold=_env_float("FACE_DETECTION_THRESHOLD", 0.35),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE", "app.log") or None,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
