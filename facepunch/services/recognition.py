import asyncio
import io
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image
from sklearn.metrics.pairwise import cosine_similarity
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.future import select

from facepunch.config import get_settings
from facepunch.core.errors import RecognitionErrorCode, RecognitionServiceError
from facepunch.models.face import EnrolledFace, FaceCollection
from facepunch.services.imaging import BoundingBox

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    """Engine status enumeration"""
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


@dataclass
class EngineConfig:
    """Configuration for FaceEngine"""
    model_name: str = "buffalo_s"
    detection_threshold: float = 0.35
    detection_size: Tuple[int, int] = (640, 640)
    max_image_dimension: int = 2000
    providers: List[str] = field(default_factory=lambda: ['CPUExecutionProvider'])
    model_cache_dir: str = "./.insightface_models"
    max_retries: int = 3
    retry_delay: float = 2.0


@dataclass
class AnalyzedFace:
    bounding_box: BoundingBox
    embedding: np.ndarray
    confidence: float = 0.0

    @property
    def area(self) -> float:
        return self.bounding_box.width * self.bounding_box.height


@dataclass(frozen=True)
class DetectedFace:
    bounding_box: BoundingBox
    confidence: float = 0.0


@dataclass(frozen=True)
class FaceMatch:
    face_id: str
    external_image_id: Optional[str]
    similarity: float


def similarity_percent(embedding1, embedding2) -> float:
    """Cosine similarity of two embeddings on a 0-100 scale (negative clipped to 0)"""
    emb1 = np.asarray(embedding1, dtype=np.float32).reshape(1, -1)
    emb2 = np.asarray(embedding2, dtype=np.float32).reshape(1, -1)
    score = float(cosine_similarity(emb1, emb2)[0][0])
    return max(0.0, min(1.0, score)) * 100.0


class FaceEngine:
    """
    InsightFace detector and embedder.

    All methods are blocking; RecognitionService runs them in worker threads.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.app = None
        self.status = ServiceStatus.INITIALIZING
        self.initialization_error = None

    def initialize(self):
        """Load and warm up the face analysis models"""
        model_dir = Path(self.config.model_cache_dir)
        model_dir.mkdir(parents=True, exist_ok=True)
        os.environ['INSIGHTFACE_MODELS_ROOT'] = str(model_dir)

        from insightface.app import FaceAnalysis

        for attempt in range(self.config.max_retries):
            try:
                logger.info(f"Initializing FaceAnalysis with model: {self.config.model_name} "
                            f"(attempt {attempt + 1}/{self.config.max_retries})")
                app = FaceAnalysis(
                    name=self.config.model_name,
                    providers=self.config.providers,
                    root=str(model_dir)
                )
                app.prepare(
                    ctx_id=0,
                    det_thresh=self.config.detection_threshold,
                    det_size=self.config.detection_size
                )

                test_img = np.ones((100, 100, 3), dtype=np.uint8) * 128
                app.get(test_img)

                self.app = app
                self.status = ServiceStatus.READY
                self.initialization_error = None
                logger.info("FaceEngine initialized successfully")
                return

            except Exception as e:
                logger.error(f"Initialization attempt {attempt + 1} failed: {e}")
                self.initialization_error = str(e)
                if attempt < self.config.max_retries - 1:
                    time.sleep(self.config.retry_delay)

        logger.error("All initialization attempts failed")
        self.status = ServiceStatus.ERROR

    def is_ready(self) -> bool:
        return self.status == ServiceStatus.READY and self.app is not None

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "model": self.config.model_name,
            "error": self.initialization_error,
        }

    def load_image(self, image_bytes: bytes) -> np.ndarray:
        """Decode image bytes to a BGR array, downscaling very large captures"""
        if not image_bytes:
            raise RecognitionServiceError("Empty image", code=RecognitionErrorCode.INVALID_IMAGE, upstream_status=400)

        img = cv2.imdecode(np.frombuffer(image_bytes, np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            # formats OpenCV cannot decode (e.g. some WebP/HEIF variants)
            try:
                pil_image = Image.open(io.BytesIO(image_bytes)).convert('RGB')
                img = cv2.cvtColor(np.array(pil_image), cv2.COLOR_RGB2BGR)
            except Exception as e:
                raise RecognitionServiceError(
                    "Unable to decode image",
                    code=RecognitionErrorCode.INVALID_IMAGE,
                    upstream_status=400,
                    details=str(e),
                )

        h, w = img.shape[:2]
        if max(h, w) > self.config.max_image_dimension:
            scale = self.config.max_image_dimension / max(h, w)
            img = cv2.resize(img, (int(w * scale), int(h * scale)))
        return img

    def analyze(self, image_bytes: bytes) -> List[AnalyzedFace]:
        img = self.load_image(image_bytes)
        h, w = img.shape[:2]

        faces = []
        for face in self.app.get(img):
            x1, y1, x2, y2 = [float(c) for c in face.bbox]
            x1, y1 = max(0.0, x1), max(0.0, y1)
            x2, y2 = min(float(w), x2), min(float(h), y2)
            box = BoundingBox(left=x1 / w, top=y1 / h, width=max(0.0, x2 - x1) / w, height=max(0.0, y2 - y1) / h)
            faces.append(AnalyzedFace(
                bounding_box=box,
                embedding=np.asarray(face.embedding, dtype=np.float32),
                confidence=float(getattr(face, 'det_score', 0.0)),
            ))
        return faces


class RecognitionService:
    """
    Face detection, search and comparison against an enrolled-face collection.

    Collections and their face embeddings live in the database; every engine
    call runs in a worker thread bounded by `timeout`.
    """

    def __init__(self, engine: FaceEngine, session_factory: Callable, timeout: float = 15.0):
        self.engine = engine
        self.session_factory = session_factory
        self.timeout = timeout
        self._collection_lock = asyncio.Lock()
        self._ready_collections = set()

    async def ensure_collection(self, collection_id: str) -> None:
        """Create the collection once; concurrent callers wait for the setup in flight"""
        if collection_id in self._ready_collections:
            return

        async with self._collection_lock:
            if collection_id in self._ready_collections:
                return
            try:
                async with self.session_factory() as session:
                    existing = await session.get(FaceCollection, collection_id)
                    if existing is None:
                        session.add(FaceCollection(collection_id=collection_id))
                        try:
                            await session.commit()
                            logger.info(f"Created face collection \"{collection_id}\"")
                        except IntegrityError:
                            # created by another process
                            await session.rollback()
            except SQLAlchemyError as e:
                raise RecognitionServiceError(
                    "Unable to prepare face collection",
                    code=RecognitionErrorCode.INTERNAL,
                    upstream_status=503,
                    details=str(e.__class__.__name__),
                )
            self._ready_collections.add(collection_id)

    async def _analyze(self, image_bytes: bytes) -> List[AnalyzedFace]:
        if not self.engine.is_ready():
            raise RecognitionServiceError(
                "Face recognition engine is not available",
                code=RecognitionErrorCode.UNAVAILABLE,
                upstream_status=503,
                details=self.engine.initialization_error,
            )
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.engine.analyze, image_bytes), self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Face analysis timed out after {self.timeout}s")
            raise RecognitionServiceError(
                "Face recognition timed out",
                code=RecognitionErrorCode.TIMEOUT,
                upstream_status=504,
            )
        except RecognitionServiceError:
            raise
        except Exception as e:
            logger.error(f"Face analysis failed: {e}")
            raise RecognitionServiceError(details=str(e), code=RecognitionErrorCode.INTERNAL)

    async def _largest_face(self, image_bytes: bytes, role: str) -> AnalyzedFace:
        faces = await self._analyze(image_bytes)
        if not faces:
            raise RecognitionServiceError(
                f"There are no faces in the {role} image",
                code=RecognitionErrorCode.NO_FACE,
                upstream_status=400,
            )
        return max(faces, key=lambda f: f.area)

    async def _load_collection(self, collection_id: str) -> List[EnrolledFace]:
        try:
            async with self.session_factory() as session:
                if await session.get(FaceCollection, collection_id) is None:
                    raise RecognitionServiceError(
                        f"Collection {collection_id} not found",
                        code=RecognitionErrorCode.RESOURCE_NOT_FOUND,
                        upstream_status=404,
                    )
                result = await asyncio.wait_for(
                    session.execute(select(EnrolledFace).where(EnrolledFace.collection_id == collection_id)),
                    self.timeout,
                )
                return list(result.scalars().all())
        except asyncio.TimeoutError:
            raise RecognitionServiceError(
                "Face collection lookup timed out",
                code=RecognitionErrorCode.TIMEOUT,
                upstream_status=504,
            )
        except SQLAlchemyError as e:
            raise RecognitionServiceError(
                "Face collection lookup failed",
                code=RecognitionErrorCode.INTERNAL,
                upstream_status=503,
                details=str(e.__class__.__name__),
            )

    async def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        faces = await self._analyze(image_bytes)
        logger.info(f"Detected {len(faces)} face(s)")
        return [DetectedFace(bounding_box=f.bounding_box, confidence=f.confidence) for f in faces]

    async def search_faces_by_image(self, collection_id: str, image_bytes: bytes,
                                    max_faces: int = 1, threshold: float = 80.0) -> List[FaceMatch]:
        """Enrolled faces most similar to the largest face in the image, best first"""
        enrolled = await self._load_collection(collection_id)
        query = await self._largest_face(image_bytes, "search")

        matches = []
        for face in enrolled:
            try:
                embedding = json.loads(face.embedding)
            except (json.JSONDecodeError, TypeError) as e:
                logger.warning(f"Skipping face {face.face_id} with unreadable embedding: {e}")
                continue
            similarity = similarity_percent(query.embedding, embedding)
            if similarity >= threshold:
                matches.append(FaceMatch(
                    face_id=face.face_id,
                    external_image_id=face.external_image_id,
                    similarity=similarity,
                ))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:max_faces]

    async def compare_faces(self, source_bytes: bytes, target_bytes: bytes) -> Optional[float]:
        """Best similarity between the source face and any target face; None when the target has no face"""
        source = await self._largest_face(source_bytes, "source")
        targets = await self._analyze(target_bytes)
        if not targets:
            return None

        return max(similarity_percent(source.embedding, t.embedding) for t in targets)

    async def index_face(self, collection_id: str, image_bytes: bytes,
                         external_image_id: Optional[str] = None) -> str:
        """Add the largest face in the image to the collection and return its face id"""
        await self.ensure_collection(collection_id)
        face = await self._largest_face(image_bytes, "enrollment")
        face_id = str(uuid.uuid4())

        try:
            async with self.session_factory() as session:
                session.add(EnrolledFace(
                    face_id=face_id,
                    collection_id=collection_id,
                    external_image_id=external_image_id,
                    embedding=json.dumps(face.embedding.tolist()),
                ))
                await session.commit()
        except SQLAlchemyError as e:
            raise RecognitionServiceError(
                "Unable to index face",
                code=RecognitionErrorCode.INTERNAL,
                upstream_status=503,
                details=str(e.__class__.__name__),
            )

        logger.info(f"Indexed face {face_id} in {collection_id} for {external_image_id}")
        return face_id


_engine_instance: Optional[FaceEngine] = None


def get_face_engine() -> FaceEngine:
    """Get or create the process-wide FaceEngine (not yet initialized)"""
    global _engine_instance
    if _engine_instance is None:
        settings = get_settings()
        _engine_instance = FaceEngine(EngineConfig(
            model_name=settings.face_model_name,
            detection_threshold=settings.face_detection_threshold,
            model_cache_dir=settings.face_model_dir,
        ))
    return _engine_instance
