import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from facepunch.core.errors import ImageProcessingError, InvalidImage

logger = logging.getLogger(__name__)

FACE_CROP_SIZE = (600, 600)
CROP_PADDING_RATIO = 0.25


@dataclass(frozen=True)
class ImageSize:
    width: int
    height: int


@dataclass(frozen=True)
class BoundingBox:
    """Face box as ratios of the image width and height"""
    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class CropRegion:
    left: int
    top: int
    width: int
    height: int

    def as_box(self) -> Tuple[int, int, int, int]:
        return self.left, self.top, self.left + self.width, self.top + self.height


def compute_crop_region(box: Optional[BoundingBox], image_width: int, image_height: int,
                        padding_ratio: float = CROP_PADDING_RATIO) -> Optional[CropRegion]:
    """
    Pixel crop window around a detected face.

    The box is grown by `padding_ratio` of its own size on every side and
    clamped to the image. Returns None when the window is empty.
    """
    if box is None or image_width <= 0 or image_height <= 0:
        return None

    base_width = max(round(box.width * image_width), 1)
    base_height = max(round(box.height * image_height), 1)
    pad_x = round(base_width * padding_ratio)
    pad_y = round(base_height * padding_ratio)

    left = max(round(box.left * image_width) - pad_x, 0)
    top = max(round(box.top * image_height) - pad_y, 0)

    width = min(image_width - left, base_width + pad_x * 2)
    height = min(image_height - top, base_height + pad_y * 2)

    if width <= 0 or height <= 0:
        return None

    return CropRegion(left=left, top=top, width=width, height=height)


def _open(image_bytes: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImage("Unable to decode image", details=str(e))
    # the detector decodes with EXIF orientation applied; crop in the same frame
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def _encode(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=92)
    return buffer.getvalue()


def _metadata(image_bytes: bytes) -> ImageSize:
    img = _open(image_bytes)
    return ImageSize(width=img.width, height=img.height)


def _crop(image_bytes: bytes, region: CropRegion) -> bytes:
    return _encode(_open(image_bytes).crop(region.as_box()))


def _resize(image_bytes: bytes, size: Tuple[int, int]) -> bytes:
    return _encode(ImageOps.fit(_open(image_bytes), size, method=Image.LANCZOS))


def _crop_face(image_bytes: bytes, region: CropRegion, size: Tuple[int, int]) -> bytes:
    face = _open(image_bytes).crop(region.as_box())
    return _encode(ImageOps.fit(face, size, method=Image.LANCZOS))


class ImageProcessor:
    """Pillow transforms, run off the event loop and bounded by `timeout`"""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Image {operation} timed out after {self.timeout}s")
            raise ImageProcessingError(details=f"Image {operation} timed out after {self.timeout}s")

    async def metadata(self, image_bytes: bytes) -> ImageSize:
        return await self._run("metadata", _metadata, image_bytes)

    async def crop(self, image_bytes: bytes, region: CropRegion) -> bytes:
        return await self._run("crop", _crop, image_bytes, region)

    async def resize(self, image_bytes: bytes, size: Tuple[int, int] = FACE_CROP_SIZE) -> bytes:
        return await self._run("resize", _resize, image_bytes, size)

    async def crop_face(self, image_bytes: bytes, region: CropRegion,
                        size: Tuple[int, int] = FACE_CROP_SIZE) -> bytes:
        """Crop then fit to `size` in one decode"""
        return await self._run("crop", _crop_face, image_bytes, region, size)
