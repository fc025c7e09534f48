"""
Request field decoding.

Loosely typed form fields are decoded here once, at the boundary, into the
strict values the punch pipeline works with.
"""
import math
import re
from enum import Enum
from typing import Any, Optional

from facepunch.core.errors import ValidationError
from facepunch.core.punch import Location


class CaptureMode(str, Enum):
    SINGLE = "single"
    GROUP = "group"


GROUP_MODE_KEYWORDS = frozenset({
    "group",
    "groups",
    "groupattendance",
    "groupmode",
    "bulk",
    "multi",
    "multiple",
    "multiface",
    "multifaces",
    "multifacemode",
})

TRUTHY_VALUES = frozenset({"1", "true", "yes"})

_NON_LETTERS = re.compile(r"[^a-z]")


def _requests_group(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value

    normalized = str(value).strip().lower()
    if not normalized:
        return False
    if normalized in TRUTHY_VALUES:
        return True

    return _NON_LETTERS.sub("", normalized) in GROUP_MODE_KEYWORDS


def decode_capture_mode(*raw_values: Any) -> CaptureMode:
    """Group mode if any of the given fields asks for it"""
    if any(_requests_group(value) for value in raw_values):
        return CaptureMode.GROUP
    return CaptureMode.SINGLE


def normalize_id(value: Any) -> Optional[int]:
    """Integer id from a form value, or None when it is missing or not numeric"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value.is_integer() else None

    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = float(text)
    except ValueError:
        return None
    if not math.isfinite(parsed) or not parsed.is_integer():
        return None
    return int(parsed)


def parse_threshold(raw: Any, default: float) -> float:
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value):
        return default
    if value < 0 or value > 100:
        raise ValidationError(
            "Invalid face match threshold",
            details=f"Threshold must be between 0 and 100, got {value}"
        )
    return value


def _parse_coordinate(name: str, raw: Any, default: Optional[float]) -> float:
    if raw is None or str(raw).strip() == "":
        if default is None:
            raise ValidationError("Missing required fields", details=f"{name} is required")
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid location", details=f"{name} must be numeric")
    if not math.isfinite(value):
        raise ValidationError("Invalid location", details=f"{name} must be finite")
    return value


def parse_location(latitude: Any, longitude: Any, address: Any, required: bool = False) -> Location:
    """
    Build a Location from form values.

    With `required` every field must be present (manual punches); otherwise
    missing coordinates default to 0 and a missing address to "".
    """
    default = None if required else 0.0
    lat = _parse_coordinate("latitude", latitude, default)
    lng = _parse_coordinate("longitude", longitude, default)

    text = "" if address is None else str(address)
    if required and not text.strip():
        raise ValidationError("Missing required fields", details="address is required")

    return Location(latitude=lat, longitude=lng, address=text)
