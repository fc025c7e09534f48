from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from facepunch.core.errors import (
    AlreadyPunchedIn,
    AlreadyPunchedOut,
    PunchInRequired,
    RecordNotFound,
    ValidationError,
)


class PunchDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"

    @classmethod
    def parse(cls, raw: Any) -> "PunchDirection":
        """Decode a punch type from request input. Unknown or missing values are rejected."""
        if isinstance(raw, cls):
            return raw
        normalized = str(raw or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                "Missing or invalid punch type",
                details=f"Expected one of IN, OUT; got {raw!r}"
            )


class AttendanceState(str, Enum):
    NOT_MARKED = "not_marked"
    IN_PROGRESS = "in_progress"
    MARKED = "marked"


def derive_state(punch_in_time: Optional[datetime], punch_out_time: Optional[datetime]) -> AttendanceState:
    if punch_in_time is None:
        return AttendanceState.NOT_MARKED
    if punch_out_time is None:
        return AttendanceState.IN_PROGRESS
    return AttendanceState.MARKED


def check_punch_legality(record, direction: PunchDirection) -> None:
    """
    Decide whether `direction` may be applied to `record`.

    Raises the matching legality error; returns None when the punch is allowed.
    Run this before any upload or recognition call.
    """
    if record is None:
        raise RecordNotFound()

    if direction == PunchDirection.IN and record.punch_in_time is not None:
        raise AlreadyPunchedIn()

    if direction == PunchDirection.OUT and record.punch_out_time is not None:
        raise AlreadyPunchedOut()

    if direction == PunchDirection.OUT and record.punch_in_time is None:
        raise PunchInRequired()


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: str = ""


@dataclass(frozen=True)
class FaceMatchOutcome:
    similarity: float
    threshold: float
    employee_id: Optional[int] = None


@dataclass
class PunchResult:
    """Updated attendance row plus the face match that authorised it, if any"""
    record: Any
    direction: PunchDirection
    face_match: Optional[FaceMatchOutcome] = None

    @property
    def punched_at(self) -> Optional[datetime]:
        if self.direction == PunchDirection.IN:
            return self.record.punch_in_time
        return self.record.punch_out_time


class FaceStatus(str, Enum):
    PUNCHED = "punched"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"
    ERROR = "error"


@dataclass
class GroupFaceOutcome:
    face_index: int
    status: FaceStatus
    message: Optional[str] = None
    employee_id: Optional[int] = None
    employee_name: Optional[str] = None
    similarity: Optional[float] = None
    attendance_id: Optional[int] = None
    punched_at: Optional[datetime] = None


@dataclass
class GroupCaptureResult:
    direction: PunchDirection
    total_faces: int
    results: List[GroupFaceOutcome] = field(default_factory=list)

    @property
    def punched_count(self) -> int:
        return sum(1 for r in self.results if r.status == FaceStatus.PUNCHED)

    @property
    def success(self) -> bool:
        return self.punched_count > 0

    def by_status(self) -> Dict[FaceStatus, List[GroupFaceOutcome]]:
        grouped: Dict[FaceStatus, List[GroupFaceOutcome]] = {}
        for outcome in self.results:
            grouped.setdefault(outcome.status, []).append(outcome)
        return grouped
