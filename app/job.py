"""Unit of work for one synchronized pair of recordings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from contracts import EventInterval, TriangulatedPoint
from contracts.versioning import make_envelope
from exceptions import InvariantViolationError

JOB_ID_SEPARATOR = "__"


class JobStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def make_job_id(primary_path: Path, secondary_path: Path) -> str:
    return f"{Path(primary_path).stem}{JOB_ID_SEPARATOR}{Path(secondary_path).stem}"


@dataclass
class VideoPairJob:
    """Progress and results of processing one video pair.

    ``frame_cursor`` is the index of the last frame pair read from both
    streams (-1 before the first) and only moves forward.
    """

    primary_path: Path
    secondary_path: Path
    frame_cursor: int = -1
    status: JobStatus = JobStatus.PENDING
    points: List[TriangulatedPoint] = field(default_factory=list)
    events: List[EventInterval] = field(default_factory=list)
    error: Optional[str] = None

    def __post_init__(self) -> None:
        self.primary_path = Path(self.primary_path)
        self.secondary_path = Path(self.secondary_path)

    @property
    def job_id(self) -> str:
        return make_job_id(self.primary_path, self.secondary_path)

    @property
    def frames_processed(self) -> int:
        return self.frame_cursor + 1

    @property
    def sources(self) -> List[Path]:
        return [self.primary_path, self.secondary_path]

    def advance(self, frame_index: int) -> None:
        if frame_index <= self.frame_cursor:
            raise InvariantViolationError(
                f"Frame cursor for {self.job_id} moved backwards: {self.frame_cursor} -> {frame_index}"
            )
        self.frame_cursor = frame_index

    def mark_succeeded(self) -> None:
        self.status = JobStatus.SUCCEEDED
        self.error = None

    def mark_failed(self, error: BaseException) -> None:
        self.status = JobStatus.FAILED
        self.error = f"{type(error).__name__}: {error}"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "primary": self.primary_path.name,
            "secondary": self.secondary_path.name,
            "frames": self.frames_processed,
            "events": [event.to_dict() for event in self.events],
            "points": [point.to_dict() for point in self.points],
        }

    def to_artifact(self) -> Dict[str, Any]:
        """Versioned artifact document for this job."""
        return make_envelope(self.to_payload())
