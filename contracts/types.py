"""Core data contracts for calibration, event detection, and triangulation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class CalibrationMode(Enum):
    MONO = "MONO"
    STEREO = "STEREO"


class EventKind(Enum):
    MARKER = "marker"
    ACTIVITY = "activity"


@dataclass(frozen=True)
class PatternGeometry:
    """Chessboard inner-corner layout and square size in world units."""

    columns: int = 9
    rows: int = 6
    square_size: float = 25.0

    @property
    def size(self) -> Tuple[int, int]:
        return self.columns, self.rows


@dataclass(frozen=True)
class CalibrationInput:
    image_width: int
    image_height: int
    mode: CalibrationMode = CalibrationMode.STEREO
    pattern: PatternGeometry = field(default_factory=PatternGeometry)

    @property
    def image_size(self) -> Tuple[int, int]:
        return self.image_width, self.image_height


@dataclass(frozen=True)
class EventInterval:
    """Frame range tagged with an event kind.

    Both bounds are inclusive. ``end_frame`` is None while the event is open.
    """

    kind: EventKind
    start_frame: int
    end_frame: Optional[int] = None
    event_id: Optional[int] = None
    payload: Dict[str, str] = field(default_factory=dict)

    @property
    def closed(self) -> bool:
        return self.end_frame is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.event_id,
            "start_frame": self.start_frame,
            "end_frame": self.end_frame,
            "payload": dict(self.payload),
        }


@dataclass(frozen=True)
class Correspondence:
    primary: Tuple[float, float]
    secondary: Tuple[float, float]


@dataclass(frozen=True)
class TriangulatedPoint:
    frame_index: int
    x: float
    y: float
    z: float
    reprojection_error: float

    @property
    def xyz(self) -> Tuple[float, float, float]:
        return self.x, self.y, self.z

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame": self.frame_index,
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "reprojection_error": self.reprojection_error,
        }
