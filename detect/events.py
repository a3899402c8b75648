"""Event detectors that window a video into typed frame intervals.

Every event happens within a range of frames. A detector instance moves
through ``IDLE -> ACTIVE -> CLOSED`` exactly once; a new occurrence of the
same kind of event needs a new instance.

Interval state (bounds, payload, lifecycle state) is guarded by a per-instance
lock because a reporting thread may read a detector while the frame loop is
still feeding it.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from contracts import EventInterval, EventKind
from detect.geo_uri import parse_geo_uri
from detect.qr import QRDecoder, QRDetection
from exceptions import (
    DoubleEndError,
    DoubleStartError,
    InvalidConfigurationError,
    InvariantViolationError,
    PrematureEndError,
)
from log_config.logger import get_logger

logger = get_logger(__name__)


class DetectorState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    CLOSED = "closed"


class EventDetector(ABC):
    """Base class for interval events."""

    kind: EventKind

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = DetectorState.IDLE
        self._start_frame: Optional[int] = None
        self._end_frame: Optional[int] = None
        self._payload: Dict[str, str] = {}

    @abstractmethod
    def check_frame(self, frame: np.ndarray, frame_index: int) -> None:
        """Inspect one frame; may start or end the event."""

    def start_event(self, frame_index: int) -> None:
        """Mark ``frame_index`` as the first frame of the event."""
        with self._lock:
            self._start_locked(frame_index)

    def end_event(self, frame_index: int) -> None:
        """Mark ``frame_index`` as the last frame of the event."""
        with self._lock:
            self._end_locked(frame_index)

    def finish(self, last_frame: int) -> None:
        """Close an active event because the stream ended at ``last_frame``."""
        with self._lock:
            if self._state is DetectorState.ACTIVE:
                self._end_locked(max(last_frame, self._start_frame))

    @property
    def state(self) -> DetectorState:
        with self._lock:
            return self._state

    @property
    def range(self) -> Tuple[Optional[int], Optional[int]]:
        with self._lock:
            return self._start_frame, self._end_frame

    @property
    def interval(self) -> Optional[EventInterval]:
        """Snapshot of the interval, or None if the event never started."""
        with self._lock:
            if self._start_frame is None:
                return None
            return EventInterval(
                kind=self.kind,
                start_frame=self._start_frame,
                end_frame=self._end_frame,
                event_id=self._event_id(),
                payload=dict(self._payload),
            )

    def to_dict(self) -> Optional[Dict[str, Any]]:
        interval = self.interval
        return interval.to_dict() if interval is not None else None

    def _event_id(self) -> Optional[int]:
        return None

    # Callers must hold self._lock.
    def _start_locked(self, frame_index: int) -> None:
        if self._state is not DetectorState.IDLE:
            raise DoubleStartError(
                f"{type(self).__name__} started at frame {frame_index} while {self._state.value}"
            )
        self._start_frame = frame_index
        self._state = DetectorState.ACTIVE
        logger.debug(f"{type(self).__name__} started at frame {frame_index}")

    def _end_locked(self, frame_index: int) -> None:
        if self._state is DetectorState.IDLE:
            raise PrematureEndError(
                f"{type(self).__name__} ended at frame {frame_index} before it started"
            )
        if self._state is DetectorState.CLOSED:
            raise DoubleEndError(
                f"{type(self).__name__} ended at frame {frame_index} but already ended at {self._end_frame}"
            )
        if frame_index < self._start_frame:
            raise InvariantViolationError(
                f"End frame {frame_index} precedes start frame {self._start_frame}"
            )
        self._end_frame = frame_index
        self._state = DetectorState.CLOSED
        logger.debug(
            f"{type(self).__name__} closed: frames {self._start_frame}-{self._end_frame}"
        )


class MarkerDetector(EventDetector):
    """Detects a QR code marker and collects its decoded key/value payload.

    The event starts on the first decoded frame and ends at the last decoded
    frame once more than ``miss_tolerance`` consecutive frames fail to decode.
    """

    kind = EventKind.MARKER

    def __init__(
        self,
        miss_tolerance: int = 5,
        decoder: Optional[Callable[[np.ndarray], Optional[QRDetection]]] = None,
    ) -> None:
        super().__init__()
        if miss_tolerance < 0:
            raise InvalidConfigurationError(f"miss_tolerance must be >= 0, got {miss_tolerance}")
        self._miss_tolerance = miss_tolerance
        self._decoder = decoder or QRDecoder()
        self._detected = False
        self._misses = 0
        self._last_seen: Optional[int] = None
        self._last_detection: Optional[QRDetection] = None

    def check_frame(self, frame: np.ndarray, frame_index: int) -> None:
        with self._lock:
            if self._state is DetectorState.CLOSED:
                return

        detection = self._decoder(frame)

        with self._lock:
            if self._state is DetectorState.CLOSED:
                return
            if detection is not None:
                if self._state is DetectorState.IDLE:
                    self._start_locked(frame_index)
                self._detected = True
                self._misses = 0
                self._last_seen = frame_index
                self._last_detection = detection
                self._payload.update(parse_geo_uri(detection.text))
            elif self._state is DetectorState.ACTIVE:
                self._misses += 1
                if self._misses > self._miss_tolerance:
                    self._end_locked(self._last_seen)

    def finish(self, last_frame: int) -> None:
        with self._lock:
            if self._state is DetectorState.ACTIVE:
                self._end_locked(self._last_seen)

    def detected_any(self) -> bool:
        """Whether at least one code was decoded by this instance."""
        with self._lock:
            return self._detected

    @property
    def last_detection(self) -> Optional[QRDetection]:
        with self._lock:
            return self._last_detection


class ActivityDetector(EventDetector):
    """Records a motion segment determined ahead of time.

    ``check_frame`` only tracks the frame cursor: the event starts on the
    first frame seen inside ``[start_frame, end_frame]`` and closes at
    ``end_frame``.
    """

    kind = EventKind.ACTIVITY

    def __init__(self, event_id: int, start_frame: int, end_frame: int) -> None:
        super().__init__()
        if start_frame < 0 or end_frame < start_frame:
            raise InvalidConfigurationError(
                f"Invalid activity interval {start_frame}-{end_frame} for event {event_id}"
            )
        self._id = event_id
        self._planned_start = start_frame
        self._planned_end = end_frame
        self._cursor: Optional[int] = None

    @property
    def event_id(self) -> int:
        return self._id

    def check_frame(self, frame: np.ndarray, frame_index: int) -> None:
        with self._lock:
            self._cursor = frame_index
            if self._state is DetectorState.CLOSED:
                return
            if not self._planned_start <= frame_index <= self._planned_end:
                if self._state is DetectorState.ACTIVE and frame_index > self._planned_end:
                    self._end_locked(self._planned_end)
                return
            if self._state is DetectorState.IDLE:
                self._start_locked(frame_index)
            if frame_index == self._planned_end:
                self._end_locked(frame_index)

    def is_active(self) -> bool:
        """Whether the current frame cursor lies inside the interval."""
        with self._lock:
            if self._cursor is None:
                return False
            return self._planned_start <= self._cursor <= self._planned_end

    def finish(self, last_frame: int) -> None:
        with self._lock:
            if self._state is DetectorState.ACTIVE:
                self._end_locked(max(self._start_frame, min(self._planned_end, last_frame)))

    def _event_id(self) -> Optional[int]:
        return self._id
