"""Frame sources for offline video processing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from exceptions import SourceUnreadableError
from log_config.logger import get_logger

logger = get_logger(__name__)


class VideoSource(ABC):
    """Sequential reader over the frames of one recording."""

    path: Path

    @property
    @abstractmethod
    def frame_count(self) -> int:
        """Number of frames in the recording."""

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        """Return the next frame, or None at the end of the stream."""

    @abstractmethod
    def rewind(self) -> None:
        """Reposition at the first frame."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OpenCVVideoSource(VideoSource):
    """Reads a video file with ``cv2.VideoCapture``.

    Raises:
        SourceUnreadableError: If the file is missing, cannot be opened, or has no frames
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise SourceUnreadableError(f"Video not found: {self.path}", source=self.path)
        self._capture: Optional[cv2.VideoCapture] = self._open()

        self._frame_count = int(self._capture.get(cv2.CAP_PROP_FRAME_COUNT))
        if self._frame_count <= 0:
            # Some containers do not report a count; decode to find it.
            self._frame_count = self._count_frames()
        if self._frame_count <= 0:
            self.close()
            raise SourceUnreadableError(f"Video has no frames: {self.path}", source=self.path)

        self._fps = float(self._capture.get(cv2.CAP_PROP_FPS))
        width = int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(
            f"Opened {self.path.name}: {self._frame_count} frames @ {self._fps:.1f} fps, {width}x{height}"
        )

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def fps(self) -> float:
        return self._fps

    def read(self) -> Optional[np.ndarray]:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        if not ok:
            return None
        return frame

    def rewind(self) -> None:
        if self._capture is not None and self._capture.set(cv2.CAP_PROP_POS_FRAMES, 0):
            return
        logger.debug(f"Seek failed for {self.path.name}; reopening")
        self.close()
        self._capture = self._open()

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def _open(self) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(str(self.path))
        if not capture.isOpened():
            capture.release()
            raise SourceUnreadableError(f"Failed to open video: {self.path}", source=self.path)
        return capture

    def _count_frames(self) -> int:
        count = 0
        while self._capture.grab():
            count += 1
        self.rewind()
        return count
