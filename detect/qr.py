"""QR code fiducial detection helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from exceptions import DetectionError


@dataclass(frozen=True)
class QRDetection:
    text: str
    corners: List[Tuple[float, float]]

    @property
    def center(self) -> Tuple[float, float]:
        xs = [x for x, _ in self.corners]
        ys = [y for _, y in self.corners]
        return float(sum(xs) / len(xs)), float(sum(ys) / len(ys))


class QRDecoder:
    """Decodes at most one QR code per image.

    Holds its own ``cv2.QRCodeDetector``; use one decoder per thread.
    """

    def __init__(self) -> None:
        self._detector = cv2.QRCodeDetector()

    def detect(self, image: np.ndarray) -> Tuple[Optional[QRDetection], Optional[str]]:
        """Return the decoded code (or None) and an error message if detection failed."""
        try:
            text, points, _ = self._detector.detectAndDecode(image)
        except cv2.error as exc:
            return None, str(exc)
        if not text or points is None:
            return None, None
        corners = [(float(x), float(y)) for x, y in np.asarray(points).reshape(-1, 2)]
        if not corners:
            return None, None
        return QRDetection(text=text, corners=corners), None

    def __call__(self, image: np.ndarray) -> Optional[QRDetection]:
        detection, error = self.detect(image)
        if error is not None:
            raise DetectionError(f"QR detection failed: {error}")
        return detection
