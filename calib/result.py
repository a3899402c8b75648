"""Calibration result container."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Optional, Tuple

import numpy as np

from contracts import CalibrationMode


@dataclass(frozen=True, eq=False)
class CalibrationResult:
    """Intrinsics for each camera plus, in stereo mode, the rig geometry.

    ``rotation``/``translation`` map points from the primary camera frame to
    the secondary camera frame. Maps are ``cv2.initUndistortRectifyMap``
    outputs at ``image_size``.
    """

    mode: CalibrationMode
    image_size: Tuple[int, int]
    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    rms_px: float
    primary_map_x: np.ndarray
    primary_map_y: np.ndarray
    secondary_camera_matrix: Optional[np.ndarray] = None
    secondary_dist_coeffs: Optional[np.ndarray] = None
    secondary_rms_px: Optional[float] = None
    rotation: Optional[np.ndarray] = None
    translation: Optional[np.ndarray] = None
    essential_matrix: Optional[np.ndarray] = None
    fundamental_matrix: Optional[np.ndarray] = None
    stereo_rms_px: Optional[float] = None
    rect_r1: Optional[np.ndarray] = None
    rect_r2: Optional[np.ndarray] = None
    rect_p1: Optional[np.ndarray] = None
    rect_p2: Optional[np.ndarray] = None
    disparity_to_depth: Optional[np.ndarray] = None
    secondary_map_x: Optional[np.ndarray] = None
    secondary_map_y: Optional[np.ndarray] = None

    @property
    def is_stereo(self) -> bool:
        return self.mode is CalibrationMode.STEREO

    @property
    def baseline(self) -> Optional[float]:
        if self.translation is None:
            return None
        return float(np.linalg.norm(self.translation))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CalibrationResult):
            return NotImplemented
        return all(_field_equal(getattr(self, f.name), getattr(other, f.name)) for f in fields(self))


def _field_equal(a: Any, b: Any) -> bool:
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        if a is None or b is None:
            return False
        return a.dtype == b.dtype and np.array_equal(a, b)
    return a == b
