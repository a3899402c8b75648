"""Chessboard calibration pattern detection."""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from contracts import PatternGeometry
from detect.utils import to_gray_u8

_SUBPIX_CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.001)


def find_chessboard_corners(image: np.ndarray, pattern: PatternGeometry) -> Optional[np.ndarray]:
    """Locate the inner corners of the pattern with sub-pixel refinement.

    Returns:
        (N, 1, 2) float32 corners in row-major order, or None if not found
    """
    gray = to_gray_u8(image)
    found, corners = cv2.findChessboardCorners(
        gray,
        pattern.size,
        flags=cv2.CALIB_CB_ADAPTIVE_THRESH + cv2.CALIB_CB_NORMALIZE_IMAGE,
    )
    if not found:
        return None
    return cv2.cornerSubPix(
        gray,
        corners,
        winSize=(11, 11),
        zeroZone=(-1, -1),
        criteria=_SUBPIX_CRITERIA,
    )


def pattern_object_points(pattern: PatternGeometry) -> np.ndarray:
    """Planar (z = 0) world coordinates of the inner corners, scaled by square size."""
    objp = np.zeros((pattern.columns * pattern.rows, 3), np.float32)
    objp[:, :2] = np.mgrid[0 : pattern.columns, 0 : pattern.rows].T.reshape(-1, 2)
    objp[:, :2] *= float(pattern.square_size)
    return objp
