"""Linear (DLT) stereo triangulation with reprojection checks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Tuple

import cv2
import numpy as np

from contracts import Correspondence, TriangulatedPoint
from exceptions import InvalidConfigurationError, ReprojectionBoundError
from log_config.logger import get_logger

if TYPE_CHECKING:
    from calib.result import CalibrationResult

logger = get_logger(__name__)


class StereoTriangulator:
    """Triangulates matched pixel observations in the primary camera frame.

    Projection matrices are ``P1 = K1 [I | 0]`` and ``P2 = K2 [R | T]``.
    Observations are undistorted before the solve and the reprojection
    error is measured against the raw observations through each camera's
    full model (intrinsics plus distortion).
    """

    def __init__(self, calibration: "CalibrationResult", max_reprojection_error_px: float = 5.0) -> None:
        if not calibration.is_stereo:
            raise InvalidConfigurationError("Triangulation requires a STEREO calibration")
        if max_reprojection_error_px <= 0:
            raise InvalidConfigurationError(
                f"max_reprojection_error_px must be positive, got {max_reprojection_error_px}"
            )
        self._k1 = np.asarray(calibration.camera_matrix, dtype=np.float64)
        self._d1 = np.asarray(calibration.dist_coeffs, dtype=np.float64)
        self._k2 = np.asarray(calibration.secondary_camera_matrix, dtype=np.float64)
        self._d2 = np.asarray(calibration.secondary_dist_coeffs, dtype=np.float64)
        rotation = np.asarray(calibration.rotation, dtype=np.float64)
        self._tvec = np.asarray(calibration.translation, dtype=np.float64).reshape(3, 1)
        self._rvec, _ = cv2.Rodrigues(rotation)
        self._p1 = self._k1 @ np.hstack([np.eye(3), np.zeros((3, 1))])
        self._p2 = self._k2 @ np.hstack([rotation, self._tvec])
        self._max_error = float(max_reprojection_error_px)

    @property
    def max_reprojection_error_px(self) -> float:
        return self._max_error

    def triangulate(self, correspondence: Correspondence, frame_index: int) -> TriangulatedPoint:
        """Triangulate one correspondence.

        Raises:
            ReprojectionBoundError: If the reprojection error exceeds the bound
        """
        xyz, error = self.solve(
            np.asarray([correspondence.primary], dtype=np.float64),
            np.asarray([correspondence.secondary], dtype=np.float64),
        )
        if not np.isfinite(error[0]) or error[0] > self._max_error:
            raise ReprojectionBoundError(
                f"Frame {frame_index}: reprojection error {error[0]:.3f}px exceeds {self._max_error:.3f}px",
                error_px=float(error[0]),
                bound_px=self._max_error,
            )
        x, y, z = (float(v) for v in xyz[0])
        return TriangulatedPoint(
            frame_index=frame_index,
            x=x,
            y=y,
            z=z,
            reprojection_error=float(error[0]),
        )

    def triangulate_many(
        self, correspondences: Iterable[Correspondence], frame_index: int
    ) -> List[TriangulatedPoint]:
        """Triangulate several correspondences, dropping (and logging) any over the bound."""
        points: List[TriangulatedPoint] = []
        for correspondence in correspondences:
            try:
                points.append(self.triangulate(correspondence, frame_index))
            except ReprojectionBoundError as e:
                logger.warning(f"Dropped point {correspondence}: {e}")
        return points

    def solve(self, primary_uv: np.ndarray, secondary_uv: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Solve N correspondences at once.

        Args:
            primary_uv: (N, 2) raw pixel coordinates in the primary view
            secondary_uv: (N, 2) raw pixel coordinates in the secondary view

        Returns:
            Tuple of (N, 3) points and (N,) mean reprojection errors in pixels
        """
        primary_uv = np.asarray(primary_uv, dtype=np.float64).reshape(-1, 2)
        secondary_uv = np.asarray(secondary_uv, dtype=np.float64).reshape(-1, 2)

        p1 = cv2.undistortPoints(primary_uv.reshape(-1, 1, 2), self._k1, self._d1, P=self._k1).reshape(-1, 2)
        p2 = cv2.undistortPoints(secondary_uv.reshape(-1, 1, 2), self._k2, self._d2, P=self._k2).reshape(-1, 2)

        homogeneous = cv2.triangulatePoints(self._p1, self._p2, p1.T, p2.T)
        w = homogeneous[3:4, :]
        with np.errstate(divide="ignore", invalid="ignore"):
            xyz = (homogeneous[:3, :] / w).T

        errors = np.full(len(xyz), np.inf)
        finite = np.all(np.isfinite(xyz), axis=1) & (np.abs(w[0]) > 1e-12)
        if np.any(finite):
            pts = np.ascontiguousarray(xyz[finite]).reshape(-1, 1, 3)
            left, _ = cv2.projectPoints(pts, np.zeros(3), np.zeros(3), self._k1, self._d1)
            right, _ = cv2.projectPoints(pts, self._rvec, self._tvec, self._k2, self._d2)
            left_err = np.linalg.norm(left.reshape(-1, 2) - primary_uv[finite], axis=1)
            right_err = np.linalg.norm(right.reshape(-1, 2) - secondary_uv[finite], axis=1)
            errors[finite] = (left_err + right_err) / 2.0
        return xyz, errors
