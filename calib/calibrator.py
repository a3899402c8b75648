"""Chessboard calibration of one camera or a stereo rig."""

from __future__ import annotations

import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from calib.result import CalibrationResult
from calib.storage import load_calibration, save_calibration
from configs.settings import CalibrationSettings
from contracts import CalibrationInput, CalibrationMode, TriangulatedPoint
from detect.pattern import find_chessboard_corners, pattern_object_points
from exceptions import (
    CalibrationDidNotConvergeError,
    ImageCountMismatchError,
    InsufficientSamplesError,
    InvalidConfigurationError,
    PatternNotFoundError,
    ReprojectionBoundError,
)
from log_config.logger import get_logger, log_performance
from stereo.correspondence import load_point_config
from stereo.triangulation import StereoTriangulator

logger = get_logger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff")

ImageSource = Union[str, Path, Sequence[Union[str, Path]]]


class Calibration:
    """Collects chessboard samples and solves the camera model.

    Usage::

        calibration = Calibration(CalibrationInput(1920, 1440), CalibrationMode.STEREO)
        calibration.read_images("calib/left", "calib/right")
        result = calibration.run_calibration()
    """

    def __init__(
        self,
        calibration_input: CalibrationInput,
        mode: CalibrationMode,
        output_path: Optional[Path] = None,
        settings: Optional[CalibrationSettings] = None,
    ) -> None:
        self._settings = settings or CalibrationSettings()
        self._output_path = Path(output_path) if output_path is not None else None
        self.configure(calibration_input, mode)

    def configure(self, calibration_input: CalibrationInput, mode: CalibrationMode) -> None:
        """Validate and apply the input geometry; clears collected samples.

        Raises:
            InvalidConfigurationError: If sizes, mode, or pattern are invalid
        """
        if not isinstance(mode, CalibrationMode):
            raise InvalidConfigurationError(f"Unknown calibration mode: {mode!r}")
        if calibration_input.mode is not mode:
            raise InvalidConfigurationError(
                f"Calibration mode {mode.value} does not match input mode {calibration_input.mode!r}"
            )
        for name in ("image_width", "image_height"):
            value = getattr(calibration_input, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidConfigurationError(f"{name} must be a positive integer, got {value!r}")
        pattern = calibration_input.pattern
        if pattern.columns < 2 or pattern.rows < 2:
            raise InvalidConfigurationError(
                f"Pattern needs at least 2x2 inner corners, got {pattern.columns}x{pattern.rows}"
            )
        if pattern.square_size <= 0:
            raise InvalidConfigurationError(f"square_size must be positive, got {pattern.square_size}")

        self._input = calibration_input
        self._mode = mode
        self._object_points = pattern_object_points(pattern)
        self._primary_samples: List[np.ndarray] = []
        self._secondary_samples: List[np.ndarray] = []
        self._result: Optional[CalibrationResult] = None
        logger.debug(
            f"Calibration configured: {mode.value} {calibration_input.image_width}x"
            f"{calibration_input.image_height}, pattern {pattern.columns}x{pattern.rows}"
        )

    @property
    def mode(self) -> CalibrationMode:
        return self._mode

    @property
    def sample_count(self) -> int:
        return len(self._primary_samples)

    @property
    def result(self) -> Optional[CalibrationResult]:
        return self._result

    def read_images(
        self, primary_source: ImageSource, secondary_source: Optional[ImageSource] = None
    ) -> int:
        """Detect the pattern in every image (or image pair in stereo mode).

        Images where the pattern is missing or the size is wrong are skipped.

        Returns:
            Number of accepted samples

        Raises:
            InvalidConfigurationError: If stereo mode has no secondary source
            ImageCountMismatchError: If the stereo image sets differ in size
            InsufficientSamplesError: If fewer than ``min_samples`` remain
        """
        primary_paths = _list_images(primary_source)
        stereo = self._mode is CalibrationMode.STEREO
        if stereo:
            if secondary_source is None:
                raise InvalidConfigurationError("STEREO calibration requires a secondary image source")
            secondary_paths = _list_images(secondary_source)
            if len(primary_paths) != len(secondary_paths):
                raise ImageCountMismatchError(
                    f"Stereo image sets differ: primary={len(primary_paths)}, "
                    f"secondary={len(secondary_paths)}"
                )
        else:
            if secondary_source is not None:
                logger.warning("Secondary image source ignored in MONO calibration")
            secondary_paths = []

        primary_samples: List[np.ndarray] = []
        secondary_samples: List[np.ndarray] = []
        logger.info(f"Processing {len(primary_paths)} images for corner detection...")
        for i, primary_path in enumerate(primary_paths):
            try:
                primary_corners = self._detect(primary_path)
                secondary_corners = self._detect(secondary_paths[i]) if stereo else None
            except PatternNotFoundError as e:
                logger.warning(f"Skipping sample {i + 1}/{len(primary_paths)}: {e}")
                continue
            primary_samples.append(primary_corners)
            if stereo:
                secondary_samples.append(secondary_corners)

        found = len(primary_samples)
        logger.info(f"Found corners in {found} of {len(primary_paths)} samples")
        if found < self._settings.min_samples:
            raise InsufficientSamplesError(
                f"Only {found} usable calibration samples, need {self._settings.min_samples}",
                found=found,
                required=self._settings.min_samples,
            )
        self._primary_samples = primary_samples
        self._secondary_samples = secondary_samples
        self._result = None
        return found

    def run_calibration(self) -> CalibrationResult:
        """Solve intrinsics (and, in stereo mode, extrinsics and rectification).

        Raises:
            InsufficientSamplesError: If ``read_images`` has not produced samples
            CalibrationDidNotConvergeError: If any RMS exceeds ``max_rms_px``
        """
        if len(self._primary_samples) < self._settings.min_samples:
            raise InsufficientSamplesError(
                f"Only {len(self._primary_samples)} calibration samples collected, "
                f"need {self._settings.min_samples}",
                found=len(self._primary_samples),
                required=self._settings.min_samples,
            )
        started = time.perf_counter()
        image_size = self._input.image_size
        objpoints = [self._object_points for _ in self._primary_samples]

        logger.info("Calibrating primary camera intrinsics...")
        rms1, k1, d1 = self._calibrate_camera(objpoints, self._primary_samples, "primary")
        if self._mode is CalibrationMode.MONO:
            map_x, map_y = cv2.initUndistortRectifyMap(k1, d1, None, k1, image_size, cv2.CV_32FC1)
            result = CalibrationResult(
                mode=self._mode,
                image_size=image_size,
                camera_matrix=k1,
                dist_coeffs=d1,
                rms_px=rms1,
                primary_map_x=map_x,
                primary_map_y=map_y,
            )
        else:
            logger.info("Calibrating secondary camera intrinsics...")
            rms2, k2, d2 = self._calibrate_camera(objpoints, self._secondary_samples, "secondary")

            logger.info("Computing stereo calibration...")
            stereo_rms, _, _, _, _, rotation, translation, essential, fundamental = cv2.stereoCalibrate(
                objpoints,
                self._primary_samples,
                self._secondary_samples,
                k1,
                d1,
                k2,
                d2,
                image_size,
                flags=cv2.CALIB_FIX_INTRINSIC,
            )
            self._check_rms(stereo_rms, "stereo")

            r1, r2, p1, p2, q, _, _ = cv2.stereoRectify(k1, d1, k2, d2, image_size, rotation, translation)
            map1_x, map1_y = cv2.initUndistortRectifyMap(k1, d1, r1, p1, image_size, cv2.CV_32FC1)
            map2_x, map2_y = cv2.initUndistortRectifyMap(k2, d2, r2, p2, image_size, cv2.CV_32FC1)
            result = CalibrationResult(
                mode=self._mode,
                image_size=image_size,
                camera_matrix=k1,
                dist_coeffs=d1,
                rms_px=rms1,
                primary_map_x=map1_x,
                primary_map_y=map1_y,
                secondary_camera_matrix=k2,
                secondary_dist_coeffs=d2,
                secondary_rms_px=rms2,
                rotation=rotation,
                translation=translation,
                essential_matrix=essential,
                fundamental_matrix=fundamental,
                stereo_rms_px=float(stereo_rms),
                rect_r1=r1,
                rect_r2=r2,
                rect_p1=p1,
                rect_p2=p2,
                disparity_to_depth=q,
                secondary_map_x=map2_x,
                secondary_map_y=map2_y,
            )
            logger.info(
                f"Stereo calibration complete (RMS error: {stereo_rms:.3f} px, "
                f"baseline {result.baseline:.1f})"
            )

        worst = max(r for r in (result.rms_px, result.secondary_rms_px, result.stereo_rms_px) if r is not None)
        logger.info(f"Calibration quality: {rate_quality(worst, self.sample_count)}")
        log_performance(
            f"{self._mode.value} calibration of {self.sample_count} samples",
            (time.perf_counter() - started) * 1000.0,
            threshold_ms=60000.0,
        )

        self._result = result
        if self._output_path is not None:
            save_calibration(result, self._output_path)
        return result

    def save(self, path: Optional[Path] = None) -> Path:
        if self._result is None:
            raise InvalidConfigurationError("No calibration result to save; run_calibration first")
        target = Path(path) if path is not None else self._output_path
        if target is None:
            raise InvalidConfigurationError("No output path given for calibration")
        return save_calibration(self._result, target)

    def load(self, path: Path) -> CalibrationResult:
        """Adopt a saved result instead of solving.

        Raises:
            MalformedCalibrationFileError: If the file cannot be read
            InvalidConfigurationError: If its mode or image size differ from this calibration's
        """
        result = load_calibration(path)
        if result.mode is not self._mode or tuple(result.image_size) != self._input.image_size:
            raise InvalidConfigurationError(
                f"{path} holds a {result.mode.value} {result.image_size} calibration, "
                f"expected {self._mode.value} {self._input.image_size}"
            )
        self._result = result
        logger.info(f"Loaded {result.mode.value} calibration from {path}")
        return result

    def _detect(self, path: Path) -> np.ndarray:
        image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise PatternNotFoundError(f"Failed to load {path.name}", image_path=path)
        size = (image.shape[1], image.shape[0])
        if size != self._input.image_size:
            raise PatternNotFoundError(
                f"{path.name} is {size[0]}x{size[1]}, expected "
                f"{self._input.image_width}x{self._input.image_height}",
                image_path=path,
            )
        corners = find_chessboard_corners(image, self._input.pattern)
        if corners is None:
            raise PatternNotFoundError(f"No corners in {path.name}", image_path=path)
        return corners

    def _calibrate_camera(
        self, objpoints: List[np.ndarray], imgpoints: List[np.ndarray], label: str
    ) -> Tuple[float, np.ndarray, np.ndarray]:
        rms, matrix, dist, _, _ = cv2.calibrateCamera(
            objpoints, imgpoints, self._input.image_size, None, None
        )
        self._check_rms(rms, label)
        logger.info(f"{label.capitalize()} camera calibrated (RMS error: {rms:.3f} px)")
        return float(rms), matrix, dist

    def _check_rms(self, rms: float, label: str) -> None:
        bound = self._settings.max_rms_px
        if not np.isfinite(rms) or rms > bound:
            raise CalibrationDidNotConvergeError(
                f"{label} calibration RMS {rms:.3f}px exceeds {bound:.3f}px",
                rms_px=float(rms),
                bound_px=bound,
            )


def rate_quality(rms_error: float, num_samples: int) -> str:
    """Coarse quality label for a calibration solve."""
    if rms_error < 0.5 and num_samples >= 15:
        return "EXCELLENT"
    if rms_error < 1.0 and num_samples >= 15:
        return "GOOD"
    if rms_error < 2.0 and num_samples >= 10:
        return "ACCEPTABLE"
    return "POOR"


def triangulate_points(
    point_config_path: Path, calibration_path: Path, max_error_px: float = 5.0
) -> List[TriangulatedPoint]:
    """Triangulate the point pairs listed in a YAML file.

    The ``frame_index`` of each result is the pair's position in the file.
    Pairs over the reprojection bound are dropped.

    Raises:
        MalformedCalibrationFileError: If either file cannot be parsed
        CorrespondenceCountMismatchError: If the point lists differ in length
        InvalidConfigurationError: If the calibration is not STEREO
    """
    calibration = load_calibration(calibration_path)
    triangulator = StereoTriangulator(calibration, max_reprojection_error_px=max_error_px)
    correspondences = load_point_config(point_config_path)

    points: List[TriangulatedPoint] = []
    for index, correspondence in enumerate(correspondences):
        try:
            points.append(triangulator.triangulate(correspondence, index))
        except ReprojectionBoundError as e:
            logger.warning(f"Dropped point pair {index}: {e}")
    logger.info(f"Triangulated {len(points)} of {len(correspondences)} point pairs")
    return points


def _list_images(source: ImageSource) -> List[Path]:
    if isinstance(source, (str, Path)):
        directory = Path(source)
        if not directory.is_dir():
            raise InvalidConfigurationError(f"Image directory not found: {directory}")
        return sorted(
            (p for p in directory.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS),
            key=lambda p: p.name,
        )
    return [Path(p) for p in source]
