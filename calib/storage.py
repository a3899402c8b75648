"""Persistence of calibration results as ``.npz`` archives."""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Dict, Tuple

import numpy as np

from calib.result import CalibrationResult
from contracts import CalibrationMode
from contracts.versioning import CALIBRATION_SCHEMA_VERSION
from exceptions import MalformedCalibrationFileError
from log_config.logger import get_logger
from record.atomic import atomic_open

logger = get_logger(__name__)

_SCALAR_KEYS = ("rms_px", "secondary_rms_px", "stereo_rms_px")
_MONO_ARRAYS = ("camera_matrix", "dist_coeffs", "primary_map_x", "primary_map_y")
_STEREO_ARRAYS = (
    "secondary_camera_matrix",
    "secondary_dist_coeffs",
    "rotation",
    "translation",
    "essential_matrix",
    "fundamental_matrix",
    "rect_r1",
    "rect_r2",
    "rect_p1",
    "rect_p2",
    "disparity_to_depth",
    "secondary_map_x",
    "secondary_map_y",
)
_EXPECTED_SHAPES: Dict[str, Tuple[int, ...]] = {
    "camera_matrix": (3, 3),
    "secondary_camera_matrix": (3, 3),
    "rotation": (3, 3),
    "essential_matrix": (3, 3),
    "fundamental_matrix": (3, 3),
    "rect_r1": (3, 3),
    "rect_r2": (3, 3),
    "rect_p1": (3, 4),
    "rect_p2": (3, 4),
    "disparity_to_depth": (4, 4),
}


def save_calibration(result: CalibrationResult, path: Path) -> Path:
    """Write ``result`` to ``path`` atomically.

    Returns:
        The path written
    """
    path = Path(path)
    arrays = {
        "schema_version": np.array(CALIBRATION_SCHEMA_VERSION),
        "mode": np.array(result.mode.value),
        "image_size": np.array(result.image_size, dtype=np.int64),
        "rms_px": np.array(result.rms_px, dtype=np.float64),
    }
    for key in _MONO_ARRAYS:
        arrays[key] = getattr(result, key)
    if result.is_stereo:
        arrays["secondary_rms_px"] = np.array(result.secondary_rms_px, dtype=np.float64)
        arrays["stereo_rms_px"] = np.array(result.stereo_rms_px, dtype=np.float64)
        for key in _STEREO_ARRAYS:
            arrays[key] = getattr(result, key)

    with atomic_open(path, "wb") as handle:
        np.savez_compressed(handle, **arrays)
    logger.info(f"Saved {result.mode.value} calibration to {path}")
    return path


def load_calibration(path: Path) -> CalibrationResult:
    """Read a calibration archive written by :func:`save_calibration`.

    Raises:
        MalformedCalibrationFileError: If the file is unreadable or does not match the schema
    """
    path = Path(path)
    try:
        with np.load(path, allow_pickle=False) as data:
            stored = {key: data[key] for key in data.files}
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise MalformedCalibrationFileError(f"Cannot read calibration file {path}: {e}")

    try:
        version = int(stored["schema_version"]) if "schema_version" in stored else None
    except (TypeError, ValueError):
        version = None
    if version != CALIBRATION_SCHEMA_VERSION:
        raise MalformedCalibrationFileError(
            f"{path}: unsupported calibration schema {stored.get('schema_version')}"
        )
    try:
        mode = CalibrationMode(str(stored["mode"]))
    except (KeyError, ValueError) as e:
        raise MalformedCalibrationFileError(f"{path}: invalid calibration mode: {e}")

    required = ["image_size", "rms_px", *_MONO_ARRAYS]
    if mode is CalibrationMode.STEREO:
        required += ["secondary_rms_px", "stereo_rms_px", *_STEREO_ARRAYS]
    missing = [key for key in required if key not in stored]
    if missing:
        raise MalformedCalibrationFileError(f"{path}: missing fields {', '.join(missing)}")

    try:
        image_size = tuple(int(v) for v in stored["image_size"].reshape(-1))
        scalars = {key: float(stored[key]) for key in _SCALAR_KEYS if key in required}
    except (TypeError, ValueError) as e:
        raise MalformedCalibrationFileError(f"{path}: non-numeric calibration field: {e}")
    if len(image_size) != 2:
        raise MalformedCalibrationFileError(f"{path}: image_size must have two entries")
    _check_shapes(path, stored, image_size)

    kwargs = {key: stored[key] for key in required if key not in _SCALAR_KEYS and key != "image_size"}
    kwargs.update(scalars)

    result = CalibrationResult(mode=mode, image_size=image_size, **kwargs)
    logger.info(f"Loaded {mode.value} calibration from {path}")
    return result


def _check_shapes(path: Path, stored: Dict[str, np.ndarray], image_size: Tuple[int, int]) -> None:
    width, height = image_size
    for key, shape in _EXPECTED_SHAPES.items():
        if key in stored and stored[key].shape != shape:
            raise MalformedCalibrationFileError(
                f"{path}: {key} has shape {stored[key].shape}, expected {shape}"
            )
    if "translation" in stored and stored["translation"].size != 3:
        raise MalformedCalibrationFileError(f"{path}: translation must have 3 entries")
    for key in ("primary_map_x", "primary_map_y", "secondary_map_x", "secondary_map_y"):
        if key in stored and stored[key].shape != (height, width):
            raise MalformedCalibrationFileError(
                f"{path}: {key} has shape {stored[key].shape}, expected {(height, width)}"
            )
