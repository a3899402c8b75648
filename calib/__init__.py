"""Calibration module."""

from .calibrator import Calibration, rate_quality, triangulate_points
from .result import CalibrationResult
from .storage import load_calibration, save_calibration

__all__ = [
    "Calibration",
    "CalibrationResult",
    "load_calibration",
    "rate_quality",
    "save_calibration",
    "triangulate_points",
]
