"""Shared data contracts for stereo fish tracking."""

from .types import (
    CalibrationInput,
    CalibrationMode,
    Correspondence,
    EventInterval,
    EventKind,
    PatternGeometry,
    TriangulatedPoint,
)

__all__ = [
    "CalibrationInput",
    "CalibrationMode",
    "Correspondence",
    "EventInterval",
    "EventKind",
    "PatternGeometry",
    "TriangulatedPoint",
]
