"""Per-frame point correspondences between the two camera views."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import yaml

from contracts import Correspondence, PatternGeometry
from detect.pattern import find_chessboard_corners
from detect.qr import QRDecoder
from exceptions import (
    CorrespondenceCountMismatchError,
    InvalidConfigurationError,
    MalformedCalibrationFileError,
)


class CorrespondenceFinder(ABC):
    @abstractmethod
    def find(
        self, frame_index: int, primary: np.ndarray, secondary: np.ndarray
    ) -> List[Correspondence]:
        """Return matched image points for one frame pair (empty if none)."""


class FiducialCorrespondence(CorrespondenceFinder):
    """Matches the centre of a QR code decoded with the same text in both views."""

    def __init__(self) -> None:
        self._primary = QRDecoder()
        self._secondary = QRDecoder()

    def find(self, frame_index, primary, secondary):
        left = self._primary(primary)
        if left is None:
            return []
        right = self._secondary(secondary)
        if right is None or right.text != left.text:
            return []
        return [Correspondence(primary=left.center, secondary=right.center)]


class PatternCorrespondence(CorrespondenceFinder):
    """Matches chessboard inner corners found in both views, by corner index."""

    def __init__(self, pattern: Optional[PatternGeometry] = None) -> None:
        self._pattern = pattern or PatternGeometry()

    def find(self, frame_index, primary, secondary):
        left = find_chessboard_corners(primary, self._pattern)
        if left is None:
            return []
        right = find_chessboard_corners(secondary, self._pattern)
        if right is None:
            return []
        return pair_points(left.reshape(-1, 2), right.reshape(-1, 2))


class SuppliedCorrespondence(CorrespondenceFinder):
    """Caller-supplied correspondences keyed by frame index."""

    def __init__(self, by_frame: Mapping[int, Sequence[Correspondence]]) -> None:
        self._by_frame: Dict[int, List[Correspondence]] = {
            int(frame): list(items) for frame, items in by_frame.items()
        }

    @classmethod
    def from_yaml(cls, path: Path) -> "SuppliedCorrespondence":
        """Load ``frames: {index: {primary_points: [...], secondary_points: [...]}}``."""
        data = _load_yaml(path)
        frames = data.get("frames")
        if not isinstance(frames, dict):
            raise MalformedCalibrationFileError(f"{path}: expected a 'frames' mapping")
        by_frame = {}
        for frame, entry in frames.items():
            if not isinstance(entry, dict):
                raise MalformedCalibrationFileError(f"{path}: frame {frame} must be a mapping")
            by_frame[int(frame)] = pair_points(
                entry.get("primary_points", []), entry.get("secondary_points", [])
            )
        return cls(by_frame)

    def find(self, frame_index, primary, secondary):
        return list(self._by_frame.get(frame_index, []))


def pair_points(
    primary_points: Sequence[Sequence[float]], secondary_points: Sequence[Sequence[float]]
) -> List[Correspondence]:
    """Zip two point lists into correspondences.

    Raises:
        CorrespondenceCountMismatchError: If the lists differ in length
    """
    primary_points = [tuple(p) for p in np.asarray(primary_points, dtype=np.float64).reshape(-1, 2)]
    secondary_points = [tuple(p) for p in np.asarray(secondary_points, dtype=np.float64).reshape(-1, 2)]
    if len(primary_points) != len(secondary_points):
        raise CorrespondenceCountMismatchError(
            f"Point count mismatch: primary={len(primary_points)}, secondary={len(secondary_points)}",
            primary_count=len(primary_points),
            secondary_count=len(secondary_points),
        )
    return [
        Correspondence(primary=(float(p[0]), float(p[1])), secondary=(float(s[0]), float(s[1])))
        for p, s in zip(primary_points, secondary_points)
    ]


def load_point_config(path: Path) -> List[Correspondence]:
    """Load ``primary_points``/``secondary_points`` lists from a YAML file."""
    data = _load_yaml(path)
    if "primary_points" not in data or "secondary_points" not in data:
        raise MalformedCalibrationFileError(
            f"{path}: expected 'primary_points' and 'secondary_points'"
        )
    return pair_points(data["primary_points"] or [], data["secondary_points"] or [])


def build_correspondence(
    name: str, pattern: Optional[PatternGeometry] = None
) -> Optional[CorrespondenceFinder]:
    if name == "none":
        return None
    if name == "fiducial":
        return FiducialCorrespondence()
    if name == "pattern":
        return PatternCorrespondence(pattern)
    raise InvalidConfigurationError(f"Unknown correspondence finder: {name}")


def _load_yaml(path: Path) -> dict:
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise MalformedCalibrationFileError(f"Failed to read point file {path}: {e}")
    if not isinstance(data, dict):
        raise MalformedCalibrationFileError(f"{path}: expected a mapping at the top level")
    return data
