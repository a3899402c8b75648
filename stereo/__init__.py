"""Stereo module."""

from .correspondence import (
    CorrespondenceFinder,
    FiducialCorrespondence,
    PatternCorrespondence,
    SuppliedCorrespondence,
    build_correspondence,
    load_point_config,
    pair_points,
)
from .triangulation import StereoTriangulator

__all__ = [
    "CorrespondenceFinder",
    "FiducialCorrespondence",
    "PatternCorrespondence",
    "StereoTriangulator",
    "SuppliedCorrespondence",
    "build_correspondence",
    "load_point_config",
    "pair_points",
]
