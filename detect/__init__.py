"""Event detection module."""

from .events import ActivityDetector, DetectorState, EventDetector, MarkerDetector
from .geo_uri import parse_geo_uri
from .motion import MotionConfig, MotionSegmenter
from .qr import QRDecoder, QRDetection

__all__ = [
    "ActivityDetector",
    "DetectorState",
    "EventDetector",
    "MarkerDetector",
    "MotionConfig",
    "MotionSegmenter",
    "QRDecoder",
    "QRDetection",
    "parse_geo_uri",
]
