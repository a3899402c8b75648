"""Foreground motion segmentation used to find activity intervals."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from detect.utils import to_grayscale


@dataclass(frozen=True)
class MotionConfig:
    diff_threshold: float = 25.0
    bg_alpha: float = 0.05
    min_foreground_fraction: float = 0.002
    gap_frames: int = 15
    min_segment_frames: int = 5


def foreground_fraction(
    frame: np.ndarray,
    prev_frame: Optional[np.ndarray],
    background: Optional[np.ndarray],
    config: MotionConfig,
) -> Tuple[float, np.ndarray, np.ndarray]:
    """Fraction of pixels that differ from the previous frame or background.

    Returns the fraction together with the grayscale frame and the updated
    background, both float32.
    """
    gray = to_grayscale(frame)
    if prev_frame is None:
        return 0.0, gray, gray.copy()
    if background is None:
        background = prev_frame

    diff = np.abs(gray - prev_frame)
    bg_diff = np.abs(gray - background)
    foreground = (diff > config.diff_threshold) | (bg_diff > config.diff_threshold)

    background = config.bg_alpha * gray + (1 - config.bg_alpha) * background
    return float(foreground.mean()), gray, background


class MotionSegmenter:
    """Turns a frame sequence into closed ``(start, end)`` motion segments.

    Moving runs separated by at most ``gap_frames`` still frames are merged;
    segments shorter than ``min_segment_frames`` are dropped.
    """

    def __init__(self, config: Optional[MotionConfig] = None) -> None:
        self._config = config or MotionConfig()
        self._prev: Optional[np.ndarray] = None
        self._background: Optional[np.ndarray] = None
        self._segments: List[Tuple[int, int]] = []
        self._run_start: Optional[int] = None
        self._last_moving: Optional[int] = None

    def update(self, frame: np.ndarray, frame_index: int) -> bool:
        """Feed one frame; returns whether it was classified as moving."""
        fraction, self._prev, self._background = foreground_fraction(
            frame, self._prev, self._background, self._config
        )
        moving = fraction >= self._config.min_foreground_fraction and fraction > 0.0
        if moving:
            if self._run_start is None:
                self._run_start = frame_index
            elif frame_index - self._last_moving - 1 > self._config.gap_frames:
                self._close_run()
                self._run_start = frame_index
            self._last_moving = frame_index
        return moving

    def segments(self) -> List[Tuple[int, int]]:
        """Closed segments so far, including a run still open at the last frame."""
        segments = list(self._segments)
        if self._run_start is not None and self._last_moving is not None:
            candidate = (self._run_start, self._last_moving)
            if self._long_enough(candidate):
                segments.append(candidate)
        return segments

    def _close_run(self) -> None:
        segment = (self._run_start, self._last_moving)
        if self._long_enough(segment):
            self._segments.append(segment)
        self._run_start = None
        self._last_moving = None

    def _long_enough(self, segment: Tuple[int, int]) -> bool:
        return segment[1] - segment[0] + 1 >= self._config.min_segment_frames
