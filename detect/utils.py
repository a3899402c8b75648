from __future__ import annotations

import cv2
import numpy as np


def to_grayscale(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 3:
        return frame.mean(axis=2, dtype=np.float32)
    return frame.astype(np.float32, copy=False)


def to_gray_u8(frame: np.ndarray) -> np.ndarray:
    """8-bit single channel view of a BGR or grayscale frame for OpenCV detectors."""
    if frame.ndim == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    if frame.dtype != np.uint8:
        return np.clip(frame, 0, 255).astype(np.uint8)
    return frame
