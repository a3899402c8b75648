"""Shared fixtures: in-memory video sources, fake QR decoding, synthetic rigs."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np
import pytest

from app.video_source import VideoSource
from calib.result import CalibrationResult
from contracts import CalibrationMode
from detect.qr import QRDetection
from exceptions import SourceUnreadableError

# Primary camera used by the triangulation tests.
K = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]])
BASELINE_T = np.array([[-100.0], [0.0], [0.0]])
IMAGE_SIZE = (640, 480)


class FakeVideoSource(VideoSource):
    """Serves a fixed list of frames; records when it is closed."""

    def __init__(
        self,
        path: Path,
        frames: Sequence[np.ndarray],
        closed_log: Optional[List[Path]] = None,
        reported_count: Optional[int] = None,
    ):
        self.path = Path(path)
        self._frames = list(frames)
        self._reported_count = reported_count
        self._position = 0
        self.closed = False
        self._closed_log = closed_log

    @property
    def frame_count(self) -> int:
        if self._reported_count is not None:
            return self._reported_count
        return len(self._frames)

    def read(self):
        if self._position >= len(self._frames):
            return None
        frame = self._frames[self._position]
        self._position += 1
        return frame

    def rewind(self) -> None:
        self._position = 0

    def close(self) -> None:
        if not self.closed and self._closed_log is not None:
            self._closed_log.append(self.path)
        self.closed = True


class FakeSourceFactory:
    """Maps file names to frame lists; unknown names are unreadable.

    ``reported_counts`` overrides the frame count a source advertises, as a
    container header does when the stream behind it is truncated.
    """

    def __init__(
        self,
        frames_by_name: Dict[str, Sequence[np.ndarray]],
        reported_counts: Optional[Dict[str, int]] = None,
    ):
        self.frames_by_name = frames_by_name
        self.reported_counts = reported_counts or {}
        self.opened: List[FakeVideoSource] = []
        self.closed: List[Path] = []

    def __call__(self, path: Path) -> FakeVideoSource:
        name = Path(path).name
        if name not in self.frames_by_name:
            raise SourceUnreadableError(f"Failed to open video: {path}", source=path)
        source = FakeVideoSource(
            path,
            self.frames_by_name[name],
            closed_log=self.closed,
            reported_count=self.reported_counts.get(name),
        )
        self.opened.append(source)
        return source


def blank_frames(count: int, size: int = 32) -> List[np.ndarray]:
    return [np.zeros((size, size), dtype=np.uint8) for _ in range(count)]


def marked_frames(count: int, marked: Sequence[int], size: int = 32) -> List[np.ndarray]:
    """Blank frames with the top-left pixel set on the ``marked`` indices."""
    frames = blank_frames(count, size)
    for index in marked:
        frames[index][0, 0] = 255
    return frames


class PixelMarkerDecoder:
    """Stands in for QR decoding: a set top-left pixel means a code is visible."""

    def __init__(self, text: str = "geo:48.2,16.3;tank=3"):
        self.text = text

    def __call__(self, frame: np.ndarray) -> Optional[QRDetection]:
        if frame[0, 0] == 255:
            return QRDetection(text=self.text, corners=[(0.0, 0.0), (4.0, 0.0), (4.0, 4.0), (0.0, 4.0)])
        return None


def make_stereo_calibration(
    camera_matrix: np.ndarray = K, translation: np.ndarray = BASELINE_T, image_size=IMAGE_SIZE
) -> CalibrationResult:
    """Distortion-free rectified rig with the secondary camera offset along x."""
    width, height = image_size
    zeros = np.zeros((1, 5))
    identity = np.eye(3)
    maps = np.zeros((height, width), dtype=np.float32)
    p1 = np.hstack([camera_matrix, np.zeros((3, 1))])
    p2 = np.hstack([camera_matrix, camera_matrix @ translation])
    return CalibrationResult(
        mode=CalibrationMode.STEREO,
        image_size=image_size,
        camera_matrix=camera_matrix.copy(),
        dist_coeffs=zeros.copy(),
        rms_px=0.1,
        primary_map_x=maps.copy(),
        primary_map_y=maps.copy(),
        secondary_camera_matrix=camera_matrix.copy(),
        secondary_dist_coeffs=zeros.copy(),
        secondary_rms_px=0.1,
        rotation=identity.copy(),
        translation=translation.copy(),
        essential_matrix=np.zeros((3, 3)),
        fundamental_matrix=np.zeros((3, 3)),
        stereo_rms_px=0.2,
        rect_r1=identity.copy(),
        rect_r2=identity.copy(),
        rect_p1=p1,
        rect_p2=p2,
        disparity_to_depth=np.eye(4),
        secondary_map_x=maps.copy(),
        secondary_map_y=maps.copy(),
    )


def render_chessboard(
    camera_matrix: np.ndarray,
    rotation: np.ndarray,
    translation: np.ndarray,
    image_size=(640, 480),
    columns: int = 9,
    rows: int = 6,
    square_size: float = 25.0,
) -> np.ndarray:
    """Exact pinhole rendering of a chessboard whose inner corner (0, 0) is the world origin."""
    px = 40  # texture pixels per square
    margin = px
    texture = np.full(((rows + 1) * px + 2 * margin, (columns + 1) * px + 2 * margin), 255, np.uint8)
    for r in range(rows + 1):
        for c in range(columns + 1):
            if (r + c) % 2 == 0:
                y0, x0 = margin + r * px, margin + c * px
                texture[y0 : y0 + px, x0 : x0 + px] = 0

    # Texture pixel -> world plane (mm); inner corners sit on pixel boundaries.
    scale = square_size / px
    offset = margin + px - 0.5
    texture_to_world = np.array([[scale, 0.0, -offset * scale], [0.0, scale, -offset * scale], [0.0, 0.0, 1.0]])
    extrinsic = np.column_stack([rotation[:, 0], rotation[:, 1], np.asarray(translation).reshape(3)])
    homography = camera_matrix @ extrinsic @ texture_to_world
    return cv2.warpPerspective(
        texture, homography, image_size, flags=cv2.INTER_LINEAR, borderValue=255
    )


def board_poses(count: int = 12):
    """Tilted board poses 550-700 mm in front of the camera."""
    centre = np.array([4 * 25.0, 2.5 * 25.0, 0.0])
    poses = []
    for i in range(count):
        angles = np.array(
            [0.3 * np.sin(i * 1.3), 0.3 * np.cos(i * 0.9), 0.1 * np.sin(i * 2.1)]
        )
        rotation, _ = cv2.Rodrigues(angles)
        offset = np.array([20.0 * np.sin(i), 15.0 * np.cos(i * 1.7), 550.0 + 12.0 * i])
        translation = offset - rotation @ centre
        poses.append((rotation, translation))
    return poses


@pytest.fixture
def stereo_calibration() -> CalibrationResult:
    return make_stereo_calibration()


@pytest.fixture
def default_config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "configs" / "default.yaml"
