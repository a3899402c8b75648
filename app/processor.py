"""Frame loop over one stereo video pair.

The processor reads both streams in lock-step, feeds every frame pair to
the event detectors, asks the correspondence finder for matched points and
triangulates them when a stereo calibration is available.
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from app.events.error_bus import ErrorSeverity, publish_error
from app.job import VideoPairJob
from app.video_source import OpenCVVideoSource, VideoSource
from calib.calibrator import triangulate_points
from calib.result import CalibrationResult
from configs.settings import AppConfig
from contracts import EventInterval, TriangulatedPoint
from detect.events import ActivityDetector, DetectorState, EventDetector, MarkerDetector
from detect.motion import MotionConfig, MotionSegmenter
from detect.qr import QRDetection
from exceptions import (
    DetectionError,
    SourceMismatchError,
    SourceUnreadableError,
)
from log_config.logger import get_logger
from stereo.correspondence import CorrespondenceFinder, build_correspondence
from stereo.triangulation import StereoTriangulator

logger = get_logger(__name__)

SourceFactory = Callable[[Path], VideoSource]
Decoder = Callable[[np.ndarray], Optional[QRDetection]]

STREAMS = ("primary", "secondary")


class Processor:
    """Processes one pair of synchronized recordings into a :class:`VideoPairJob`.

    Raises:
        SourceUnreadableError: If either source cannot be opened or is empty
        SourceMismatchError: If frame counts differ by more than the tolerance
    """

    def __init__(
        self,
        primary_path: Path,
        secondary_path: Path,
        config: Optional[AppConfig] = None,
        calibration: Optional[CalibrationResult] = None,
        correspondence: Optional[CorrespondenceFinder] = None,
        activity_segments: Optional[Sequence[Tuple[int, int]]] = None,
        source_factory: Optional[SourceFactory] = None,
        decoder_factory: Optional[Callable[[], Decoder]] = None,
    ) -> None:
        self._config = config or AppConfig()
        self.job = VideoPairJob(primary_path, secondary_path)
        self._activity_segments = list(activity_segments) if activity_segments is not None else None
        self._decoder_factory = decoder_factory

        factory = source_factory or OpenCVVideoSource
        self._primary = factory(self.job.primary_path)
        try:
            self._secondary = factory(self.job.secondary_path)
        except Exception:
            self._primary.close()
            raise

        self._ended_stream: Optional[VideoSource] = None
        self._triangulator: Optional[StereoTriangulator] = None
        self._correspondence = correspondence
        try:
            self._frame_count = self._check_frame_counts()
            if calibration is not None and calibration.is_stereo:
                self._triangulator = StereoTriangulator(
                    calibration, self._config.triangulation.max_reprojection_error_px
                )
                if self._correspondence is None:
                    self._correspondence = build_correspondence(
                        self._config.triangulation.correspondence,
                        self._config.calibration.to_input().pattern,
                    )
            elif calibration is not None:
                logger.warning(f"{self.job.job_id}: MONO calibration given, triangulation disabled")
        except Exception:
            self.close()
            raise

    @property
    def frame_count(self) -> int:
        return self._frame_count

    def process_videos(self) -> VideoPairJob:
        """Run the frame loop to completion and return the finished job.

        Detection errors skip the frame for the affected detector. Invariant
        violations and acquisition errors mark the job failed and propagate.
        """
        job = self.job
        logger.info(f"Processing {job.job_id}: {self._frame_count} frame pairs")
        try:
            segments = self._activity_segments
            if segments is None and self._config.events.activity_enabled:
                segments = self._find_activity_segments()
                self._primary.rewind()
                self._secondary.rewind()
            activity = [
                ActivityDetector(event_id, start, end)
                for event_id, (start, end) in enumerate(segments or [])
            ]
            armed = {stream: self._new_marker() for stream in STREAMS}
            markers: List[Tuple[str, MarkerDetector]] = []

            for frame_index in range(self._frame_count):
                frames = self._read_pair(frame_index)
                if frames is None:
                    break
                job.advance(frame_index)

                for stream, frame in zip(STREAMS, frames):
                    detector = armed[stream]
                    self._feed(detector, frame, frame_index)
                    if detector.state is DetectorState.CLOSED:
                        markers.append((stream, detector))
                        armed[stream] = self._new_marker()
                for detector in activity:
                    self._feed(detector, frames[0], frame_index)

                if self._triangulator is not None and self._correspondence is not None:
                    job.points.extend(self._triangulate(frame_index, *frames))

            if job.frame_cursor < 0:
                raise SourceUnreadableError(
                    f"No frames could be decoded from {job.job_id}", source=job.primary_path
                )
            self._check_decoded_length()

            last_frame = job.frame_cursor
            markers.extend((stream, detector) for stream, detector in armed.items())
            for _, detector in markers:
                detector.finish(last_frame)
            for detector in activity:
                detector.finish(last_frame)

            job.events = self._collect_events(markers, activity)
            job.mark_succeeded()
            logger.info(
                f"Finished {job.job_id}: {job.frames_processed} frames, "
                f"{len(job.events)} events, {len(job.points)} points"
            )
            return job
        except Exception as e:
            job.mark_failed(e)
            publish_error(
                f"Job {job.job_id} failed at frame {job.frame_cursor}: {e}",
                source="processor",
                exception=e,
                severity=ErrorSeverity.ERROR,
                job_id=job.job_id,
            )
            raise
        finally:
            self.close()

    def to_artifact(self) -> Dict:
        return self.job.to_artifact()

    def close(self) -> None:
        self._primary.close()
        self._secondary.close()

    @staticmethod
    def triangulate_points(
        point_config_path: Path, calibration_path: Path, config: Optional[AppConfig] = None
    ) -> List[TriangulatedPoint]:
        """Triangulate a YAML point file against a saved calibration."""
        config = config or AppConfig()
        return triangulate_points(
            point_config_path,
            calibration_path,
            max_error_px=config.triangulation.max_reprojection_error_px,
        )

    def _check_frame_counts(self) -> int:
        primary_count = self._primary.frame_count
        secondary_count = self._secondary.frame_count
        for source, count in ((self._primary, primary_count), (self._secondary, secondary_count)):
            if count <= 0:
                raise SourceUnreadableError(f"Video has no frames: {source.path}", source=source.path)
        tolerance = self._config.processing.frame_count_tolerance
        difference = abs(primary_count - secondary_count)
        if difference > tolerance:
            raise SourceMismatchError(
                f"Frame count mismatch for {self.job.job_id}: primary={primary_count}, "
                f"secondary={secondary_count} (tolerance {tolerance})"
            )
        if difference:
            logger.warning(
                f"Frame count mismatch for {self.job.job_id}: primary={primary_count}, "
                f"secondary={secondary_count}; processing {min(primary_count, secondary_count)}"
            )
        return min(primary_count, secondary_count)

    def _check_decoded_length(self) -> None:
        """Fail the job when a stream stopped decoding too far before its frame count."""
        shortfall = self._frame_count - self.job.frames_processed
        tolerance = self._config.processing.frame_count_tolerance
        if shortfall > tolerance:
            source = self._ended_stream or self._primary
            raise SourceUnreadableError(
                f"{source.path} stopped decoding after {self.job.frames_processed} of "
                f"{self._frame_count} frames (tolerance {tolerance})",
                source=source.path,
            )

    def _read_pair(self, frame_index: int) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        primary = self._primary.read()
        secondary = self._secondary.read()
        if primary is None or secondary is None:
            self._ended_stream = self._primary if primary is None else self._secondary
            logger.warning(
                f"{self.job.job_id}: {self._ended_stream.path.name} ended at frame "
                f"{frame_index} of {self._frame_count}"
            )
            return None
        return primary, secondary

    def _find_activity_segments(self) -> List[Tuple[int, int]]:
        events = self._config.events
        segmenter = MotionSegmenter(
            MotionConfig(
                diff_threshold=events.motion_diff_threshold,
                bg_alpha=events.motion_bg_alpha,
                min_foreground_fraction=events.motion_min_foreground_fraction,
                gap_frames=events.motion_gap_frames,
                min_segment_frames=events.motion_min_segment_frames,
            )
        )
        for frame_index in range(self._frame_count):
            frame = self._primary.read()
            if frame is None:
                break
            segmenter.update(frame, frame_index)
        segments = segmenter.segments()
        logger.debug(f"{self.job.job_id}: motion segments {segments}")
        return segments

    def _new_marker(self) -> MarkerDetector:
        decoder = self._decoder_factory() if self._decoder_factory is not None else None
        return MarkerDetector(self._config.events.marker_miss_tolerance, decoder=decoder)

    def _feed(self, detector: EventDetector, frame: np.ndarray, frame_index: int) -> None:
        try:
            detector.check_frame(frame, frame_index)
        except DetectionError as e:
            publish_error(
                f"{type(detector).__name__} skipped frame {frame_index}: {e}",
                source="processor",
                exception=e,
                job_id=self.job.job_id,
            )

    def _triangulate(
        self, frame_index: int, primary: np.ndarray, secondary: np.ndarray
    ) -> List[TriangulatedPoint]:
        try:
            correspondences = self._correspondence.find(frame_index, primary, secondary)
        except DetectionError as e:
            publish_error(
                f"Correspondence search skipped frame {frame_index}: {e}",
                source="processor",
                exception=e,
                job_id=self.job.job_id,
            )
            return []
        if not correspondences:
            logger.debug(f"{self.job.job_id}: no correspondence in frame {frame_index}")
            return []
        return self._triangulator.triangulate_many(correspondences, frame_index)

    @staticmethod
    def _collect_events(
        markers: Sequence[Tuple[str, MarkerDetector]], activity: Sequence[ActivityDetector]
    ) -> List[EventInterval]:
        events: List[EventInterval] = []
        for stream, detector in markers:
            interval = detector.interval
            if interval is None:
                continue
            events.append(replace(interval, payload={**interval.payload, "stream": stream}))
        events.extend(d.interval for d in activity if d.interval is not None)
        events.sort(key=lambda e: (e.start_frame, e.kind.value))
        return events
