"""Tests for the per-pair frame loop."""

from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest

from app.events import ErrorCategory, get_error_bus
from app.job import JobStatus
from app.processor import Processor
from calib import save_calibration
from configs.settings import AppConfig, EventsConfig, ProcessingConfig, TriangulationConfig
from contracts import Correspondence, EventKind
from exceptions import (
    DetectionError,
    InvalidConfigurationError,
    InvariantViolationError,
    SourceMismatchError,
    SourceUnreadableError,
)
from stereo import SuppliedCorrespondence, pair_points

from conftest import (
    FakeSourceFactory,
    PixelMarkerDecoder,
    blank_frames,
    make_stereo_calibration,
    marked_frames,
)

NO_MOTION = AppConfig(events=EventsConfig(activity_enabled=False, marker_miss_tolerance=5))


@pytest.fixture
def error_events():
    events = []
    bus = get_error_bus()
    bus.subscribe(events.append)
    yield events
    bus.unsubscribe(events.append)


def _processor(frames_by_name, config=NO_MOTION, **kwargs):
    factory = FakeSourceFactory(frames_by_name)
    processor = Processor(
        "a.mp4",
        "b.mp4",
        config=config,
        source_factory=factory,
        decoder_factory=PixelMarkerDecoder,
        **kwargs,
    )
    return processor, factory


class TestOpening:
    def test_secondary_unreadable(self):
        factory = FakeSourceFactory({"a.mp4": blank_frames(10)})
        with pytest.raises(SourceUnreadableError) as exc_info:
            Processor("a.mp4", "b.mp4", source_factory=factory)
        assert exc_info.value.source.endswith("b.mp4")
        # the primary source was opened and released again
        assert [s.closed for s in factory.opened] == [True]

    def test_empty_source(self):
        with pytest.raises(SourceUnreadableError):
            _processor({"a.mp4": blank_frames(10), "b.mp4": []})

    def test_frame_count_mismatch_over_tolerance(self):
        with pytest.raises(SourceMismatchError):
            _processor({"a.mp4": blank_frames(20), "b.mp4": blank_frames(10)})

    def test_small_mismatch_processes_shorter_length(self):
        processor, _ = _processor({"a.mp4": blank_frames(12), "b.mp4": blank_frames(10)})
        assert processor.frame_count == 10
        job = processor.process_videos()
        assert job.status is JobStatus.SUCCEEDED
        assert job.frames_processed == 10

    def test_tolerance_comes_from_config(self):
        strict = replace(NO_MOTION, processing=ProcessingConfig(frame_count_tolerance=0))
        with pytest.raises(SourceMismatchError):
            _processor({"a.mp4": blank_frames(11), "b.mp4": blank_frames(10)}, config=strict)

    def test_stream_ending_early_fails_the_job(self, error_events):
        factory = FakeSourceFactory(
            {"a.mp4": blank_frames(5), "b.mp4": blank_frames(100)}, reported_counts={"a.mp4": 100}
        )
        processor = Processor("a.mp4", "b.mp4", config=NO_MOTION, source_factory=factory)
        assert processor.frame_count == 100
        with pytest.raises(SourceUnreadableError) as exc_info:
            processor.process_videos()

        assert exc_info.value.source.endswith("a.mp4")
        assert "5 of 100" in str(exc_info.value)
        assert processor.job.status is JobStatus.FAILED
        assert processor.job.frames_processed == 5
        assert all(source.closed for source in factory.opened)
        assert error_events

    def test_short_stream_within_tolerance_succeeds(self):
        factory = FakeSourceFactory(
            {"a.mp4": blank_frames(10), "b.mp4": blank_frames(7)}, reported_counts={"b.mp4": 10}
        )
        job = Processor("a.mp4", "b.mp4", config=NO_MOTION, source_factory=factory).process_videos()
        assert job.status is JobStatus.SUCCEEDED
        assert job.frames_processed == 7

    @pytest.mark.parametrize(
        "triangulation",
        [
            TriangulationConfig(correspondence="optical-flow"),
            TriangulationConfig(max_reprojection_error_px=0.0),
        ],
    )
    def test_bad_triangulation_settings_release_sources(self, triangulation):
        factory = FakeSourceFactory({"a.mp4": blank_frames(4), "b.mp4": blank_frames(4)})
        with pytest.raises(InvalidConfigurationError):
            Processor(
                "a.mp4",
                "b.mp4",
                config=replace(NO_MOTION, triangulation=triangulation),
                calibration=make_stereo_calibration(),
                source_factory=factory,
            )
        assert len(factory.opened) == 2
        assert all(source.closed for source in factory.opened)


class TestEvents:
    def test_marker_events_per_stream(self):
        processor, factory = _processor(
            {"a.mp4": marked_frames(40, range(10, 15)), "b.mp4": marked_frames(40, range(30, 38))}
        )
        job = processor.process_videos()

        assert job.status is JobStatus.SUCCEEDED
        assert job.frame_cursor == 39
        markers = [e for e in job.events if e.kind is EventKind.MARKER]
        assert [(e.payload["stream"], e.start_frame, e.end_frame) for e in markers] == [
            ("primary", 10, 14),
            ("secondary", 30, 37),
        ]
        assert markers[0].payload["tank"] == "3"
        assert all(source.closed for source in factory.opened)

    def test_marker_reappearing_starts_new_event(self):
        processor, _ = _processor(
            {"a.mp4": marked_frames(50, [2, 3, 4, 30, 31]), "b.mp4": blank_frames(50)}
        )
        job = processor.process_videos()
        ranges = [(e.start_frame, e.end_frame) for e in job.events]
        assert ranges == [(2, 4), (30, 31)]

    def test_supplied_activity_segments(self):
        processor, _ = _processor(
            {"a.mp4": blank_frames(20), "b.mp4": blank_frames(20)},
            activity_segments=[(3, 7), (15, 40)],
        )
        job = processor.process_videos()
        activity = [e for e in job.events if e.kind is EventKind.ACTIVITY]
        assert [(e.event_id, e.start_frame, e.end_frame) for e in activity] == [(0, 3, 7), (1, 15, 19)]

    def test_motion_prepass_builds_activity(self):
        frames = blank_frames(60, size=64)
        for k in range(10):
            frames[20 + k] = frames[20 + k].copy()
            frames[20 + k][30:38, 10 + 3 * k : 18 + 3 * k] = 200
        config = AppConfig(events=EventsConfig(motion_gap_frames=3, motion_min_segment_frames=3))
        processor, _ = _processor({"a.mp4": frames, "b.mp4": blank_frames(60, size=64)}, config=config)
        job = processor.process_videos()

        activity = [e for e in job.events if e.kind is EventKind.ACTIVITY]
        assert len(activity) == 1
        assert activity[0].start_frame == 20
        assert activity[0].end_frame >= 29
        assert job.frames_processed == 60

    def test_detection_errors_skip_the_frame(self, error_events):
        class FlakyDecoder(PixelMarkerDecoder):
            def __call__(self, frame):
                if frame[0, 1] == 7:
                    raise DetectionError("glare")
                return super().__call__(frame)

        frames = marked_frames(20, range(5, 10))
        frames[7][0, 1] = 7
        factory = FakeSourceFactory({"a.mp4": frames, "b.mp4": blank_frames(20)})
        processor = Processor(
            "a.mp4", "b.mp4", config=NO_MOTION, source_factory=factory, decoder_factory=FlakyDecoder
        )
        job = processor.process_videos()

        assert job.status is JobStatus.SUCCEEDED
        assert [(e.start_frame, e.end_frame) for e in job.events] == [(5, 9)]
        detection_errors = [e for e in error_events if e.category is ErrorCategory.DETECTION]
        assert len(detection_errors) == 1
        assert "frame 7" in detection_errors[0].message


class TestTriangulation:
    def test_points_from_supplied_correspondences(self):
        good = Correspondence(primary=(360.0, 256.0), secondary=(280.0, 256.0))
        bad = Correspondence(primary=(360.0, 256.0), secondary=(280.0, 320.0))
        finder = SuppliedCorrespondence({2: [good], 5: [good, bad]})
        processor, _ = _processor(
            {"a.mp4": blank_frames(8), "b.mp4": blank_frames(8)},
            calibration=make_stereo_calibration(),
            correspondence=finder,
        )
        job = processor.process_videos()

        assert [p.frame_index for p in job.points] == [2, 5]
        for point in job.points:
            assert point.xyz == pytest.approx((50.0, 20.0, 1000.0), abs=1e-6)

    def test_count_mismatch_aborts_the_job(self, error_events):
        class Mismatched(SuppliedCorrespondence):
            def find(self, frame_index, primary, secondary):
                if frame_index == 3:
                    return pair_points([[1, 2], [3, 4]], [[1, 2]])
                return []

        processor, factory = _processor(
            {"a.mp4": blank_frames(8), "b.mp4": blank_frames(8)},
            calibration=make_stereo_calibration(),
            correspondence=Mismatched({}),
        )
        with pytest.raises(InvariantViolationError):
            processor.process_videos()

        assert processor.job.status is JobStatus.FAILED
        assert "CorrespondenceCountMismatchError" in processor.job.error
        assert processor.job.frame_cursor == 3
        assert all(source.closed for source in factory.opened)
        assert any(e.category is ErrorCategory.INVARIANT for e in error_events)

    def test_correspondence_from_config(self):
        config = replace(NO_MOTION, triangulation=TriangulationConfig(correspondence="none"))
        processor, _ = _processor(
            {"a.mp4": blank_frames(4), "b.mp4": blank_frames(4)},
            config=config,
            calibration=make_stereo_calibration(),
        )
        job = processor.process_videos()
        assert job.points == []


def test_artifact_document():
    processor, _ = _processor(
        {"a.mp4": marked_frames(10, [1, 2]), "b.mp4": blank_frames(10)},
        activity_segments=[(0, 4)],
    )
    processor.process_videos()
    document = processor.to_artifact()

    assert document["schema_version"]
    assert document["app_version"]
    payload = document["payload"]
    assert payload["job_id"] == "a__b"
    assert payload["primary"] == "a.mp4"
    assert payload["secondary"] == "b.mp4"
    assert payload["frames"] == 10
    assert [e["kind"] for e in payload["events"]] == ["activity", "marker"]
    assert payload["points"] == []


def test_static_triangulate_points(tmp_path):
    calibration_path = save_calibration(make_stereo_calibration(), tmp_path / "calib.npz")
    points_path = tmp_path / "points.yaml"
    points_path.write_text("primary_points: [[360, 256]]\nsecondary_points: [[280, 256]]\n")

    points = Processor.triangulate_points(points_path, calibration_path)
    assert len(points) == 1
    assert points[0].frame_index == 0
    assert np.allclose(points[0].xyz, (50.0, 20.0, 1000.0))
