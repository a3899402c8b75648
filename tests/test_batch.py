"""Tests for discovery, pairing, and batch execution."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

import app.batch
from app.batch import BatchRunner
from app.discovery import artifact_ids, discover_pairs, list_files, pair_videos, pending_videos
from app.job import JobStatus
from configs.settings import AppConfig, EventsConfig, ProcessingConfig
from record.artifact import read_artifact, write_artifact

from conftest import FakeSourceFactory, PixelMarkerDecoder, blank_frames, marked_frames

CONFIG = AppConfig(events=EventsConfig(activity_enabled=False))


def _touch(directory: Path, *names: str) -> list:
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for name in names:
        path = directory / name
        path.write_bytes(b"\x00")
        paths.append(path)
    return paths


class TestDiscovery:
    def test_five_videos_make_two_pairs(self, tmp_path):
        videos = _touch(tmp_path, "e.mp4", "a.mp4", "c.mp4", "b.mp4", "d.mp4")
        pairs = pair_videos(list_files(tmp_path, [".mp4"]))
        names = [(p.name, s.name) for p, s in pairs]
        assert names == [("a.mp4", "b.mp4"), ("c.mp4", "d.mp4")]
        assert len(videos) == 5

    def test_extension_match_is_case_insensitive(self, tmp_path):
        _touch(tmp_path, "a.MP4", "b.mp4", "notes.txt", "c.avi")
        assert [p.name for p in list_files(tmp_path, [".mp4"])] == ["a.MP4", "b.mp4"]

    def test_missing_directory_is_empty(self, tmp_path):
        assert list_files(tmp_path / "nowhere", [".mp4"]) == []

    def test_processed_videos_are_excluded(self, tmp_path):
        videos = _touch(tmp_path / "videos", "a.mp4", "b.mp4", "c.mp4", "d.mp4", "e.mp4")
        _touch(tmp_path / "info", "DE_a__b.json", "other.json")
        ids = artifact_ids(tmp_path / "info")
        assert ids == {"a__b"}
        pending = pending_videos(videos, ids)
        assert [p.name for p in pending] == ["c.mp4", "d.mp4", "e.mp4"]

        pairs = discover_pairs(tmp_path / "videos", tmp_path / "info")
        assert [(p.name, s.name) for p, s in pairs] == [("c.mp4", "d.mp4")]

    def test_stems_containing_the_separator(self, tmp_path):
        _touch(tmp_path / "videos", "tank__1.mp4", "tank__2.mp4")
        _touch(tmp_path / "info", "DE_tank__1__tank__2.json")
        assert discover_pairs(tmp_path / "videos", tmp_path / "info") == []

    def test_separator_stems_do_not_hide_other_videos(self, tmp_path):
        videos = _touch(tmp_path, "tank.mp4", "tank__1.mp4", "tank__2.mp4", "tank__3.mp4")
        pending = pending_videos(videos, {"tank__1__tank__2"})
        assert [p.name for p in pending] == ["tank.mp4", "tank__3.mp4"]

    def test_partner_already_removed(self, tmp_path):
        videos = _touch(tmp_path, "tank__2.mp4", "tank__5.mp4")
        pending = pending_videos(videos, {"tank__1__tank__2"})
        assert [p.name for p in pending] == ["tank__5.mp4"]


class TestBatchRunner:
    @pytest.fixture
    def videos(self, tmp_path):
        return _touch(tmp_path / "videos", "a.mp4", "b.mp4", "c.mp4", "d.mp4")

    def _factory(self, readable):
        frames = {name: marked_frames(15, [3, 4]) for name in readable}
        return FakeSourceFactory(frames)

    def test_parallel_failure_is_isolated_and_cleanup_deferred(self, tmp_path, videos, monkeypatch):
        # d.mp4 (a secondary) cannot be opened: job c__d fails, job a__b succeeds
        factory = self._factory(["a.mp4", "b.mp4", "c.mp4"])
        closed_at_write = []

        def recording_write(path, document):
            closed_at_write.append(len(factory.closed))
            return write_artifact(path, document)

        monkeypatch.setattr(app.batch, "write_artifact", recording_write)
        runner = BatchRunner(
            CONFIG, parallel=True, source_factory=factory, decoder_factory=PixelMarkerDecoder
        )
        pairs = [(videos[0], videos[1]), (videos[2], videos[3])]
        result = runner.run(pairs, tmp_path / "info")

        statuses = {job.job_id: job.status for job in result.jobs}
        assert statuses == {"a__b": JobStatus.SUCCEEDED, "c__d": JobStatus.FAILED}
        # a, b and the already opened c were all released before any output was written
        assert closed_at_write == [3]
        assert [p.name for p in result.artifacts] == ["DE_a__b.json"]
        assert not (tmp_path / "info" / "DE_c__d.json").exists()

        assert result.removed_sources == [videos[0], videos[1]]
        assert not videos[0].exists() and not videos[1].exists()
        assert videos[2].exists() and videos[3].exists()
        assert "SourceUnreadableError" in result.failed[0].error

    def test_sequential_writes_after_each_job(self, tmp_path, videos, monkeypatch):
        factory = self._factory(["a.mp4", "b.mp4", "c.mp4", "d.mp4"])
        closed_at_write = []

        def recording_write(path, document):
            closed_at_write.append(len(factory.closed))
            return write_artifact(path, document)

        monkeypatch.setattr(app.batch, "write_artifact", recording_write)
        runner = BatchRunner(CONFIG, source_factory=factory, decoder_factory=PixelMarkerDecoder)
        assert runner.parallel is False
        result = runner.run([(videos[0], videos[1]), (videos[2], videos[3])], tmp_path / "info")

        assert closed_at_write == [2, 4]
        assert len(result.succeeded) == 2
        assert len(result.removed_sources) == 4

    def test_sources_kept_when_removal_disabled(self, tmp_path, videos):
        config = replace(CONFIG, processing=ProcessingConfig(remove_sources=False))
        runner = BatchRunner(
            config, source_factory=self._factory(["a.mp4", "b.mp4"]), decoder_factory=PixelMarkerDecoder
        )
        result = runner.run([(videos[0], videos[1])], tmp_path / "info")
        assert len(result.artifacts) == 1
        assert result.removed_sources == []
        assert videos[0].exists()

    def test_artifact_content(self, tmp_path, videos):
        runner = BatchRunner(
            CONFIG, source_factory=self._factory(["a.mp4", "b.mp4"]), decoder_factory=PixelMarkerDecoder
        )
        result = runner.run([(videos[0], videos[1])], tmp_path / "info")
        payload = read_artifact(result.artifacts[0])

        assert payload["job_id"] == "a__b"
        assert payload["frames"] == 15
        assert [(e["kind"], e["start_frame"], e["end_frame"]) for e in payload["events"]] == [
            ("marker", 3, 4),
            ("marker", 3, 4),
        ]
        raw = json.loads(result.artifacts[0].read_text())
        assert set(raw) == {"schema_version", "app_version", "payload"}

    def test_failed_artifact_write_keeps_sources(self, tmp_path, videos):
        blocker = tmp_path / "info"
        blocker.write_text("a file where the artifact directory should be")
        runner = BatchRunner(
            CONFIG, source_factory=self._factory(["a.mp4", "b.mp4"]), decoder_factory=PixelMarkerDecoder
        )
        result = runner.run([(videos[0], videos[1])], blocker)

        assert result.artifacts == []
        assert result.jobs[0].status is JobStatus.FAILED
        assert videos[0].exists() and videos[1].exists()

    def test_truncated_stream_keeps_sources(self, tmp_path, videos):
        frames = {name: marked_frames(15, [3, 4]) for name in ["a.mp4", "b.mp4"]}
        frames["b.mp4"] = frames["b.mp4"][:4]
        factory = FakeSourceFactory(frames, reported_counts={"b.mp4": 15})
        runner = BatchRunner(CONFIG, source_factory=factory, decoder_factory=PixelMarkerDecoder)
        result = runner.run([(videos[0], videos[1])], tmp_path / "info")

        assert result.jobs[0].status is JobStatus.FAILED
        assert "SourceUnreadableError" in result.failed[0].error
        assert result.artifacts == []
        assert not (tmp_path / "info" / "DE_a__b.json").exists()
        assert result.removed_sources == []
        assert videos[0].exists() and videos[1].exists()

    def test_run_pending_processes_each_pair_once(self, tmp_path):
        _touch(tmp_path / "videos", "a.mp4", "b.mp4", "c.mp4", "d.mp4", "e.mp4")
        factory = FakeSourceFactory({f"{stem}.mp4": blank_frames(5) for stem in "abcde"})
        runner = BatchRunner(CONFIG, source_factory=factory, decoder_factory=PixelMarkerDecoder)

        first = runner.run_pending(tmp_path / "videos", tmp_path / "info")
        assert sorted(job.job_id for job in first.succeeded) == ["a__b", "c__d"]
        assert [p.name for p in list_files(tmp_path / "videos", [".mp4"])] == ["e.mp4"]

        second = runner.run_pending(tmp_path / "videos", tmp_path / "info")
        assert second.jobs == []

    def test_no_pairs(self, tmp_path):
        result = BatchRunner(CONFIG).run([], tmp_path)
        assert result.jobs == [] and result.artifacts == []
