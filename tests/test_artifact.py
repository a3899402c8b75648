"""Tests for atomic writes and JSON artifacts."""

from __future__ import annotations

import json

import pytest

from contracts.versioning import SCHEMA_VERSION, make_envelope
from exceptions import FileWriteError
from record import artifact_path, atomic_open, read_artifact, write_artifact


def test_artifact_path(tmp_path):
    assert artifact_path(tmp_path, "a__b") == tmp_path / "DE_a__b.json"
    assert artifact_path(tmp_path, "a__b", prefix="X_", suffix=".txt").name == "X_a__b.txt"


def test_write_and_read(tmp_path):
    path = tmp_path / "nested" / "DE_a__b.json"
    written = write_artifact(path, make_envelope({"job_id": "a__b", "events": []}))

    assert written == path
    assert read_artifact(path) == {"job_id": "a__b", "events": []}
    assert json.loads(path.read_text())["schema_version"] == SCHEMA_VERSION
    assert list(path.parent.iterdir()) == [path]


def test_unserializable_document_leaves_nothing(tmp_path):
    path = tmp_path / "DE_x.json"
    with pytest.raises(FileWriteError):
        write_artifact(path, make_envelope({"bad": object()}))
    assert not path.exists()


def test_failed_block_keeps_previous_content(tmp_path):
    path = tmp_path / "calib.npz"
    path.write_bytes(b"old")

    with pytest.raises(RuntimeError):
        with atomic_open(path, "wb") as handle:
            handle.write(b"partial")
            raise RuntimeError("interrupted")

    assert path.read_bytes() == b"old"
    assert list(tmp_path.iterdir()) == [path]


def test_unwritable_directory(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    with pytest.raises(FileWriteError):
        with atomic_open(blocker / "out.json", "w") as handle:
            handle.write("{}")


def test_text_and_binary_modes_only(tmp_path):
    with pytest.raises(ValueError):
        with atomic_open(tmp_path / "x", "a"):
            pass


def test_read_rejects_bare_documents(tmp_path):
    path = tmp_path / "plain.json"
    path.write_text(json.dumps({"job_id": "a__b"}))
    with pytest.raises(ValueError):
        read_artifact(path)
