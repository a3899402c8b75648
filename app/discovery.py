"""Find unprocessed recordings and pair them into jobs."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Set, Tuple

from app.job import JOB_ID_SEPARATOR
from log_config.logger import get_logger

logger = get_logger(__name__)


def list_files(directory: Path, extensions: Iterable[str]) -> List[Path]:
    """Files in ``directory`` with one of ``extensions`` (case-insensitive), sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"Directory not found: {directory}")
        return []
    wanted = {ext.lower() for ext in extensions}
    return sorted(
        (p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in wanted),
        key=lambda p: p.name,
    )


def artifact_ids(
    artifact_dir: Path, prefix: str = "DE_", extensions: Iterable[str] = (".json",)
) -> Set[str]:
    """Job ids of the artifacts already written to ``artifact_dir``."""
    ids = set()
    for path in list_files(artifact_dir, extensions):
        if path.stem.startswith(prefix):
            ids.add(path.stem[len(prefix):])
    return ids


def _splits(job_id: str) -> List[Tuple[str, str]]:
    """Every (primary, secondary) stem pair that joins to ``job_id``."""
    splits = []
    start = job_id.find(JOB_ID_SEPARATOR)
    while start > 0:
        splits.append((job_id[:start], job_id[start + len(JOB_ID_SEPARATOR):]))
        start = job_id.find(JOB_ID_SEPARATOR, start + 1)
    return splits


def pending_videos(videos: Iterable[Path], processed_ids: Iterable[str]) -> List[Path]:
    """Drop videos whose stem is one half of an existing artifact id.

    Stems may contain the separator themselves, so every split of an id is
    tried. A split whose halves are both listed videos wins; otherwise any
    half naming a listed video counts (its partner was already removed).
    """
    videos = list(videos)
    stems = {video.stem for video in videos}
    done: Set[str] = set()
    for job_id in processed_ids:
        splits = _splits(job_id)
        exact = [pair for pair in splits if pair[0] in stems and pair[1] in stems]
        for pair in exact or splits:
            done.update(stem for stem in pair if stem in stems)
    pending = []
    for video in videos:
        if video.stem in done:
            logger.debug(f"Skipping {video.name}: already processed")
            continue
        pending.append(video)
    return pending


def pair_videos(videos: List[Path]) -> List[Tuple[Path, Path]]:
    """Pair consecutive videos ``(0, 1), (2, 3), ...``.

    A trailing odd video stays unpaired until its partner arrives.
    """
    pairs = [(videos[i], videos[i + 1]) for i in range(0, len(videos) - 1, 2)]
    if len(videos) % 2:
        logger.info(f"Leaving {videos[-1].name} unpaired until its partner arrives")
    return pairs


def discover_pairs(
    video_dir: Path,
    artifact_dir: Path,
    video_extensions: Iterable[str] = (".mp4",),
    artifact_prefix: str = "DE_",
    artifact_extensions: Iterable[str] = (".json",),
) -> List[Tuple[Path, Path]]:
    videos = list_files(video_dir, video_extensions)
    processed = artifact_ids(artifact_dir, artifact_prefix, artifact_extensions)
    pending = pending_videos(videos, processed)
    pairs = pair_videos(pending)
    logger.info(
        f"Discovered {len(videos)} videos, {len(pending)} pending, {len(pairs)} pairs"
    )
    return pairs
