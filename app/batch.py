"""Batch execution of video pair jobs.

Jobs run either one after another (default) or all at once on a thread
pool. A failing job never affects its siblings. Artifacts are written only
for successful jobs, and sources are removed only after their artifact is
on disk. In parallel mode both happen once every job has finished.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from app.discovery import discover_pairs
from app.events.error_bus import ErrorCategory, ErrorSeverity, publish_error
from app.job import JobStatus, VideoPairJob
from app.processor import Decoder, Processor, SourceFactory
from calib.result import CalibrationResult
from configs.settings import AppConfig
from exceptions import FileWriteError
from log_config.logger import get_logger
from record.artifact import artifact_path, write_artifact

logger = get_logger(__name__)


@dataclass
class BatchResult:
    jobs: List[VideoPairJob] = field(default_factory=list)
    artifacts: List[Path] = field(default_factory=list)
    removed_sources: List[Path] = field(default_factory=list)

    @property
    def succeeded(self) -> List[VideoPairJob]:
        return [job for job in self.jobs if job.status is JobStatus.SUCCEEDED]

    @property
    def failed(self) -> List[VideoPairJob]:
        return [job for job in self.jobs if job.status is JobStatus.FAILED]


class BatchRunner:
    """Runs :class:`Processor` jobs for a list of video pairs."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        calibration: Optional[CalibrationResult] = None,
        parallel: Optional[bool] = None,
        source_factory: Optional[SourceFactory] = None,
        decoder_factory: Optional[Callable[[], Decoder]] = None,
    ) -> None:
        self._config = config or AppConfig()
        self._calibration = calibration
        self._parallel = self._config.processing.parallel if parallel is None else parallel
        self._source_factory = source_factory
        self._decoder_factory = decoder_factory

    @property
    def parallel(self) -> bool:
        return self._parallel

    def run(self, pairs: Sequence[Tuple[Path, Path]], artifact_dir: Optional[Path] = None) -> BatchResult:
        artifact_dir = Path(artifact_dir or self._config.paths.artifact_dir)
        result = BatchResult()
        if not pairs:
            logger.info("No video pairs to process")
            return result

        logger.info(f"Running {len(pairs)} jobs (parallel={self._parallel})")
        if self._parallel:
            jobs: List[VideoPairJob] = []
            with concurrent.futures.ThreadPoolExecutor(max_workers=len(pairs)) as executor:
                futures = [executor.submit(self._process, primary, secondary) for primary, secondary in pairs]
                for future in futures:
                    jobs.append(future.result())
            # Outputs only after every worker has joined
            for job in jobs:
                self._finalize(job, artifact_dir, result)
        else:
            for primary, secondary in pairs:
                job = self._process(primary, secondary)
                self._finalize(job, artifact_dir, result)

        logger.info(
            f"Batch complete: {len(result.succeeded)} succeeded, {len(result.failed)} failed"
        )
        return result

    def run_pending(self, video_dir: Optional[Path] = None, artifact_dir: Optional[Path] = None) -> BatchResult:
        """Discover unprocessed pairs in ``video_dir`` and run them once."""
        processing = self._config.processing
        video_dir = Path(video_dir or self._config.paths.video_dir)
        artifact_dir = Path(artifact_dir or self._config.paths.artifact_dir)
        pairs = discover_pairs(
            video_dir,
            artifact_dir,
            video_extensions=processing.video_extensions,
            artifact_prefix=processing.artifact_prefix,
            artifact_extensions=processing.artifact_extensions,
        )
        return self.run(pairs, artifact_dir)

    def _process(self, primary: Path, secondary: Path) -> VideoPairJob:
        job = VideoPairJob(primary, secondary)
        try:
            processor = Processor(
                primary,
                secondary,
                config=self._config,
                calibration=self._calibration,
                source_factory=self._source_factory,
                decoder_factory=self._decoder_factory,
            )
            job = processor.job
            processor.process_videos()
        except Exception as e:
            # process_videos marks and reports its own failures
            if job.status is not JobStatus.FAILED:
                job.mark_failed(e)
                publish_error(
                    f"Job {job.job_id} could not start: {e}",
                    source="batch",
                    exception=e,
                    severity=ErrorSeverity.ERROR,
                    job_id=job.job_id,
                )
        return job

    def _finalize(self, job: VideoPairJob, artifact_dir: Path, result: BatchResult) -> None:
        result.jobs.append(job)
        if job.status is not JobStatus.SUCCEEDED:
            logger.warning(f"Job {job.job_id} failed; keeping sources: {job.error}")
            return

        processing = self._config.processing
        path = artifact_path(
            artifact_dir, job.job_id, processing.artifact_prefix, processing.artifact_extensions[0]
        )
        try:
            write_artifact(path, job.to_artifact())
        except FileWriteError as e:
            job.mark_failed(e)
            publish_error(
                f"Artifact for {job.job_id} not written: {e}",
                source="batch",
                exception=e,
                category=ErrorCategory.OUTPUT,
                severity=ErrorSeverity.ERROR,
                job_id=job.job_id,
            )
            return
        result.artifacts.append(path)

        if not processing.remove_sources:
            return
        for source in job.sources:
            try:
                source.unlink(missing_ok=True)
            except OSError as e:
                publish_error(
                    f"Could not remove {source}: {e}",
                    source="batch",
                    exception=e,
                    category=ErrorCategory.OUTPUT,
                    job_id=job.job_id,
                )
                continue
            result.removed_sources.append(source)
            logger.info(f"Removed processed source {source}")
