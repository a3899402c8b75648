"""Configuration loading for findfish."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

import yaml

from configs.validator import validate_config
from contracts import CalibrationInput, CalibrationMode, PatternGeometry
from exceptions import ConfigurationError, InvalidConfigError
from log_config.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


@dataclass(frozen=True)
class CalibrationSettings:
    image_width: int = 1920
    image_height: int = 1440
    mode: str = "STEREO"
    pattern_columns: int = 9
    pattern_rows: int = 6
    square_size: float = 25.0
    min_samples: int = 10
    max_rms_px: float = 2.0

    def to_input(self) -> CalibrationInput:
        return CalibrationInput(
            image_width=self.image_width,
            image_height=self.image_height,
            mode=CalibrationMode(self.mode),
            pattern=PatternGeometry(
                columns=self.pattern_columns,
                rows=self.pattern_rows,
                square_size=self.square_size,
            ),
        )


@dataclass(frozen=True)
class EventsConfig:
    marker_miss_tolerance: int = 5
    activity_enabled: bool = True
    motion_diff_threshold: float = 25.0
    motion_bg_alpha: float = 0.05
    motion_min_foreground_fraction: float = 0.002
    motion_gap_frames: int = 15
    motion_min_segment_frames: int = 5


@dataclass(frozen=True)
class TriangulationConfig:
    max_reprojection_error_px: float = 5.0
    correspondence: str = "fiducial"


@dataclass(frozen=True)
class ProcessingConfig:
    parallel: bool = False
    remove_sources: bool = True
    frame_count_tolerance: int = 5
    video_extensions: Tuple[str, ...] = (".mp4",)
    artifact_extensions: Tuple[str, ...] = (".json",)
    artifact_prefix: str = "DE_"


@dataclass(frozen=True)
class PathsConfig:
    video_dir: str = "static/videos"
    artifact_dir: str = "static/video-info"
    calibration_file: str = "stereo_calibration.npz"
    measure_points_file: str = "calib_config/measure_points.yaml"


@dataclass(frozen=True)
class AppConfig:
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    events: EventsConfig = field(default_factory=EventsConfig)
    triangulation: TriangulationConfig = field(default_factory=TriangulationConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigurationError: If configuration is invalid or cannot be loaded
    """
    path = Path(path)
    try:
        logger.info(f"Loading configuration from {path}")
        if not path.exists():
            raise InvalidConfigError(f"Configuration file not found: {path}")

        data = yaml.safe_load(path.read_text())

        # Validate against JSON Schema
        validate_config(data)

        logger.debug("Parsing configuration sections")

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML configuration: {e}")
        raise InvalidConfigError(f"Failed to parse configuration file: {e}")

    try:
        calibration = CalibrationSettings(**data["calibration"])
        events = EventsConfig(**data.get("events", {}))
        triangulation = TriangulationConfig(**data.get("triangulation", {}))
        processing_data = dict(data["processing"])
        for key in ("video_extensions", "artifact_extensions"):
            if key in processing_data:
                processing_data[key] = tuple(processing_data[key])
        processing = ProcessingConfig(**processing_data)
        paths = PathsConfig(**data.get("paths", {}))

        config = AppConfig(
            calibration=calibration,
            events=events,
            triangulation=triangulation,
            processing=processing,
            paths=paths,
        )

        logger.info(
            f"Configuration loaded successfully: {config.calibration.mode} calibration, "
            f"{config.calibration.image_width}x{config.calibration.image_height}, "
            f"parallel={config.processing.parallel}"
        )
        return config

    except ConfigurationError:
        raise
    except Exception as e:
        logger.error(f"Failed to construct configuration objects: {e}")
        raise InvalidConfigError(f"Failed to construct configuration: {e}")
