"""Configuration validation using JSON Schema."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import jsonschema
import yaml
from jsonschema import Draft7Validator, validators

from exceptions import ConfigValidationError
from log_config.logger import get_logger

logger = get_logger(__name__)

# JSON Schema for default.yaml configuration
CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["calibration", "processing"],
    "properties": {
        "calibration": {
            "type": "object",
            "required": ["image_width", "image_height"],
            "properties": {
                "image_width": {"type": "integer", "minimum": 1},
                "image_height": {"type": "integer", "minimum": 1},
                "mode": {"type": "string", "enum": ["MONO", "STEREO"], "default": "STEREO"},
                "pattern_columns": {"type": "integer", "minimum": 2, "default": 9},
                "pattern_rows": {"type": "integer", "minimum": 2, "default": 6},
                "square_size": {"type": "number", "exclusiveMinimum": 0, "default": 25.0},
                "min_samples": {"type": "integer", "minimum": 1, "default": 10},
                "max_rms_px": {"type": "number", "exclusiveMinimum": 0, "default": 2.0},
            },
        },
        "events": {
            "type": "object",
            "properties": {
                "marker_miss_tolerance": {"type": "integer", "minimum": 0, "maximum": 1000},
                "activity_enabled": {"type": "boolean"},
                "motion_diff_threshold": {"type": "number", "minimum": 0, "maximum": 255},
                "motion_bg_alpha": {"type": "number", "minimum": 0.0, "maximum": 1.0},
                "motion_min_foreground_fraction": {"type": "number", "minimum": 0.0, "maximum": 1.0},
                "motion_gap_frames": {"type": "integer", "minimum": 0},
                "motion_min_segment_frames": {"type": "integer", "minimum": 1},
            },
        },
        "triangulation": {
            "type": "object",
            "properties": {
                "max_reprojection_error_px": {"type": "number", "exclusiveMinimum": 0},
                "correspondence": {"type": "string", "enum": ["none", "fiducial", "pattern"]},
            },
        },
        "processing": {
            "type": "object",
            "properties": {
                "parallel": {"type": "boolean", "default": False},
                "remove_sources": {"type": "boolean", "default": True},
                "frame_count_tolerance": {"type": "integer", "minimum": 0, "default": 5},
                "video_extensions": {
                    "type": "array",
                    "items": {"type": "string"},
                    "minItems": 1,
                },
                "artifact_extensions": {
                    "type": "array",
                    "items": {"type": "string"},
                    "minItems": 1,
                },
                "artifact_prefix": {"type": "string"},
            },
        },
        "paths": {
            "type": "object",
            "properties": {
                "video_dir": {"type": "string"},
                "artifact_dir": {"type": "string"},
                "calibration_file": {"type": "string"},
                "measure_points_file": {"type": "string"},
            },
        },
    },
}


def extend_with_default(validator_class):
    """Extend JSON Schema validator to set default values."""
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(validator, properties, instance, schema):
        for prop, subschema in properties.items():
            if "default" in subschema:
                instance.setdefault(prop, subschema["default"])

        for error in validate_properties(validator, properties, instance, schema):
            yield error

    return validators.extend(validator_class, {"properties": set_defaults})


DefaultValidatingValidator = extend_with_default(Draft7Validator)


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration against JSON Schema.

    Fills in schema defaults in place.

    Args:
        config: Configuration dictionary

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration root must be a mapping")

    try:
        validator = DefaultValidatingValidator(CONFIG_SCHEMA)
        errors = list(validator.iter_errors(config))

        if errors:
            error_messages = []
            for error in errors:
                path = " -> ".join(str(p) for p in error.path) if error.path else "root"
                error_messages.append(f"{path}: {error.message}")

            logger.error(f"Configuration validation failed with {len(errors)} errors")
            for msg in error_messages:
                logger.error(f"  - {msg}")

            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s). See logs for details.",
                validation_errors=error_messages,
            )

        logger.debug("Configuration validation passed")

    except jsonschema.exceptions.SchemaError as e:
        logger.error(f"Invalid schema: {e}")
        raise ConfigValidationError(f"Invalid schema definition: {e}")


def validate_config_file(config_path: str) -> None:
    """Validate a YAML configuration file.

    Args:
        config_path: Path to configuration file

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigValidationError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML: {e}")
        raise ConfigValidationError(f"Failed to parse configuration file: {e}")

    validate_config(config)


__all__ = ["validate_config", "validate_config_file", "CONFIG_SCHEMA"]
