"""Custom exception classes for findfish."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class FindFishError(Exception):
    """Base exception for all findfish errors."""

    pass


class ConfigurationError(FindFishError):
    """Base exception for configuration errors.

    Always fatal to the operation that raised it; never retried.
    """

    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when calibration input or mode is invalid."""

    pass


class MalformedCalibrationFileError(ConfigurationError):
    """Raised when a calibration file does not match the expected schema."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when configuration file is invalid or corrupted."""

    pass


class ConfigValidationError(ConfigurationError):
    """Raised when configuration fails schema validation."""

    def __init__(self, message: str, validation_errors: Optional[list] = None):
        self.validation_errors = validation_errors or []
        super().__init__(message)


class AcquisitionError(FindFishError):
    """Base exception for unreadable video or image sources.

    Fatal to the owning job only.
    """

    pass


class SourceUnreadableError(AcquisitionError):
    """Raised when a video source cannot be opened, decoded, or is empty."""

    def __init__(self, message: str, source: Optional[Union[str, Path]] = None):
        self.source = str(source) if source is not None else None
        super().__init__(message)


class SourceMismatchError(AcquisitionError):
    """Raised when paired video sources differ too much in length."""

    pass


class DetectionError(FindFishError):
    """Base exception for recoverable detection errors.

    The unit of work (one image, one frame) is skipped.
    """

    pass


class PatternNotFoundError(DetectionError):
    """Raised when the calibration pattern cannot be found in an image."""

    def __init__(self, message: str, image_path: Optional[Union[str, Path]] = None):
        self.image_path = str(image_path) if image_path is not None else None
        super().__init__(message)


class NumericalError(FindFishError):
    """Base exception for failed numerical computations."""

    pass


class CalibrationDidNotConvergeError(NumericalError):
    """Raised when a calibration solve exceeds the residual bound."""

    def __init__(self, message: str, rms_px: float = 0.0, bound_px: float = 0.0):
        self.rms_px = rms_px
        self.bound_px = bound_px
        super().__init__(message)


class InsufficientSamplesError(NumericalError):
    """Raised when too few calibration samples remain after detection."""

    def __init__(self, message: str, found: int = 0, required: int = 0):
        self.found = found
        self.required = required
        super().__init__(message)


class ReprojectionBoundError(NumericalError):
    """Raised when a triangulated point exceeds the reprojection bound."""

    def __init__(self, message: str, error_px: float = 0.0, bound_px: float = 0.0):
        self.error_px = error_px
        self.bound_px = bound_px
        super().__init__(message)


class InvariantViolationError(FindFishError):
    """Base exception for programming defects. Never silently corrected."""

    pass


class DoubleStartError(InvariantViolationError):
    """Raised when an event is started while not idle."""

    pass


class DoubleEndError(InvariantViolationError):
    """Raised when an event is ended after it was already closed."""

    pass


class PrematureEndError(InvariantViolationError):
    """Raised when an event is ended before it was started."""

    pass


class CorrespondenceCountMismatchError(InvariantViolationError):
    """Raised when the two camera views list different point counts."""

    def __init__(self, message: str, primary_count: int = 0, secondary_count: int = 0):
        self.primary_count = primary_count
        self.secondary_count = secondary_count
        super().__init__(message)


class ImageCountMismatchError(InvariantViolationError):
    """Raised when stereo calibration image sets are not count-matched."""

    pass


class FileWriteError(FindFishError):
    """Raised when an output file cannot be written."""

    pass
