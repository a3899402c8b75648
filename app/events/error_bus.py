"""Centralized error event bus for system-wide error handling.

Components report recoverable errors (a skipped frame, a dropped point, a
failed job) here; subscribers such as the batch runner or tests react to
them. Every published event is also logged.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from exceptions import (
    AcquisitionError,
    ConfigurationError,
    DetectionError,
    FileWriteError,
    InvariantViolationError,
    NumericalError,
)
from log_config.logger import get_logger

logger = get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""

    INFO = "info"
    WARNING = "warning"  # operation continues
    ERROR = "error"  # unit of work failed
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories, one per exception family."""

    CONFIGURATION = "configuration"
    ACQUISITION = "acquisition"
    DETECTION = "detection"
    NUMERICAL = "numerical"
    INVARIANT = "invariant"
    OUTPUT = "output"


_CATEGORY_BY_TYPE = (
    (ConfigurationError, ErrorCategory.CONFIGURATION),
    (AcquisitionError, ErrorCategory.ACQUISITION),
    (DetectionError, ErrorCategory.DETECTION),
    (NumericalError, ErrorCategory.NUMERICAL),
    (InvariantViolationError, ErrorCategory.INVARIANT),
    (FileWriteError, ErrorCategory.OUTPUT),
    (OSError, ErrorCategory.OUTPUT),
)


def category_for(exc: BaseException) -> ErrorCategory:
    """Map an exception to its category; unknown types count as invariant violations."""
    for exc_type, category in _CATEGORY_BY_TYPE:
        if isinstance(exc, exc_type):
            return category
    return ErrorCategory.INVARIANT


@dataclass
class ErrorEvent:
    """Error event with context information."""

    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    source: str
    timestamp: float = field(default_factory=time.time)
    exception: Optional[BaseException] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        exc_info = f" ({self.exception.__class__.__name__})" if self.exception else ""
        return f"[{self.severity.value.upper()}] {self.category.value}/{self.source}: {self.message}{exc_info}"


class ErrorEventBus:
    """Publish-subscribe hub for error events."""

    def __init__(self, max_history: int = 100):
        self._subscribers: Dict[ErrorCategory, List[Callable[[ErrorEvent], None]]] = {}
        self._all_subscribers: List[Callable[[ErrorEvent], None]] = []
        self._lock = threading.Lock()
        self._event_history: List[ErrorEvent] = []
        self._max_history = max_history
        self._error_counts: Dict[ErrorCategory, int] = {}

    def subscribe(
        self, callback: Callable[[ErrorEvent], None], category: Optional[ErrorCategory] = None
    ) -> None:
        """Subscribe to error events.

        Args:
            callback: Function to call when error occurs
            category: Specific category to subscribe to, or None for all errors
        """
        with self._lock:
            if category is None:
                self._all_subscribers.append(callback)
            else:
                self._subscribers.setdefault(category, []).append(callback)

    def unsubscribe(
        self, callback: Callable[[ErrorEvent], None], category: Optional[ErrorCategory] = None
    ) -> None:
        with self._lock:
            if category is None:
                if callback in self._all_subscribers:
                    self._all_subscribers.remove(callback)
            elif callback in self._subscribers.get(category, []):
                self._subscribers[category].remove(callback)

    def publish(self, event: ErrorEvent) -> None:
        """Record, log, and fan out an event.

        Subscriber failures are logged and do not reach the publisher.
        """
        with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history.pop(0)
            self._error_counts[event.category] = self._error_counts.get(event.category, 0) + 1
            category_subscribers = self._subscribers.get(event.category, []).copy()
            all_subscribers = self._all_subscribers.copy()

        logger.log(event.severity.name, str(event))

        # Notify outside the lock so callbacks may publish
        for callback in category_subscribers + all_subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.opt(exception=e).error(
                    f"Error in event subscriber {getattr(callback, '__name__', repr(callback))}: {e}"
                )

    def get_history(
        self, category: Optional[ErrorCategory] = None, limit: int = 100
    ) -> List[ErrorEvent]:
        with self._lock:
            history = self._event_history.copy()
        if category is not None:
            history = [e for e in history if e.category == category]
        return history[-limit:]

    def get_error_counts(self) -> Dict[ErrorCategory, int]:
        with self._lock:
            return self._error_counts.copy()

    def clear_history(self) -> None:
        with self._lock:
            self._event_history.clear()
            self._error_counts.clear()


_error_bus: Optional[ErrorEventBus] = None
_bus_lock = threading.Lock()


def get_error_bus() -> ErrorEventBus:
    """Get the process-wide error event bus."""
    global _error_bus
    if _error_bus is None:
        with _bus_lock:
            if _error_bus is None:
                _error_bus = ErrorEventBus()
    return _error_bus


def publish_error(
    message: str,
    source: str,
    exception: Optional[BaseException] = None,
    category: Optional[ErrorCategory] = None,
    severity: ErrorSeverity = ErrorSeverity.WARNING,
    **metadata: Any,
) -> None:
    """Publish an error event; the category is derived from ``exception`` when omitted."""
    if category is None:
        category = category_for(exception) if exception is not None else ErrorCategory.INVARIANT
    event = ErrorEvent(
        category=category,
        severity=severity,
        message=message,
        source=source,
        exception=exception,
        metadata=metadata,
    )
    get_error_bus().publish(event)


__all__ = [
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorEvent",
    "ErrorEventBus",
    "category_for",
    "get_error_bus",
    "publish_error",
]
