"""
High-precision timing utilities for batch latency and request wait measurement.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..logging import get_logger

logger = get_logger(__name__)


@dataclass
class TimingResult:
    """Result of a timing operation."""

    operation: str
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    success: bool
    metadata: Dict[str, Any]

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        return self.duration_seconds * 1000


class Timer:
    """High-precision timer for measuring operation durations."""

    def __init__(self, operation: str, metadata: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.metadata = metadata or {}
        self.start_time: Optional[float] = None
        self.start_datetime: Optional[datetime] = None
        self.result: Optional[TimingResult] = None
        self.success = True

    def start(self) -> "Timer":
        """Start the timer."""
        self.start_time = time.perf_counter()
        self.start_datetime = datetime.utcnow()
        return self

    def stop(self) -> TimingResult:
        """Stop the timer and return results."""
        if self.start_time is None:
            raise ValueError("Timer not started")

        duration = time.perf_counter() - self.start_time

        self.result = TimingResult(
            operation=self.operation,
            start_time=self.start_datetime,
            end_time=datetime.utcnow(),
            duration_seconds=duration,
            success=self.success,
            metadata=self.metadata,
        )
        return self.result

    def mark_failure(self):
        """Mark the operation as failed."""
        self.success = False

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since start, without stopping the timer."""
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time

    def __enter__(self) -> "Timer":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.mark_failure()
        self.stop()


@contextmanager
def time_operation(operation: str, metadata: Optional[Dict[str, Any]] = None):
    """Context manager for timing operations."""
    timer = Timer(operation, metadata)
    try:
        timer.start()
        yield timer
    except Exception:
        timer.mark_failure()
        raise
    finally:
        result = timer.stop()
        logger.debug(
            "Operation timed",
            operation=operation,
            duration_ms=result.duration_ms,
            success=result.success,
            **metadata or {},
        )
