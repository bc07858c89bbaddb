"""
Error Definitions for BatchServe

This module defines the exception hierarchy used throughout the serving core.
Every failure a caller can observe carries a ``kind`` so the transport layer
can tell outcomes apart through a single code path.
"""

from typing import Any, Dict, List, Optional

from .types import FailureKind


class BatchServeError(Exception):
    """Base exception class for all BatchServe errors."""

    kind: Optional[FailureKind] = None

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class QueueFullError(BatchServeError):
    """Raised at admission when the pending queue is at capacity."""

    kind = FailureKind.QUEUE_FULL

    def __init__(self, queue_size: int, capacity: int, **details):
        message = f"Request queue full ({queue_size}/{capacity})"

        super().__init__(message, {"queue_size": queue_size, "capacity": capacity, **details})
        self.queue_size = queue_size
        self.capacity = capacity


class InputTooLongError(BatchServeError):
    """Raised at admission when an input exceeds the sequence limit and truncation is off."""

    kind = FailureKind.INPUT_TOO_LONG

    def __init__(self, num_tokens: int, max_sequence_length: int, **details):
        message = (
            f"Input is {num_tokens} tokens long but max_sequence_length is "
            f"{max_sequence_length} and truncation is disabled"
        )

        super().__init__(
            message,
            {"num_tokens": num_tokens, "max_sequence_length": max_sequence_length, **details},
        )
        self.num_tokens = num_tokens
        self.max_sequence_length = max_sequence_length


class TokenizationError(BatchServeError):
    """Raised when a single text cannot be tokenized."""

    kind = FailureKind.TOKENIZATION

    def __init__(self, reason: str, request_id: Optional[str] = None, **details):
        if request_id:
            message = f"Tokenization failed for request {request_id}: {reason}"
        else:
            message = f"Tokenization failed: {reason}"

        super().__init__(message, details)
        self.reason = reason
        self.request_id = request_id


class BackendError(BatchServeError):
    """Raised when the model backend fails a forward pass.

    Fatal to every request of the batch in flight.
    """

    kind = FailureKind.BACKEND

    def __init__(self, reason: str, batch_id: Optional[str] = None, **details):
        if batch_id:
            message = f"Backend failure for batch {batch_id}: {reason}"
        else:
            message = f"Backend failure: {reason}"

        super().__init__(message, details)
        self.reason = reason
        self.batch_id = batch_id

    def for_request(self) -> "BackendError":
        """A fresh instance carrying the same failure, one per completion handle."""
        return BackendError(self.reason, batch_id=self.batch_id, **self.details)


class SchedulerClosedError(BatchServeError):
    """Raised when submitting to a scheduler that is not running."""

    kind = FailureKind.CLOSED

    def __init__(self, reason: str = "scheduler is not running"):
        super().__init__(f"Request rejected: {reason}")
        self.reason = reason


class RoutingError(BatchServeError):
    """Raised when a completion handle would be signalled more than once."""

    def __init__(self, request_id: str, reason: str):
        super().__init__(
            f"Routing error for request {request_id}: {reason}", {"request_id": request_id}
        )
        self.request_id = request_id
        self.reason = reason


class ConfigurationError(BatchServeError):
    """Raised when configuration is invalid or inconsistent."""

    def __init__(self, field: str, value: Any, expected: str, **details):
        message = f"Invalid configuration for {field}: got {value}, expected {expected}"

        super().__init__(message, {"field": field, "value": value, "expected": expected, **details})
        self.field = field
        self.value = value
        self.expected = expected


class ModelLoadError(BatchServeError):
    """Raised when the model, tokenizer or label mapping cannot be loaded."""

    def __init__(self, source: str, reason: str, **details):
        super().__init__(
            f"Failed to load model from {source}: {reason}",
            {"source": source, "reason": reason, **details},
        )
        self.source = source
        self.reason = reason


def failure_kind(error: BaseException) -> str:
    """Label used when counting failures by kind."""
    kind = getattr(error, "kind", None)
    return kind.value if kind is not None else "internal"


def raise_configuration_error(field: str, value: Any, expected: str, **details):
    """Raise a configuration error with helpful context."""
    suggestions = {
        "max_batch_size": "Set BATCH_SIZE to a positive integer",
        "tick_duration_ms": "Set TICK_DURATION_MS to a positive number of milliseconds",
        "max_queue_size": "Set MAX_QUEUE_SIZE to at least BATCH_SIZE",
        "device": "Use one of auto, cpu, cuda, mps",
        "model": "Set MODEL_ID or MODEL_PATH",
    }

    suggestion = suggestions.get(field.lower())
    if suggestion:
        details["suggestion"] = suggestion

    raise ConfigurationError(field, value, expected, **details)


def summarize_errors(errors: List[BaseException]) -> Dict[str, int]:
    """Count errors by failure kind."""
    counts: Dict[str, int] = {}
    for error in errors:
        label = failure_kind(error)
        counts[label] = counts.get(label, 0) + 1
    return counts
