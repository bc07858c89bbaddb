"""
BatchServe - Micro-batching inference core for text classification.

Requests are admitted into a bounded FIFO queue, cut into batches by size or
by tick, run through a single forward pass and routed back to their callers.
"""

__version__ = "0.1.0"

from .backend import ModelBackend, ModelHandle, TorchModelBackend, select_device
from .batching import BatchAssembler, ResultRouter, Scheduler
from .config import SchedulerConfig, ServeConfig
from .errors import (
    BackendError,
    BatchServeError,
    ConfigurationError,
    InputTooLongError,
    ModelLoadError,
    QueueFullError,
    RoutingError,
    SchedulerClosedError,
    TokenizationError,
)
from .tokenizer import HuggingFaceTokenizer, TokenizerAdapter
from .types import Batch, CutReason, FailureKind, InferenceResult, Request

__all__ = [
    "__version__",
    "Scheduler",
    "BatchAssembler",
    "ResultRouter",
    "ModelBackend",
    "ModelHandle",
    "TorchModelBackend",
    "select_device",
    "TokenizerAdapter",
    "HuggingFaceTokenizer",
    "SchedulerConfig",
    "ServeConfig",
    "Request",
    "Batch",
    "InferenceResult",
    "CutReason",
    "FailureKind",
    "BatchServeError",
    "QueueFullError",
    "InputTooLongError",
    "TokenizationError",
    "BackendError",
    "SchedulerClosedError",
    "RoutingError",
    "ConfigurationError",
    "ModelLoadError",
]
