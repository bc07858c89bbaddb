"""
Core Type Definitions for BatchServe

This module defines the data types that flow through the serving pipeline:
admitted requests, cut batches and per-row inference results.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

import torch


class FailureKind(Enum):
    """Distinguishable failure outcomes delivered to callers."""

    QUEUE_FULL = "queue_full"
    INPUT_TOO_LONG = "input_too_long"
    TOKENIZATION = "tokenization"
    BACKEND = "backend"
    CLOSED = "closed"


class CutReason(Enum):
    """Why the scheduler cut a batch."""

    SIZE = "size"  # Pending queue reached max_batch_size
    TICK = "tick"  # Scheduled tick fired, or the oldest request waited a full tick
    SHUTDOWN = "shutdown"  # Draining on stop()


@dataclass
class Request:
    """A single admitted classification request.

    The scheduler holds the write side of ``future``; the caller awaits it.
    """

    text: str
    future: asyncio.Future
    submitted_at: float
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_withdrawn(self) -> bool:
        """True once the caller cancelled the completion handle."""
        return self.future.cancelled()

    @property
    def is_resolved(self) -> bool:
        return self.future.done()


@dataclass(frozen=True)
class InferenceResult:
    """Classification outcome for one batch row."""

    request_id: str
    label_id: int
    label: str
    score: float
    probs: Tuple[float, ...]
    num_tokens: int = 0

    @property
    def num_classes(self) -> int:
        return len(self.probs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "request_id": self.request_id,
            "label_id": self.label_id,
            "label": self.label,
            "score": self.score,
            "probs": list(self.probs),
            "num_classes": self.num_classes,
            "num_tokens": self.num_tokens,
        }


@dataclass(frozen=True)
class Batch:
    """An immutable set of requests assembled into padded tensors.

    ``row_index[row]`` is the position in ``requests`` of the request that owns
    that tensor row. Requests that failed tokenization are not part of
    ``requests``.
    """

    batch_id: str
    requests: Tuple[Request, ...]
    input_ids: torch.Tensor
    attention_mask: torch.Tensor
    row_index: Tuple[int, ...]
    token_counts: Tuple[int, ...]

    def __post_init__(self):
        """Validate the row to request mapping."""
        rows = self.input_ids.shape[0]
        if self.attention_mask.shape != self.input_ids.shape:
            raise ValueError("attention_mask shape must match input_ids shape")
        if len(self.row_index) != rows or len(self.token_counts) != rows:
            raise ValueError("row_index and token_counts must have one entry per row")
        if sorted(self.row_index) != list(range(len(self.requests))):
            raise ValueError("row_index must be a bijection between rows and requests")

    @property
    def size(self) -> int:
        return len(self.row_index)

    @property
    def sequence_length(self) -> int:
        return int(self.input_ids.shape[1])

    def request_for_row(self, row: int) -> Request:
        """Return the request that owns a tensor row."""
        return self.requests[self.row_index[row]]

    def rows(self) -> List[Tuple[int, Request]]:
        """All (row, request) pairs in row order."""
        return [(row, self.request_for_row(row)) for row in range(self.size)]


@dataclass
class Encoding:
    """Token ids and attention mask for a single text."""

    input_ids: List[int]
    attention_mask: List[int]

    def __len__(self) -> int:
        return len(self.input_ids)

    @property
    def num_tokens(self) -> int:
        return sum(self.attention_mask)


def new_batch_id(sequence: int) -> str:
    """Build a batch identifier from a monotonically increasing counter."""
    return f"batch_{sequence:06d}"
