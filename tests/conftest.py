"""Shared test fixtures for batchserve."""

import asyncio
import threading
import time
from typing import Dict, List, Optional

import pytest
import torch

from batchserve.backend import ModelBackend
from batchserve.batching.scheduler import Scheduler
from batchserve.config import SchedulerConfig, reset_config
from batchserve.errors import BackendError, TokenizationError
from batchserve.metrics import InMemoryMetrics
from batchserve.tokenizer import TokenizerAdapter
from batchserve.types import Encoding, Request

MALFORMED = "<malformed>"

ENV_VARS = [
    "BATCH_SIZE",
    "TICK_DURATION_MS",
    "MAX_SEQUENCE_LENGTH",
    "MAX_QUEUE_SIZE",
    "TRUNCATION",
    "DEVICE",
    "CPU_ONLY",
    "MODEL_ID",
    "MODEL_PATH",
    "MODEL_REVISION",
    "USE_PTH",
    "ID2LABEL",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "ENABLE_METRICS",
]


class FakeTokenizer(TokenizerAdapter):
    """Whitespace tokenizer; texts containing ``<malformed>`` fail to encode."""

    pad_token_id = 0

    def __init__(self):
        self.encoded: List[str] = []

    def _ids(self, text):
        if not isinstance(text, str) or MALFORMED in text:
            raise TokenizationError("cannot tokenize input")
        return [1 + sum(ord(c) for c in word) % 997 for word in text.split()]

    def encode(self, text: str, max_len: int) -> Encoding:
        ids = self._ids(text)[:max_len]
        self.encoded.append(text)
        return Encoding(input_ids=ids, attention_mask=[1] * len(ids))

    def count_tokens(self, text: str) -> int:
        return len(self._ids(text))


class FakeBackend(ModelBackend):
    """Two-class backend: label 1 when a row has an even number of tokens.

    Records every call and the peak number of concurrent forward passes.
    """

    def __init__(self, fail: bool = False, delay: float = 0.0, fail_calls: Optional[set] = None):
        self.fail = fail
        self.delay = delay
        self.fail_calls = fail_calls or set()
        self.calls: List[int] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    @property
    def id2label(self) -> Dict[int, str]:
        return {0: "odd", 1: "even"}

    def infer(self, input_ids: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            call = len(self.calls)
            self.calls.append(input_ids.shape[0])

        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail or call in self.fail_calls:
                raise BackendError("simulated device failure")

            lengths = attention_mask.sum(dim=1)
            even = (lengths % 2 == 0).float()
            return torch.stack([1.0 - even, even], dim=1) * 4.0
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture(autouse=True)
def _reset_global_config(monkeypatch):
    """Reset global config and clear serving environment variables."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def tokenizer():
    return FakeTokenizer()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def metrics():
    return InMemoryMetrics()


@pytest.fixture
def make_scheduler(tokenizer, backend, metrics):
    """Factory building an unstarted scheduler around the fakes."""

    def factory(backend_override: Optional[ModelBackend] = None, **overrides) -> Scheduler:
        settings = {"max_batch_size": 4, "tick_duration_ms": 50, "device": "cpu"}
        settings.update(overrides)
        return Scheduler(
            SchedulerConfig(**settings),
            tokenizer,
            backend_override or backend,
            metrics=metrics,
        )

    return factory


@pytest.fixture
def loop():
    """A private event loop for synchronous tests that need futures."""
    event_loop = asyncio.new_event_loop()
    yield event_loop
    event_loop.close()


@pytest.fixture
def make_request(loop):
    """Factory building queued requests bound to the private loop."""

    def factory(text: str) -> Request:
        return Request(text=text, future=loop.create_future(), submitted_at=loop.time())

    return factory
