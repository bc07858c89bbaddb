"""
Micro-batching Scheduler

This module admits classification requests into a bounded FIFO queue and cuts
them into batches when either the queue reaches ``max_batch_size`` or the next
tick fires, whichever comes first. Ticks fire on a fixed schedule from start();
size cuts do not move it, so every request is cut within one tick of admission
unless a forward pass is still running.

A single background task owns the cut loop and a single worker thread owns the
model, so at most one forward pass is in flight. Admission keeps running on
the event loop while a batch executes; a tick that elapses meanwhile is served
as soon as that batch has been routed.
"""

import asyncio
import threading
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from ..backend import ModelBackend, logits_to_results
from ..config import SchedulerConfig
from ..errors import (
    BackendError,
    BatchServeError,
    InputTooLongError,
    QueueFullError,
    RoutingError,
    SchedulerClosedError,
    TokenizationError,
)
from ..logging import get_logger
from ..metrics import MetricsSink
from ..tokenizer import TokenizerAdapter
from ..types import CutReason, InferenceResult, Request, new_batch_id
from ..utils.timers import Timer
from .assembler import AssemblyResult, BatchAssembler
from .router import ResultRouter

logger = get_logger(__name__)

ProcessOutcome = Tuple[AssemblyResult, Optional[List[InferenceResult]], Optional[BackendError]]


class Scheduler:
    """
    Tick and size driven micro-batching scheduler.

    Usage::

        scheduler = Scheduler(config, tokenizer, backend)
        await scheduler.start()
        result = await scheduler.classify("some text")
        await scheduler.stop()
    """

    def __init__(
        self,
        config: SchedulerConfig,
        tokenizer: TokenizerAdapter,
        backend: ModelBackend,
        metrics: Optional[MetricsSink] = None,
        router: Optional[ResultRouter] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            config: Immutable batching configuration
            tokenizer: Tokenizer used for admission checks and batch assembly
            backend: Model backend running the forward pass
            metrics: Optional sink receiving batch, queue and failure events
            router: Result router (one is created if omitted)
        """
        self.config = config
        self.tokenizer = tokenizer
        self.backend = backend
        self.metrics = metrics
        self.router = router or ResultRouter(metrics)
        self.assembler = BatchAssembler(tokenizer, config.max_sequence_length)

        # Pending queue, mutated under the lock only
        self._pending: Deque[Request] = deque()
        self._lock = threading.Lock()

        # Loop state, bound to the running event loop by start()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._next_tick = 0.0
        self._running = False
        self._stopping = False
        self._in_flight: Optional[Timer] = None

        # Statistics
        self.total_requests = 0
        self.total_batches = 0
        self.total_rows = 0
        self.total_withdrawn = 0
        self.rejected: Dict[str, int] = defaultdict(int)
        self.cut_reasons: Dict[str, int] = defaultdict(int)
        self.total_processing_time = 0.0
        self._batch_sequence = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def queue_depth(self) -> int:
        with self._lock:
            return len(self._pending)

    async def start(self):
        """Start the cut loop on the running event loop."""
        if self._running:
            return
        if self._stopping:
            raise SchedulerClosedError("scheduler has been stopped")

        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batchserve-model")
        self._next_tick = self._loop.time() + self.config.tick_seconds
        self._running = True
        self._task = self._loop.create_task(self._run())

        logger.info(
            "Scheduler started",
            max_batch_size=self.config.max_batch_size,
            tick_duration_ms=self.config.tick_duration_ms,
            max_queue_size=self.config.max_queue_size,
            truncation=self.config.truncation,
        )

    async def stop(self):
        """Stop admission, drain queued requests and wait for the loop to exit."""
        if not self._running:
            return

        self._running = False
        self._stopping = True
        self._wakeup.set()

        try:
            await self._task
        finally:
            self._executor.shutdown(wait=True)

        logger.info(
            "Scheduler stopped",
            total_requests=self.total_requests,
            total_batches=self.total_batches,
        )

    def submit_request(self, text: str) -> Request:
        """Admit ``text`` and return the queued request.

        Raises:
            SchedulerClosedError: if the scheduler is not running
            InputTooLongError: if truncation is disabled and the text is too long
            QueueFullError: if the pending queue is at capacity
        """
        if not self._running:
            self._reject(SchedulerClosedError())

        if not self.config.truncation:
            self._check_length(text)

        future = self._loop.create_future()
        request = Request(text=text, future=future, submitted_at=self._loop.time())

        with self._lock:
            if len(self._pending) >= self.config.max_queue_size:
                self._purge_withdrawn()

            depth = len(self._pending)
            if depth >= self.config.max_queue_size:
                error = QueueFullError(depth, self.config.max_queue_size)
            else:
                error = None
                self._pending.append(request)
                self.total_requests += 1
                depth += 1

        if error is not None:
            self._reject(error)

        if self.metrics:
            self.metrics.observe_queue_depth(depth)

        if depth >= self.config.max_batch_size:
            self._wakeup.set()

        logger.debug("Request admitted", request_id=request.request_id, queue_depth=depth)
        return request

    def submit(self, text: str) -> "asyncio.Future[InferenceResult]":
        """Admit ``text`` and return its completion handle."""
        return self.submit_request(text).future

    async def classify(self, text: str) -> InferenceResult:
        """Submit ``text`` and wait for its outcome.

        Cancelling the awaiting task withdraws the request if it has not been
        cut yet.
        """
        return await self.submit(text)

    def withdraw(self, request_id: str) -> bool:
        """Remove a request that has not been cut yet.

        Returns True if the request was still pending.
        """
        with self._lock:
            for request in self._pending:
                if request.request_id == request_id:
                    self._pending.remove(request)
                    break
            else:
                return False
            depth = len(self._pending)

        request.future.cancel()
        self.total_withdrawn += 1
        if self.metrics:
            self.metrics.observe_queue_depth(depth)

        logger.debug("Request withdrawn", request_id=request_id)
        return True

    def _check_length(self, text: str):
        try:
            num_tokens = self.tokenizer.count_tokens(text)
        except TokenizationError:
            # Reported through the completion handle at assembly time
            return

        if num_tokens > self.config.max_sequence_length:
            self._reject(InputTooLongError(num_tokens, self.config.max_sequence_length))

    def _reject(self, error: BatchServeError):
        self.rejected[error.kind.value] += 1
        if self.metrics:
            self.metrics.record_failure(error.kind.value)
        raise error

    def _purge_withdrawn(self):
        """Drop cancelled requests; caller holds the lock."""
        live = [r for r in self._pending if not r.is_withdrawn]
        self.total_withdrawn += len(self._pending) - len(live)
        self._pending = deque(live)

    async def _run(self):
        """Cut loop: wait for the size trigger or the tick, then execute."""
        logger.debug("Scheduler cut loop started")

        while not self._stopping:
            deadline = self._deadline()
            timeout = deadline - self._loop.time()

            if timeout > 0 and not self._size_reached():
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
            self._wakeup.clear()

            if self._stopping:
                break

            now = self._loop.time()
            if self._size_reached():
                reason = CutReason.SIZE
            elif now >= deadline:
                reason = CutReason.TICK
            else:
                continue

            if now >= self._next_tick:
                self._advance_tick(now)

            requests = self._cut()
            if requests:
                await self._execute(requests, reason)

        # Drain whatever was admitted before stop()
        while True:
            requests = self._cut()
            if not requests:
                break
            await self._execute(requests, CutReason.SHUTDOWN)

        logger.debug("Scheduler cut loop stopped")

    def _deadline(self) -> float:
        """Next fixed tick, or earlier if the oldest request is already overdue."""
        deadline = self._next_tick
        with self._lock:
            for request in self._pending:
                if not request.is_withdrawn:
                    deadline = min(deadline, request.submitted_at + self.config.tick_seconds)
                    break
        return deadline

    def _advance_tick(self, now: float):
        """Advance the fixed tick schedule to its first boundary after ``now``."""
        tick = self.config.tick_seconds
        missed = int((now - self._next_tick) // tick) + 1
        self._next_tick += missed * tick

    def _size_reached(self) -> bool:
        with self._lock:
            return len(self._pending) >= self.config.max_batch_size

    def _cut(self) -> List[Request]:
        """Remove a FIFO prefix of live requests from the queue."""
        now = self._loop.time()
        requests: List[Request] = []

        with self._lock:
            while self._pending and len(requests) < self.config.max_batch_size:
                request = self._pending.popleft()
                if request.is_withdrawn:
                    self.total_withdrawn += 1
                    continue
                requests.append(request)
            depth = len(self._pending)

        if self.metrics:
            self.metrics.observe_queue_depth(depth)
            for request in requests:
                self.metrics.observe_wait(now - request.submitted_at)

        return requests

    async def _execute(self, requests: List[Request], reason: CutReason):
        """Assemble, run and route one batch."""
        self._batch_sequence += 1
        batch_id = new_batch_id(self._batch_sequence)

        logger.info(
            "Processing batch",
            batch_id=batch_id,
            batch_size=len(requests),
            reason=reason.value,
            request_ids=[r.request_id for r in requests][:5],
        )

        timer = Timer("batch_execution", {"batch_id": batch_id}).start()
        self._in_flight = timer
        try:
            assembly, results, error = await self._loop.run_in_executor(
                self._executor, self._process, batch_id, requests
            )
        except Exception as e:
            logger.error("Batch processing failed", batch_id=batch_id, error=str(e))
            self.router.fail_all(
                [r for r in requests if not r.is_resolved],
                BackendError(str(e), batch_id=batch_id),
            )
            return
        finally:
            self._in_flight = None
            timing = timer.stop()

        self._route(batch_id, assembly, results, error)

        rows = assembly.num_rows
        if rows:
            self.total_batches += 1
            self.total_rows += rows
            self.total_processing_time += timing.duration_ms
            self.cut_reasons[reason.value] += 1
            if self.metrics:
                self.metrics.observe_batch(rows, timing.duration_seconds, reason.value)

        if error is None:
            logger.info(
                "Batch processed successfully",
                batch_id=batch_id,
                batch_size=rows,
                failed=len(assembly.failures),
                processing_time_ms=timing.duration_ms,
            )

    def _process(self, batch_id: str, requests: Sequence[Request]) -> ProcessOutcome:
        """Runs on the model worker thread."""
        assembly = self.assembler.assemble(batch_id, requests)
        batch = assembly.batch
        if batch is None:
            return assembly, None, None

        try:
            logits = self.backend.infer(batch.input_ids, batch.attention_mask)
            if logits.shape[0] != batch.size:
                raise BackendError(
                    f"backend returned {logits.shape[0]} rows for {batch.size} inputs"
                )
            results = logits_to_results(logits, self.backend.id2label, batch)
        except BackendError as e:
            return assembly, None, BackendError(e.reason, batch_id=batch_id, **e.details)
        except Exception as e:
            return assembly, None, BackendError(str(e), batch_id=batch_id)

        return assembly, results, None

    def _route(
        self,
        batch_id: str,
        assembly: AssemblyResult,
        results: Optional[List[InferenceResult]],
        error: Optional[BackendError],
    ):
        for request, failure in assembly.failures:
            self._signal(self.router.fail, request, failure)

        batch = assembly.batch
        if batch is None:
            return

        if error is not None:
            logger.error(
                "Backend failed, failing batch",
                batch_id=batch_id,
                batch_size=batch.size,
                error=str(error),
            )
            for request in batch.requests:
                self._signal(self.router.fail, request, error.for_request())
            return

        for row, result in enumerate(results):
            self._signal(self.router.deliver, batch.request_for_row(row), result)

    def _signal(self, route, request: Request, outcome: Any):
        try:
            route(request, outcome)
        except RoutingError as e:
            logger.error("Routing invariant violated", request_id=request.request_id, error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        avg_processing_time = (
            self.total_processing_time / self.total_batches if self.total_batches > 0 else 0
        )
        avg_batch_size = self.total_rows / self.total_batches if self.total_batches > 0 else 0
        in_flight = self._in_flight

        return {
            "is_running": self._running,
            "in_flight": in_flight is not None,
            "in_flight_seconds": in_flight.elapsed_seconds if in_flight else 0.0,
            "queue_depth": self.queue_depth,
            "total_requests": self.total_requests,
            "total_batches": self.total_batches,
            "total_rows": self.total_rows,
            "total_withdrawn": self.total_withdrawn,
            "avg_batch_size": avg_batch_size,
            "avg_processing_time_ms": avg_processing_time,
            "cut_reasons": dict(self.cut_reasons),
            "rejected": dict(self.rejected),
            "routed": {
                "delivered": self.router.delivered,
                "failed": self.router.failed,
                "discarded": self.router.discarded,
            },
            "config": {
                "max_batch_size": self.config.max_batch_size,
                "tick_duration_ms": self.config.tick_duration_ms,
                "max_sequence_length": self.config.max_sequence_length,
                "max_queue_size": self.config.max_queue_size,
                "truncation": self.config.truncation,
            },
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
